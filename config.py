import tomllib
import shutil
import logging
from pathlib import Path
from typing import Any, Dict, Optional
from dotenv import load_dotenv
import os

CONFIG_DIR = Path.home() / ".echocards"
CONFIG_PATH = CONFIG_DIR / "config.toml"
PROJECT_CONFIG_EXAMPLE = Path(__file__).parent / "config.toml"

def load_config() -> Dict[str, Any]:
    """Load config from ~/.echocards/config.toml, copy example if missing, load .env overrides."""
    load_dotenv()  # Load .env for overrides (e.g., OLLAMA_MODEL env var)
    if not CONFIG_PATH.exists():
        CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        shutil.copy(PROJECT_CONFIG_EXAMPLE, CONFIG_PATH)
    with open(CONFIG_PATH, "rb") as f:
        config = tomllib.load(f)

    ollama_cfg = config.get("ollama", {})
    config["ollama"] = {
        "model": os.getenv("OLLAMA_MODEL", ollama_cfg.get("model", "llama3.2")),
        "complex_model": os.getenv(
            "OLLAMA_COMPLEX_MODEL",
            ollama_cfg.get("complex_model", ollama_cfg.get("model", "llama3.2")),
        ),
        "vision_model": os.getenv("OLLAMA_VISION_MODEL", ollama_cfg.get("vision_model", "llava")),
        "image_model": os.getenv("OLLAMA_IMAGE_MODEL", ollama_cfg.get("image_model", "")),
        "timeout": int(os.getenv("OLLAMA_TIMEOUT", ollama_cfg.get("timeout", 60))),
    }
    narration_cfg = config.get("narration", {})
    config["narration"] = {
        "command": os.getenv("NARRATION_COMMAND", narration_cfg.get("command", "espeak")),
        "voice": narration_cfg.get("voice", "en"),
        "rate": int(narration_cfg.get("rate", 170)),
    }
    matching_cfg = config.get("matching", {})
    config["matching"] = {
        "deck_name_threshold": float(os.getenv(
            "DECK_NAME_THRESHOLD",
            matching_cfg.get("deck_name_threshold", 0.85),
        )),
    }
    logging_cfg = config.get("logging", {})
    config["logging"] = {
        "level": os.getenv("LOG_LEVEL", logging_cfg.get("level", "INFO")).upper(),
    }
    config.setdefault("stt", {})
    return config

def get_config_value(section: str, key: str, default: Optional[Any] = None) -> Any:
    """Get nested config value, e.g., get_config_value('ollama', 'model')."""
    config = load_config()
    value = config.get(section, {}).get(key, default)
    return value


def configure_logging(config: Optional[Dict[str, Any]] = None) -> None:
    """Apply the configured log level to the root logger."""
    config = config or load_config()
    level = getattr(logging, config["logging"]["level"], logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
