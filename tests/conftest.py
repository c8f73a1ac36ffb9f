import asyncio
from pathlib import Path
from typing import List, Optional

import pytest

import config
from db import database
from models.command import GeneratedCard


def _write_test_config(config_path: Path) -> None:
    config_path.write_text(
        "\n".join(
            [
                "[ollama]",
                "model = \"llama3.2\"",
                "timeout = 15",
                "",
                "[narration]",
                "command = \"echocards-test-no-tts\"",
                "",
                "[matching]",
                "deck_name_threshold = 0.85",
            ]
        ),
        encoding="utf-8",
    )


@pytest.fixture
def echo_home(tmp_path, monkeypatch):
    """Point config and database at a fresh temporary directory."""
    config_dir = tmp_path / ".echocards"
    config_dir.mkdir()
    config_path = config_dir / "config.toml"
    _write_test_config(config_path)

    for var in ("OLLAMA_MODEL", "NARRATION_COMMAND", "DECK_NAME_THRESHOLD", "LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(config, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(config, "CONFIG_PATH", config_path)
    monkeypatch.setattr(database, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(database, "DB_PATH", config_dir / "echocards.db")

    database.init_db(seed=False)
    return config_dir


class RecordingSpeaker:
    """Speaker that records what it was asked to say instead of playing audio."""

    def __init__(self):
        self.spoken: List[str] = []
        self.voice = "en"

    async def __call__(self, text: str) -> None:
        self.spoken.append(text)
        await asyncio.sleep(0)


class FakeAssistant:
    def __init__(self, reply: Optional[str] = "Here is a hint.", cards: Optional[List[GeneratedCard]] = None):
        self.reply = reply
        self.cards = cards if cards is not None else [
            GeneratedCard(question="Q1?", answer="A1"),
            GeneratedCard(question="Q2?", answer="A2", explanation="Because."),
        ]
        self.questions = []
        self.targeted = []

    async def answer_question(self, card, query):
        self.questions.append((card, query))
        return self.reply

    async def explain_card(self, card):
        return f"Explanation of {card.question}"

    async def generate_deck_from_topic(self, topic, depth, count):
        return self.cards[:count]

    async def generate_deck_from_document(self, deck_name, document_text):
        return self.cards

    async def generate_targeted_cards(self, card, context, count=3):
        self.targeted.append((card, context, count))
        return self.cards[:count]

    async def analyze_text(self, text, prompt, complexity="simple"):
        return f"{complexity}: {prompt}"

    async def analyze_image(self, prompt, image_path):
        return f"An image at {image_path}"

    async def generate_image(self, prompt):
        return "/tmp/generated.png"

    async def transcribe_audio(self, audio_path):
        return "hello world"


@pytest.fixture
def speaker():
    return RecordingSpeaker()


@pytest.fixture
def assistant():
    return FakeAssistant()
