import argparse
import logging
import uvicorn
from fastapi import FastAPI
from contextlib import asynccontextmanager

import sys
from pathlib import Path

# Add project root to path for package imports
base_dir = Path(__file__).parent
sys.path.insert(0, str(base_dir))

from db.database import init_db
from config import load_config, configure_logging, CONFIG_DIR
from routes import decks_router, session_router, stt_router
from utils.narration import CommandSpeaker, PlaybackQueue
from utils.ollama import OllamaAssistant
from utils.session import SessionController

logger = logging.getLogger(__name__)


# First-run init, plus the narration queue and session controller for the app's lifetime
@asynccontextmanager
async def lifespan(app: FastAPI):
    config = load_config()  # Ensures config exists
    configure_logging(config)
    init_db()
    narrator = PlaybackQueue(CommandSpeaker.from_config(config))
    await narrator.start()
    controller = SessionController(
        narrator,
        OllamaAssistant(config),
        deck_name_threshold=config["matching"]["deck_name_threshold"],
    )
    app.state.controller = controller
    logger.info("EchoCards session ready")
    try:
        yield
    finally:
        await controller.close()
        await narrator.close()
        app.state.controller = None


app = FastAPI(
    title="EchoCards",
    description="Voice-driven spaced-repetition flashcards",
    lifespan=lifespan,
)

# Include routers
app.include_router(session_router, prefix="/session", tags=["session"])
app.include_router(decks_router, prefix="/decks", tags=["decks"])
app.include_router(stt_router, tags=["stt"])


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="EchoCards App")
    parser.add_argument("--init", action="store_true", help="Initialize DB and config")
    parser.add_argument("--dev", action="store_true", help="Run in dev mode with reload")
    args = parser.parse_args()
    if args.init:
        load_config()  # Ensures config is copied if missing
        init_db()
        print(f"DB initialized and config copied to {CONFIG_DIR}/")
        sys.exit(0)
    # Run server
    port = 8000
    reload = args.dev
    uvicorn.run("main:app", host="127.0.0.1", port=port, reload=reload, log_level="info")
