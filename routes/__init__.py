# Routes package __init__.py - re-exports routers for main.py convenience
from .decks import router as decks_router
from .session import router as session_router
from .stt import router as stt_router

__all__ = ['decks_router', 'session_router', 'stt_router']
