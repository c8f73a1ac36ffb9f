"""Sequential text-to-speech playback.

A ``PlaybackQueue`` is created and closed by its owner (the app lifespan or
a test) and handed to the session controller. It plays queued utterances
one at a time and tells its subscribers when playback has fully stopped.
"""
from __future__ import annotations

import asyncio
import logging
import shutil
import signal
from collections import deque
from enum import Enum
from typing import Awaitable, Callable, Deque, List, Optional

from config import load_config

logger = logging.getLogger(__name__)

Speaker = Callable[[str], Awaitable[None]]


class PlaybackState(str, Enum):
    PLAYING = "PLAYING"
    PAUSED = "PAUSED"
    STOPPED = "STOPPED"


class CommandSpeaker:
    """Speaks text through a command-line synthesizer such as ``espeak``."""

    def __init__(self, command: str = "espeak", voice: str = "en", rate: int = 170):
        self.command = command
        self.voice = voice
        self.rate = rate
        self._process: Optional[asyncio.subprocess.Process] = None

    @classmethod
    def from_config(cls, config: dict = None) -> "CommandSpeaker":
        narration_cfg = (config or load_config())["narration"]
        return cls(narration_cfg["command"], narration_cfg["voice"], narration_cfg["rate"])

    async def __call__(self, text: str) -> None:
        if not shutil.which(self.command):
            logger.warning("Narration command %r not found; skipping: %s", self.command, text)
            return
        process = await asyncio.create_subprocess_exec(
            self.command, "-v", self.voice, "-s", str(self.rate), text,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        self._process = process
        try:
            await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
            raise
        finally:
            self._process = None

    def pause(self) -> None:
        if self._process and self._process.returncode is None:
            self._process.send_signal(signal.SIGSTOP)

    def resume(self) -> None:
        if self._process and self._process.returncode is None:
            self._process.send_signal(signal.SIGCONT)


class PlaybackQueue:
    def __init__(self, speaker: Speaker):
        self._speaker = speaker
        self._items: Deque[str] = deque()
        self._listeners: List[Callable[[], None]] = []
        self._worker: Optional[asyncio.Task] = None
        self._unpaused: Optional[asyncio.Event] = None
        self.state = PlaybackState.STOPPED
        self.epoch = 0
        self.open = False

    async def start(self) -> None:
        self._unpaused = asyncio.Event()
        self._unpaused.set()
        self.open = True

    async def close(self) -> None:
        self.interrupt()
        self._listeners.clear()
        self.open = False

    async def __aenter__(self) -> "PlaybackQueue":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Call ``callback`` every time the queue drains. Returns an unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)
        return unsubscribe

    def say(self, text: str) -> None:
        if not self.open:
            logger.warning("Narration queue is closed; dropping: %s", text)
            return
        if not text:
            return
        self._items.append(text)
        if self._worker is None:
            self._worker = asyncio.get_running_loop().create_task(self._run())

    def interrupt(self) -> None:
        """Drop everything queued and cut off the current utterance, without a stop notification."""
        self._items.clear()
        self.epoch += 1
        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
        if self._unpaused is not None:
            self._unpaused.set()
        self.state = PlaybackState.STOPPED

    def pause(self) -> None:
        if self.state != PlaybackState.PLAYING:
            return
        self._unpaused.clear()
        if hasattr(self._speaker, "pause"):
            self._speaker.pause()
        self.state = PlaybackState.PAUSED

    def resume(self) -> None:
        if self.state != PlaybackState.PAUSED:
            return
        if hasattr(self._speaker, "resume"):
            self._speaker.resume()
        self._unpaused.set()
        self.state = PlaybackState.PLAYING

    def set_voice(self, voice: str) -> None:
        if hasattr(self._speaker, "voice"):
            self._speaker.voice = voice

    @property
    def pending(self) -> int:
        return len(self._items)

    @property
    def busy(self) -> bool:
        return self._worker is not None

    async def join(self) -> None:
        """Wait until the current queue has been played out."""
        while self._worker is not None:
            await asyncio.wait({self._worker})

    async def _run(self) -> None:
        while self._items:
            await self._unpaused.wait()
            if not self._items:
                break
            text = self._items.popleft()
            self.state = PlaybackState.PLAYING
            try:
                await self._speaker(text)
            except Exception:
                logger.exception("Narration failed for: %s", text)
        self.state = PlaybackState.STOPPED
        self._worker = None
        for callback in list(self._listeners):
            callback()
