from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Callable, Optional

from config import load_config

logger = logging.getLogger(__name__)

_MODEL_LOCK = threading.Lock()
_TRANSCRIBE_LOCK = threading.Lock()
_BACKEND: Optional[dict] = None


def _resolve_stt_config() -> dict:
    stt_cfg = load_config().get("stt", {})
    return {
        "provider": (stt_cfg.get("provider") or "auto").lower(),
        "model": stt_cfg.get("model", "base"),
        "language": stt_cfg.get("language"),
        "device": stt_cfg.get("device", "cpu"),
        "compute_type": stt_cfg.get("compute_type", "int8"),
        "no_speech_threshold": stt_cfg.get("no_speech_threshold", 0.6),
        "log_prob_threshold": stt_cfg.get("log_prob_threshold", -1.0),
        "fallback_no_speech_threshold": stt_cfg.get("fallback_no_speech_threshold", 0.9),
        "fallback_log_prob_threshold": stt_cfg.get("fallback_log_prob_threshold", -5.0),
        "normalize_audio": stt_cfg.get("normalize_audio", True),
        "vad_filter": stt_cfg.get("vad_filter", True),
        "record_format": stt_cfg.get("record_format", "pulse"),
        "record_device": stt_cfg.get("record_device", "default"),
    }


def normalize_language(value: Optional[str]) -> Optional[str]:
    if not value or not value.strip():
        return None
    value = value.strip()
    if value.lower() in {"auto", "detect", "none"}:
        return None
    return value


def _require_ffmpeg() -> None:
    if not shutil.which("ffmpeg"):
        raise RuntimeError("ffmpeg is required for local audio capture and transcription.")


def _prepare_audio(audio_path: Path, cfg: dict) -> Path:
    """Downmix to 16 kHz mono with loudness normalisation; fall back to the original file."""
    if not cfg.get("normalize_audio", True):
        return audio_path
    _require_ffmpeg()
    with tempfile.NamedTemporaryFile(delete=False, suffix=".wav") as tmp:
        output_path = Path(tmp.name)
    command = [
        "ffmpeg", "-y", "-hide_banner", "-loglevel", "error",
        "-i", str(audio_path),
        "-ac", "1", "-ar", "16000", "-af", "dynaudnorm",
        str(output_path),
    ]
    try:
        subprocess.run(command, check=True, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE)
    except subprocess.CalledProcessError as exc:
        logger.warning("Audio normalisation failed, using original file: %s", exc)
        output_path.unlink(missing_ok=True)
        return audio_path
    return output_path


def _faster_whisper_runner(model, cfg: dict, language: Optional[str]) -> Callable[[Path, float, float], str]:
    def run(audio_path: Path, no_speech: float, log_prob: float) -> str:
        segments, _info = model.transcribe(
            str(audio_path),
            language=language,
            no_speech_threshold=no_speech,
            log_prob_threshold=log_prob,
            vad_filter=cfg.get("vad_filter", True),
        )
        return " ".join(segment.text.strip() for segment in segments if segment.text).strip()
    return run


def _whisper_runner(model, cfg: dict, language: Optional[str]) -> Callable[[Path, float, float], str]:
    def run(audio_path: Path, no_speech: float, log_prob: float) -> str:
        result = model.transcribe(
            str(audio_path),
            fp16=False,
            language=language,
            no_speech_threshold=no_speech,
            logprob_threshold=log_prob,
        )
        return (result.get("text") or "").strip()
    return run


def _load_backend() -> dict:
    global _BACKEND
    if _BACKEND is not None:
        return _BACKEND
    with _MODEL_LOCK:
        if _BACKEND is not None:
            return _BACKEND
        cfg = _resolve_stt_config()
        provider = cfg["provider"]
        providers = [provider] if provider != "auto" else ["faster-whisper", "whisper"]
        last_error: Optional[Exception] = None
        for name in providers:
            try:
                _require_ffmpeg()
                if name in {"faster-whisper", "faster_whisper"}:
                    from faster_whisper import WhisperModel
                    model = WhisperModel(cfg["model"], device=cfg["device"], compute_type=cfg["compute_type"])
                    _BACKEND = {"name": "faster-whisper", "model": model, "config": cfg, "runner": _faster_whisper_runner}
                elif name == "whisper":
                    import whisper
                    model = whisper.load_model(cfg["model"])
                    _BACKEND = {"name": "whisper", "model": model, "config": cfg, "runner": _whisper_runner}
                else:
                    continue
            except Exception as exc:  # pragma: no cover - optional dependency
                last_error = exc
                continue
            logger.info("Loaded %s transcription backend", _BACKEND["name"])
            return _BACKEND
        raise RuntimeError(
            "Local transcription is unavailable. Install faster-whisper "
            "or openai-whisper and ensure ffmpeg is installed."
        ) from last_error


def _transcribe_sync(audio_path: Path) -> str:
    backend = _load_backend()
    cfg = backend["config"]
    run = backend["runner"](backend["model"], cfg, normalize_language(cfg.get("language")))
    prepared_path = _prepare_audio(audio_path, cfg)
    with _TRANSCRIBE_LOCK:
        try:
            text = run(prepared_path, cfg["no_speech_threshold"], cfg["log_prob_threshold"])
            if text:
                return text
            # Quiet recordings: retry with permissive thresholds.
            return run(
                prepared_path,
                cfg["fallback_no_speech_threshold"],
                cfg["fallback_log_prob_threshold"],
            )
        finally:
            if prepared_path != audio_path:
                prepared_path.unlink(missing_ok=True)


async def transcribe_audio(audio_path: Path) -> str:
    return await asyncio.to_thread(_transcribe_sync, audio_path)


class Recording:
    """Microphone capture into a temporary file via an ffmpeg child process.

    ``stop()`` finishes the file and hands it over; ``cancel()`` kills the
    process and deletes the file. Either may be called once; later calls are
    no-ops.
    """

    def __init__(self, process: asyncio.subprocess.Process, path: Path):
        self._process = process
        self.path = path
        self.active = True

    @classmethod
    async def start(cls) -> "Recording":
        _require_ffmpeg()
        cfg = _resolve_stt_config()
        with tempfile.NamedTemporaryFile(delete=False, suffix=".wav") as tmp:
            path = Path(tmp.name)
        process = await asyncio.create_subprocess_exec(
            "ffmpeg", "-y", "-hide_banner", "-loglevel", "error",
            "-f", cfg["record_format"], "-i", cfg["record_device"],
            "-ac", "1", "-ar", "16000",
            str(path),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        return cls(process, path)

    async def stop(self) -> Optional[Path]:
        if not self.active:
            return None
        self.active = False
        if self._process.returncode is None and self._process.stdin:
            try:
                # "q" asks ffmpeg to finalise the file and exit.
                self._process.stdin.write(b"q")
                await self._process.stdin.drain()
                self._process.stdin.close()
            except (BrokenPipeError, ConnectionResetError) as exc:
                logger.warning("Recorder exited before it could be stopped: %s", exc)
                await self._process.wait()
                self.path.unlink(missing_ok=True)
                return None
        await self._process.wait()
        return self.path

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._process.returncode is None:
            self._process.kill()
        self.path.unlink(missing_ok=True)
