import asyncio
import json
import logging
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError

from config import load_config
from models.card import Card
from models.command import GeneratedCard
from utils.stt import transcribe_audio

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".webp"}
_generated_cards = TypeAdapter(List[GeneratedCard])


def call_llm(prompt: str, model: str = None, timeout: int = None, cwd: Optional[Path] = None) -> Optional[str]:
    """Call local Ollama model with prompt, return response or None on error."""
    config = load_config()
    model = model or config.get('ollama', {}).get('model', 'llama3.2')
    timeout = timeout or config.get('ollama', {}).get('timeout', 60)
    cmd = ['ollama', 'run', model]
    try:
        result = subprocess.run(
            cmd,
            input=prompt,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
            encoding='utf-8',
            cwd=cwd,
        )
        return result.stdout.strip()
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError) as e:
        logger.warning("Ollama call to %s failed: %s", model, e)
        return None


def parse_generated_cards(response: Optional[str]) -> List[GeneratedCard]:
    """Pull a JSON array of {question, answer, explanation} objects out of a model reply."""
    if not response:
        return []
    start = response.find('[')
    end = response.rfind(']')
    if start == -1 or end <= start:
        logger.warning("No JSON array in generated cards response")
        return []
    try:
        return _generated_cards.validate_python(json.loads(response[start:end + 1]))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning("Could not parse generated cards: %s", e)
        return []


CARDS_FORMAT = """Respond with only a JSON array. Each element must be an object with the keys
"question", "answer" and "explanation". Keep answers short enough to be read aloud."""


class OllamaAssistant:
    """AI content collaborator backed by local Ollama models.

    Every method is a single awaitable call; failures come back as ``None``
    or an empty list rather than exceptions.
    """

    def __init__(self, config: dict = None):
        self.config = config or load_config()

    def _model(self, key: str) -> str:
        ollama_cfg = self.config.get('ollama', {})
        return ollama_cfg.get(key) or ollama_cfg.get('model', 'llama3.2')

    async def _ask(self, prompt: str, model_key: str = 'model', cwd: Optional[Path] = None) -> Optional[str]:
        response = await asyncio.to_thread(
            call_llm,
            prompt,
            self._model(model_key),
            self.config.get('ollama', {}).get('timeout'),
            cwd,
        )
        return response or None

    async def answer_question(self, card: Optional[Card], query: str) -> Optional[str]:
        context = ""
        if card:
            context = f"""The student is studying this flashcard.
Question: {card.question}
Answer: {card.answer}
"""
            if card.explanation:
                context += f"Notes: {card.explanation}\n"
        prompt = f"""{context}
The student asks: {query}

Answer conversationally in two or three sentences. Your reply will be read aloud.
"""
        return await self._ask(prompt)

    async def explain_card(self, card: Card) -> Optional[str]:
        prompt = f"""Explain the following flashcard in depth so a student understands why the answer is correct.
Give background, an example and a memory aid.

Question: {card.question}
Answer: {card.answer}
"""
        return await self._ask(prompt)

    async def generate_deck_from_topic(self, topic: str, depth: str, count: int) -> List[GeneratedCard]:
        prompt = f"""Create {count} flashcards about "{topic}" at a {depth} level of depth.
{CARDS_FORMAT}
"""
        return parse_generated_cards(await self._ask(prompt))

    async def generate_deck_from_document(self, deck_name: str, document_text: str) -> List[GeneratedCard]:
        prompt = f"""Read the document below and create flashcards for a deck named "{deck_name}"
covering its key facts and concepts.
{CARDS_FORMAT}

Document:
{document_text}
"""
        return parse_generated_cards(await self._ask(prompt))

    async def generate_targeted_cards(self, card: Card, context: str, count: int = 3) -> List[GeneratedCard]:
        reference = f"\nReference material:\n{context}\n" if context else ""
        prompt = f"""A student keeps forgetting this flashcard.
Question: {card.question}
Answer: {card.answer}
{reference}
Create {count} new flashcards that approach the same idea from different angles to help them master it.
{CARDS_FORMAT}
"""
        return parse_generated_cards(await self._ask(prompt))

    async def analyze_text(self, text: str, prompt: str, complexity: str = "simple") -> Optional[str]:
        model_key = 'complex_model' if complexity == "complex" else 'model'
        full_prompt = f"""{prompt}

Text:
{text}
"""
        return await self._ask(full_prompt, model_key)

    async def analyze_image(self, prompt: str, image_path: str) -> Optional[str]:
        # The Ollama CLI attaches image files referenced by path in the prompt.
        return await self._ask(f"{prompt} {image_path}", 'vision_model')

    async def generate_image(self, prompt: str) -> Optional[str]:
        """Run the configured image model and return the path of the image it wrote."""
        if not self.config.get('ollama', {}).get('image_model'):
            logger.warning("No image model configured")
            return None
        output_dir = Path(tempfile.mkdtemp(prefix="echocards-image-"))
        response = await self._ask(prompt, 'image_model', cwd=output_dir)
        if response is None:
            return None
        images = sorted(p for p in output_dir.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES)
        if not images:
            logger.warning("Image model produced no image file")
            return None
        return str(images[0])

    async def transcribe_audio(self, audio_path: Path) -> str:
        return await transcribe_audio(audio_path)
