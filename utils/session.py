"""Review-session state machine.

The controller owns the review queue and the current card, applies ratings
through the scheduler, persists results, tracks study goals and manages
conversational interruptions. Everything that changes its state goes through
``handle()``, one message at a time under a single lock. Slow work (AI calls,
transcription) runs as background jobs that report back by posting an event
through ``handle()``, so every handler re-checks the state it needs when it
actually runs.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, get_args

from db import database
from models.card import Card
from models.command import (
    AnalyzeImage, AnalyzeText, AudioTranscribed, CardExplained, Command,
    CommandAck, ConnectionLost, ConversationReplied, CreateCard, CreateDeck,
    DeckGenerated, DeleteDeck, EndSession, Event, ExplainCard, FindCardToEdit,
    GenerateCardsFromWeakness, GenerateDeckFromDocument, GenerateDeckFromForm,
    GenerateImage, GoBack, ImageAnalyzed, ImageGenerated, ImportDeck,
    InvalidCommand, ListDecks, PlaybackStopped, RateCard, SelectImage,
    SetConversationalMode, SetStudyGoal, SetVoice, ShowAnswer, ShowCardStats,
    ShowDecks, ShowImageAnalysisView, ShowImageGenerationView, ShowImportView,
    ShowSmartGenerationView, ShowTextAnalysisView, ShowTranscriptionView,
    StartConversation, StartRecording, StartReview, StartSession,
    StopRecording, TextAnalyzed, UpdateCardContent, WeaknessCardsGenerated,
    parse_command,
)
from models.deck import Deck
from models.goal import StudyGoal, StudyProgress
from models.review import Rating
from models.session import (
    SECONDARY_VIEW_STATES, GoalProgress, SessionSnapshot, SessionState,
    TranscriptMessage,
)
from utils import progress as goals
from utils import storage
from utils.fsrs import compute_next_review
from utils.knowledge import find_relevant_chunk
from utils.matching import DEFAULT_DECK_NAME_THRESHOLD, resolve_deck
from utils.stt import Recording

logger = logging.getLogger(__name__)

WELCOME_TEXT = "Say 'Start Review' to begin."
RATING_PROMPT = "How did you do? Say Again, Hard, Good, or Easy."
REVIEW_COMPLETE_TEXT = "Review complete! Well done."
RESUME_PROMPTS = {
    SessionState.AWAITING_RATING: "Okay, let's continue. How did you do on the card?",
    SessionState.AWAITING_ANSWER_REVEAL: "Alright, back to it. Say 'Show Answer' when you're ready.",
    SessionState.AWAITING_COMMAND: "Hope that helped! What's next?",
}
DEFAULT_RESUME_PROMPT = "Let's continue."
WEAKNESS_CARD_COUNT = 3

# States in which no new background generation or conversation may start.
BUSY_STATES = frozenset({SessionState.PROCESSING, SessionState.CONVERSATION})


class SessionController:
    def __init__(
        self,
        narrator,
        assistant,
        *,
        connect: Callable = None,
        clock: Callable[[], datetime] = None,
        start_recording: Callable[[], Awaitable[Recording]] = None,
        deck_name_threshold: float = DEFAULT_DECK_NAME_THRESHOLD,
    ):
        self.narrator = narrator
        self.assistant = assistant
        self._connect = connect or database.get_conn
        self._clock = clock or datetime.now
        self._start_recording = start_recording or Recording.start
        self._deck_name_threshold = deck_name_threshold
        self._lock = asyncio.Lock()
        self._jobs: Set[asyncio.Task] = set()
        self._event_tasks: Set[asyncio.Task] = set()
        self._handlers = self._build_handlers()

        self.state = SessionState.IDLE
        self.previous_state: Optional[SessionState] = None
        self.status_text = WELCOME_TEXT
        self.review_queue: List[Card] = []
        self.current_card: Optional[Card] = None
        self.is_card_flipped = False
        self.transcripts: List[TranscriptMessage] = []

        self.active_goal: Optional[StudyGoal] = None
        self.study_progress: Optional[StudyProgress] = None
        self.session_progress_count = 0
        self.achievements: List[str] = []
        self.voice: Optional[str] = None
        self.conversational_mode = False

        self.card_to_edit: Optional[Card] = None
        self.card_for_stats: Optional[Card] = None
        self.recording: Optional[Recording] = None
        self._clear_view_fields()

        self._load_preferences()
        self._unsubscribe = narrator.subscribe(self._on_playback_stopped)

    # -- plumbing -----------------------------------------------------------

    def _build_handlers(self) -> Dict[type, Callable[[Any], Any]]:
        handlers = {
            StartSession: self._start_session,
            EndSession: self._end_session,
            StartReview: self._start_review,
            ShowAnswer: self._show_answer,
            RateCard: self._rate_card,
            StartConversation: self._start_conversation,
            SetStudyGoal: self._set_study_goal,
            CreateDeck: self._create_deck,
            DeleteDeck: self._delete_deck,
            ListDecks: self._list_decks,
            ShowDecks: self._show_decks,
            CreateCard: self._create_card,
            FindCardToEdit: self._find_card_to_edit,
            UpdateCardContent: self._update_card_content,
            GoBack: self._go_back,
            ShowImportView: self._show_import_view,
            ImportDeck: self._import_deck,
            ShowSmartGenerationView: self._show_smart_generation_view,
            GenerateDeckFromForm: self._generate_deck_from_form,
            GenerateDeckFromDocument: self._generate_deck_from_document,
            ShowCardStats: self._show_card_stats,
            ExplainCard: self._explain_card,
            GenerateCardsFromWeakness: self._generate_cards_from_weakness,
            ShowImageGenerationView: self._show_image_generation_view,
            GenerateImage: self._generate_image,
            ShowImageAnalysisView: self._show_image_analysis_view,
            SelectImage: self._select_image,
            AnalyzeImage: self._analyze_image,
            ShowTranscriptionView: self._show_transcription_view,
            StartRecording: self._start_recording_command,
            StopRecording: self._stop_recording,
            ShowTextAnalysisView: self._show_text_analysis_view,
            AnalyzeText: self._analyze_text,
            SetVoice: self._set_voice,
            SetConversationalMode: self._set_conversational_mode,
            PlaybackStopped: self._playback_stopped,
            ConnectionLost: self._connection_lost,
            ConversationReplied: self._conversation_replied,
            CardExplained: self._card_explained,
            DeckGenerated: self._deck_generated,
            WeaknessCardsGenerated: self._weakness_cards_generated,
            ImageGenerated: self._image_generated,
            ImageAnalyzed: self._image_analyzed,
            AudioTranscribed: self._audio_transcribed,
            TextAnalyzed: self._text_analyzed,
        }
        message_types = set(get_args(get_args(Command)[0])) | set(get_args(Event))
        missing = message_types - handlers.keys()
        if missing:
            raise RuntimeError(f"No handler for: {sorted(t.__name__ for t in missing)}")
        return handlers

    async def submit(self, payload: Any) -> CommandAck:
        """Validate a raw command payload from the command source and process it."""
        try:
            command = parse_command(payload)
        except InvalidCommand as exc:
            logger.warning("Dropping invalid command %s", exc)
            command_id = payload.get("id") if isinstance(payload, dict) else None
            return CommandAck(id=command_id, name=exc.name, result=f"ERROR: {exc.detail}")
        return await self.handle(command)

    async def handle(self, message) -> CommandAck:
        async with self._lock:
            logger.debug("Handling %s in %s", message.name, self.state.value)
            try:
                result = self._handlers[type(message)](message)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Handler for %s failed", message.name)
                self._recover("Sorry, something went wrong. Please try again.")
        return CommandAck(id=getattr(message, "id", None), name=message.name)

    def _spawn(self, work: Callable[[], Awaitable[Any]], make_event: Callable[[Any], Any]) -> None:
        async def job() -> None:
            try:
                result = await work()
            except Exception:
                logger.exception("Background job failed")
                result = None
            await self.handle(make_event(result))

        task = asyncio.get_running_loop().create_task(job())
        self._jobs.add(task)
        task.add_done_callback(self._jobs.discard)

    def _cancel_jobs(self) -> None:
        current = asyncio.current_task()
        for task in list(self._jobs):
            if task is not current:
                task.cancel()

    def _on_playback_stopped(self) -> None:
        task = asyncio.get_running_loop().create_task(
            self.handle(PlaybackStopped(epoch=self.narrator.epoch))
        )
        self._event_tasks.add(task)
        task.add_done_callback(self._event_tasks.discard)

    async def wait_idle(self) -> None:
        """Wait until no job, pending event or narration is outstanding."""
        while True:
            await self.narrator.join()
            pending = self._jobs | self._event_tasks
            if pending:
                await asyncio.wait(pending)
            elif not self.narrator.busy:
                return

    async def close(self) -> None:
        self._unsubscribe()
        self._cancel_jobs()
        self._cancel_recording()
        for task in list(self._event_tasks):
            task.cancel()

    def _today(self):
        return self._clock().date()

    def _announce(self, text: str) -> None:
        self.status_text = text
        self.narrator.say(text)

    def _recover(self, text: str) -> None:
        self.state = SessionState.AWAITING_COMMAND
        self._announce(text)

    def _load_preferences(self) -> None:
        with self._connect() as conn:
            self.study_progress = goals.get_study_progress(conn, self._today())
            self.voice = storage.get_voice_preference(conn)
            self.conversational_mode = storage.get_conversational_mode(conn)
        if self.study_progress:
            self.active_goal = self.study_progress.goal
        if self.voice:
            self.narrator.set_voice(self.voice)

    def _find_deck(self, conn, deck_name: str) -> Optional[Deck]:
        deck = resolve_deck(storage.get_decks(conn), deck_name, self._deck_name_threshold)
        if deck is None:
            self._announce(f'Sorry, I couldn\'t find a deck named "{deck_name}".')
        return deck

    def _find_card(self, deck_name: str, question_query: str) -> Optional[Card]:
        with self._connect() as conn:
            deck = self._find_deck(conn, deck_name)
            if deck is None:
                return None
            cards = storage.find_cards_by_question(conn, deck.id, question_query)
        if not cards:
            self._announce(
                f'I couldn\'t find any card in "{deck.name}" with a question containing "{question_query}".'
            )
            return None
        return cards[0]

    def _clear_view_fields(self) -> None:
        self.card_to_edit = None
        self.card_for_stats = None
        self.card_explanation: Optional[str] = None
        self.is_generating_explanation = False
        self.generated_image: Optional[str] = None
        self.is_generating_image = False
        self.image_to_analyze: Optional[str] = None
        self.analysis_result: Optional[str] = None
        self.is_analyzing_image = False
        self._cancel_recording()
        self.is_transcribing = False
        self.transcription_result: Optional[str] = None
        self.is_analyzing_text = False
        self.text_analysis_result: Optional[str] = None

    def _cancel_recording(self) -> None:
        if self.recording is not None:
            self.recording.cancel()
            self.recording = None

    def goal_progress(self) -> Optional[GoalProgress]:
        if self.active_goal is None:
            return None
        if self.active_goal.type == "session":
            return GoalProgress(goal=self.active_goal, progress=self.session_progress_count)
        with self._connect() as conn:
            stored = goals.get_study_progress(conn, self._today())
        return GoalProgress(goal=self.active_goal, progress=stored.progress if stored else 0)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self.state,
            status_text=self.status_text,
            current_card=self.current_card,
            card_to_edit=self.card_to_edit,
            card_for_stats=self.card_for_stats,
            is_card_flipped=self.is_card_flipped,
            queue_length=len(self.review_queue),
            session_progress_count=self.session_progress_count,
            goal_progress=self.goal_progress(),
            transcripts=list(self.transcripts),
            card_explanation=self.card_explanation,
            generated_image=self.generated_image,
            image_to_analyze=self.image_to_analyze,
            analysis_result=self.analysis_result,
            is_recording=self.recording is not None,
            is_transcribing=self.is_transcribing,
            transcription_result=self.transcription_result,
            text_analysis_result=self.text_analysis_result,
        )

    # -- session lifecycle --------------------------------------------------

    def _start_session(self, command: StartSession) -> None:
        if self.state not in (SessionState.IDLE, SessionState.ERROR):
            return
        self.transcripts = []
        self.state = SessionState.AWAITING_COMMAND
        self.status_text = WELCOME_TEXT

    def _end_session(self, command: EndSession) -> None:
        self._reset()
        self._end_review()
        self.narrator.interrupt()
        self.state = SessionState.IDLE
        self.status_text = "Session ended."

    def _connection_lost(self, event: ConnectionLost) -> None:
        self.state = SessionState.ERROR
        self.status_text = event.message

    def _reset(self) -> None:
        self._clear_view_fields()
        self._cancel_jobs()
        self.previous_state = None

    def _go_back(self, command: GoBack) -> None:
        self._reset()
        self.narrator.interrupt()
        self.state = SessionState.AWAITING_COMMAND
        self.status_text = "What would you like to do next?"

    # -- review cycle -------------------------------------------------------

    def _start_review(self, command: StartReview) -> None:
        self._go_back(GoBack())
        self.session_progress_count = 0
        self.state = SessionState.PROCESSING
        self.status_text = f"Loading deck: {command.deck_name}..."
        with self._connect() as conn:
            deck = resolve_deck(storage.get_decks(conn), command.deck_name, self._deck_name_threshold)
            due_cards = storage.get_due_cards_for_deck(conn, deck.id, self._today()) if deck else []
        if deck is None:
            self._end_review()
            self._recover(f'Sorry, I couldn\'t find a deck named "{command.deck_name}".')
            return
        if not due_cards:
            self._end_review()
            self._recover(f"No cards due for review in {deck.name}.")
            return
        self.review_queue = due_cards
        self.current_card = due_cards[0]
        self.is_card_flipped = False
        self._read_question()

    def _end_review(self) -> None:
        self.review_queue = []
        self.current_card = None
        self.is_card_flipped = False

    def _read_question(self) -> None:
        # Narration is only requested here; the next state does not wait for playback.
        self.state = SessionState.READING_QUESTION
        self.status_text = "Reading question..."
        self.narrator.say(self.current_card.question)
        self.state = SessionState.AWAITING_ANSWER_REVEAL
        self.status_text = "Say 'Show Answer' when ready."

    def _show_answer(self, command: ShowAnswer) -> None:
        if self.state != SessionState.AWAITING_ANSWER_REVEAL or self.current_card is None:
            return
        self.is_card_flipped = True
        self.state = SessionState.READING_ANSWER
        self.status_text = "Reading answer..."
        self.narrator.say(f"{self.current_card.answer}. {RATING_PROMPT}")
        self.state = SessionState.AWAITING_RATING
        self.status_text = "Rate your answer: Again, Hard, Good, or Easy."

    def _rate_card(self, command: RateCard) -> None:
        if self.state != SessionState.AWAITING_RATING or self.current_card is None:
            return
        self.state = SessionState.PROCESSING
        now = self._clock()
        updated = compute_next_review(self.current_card, Rating[command.rating], now)
        goal = self.active_goal
        achieved: Optional[str] = None

        with self._connect() as conn:
            if not storage.update_card(conn, updated):
                # The card (or its deck) was deleted outside the session.
                logger.warning("Card %s vanished during review", updated.id)
                self._end_review()
                self._recover("That card no longer exists, so I've ended this review.")
                return
            before = self.session_progress_count
            self.session_progress_count += 1
            if goal and goal.type == "session" and goals.crossed_target(
                before, self.session_progress_count, goal.target
            ):
                achieved = f"Great job! You've reached your session goal of {goal.target} cards."

            stored = goals.get_study_progress(conn, now.date())
            if stored is not None:
                daily_before = stored.progress
                self.study_progress = goals.update_study_progress(conn, daily_before + 1, now.date()) or stored
                if goal and goal.type == "daily" and goals.crossed_target(
                    daily_before, daily_before + 1, goal.target
                ):
                    achieved = f"Great job! You've reached your daily goal of {goal.target} cards."

        if achieved:
            self.achievements.append(achieved)
            self._announce(achieved)

        self.review_queue = self.review_queue[1:]
        if self.review_queue:
            self.current_card = self.review_queue[0]
            self.is_card_flipped = False
            self._read_question()
        else:
            self._end_review()
            self._recover(REVIEW_COMPLETE_TEXT)

    # -- goals --------------------------------------------------------------

    def _set_study_goal(self, command: SetStudyGoal) -> None:
        goal = StudyGoal(type=command.goal_type, target=command.target)
        self.active_goal = goal
        self.session_progress_count = 0
        with self._connect() as conn:
            if goal.type == "daily":
                self.study_progress = goals.set_study_goal(conn, goal, self._today())
            else:
                goals.clear_study_goal(conn)
                self.study_progress = None
        self._announce(f"Ok, I've set your goal to {goal.target} cards per {goal.type}.")

    # -- conversation -------------------------------------------------------

    def _start_conversation(self, command: StartConversation) -> None:
        if self.state in SECONDARY_VIEW_STATES or self.state in BUSY_STATES:
            return
        # Cut off the current narration so the next stop is the reply's.
        self.narrator.interrupt()
        self.previous_state = self.state
        self.state = SessionState.CONVERSATION
        self.status_text = "Thinking about your question..."
        self.transcripts.append(TranscriptMessage(source="user", text=command.query))
        card = self.current_card
        self._spawn(
            lambda: self.assistant.answer_question(card, command.query),
            lambda text: ConversationReplied(text=text),
        )

    def _conversation_replied(self, event: ConversationReplied) -> None:
        text = event.text or "Sorry, I couldn't come up with an answer right now."
        if event.text:
            self.transcripts.append(TranscriptMessage(source="assistant", text=event.text))
        if self.state != SessionState.CONVERSATION:
            logger.info("Conversation reply arrived after leaving the conversation")
            return
        self.narrator.say(text)

    def _playback_stopped(self, event: PlaybackStopped) -> None:
        if self.state != SessionState.CONVERSATION or self.previous_state is None:
            return
        if event.epoch is not None and event.epoch != self.narrator.epoch:
            logger.debug("Ignoring stale playback stop from epoch %s", event.epoch)
            return
        restored = self.previous_state
        self.state = restored
        self.previous_state = None
        self._announce(RESUME_PROMPTS.get(restored, DEFAULT_RESUME_PROMPT))

    # -- decks and cards ----------------------------------------------------

    def _create_deck(self, command: CreateDeck) -> None:
        with self._connect() as conn:
            try:
                storage.create_deck(conn, command.deck_name)
            except sqlite3.IntegrityError:
                self._announce(f'You already have a deck named "{command.deck_name}".')
                return
        self._announce(f'I\'ve created the "{command.deck_name}" deck for you.')

    def _delete_deck(self, command: DeleteDeck) -> None:
        with self._connect() as conn:
            deck = self._find_deck(conn, command.deck_name)
            if deck is None:
                return
            storage.delete_deck(conn, deck.id)
        if self.current_card is not None and self.current_card.deck_id == deck.id:
            self._end_review()
            self.state = SessionState.AWAITING_COMMAND
        self._announce(f'Okay, the "{deck.name}" deck has been deleted.')

    def _list_decks(self, command: ListDecks) -> None:
        with self._connect() as conn:
            decks = storage.get_decks(conn)
        if decks:
            self._announce(f"Here are your decks: {', '.join(d.name for d in decks)}.")
        else:
            self._announce("You don't have any decks yet.")

    def _show_decks(self, command: ShowDecks) -> None:
        self.state = SessionState.SHOWING_DECKS
        self.narrator.say("Here are your decks. You can select one to start or tell me which one to review.")
        self.status_text = "Select a deck to begin a review session."

    def _create_card(self, command: CreateCard) -> None:
        with self._connect() as conn:
            deck = self._find_deck(conn, command.deck_name)
            if deck is None:
                return
            storage.create_card(
                conn, deck.id, command.question, command.answer, command.explanation, today=self._today()
            )
        self._announce(f'Okay, I\'ve added that card to the "{deck.name}" deck.')

    def _find_card_to_edit(self, command: FindCardToEdit) -> None:
        card = self._find_card(command.deck_name, command.question_query)
        if card is None:
            return
        self.card_to_edit = card
        self.state = SessionState.EDITING_CARD
        self.narrator.say(
            f'I found the card: "{card.question}". What should the new question, answer, or explanation be?'
        )
        self.status_text = f"Editing: {card.question}"

    def _update_card_content(self, command: UpdateCardContent) -> None:
        if self.state != SessionState.EDITING_CARD or self.card_to_edit is None:
            return
        with self._connect() as conn:
            # Re-read so scheduling changes made since the card was found are kept.
            stored = storage.get_card(conn, self.card_to_edit.id) or self.card_to_edit
            updated = stored.model_copy(update={
                "question": command.new_question or stored.question,
                "answer": command.new_answer or stored.answer,
                "explanation": command.new_explanation if command.new_explanation is not None else stored.explanation,
            })
            storage.update_card(conn, updated)
        self.review_queue = [updated if c.id == updated.id else c for c in self.review_queue]
        if self.current_card is not None and self.current_card.id == updated.id:
            self.current_card = updated
        self.card_to_edit = None
        self.state = SessionState.AWAITING_COMMAND
        self._announce("I've updated the card.")

    def _show_card_stats(self, command: ShowCardStats) -> None:
        self.card_explanation = None
        self.is_generating_explanation = False
        card = self._find_card(command.deck_name, command.question_query)
        if card is None:
            return
        self.card_for_stats = card
        self.state = SessionState.SHOWING_CARD_STATS
        self.narrator.say(
            f'Here are the stats for the card "{card.question}". You can also ask me to explain this card.'
        )
        self.status_text = f"Viewing stats for: {card.question}"

    def _explain_card(self, command: ExplainCard) -> None:
        card = self.card_for_stats
        if self.state != SessionState.SHOWING_CARD_STATS or card is None or self.is_generating_explanation:
            return
        self.is_generating_explanation = True
        self.card_explanation = None
        self.narrator.say(f'Okay, I\'m generating an explanation for "{card.question}". One moment...')
        self.status_text = "Generating AI explanation..."
        self._spawn(
            lambda: self.assistant.explain_card(card),
            lambda text: CardExplained(card_id=card.id, text=text),
        )

    def _card_explained(self, event: CardExplained) -> None:
        if (
            self.state != SessionState.SHOWING_CARD_STATS
            or self.card_for_stats is None
            or self.card_for_stats.id != event.card_id
        ):
            return
        self.is_generating_explanation = False
        if event.text:
            self.card_explanation = event.text
            self.narrator.say("The explanation is ready for you to read.")
            self.status_text = "Explanation generated."
        else:
            self._announce("Sorry, I couldn't generate an explanation for this card.")

    # -- import and generation ----------------------------------------------

    def _show_import_view(self, command: ShowImportView) -> None:
        self.state = SessionState.IMPORTING_DECK
        self.narrator.say("Okay, let's import a new deck. Please choose a file and give the deck a name.")
        self.status_text = "Import a deck from a .csv or .txt file."

    def _import_deck(self, command: ImportDeck) -> None:
        if self.state != SessionState.IMPORTING_DECK:
            return
        with self._connect() as conn:
            try:
                deck, count = storage.import_deck_from_csv(
                    conn, command.deck_name, command.csv_content, self._today()
                )
            except sqlite3.IntegrityError:
                self._recover(f'You already have a deck named "{command.deck_name}".')
                return
        self._recover(f'Great! The "{deck.name}" deck has been imported successfully with {count} cards.')

    def _show_smart_generation_view(self, command: ShowSmartGenerationView) -> None:
        self.state = SessionState.SMART_GENERATION
        self.narrator.say(
            "Welcome to the Smart Deck Generator. You can tell me a topic to create a deck from, "
            "or upload a document for me to analyze."
        )
        self.status_text = "Create a deck with AI from a topic or document."

    def _generate_deck_from_form(self, command: GenerateDeckFromForm) -> None:
        if self.state in BUSY_STATES:
            return
        self._announce(
            f'Okay, generating a new "{command.depth}" level deck about "{command.topic}" '
            f"with {command.number_of_cards} cards. This might take a moment..."
        )
        self.state = SessionState.PROCESSING
        self._spawn(
            lambda: self.assistant.generate_deck_from_topic(
                command.topic, command.depth, command.number_of_cards
            ),
            lambda cards: DeckGenerated(deck_name=command.topic, cards=cards or []),
        )

    def _generate_deck_from_document(self, command: GenerateDeckFromDocument) -> None:
        if self.state in BUSY_STATES:
            return
        self._announce(
            f'Okay, analyzing your document to create the "{command.deck_name}" deck. '
            "This may take a few moments..."
        )
        self.state = SessionState.PROCESSING
        self._spawn(
            lambda: self.assistant.generate_deck_from_document(command.deck_name, command.document_text),
            lambda cards: DeckGenerated(deck_name=command.deck_name, cards=cards or []),
        )

    def _deck_generated(self, event: DeckGenerated) -> None:
        if self.state != SessionState.PROCESSING:
            return
        if not event.cards:
            self._recover(
                f'Sorry, I had trouble creating the deck about "{event.deck_name}". Please try again.'
            )
            return
        with self._connect() as conn:
            deck = resolve_deck(storage.get_decks(conn), event.deck_name, threshold=1.0)
            if deck is None:
                deck = storage.create_deck(conn, event.deck_name)
            for card in event.cards:
                storage.create_card(
                    conn, deck.id, card.question, card.answer, card.explanation,
                    today=self._today(), commit=False,
                )
            conn.commit()
        self._recover(f'I\'ve created the "{deck.name}" deck for you with {len(event.cards)} cards.')

    def _generate_cards_from_weakness(self, command: GenerateCardsFromWeakness) -> None:
        if self.state in BUSY_STATES:
            return
        self.state = SessionState.PROCESSING
        self._announce(
            f'Alright, analyzing your performance in the "{command.deck_name}" deck to find your weak points...'
        )
        with self._connect() as conn:
            deck = self._find_deck(conn, command.deck_name)
            if deck is None:
                self.state = SessionState.AWAITING_COMMAND
                return
            weakest = storage.get_weakest_card(conn, deck.id)
            if weakest is None or weakest.lapses == 0:
                self._announce(f'You don\'t seem to have any weak points in "{deck.name}" right now. Great job!')
                self.state = SessionState.SHOWING_DECKS
                return
            context = find_relevant_chunk(conn, f"{weakest.question} {weakest.answer}")
        self.narrator.say(
            f'It looks like you\'re struggling with: "{weakest.question}". '
            "I'll consult my knowledge base to create some new cards to help you practice."
        )
        self.status_text = "Found weak point, generating new cards..."
        if not context:
            self.narrator.say(
                "I couldn't find specific information on that topic in my knowledge base, "
                "but I'll try to create some cards anyway."
            )
        self._spawn(
            lambda: self.assistant.generate_targeted_cards(weakest, context, WEAKNESS_CARD_COUNT),
            lambda cards: WeaknessCardsGenerated(deck_id=deck.id, deck_name=deck.name, cards=cards or []),
        )

    def _weakness_cards_generated(self, event: WeaknessCardsGenerated) -> None:
        if self.state != SessionState.PROCESSING:
            return
        self.state = SessionState.SHOWING_DECKS
        with self._connect() as conn:
            if not event.cards or storage.get_deck(conn, event.deck_id) is None:
                self._announce("I had some trouble generating new cards for that topic. Please try again later.")
                return
            for card in event.cards:
                storage.create_card(
                    conn, event.deck_id, card.question, card.answer, card.explanation,
                    today=self._today(), commit=False,
                )
            conn.commit()
        self._announce(
            f'I\'ve added {len(event.cards)} new cards to the "{event.deck_name}" deck '
            "to help you master this topic."
        )

    # -- images -------------------------------------------------------------

    def _show_image_generation_view(self, command: ShowImageGenerationView) -> None:
        self.state = SessionState.GENERATING_IMAGE
        self.status_text = "Enter a prompt to generate an image."
        self.narrator.say("What kind of image would you like me to create?")

    def _generate_image(self, command: GenerateImage) -> None:
        if self.state != SessionState.GENERATING_IMAGE or self.is_generating_image:
            return
        self.is_generating_image = True
        self.generated_image = None
        self.status_text = f'Generating an image of "{command.prompt}"...'
        self.narrator.say(f"Okay, generating an image of {command.prompt}. This might take a moment.")
        self._spawn(
            lambda: self.assistant.generate_image(command.prompt),
            lambda image: ImageGenerated(image=image),
        )

    def _image_generated(self, event: ImageGenerated) -> None:
        if self.state != SessionState.GENERATING_IMAGE:
            return
        self.is_generating_image = False
        if event.image:
            self.generated_image = event.image
            self.status_text = "Image generated successfully."
            self.narrator.say("Here is the image you requested.")
        else:
            self.status_text = "Sorry, I failed to generate the image."
            self.narrator.say("Sorry, I had a problem generating that image. Please try again.")

    def _show_image_analysis_view(self, command: ShowImageAnalysisView) -> None:
        self.state = SessionState.ANALYZING_IMAGE
        self.status_text = "Upload an image to analyze."
        self.narrator.say("Please upload an image, and let me know what you want to know about it.")

    def _select_image(self, command: SelectImage) -> None:
        if self.state != SessionState.ANALYZING_IMAGE or self.is_analyzing_image:
            return
        self.image_to_analyze = command.image_path
        self.analysis_result = None

    def _analyze_image(self, command: AnalyzeImage) -> None:
        if self.state != SessionState.ANALYZING_IMAGE or self.is_analyzing_image:
            return
        image = self.image_to_analyze
        if not image:
            self.narrator.say("Please upload an image first.")
            return
        self.is_analyzing_image = True
        self.analysis_result = None
        self.status_text = "Analyzing image..."
        self.narrator.say("Okay, analyzing the image. One moment.")
        self._spawn(
            lambda: self.assistant.analyze_image(command.prompt, image),
            lambda text: ImageAnalyzed(text=text),
        )

    def _image_analyzed(self, event: ImageAnalyzed) -> None:
        if self.state != SessionState.ANALYZING_IMAGE:
            return
        self.is_analyzing_image = False
        if event.text:
            self.analysis_result = event.text
            self.status_text = "Image analysis complete."
            self.narrator.say("Here is the analysis of the image.")
        else:
            self._announce("Sorry, I couldn't analyze that image.")

    # -- transcription ------------------------------------------------------

    def _show_transcription_view(self, command: ShowTranscriptionView) -> None:
        self.state = SessionState.TRANSCRIBING_AUDIO
        self.status_text = "Ready to transcribe audio."
        self.transcription_result = None
        self.narrator.say("I'm ready to transcribe. Press the record button to start.")

    async def _start_recording_command(self, command: StartRecording) -> None:
        if (
            self.state != SessionState.TRANSCRIBING_AUDIO
            or self.recording is not None
            or self.is_transcribing
        ):
            return
        try:
            self.recording = await self._start_recording()
        except (RuntimeError, OSError) as exc:
            logger.warning("Could not start recording: %s", exc)
            self.status_text = "Could not start recording. Please check microphone permissions."
            return
        self.transcription_result = None
        self.status_text = "Recording..."

    async def _stop_recording(self, command: StopRecording) -> None:
        if self.recording is None:
            return
        recording, self.recording = self.recording, None
        audio_path = await recording.stop()
        if audio_path is None:
            self.status_text = "The recording failed. Please try again."
            return
        self.is_transcribing = True
        self.status_text = "Transcribing audio..."
        self._spawn(lambda: self._transcribe(audio_path), lambda text: AudioTranscribed(text=text))

    async def _transcribe(self, audio_path: Path) -> Optional[str]:
        try:
            return await self.assistant.transcribe_audio(audio_path)
        finally:
            audio_path.unlink(missing_ok=True)

    def _audio_transcribed(self, event: AudioTranscribed) -> None:
        if self.state != SessionState.TRANSCRIBING_AUDIO:
            return
        self.is_transcribing = False
        if event.text:
            self.transcription_result = event.text
            self.status_text = "Transcription complete."
        else:
            self.status_text = event.error or "Sorry, I couldn't transcribe that recording."

    # -- text analysis ------------------------------------------------------

    def _show_text_analysis_view(self, command: ShowTextAnalysisView) -> None:
        self.state = SessionState.ANALYZING_TEXT
        self.status_text = "Enter some text to analyze."
        self.narrator.say("Please provide the text you want me to analyze, and tell me what you want to know.")

    def _analyze_text(self, command: AnalyzeText) -> None:
        if self.state != SessionState.ANALYZING_TEXT or self.is_analyzing_text:
            return
        self.is_analyzing_text = True
        self.text_analysis_result = None
        self.status_text = "Analyzing text..."
        self.narrator.say(f"Okay, analyzing the text using the {command.complexity} model. One moment.")
        self._spawn(
            lambda: self.assistant.analyze_text(command.text, command.prompt, command.complexity),
            lambda text: TextAnalyzed(text=text),
        )

    def _text_analyzed(self, event: TextAnalyzed) -> None:
        if self.state != SessionState.ANALYZING_TEXT:
            return
        self.is_analyzing_text = False
        if event.text:
            self.text_analysis_result = event.text
            self.status_text = "Text analysis complete."
            self.narrator.say("Here is the analysis.")
        else:
            self._announce("Sorry, I couldn't analyze that text.")

    # -- preferences --------------------------------------------------------

    def _set_voice(self, command: SetVoice) -> None:
        with self._connect() as conn:
            storage.set_voice_preference(conn, command.voice)
        self.voice = command.voice
        self.narrator.set_voice(command.voice)
        self._announce(f"Okay, I'll use the {command.voice} voice from now on.")

    def _set_conversational_mode(self, command: SetConversationalMode) -> None:
        with self._connect() as conn:
            storage.set_conversational_mode(conn, command.enabled)
        self.conversational_mode = command.enabled
        self.status_text = f"Conversational mode {'enabled' if command.enabled else 'disabled'}."
