import asyncio
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import get_args

import pytest

from db import database
from models.command import (
    CardExplained, Command, ConversationReplied, Event, GoBack, PlaybackStopped, RateCard,
    SetStudyGoal, ShowAnswer, StartConversation, StartReview,
)
from models.session import SessionState
from utils import storage
from utils.narration import PlaybackQueue
from utils.session import REVIEW_COMPLETE_TEXT, SessionController

TODAY = date(2024, 1, 1)


def _clock():
    return datetime(2024, 1, 1, 9, 0)


def _seed_deck(name="World Capitals", count=5, today=TODAY):
    with database.get_conn() as conn:
        deck = storage.create_deck(conn, name)
        for i in range(count):
            storage.create_card(conn, deck.id, f"Question {i}?", f"Answer {i}", today=today)
    return deck


def _run(scenario, speaker, assistant, **kwargs):
    async def main():
        async with PlaybackQueue(speaker) as narrator:
            controller = SessionController(narrator, assistant, clock=_clock, **kwargs)
            try:
                return await scenario(controller)
            finally:
                await controller.close()
    return asyncio.run(main())


async def _rate_all(controller, rating="GOOD"):
    while controller.state == SessionState.AWAITING_ANSWER_REVEAL:
        await controller.handle(ShowAnswer())
        await controller.handle(RateCard(rating=rating))


def test_start_review_reads_first_due_card(echo_home, speaker, assistant):
    _seed_deck(count=2)

    async def scenario(controller):
        await controller.handle(StartReview(deck_name="world capitals"))
        await controller.wait_idle()
        return controller

    controller = _run(scenario, speaker, assistant)
    assert controller.state == SessionState.AWAITING_ANSWER_REVEAL
    assert controller.current_card.question == "Question 0?"
    assert len(controller.review_queue) == 2
    assert speaker.spoken[0] == "Question 0?"


def test_start_review_tolerates_misheard_deck_name(echo_home, speaker, assistant):
    _seed_deck(count=1)

    async def scenario(controller):
        await controller.handle(StartReview(deck_name="World Capital"))
        return controller.state

    assert _run(scenario, speaker, assistant) == SessionState.AWAITING_ANSWER_REVEAL


def test_start_review_with_nothing_due_returns_to_command(echo_home, speaker, assistant):
    _seed_deck(name="Foo", count=2, today=TODAY + timedelta(days=3))

    async def scenario(controller):
        await controller.handle(StartReview(deck_name="Foo"))
        await controller.wait_idle()
        return controller

    controller = _run(scenario, speaker, assistant)
    assert controller.state == SessionState.AWAITING_COMMAND
    assert controller.review_queue == []
    assert controller.status_text == "No cards due for review in Foo."


def test_start_review_unknown_deck(echo_home, speaker, assistant):
    _seed_deck(count=1)

    async def scenario(controller):
        await controller.handle(StartReview(deck_name="Organic Chemistry"))
        return controller

    controller = _run(scenario, speaker, assistant)
    assert controller.state == SessionState.AWAITING_COMMAND
    assert "couldn't find a deck" in controller.status_text


def test_rate_card_outside_awaiting_rating_is_ignored(echo_home, speaker, assistant):
    _seed_deck(count=1)

    async def scenario(controller):
        await controller.handle(StartReview(deck_name="World Capitals"))
        queue, card = list(controller.review_queue), controller.current_card
        ack = await controller.handle(RateCard(rating="GOOD"))
        assert controller.review_queue == queue
        assert controller.current_card == card
        return controller, ack

    controller, ack = _run(scenario, speaker, assistant)
    assert ack.result == "OK"
    assert controller.state == SessionState.AWAITING_ANSWER_REVEAL
    assert controller.session_progress_count == 0
    assert controller.achievements == []
    with database.get_conn() as conn:
        card = storage.get_card(conn, controller.current_card.id)
    assert card.reps == 0


def test_show_answer_then_rate_persists_schedule(echo_home, speaker, assistant):
    _seed_deck(count=2)

    async def scenario(controller):
        await controller.handle(StartReview(deck_name="World Capitals"))
        first = controller.current_card
        await controller.handle(ShowAnswer())
        assert controller.state == SessionState.AWAITING_RATING
        assert controller.is_card_flipped
        await controller.handle(RateCard(rating="GOOD"))
        await controller.wait_idle()
        return controller, first

    controller, first = _run(scenario, speaker, assistant)
    assert controller.state == SessionState.AWAITING_ANSWER_REVEAL
    assert controller.current_card.question == "Question 1?"
    assert not controller.is_card_flipped
    with database.get_conn() as conn:
        stored = storage.get_card(conn, first.id)
    assert stored.reps == 1
    assert stored.due_date == date(2024, 1, 5)
    assert "Answer 0. How did you do? Say Again, Hard, Good, or Easy." in speaker.spoken


def test_review_completes_and_session_goal_fires_once(echo_home, speaker, assistant):
    _seed_deck(count=5)

    async def scenario(controller):
        await controller.handle(StartReview(deck_name="World Capitals"))
        await controller.handle(SetStudyGoal(target=3, goal_type="session"))
        fired = []
        while controller.state == SessionState.AWAITING_ANSWER_REVEAL:
            await controller.handle(ShowAnswer())
            await controller.handle(RateCard(rating="GOOD"))
            fired.append((controller.session_progress_count, len(controller.achievements)))
        await controller.wait_idle()
        return controller, fired

    controller, fired = _run(scenario, speaker, assistant)
    assert fired == [(1, 0), (2, 0), (3, 1), (4, 1), (5, 1)]
    assert controller.state == SessionState.AWAITING_COMMAND
    assert controller.status_text == REVIEW_COMPLETE_TEXT
    assert controller.session_progress_count == 5
    assert controller.achievements == ["Great job! You've reached your session goal of 3 cards."]
    assert controller.current_card is None


def test_daily_goal_is_persisted_and_counted(echo_home, speaker, assistant):
    _seed_deck(count=2)

    async def scenario(controller):
        await controller.handle(SetStudyGoal(target=2, goal_type="daily"))
        await controller.handle(StartReview(deck_name="World Capitals"))
        await _rate_all(controller)
        return controller

    controller = _run(scenario, speaker, assistant)
    assert controller.achievements == ["Great job! You've reached your daily goal of 2 cards."]
    progress = controller.goal_progress()
    assert progress.progress == 2
    assert progress.goal.target == 2


def test_go_back_clears_view_fields_and_previous_state(echo_home, speaker, assistant):
    _seed_deck(count=1)

    async def scenario(controller):
        await controller.handle(StartReview(deck_name="World Capitals"))
        await controller.handle(StartConversation(query="Give me a hint"))
        controller.card_explanation = "stale"
        controller.generated_image = "/tmp/x.png"
        controller.text_analysis_result = "stale"
        await controller.handle(GoBack())
        await controller.wait_idle()
        return controller

    controller = _run(scenario, speaker, assistant)
    assert controller.state == SessionState.AWAITING_COMMAND
    assert controller.previous_state is None
    assert controller.card_explanation is None
    assert controller.generated_image is None
    assert controller.text_analysis_result is None
    assert controller.status_text == "What would you like to do next?"


@pytest.mark.parametrize("state", list(SessionState))
def test_go_back_from_any_state_clears_every_view_field(echo_home, speaker, assistant, tmp_path, state):
    _seed_deck(count=1)
    recording = FakeRecording(tmp_path / "take.wav")

    async def scenario(controller):
        with database.get_conn() as conn:
            card = storage.get_cards_for_deck(conn, storage.get_decks(conn)[0].id)[0]
        controller.state = state
        controller.previous_state = SessionState.AWAITING_RATING
        controller.card_to_edit = card
        controller.card_for_stats = card
        controller.card_explanation = "stale"
        controller.is_generating_explanation = True
        controller.generated_image = "/tmp/x.png"
        controller.is_generating_image = True
        controller.image_to_analyze = "/tmp/cat.png"
        controller.analysis_result = "stale"
        controller.is_analyzing_image = True
        controller.recording = recording
        controller.is_transcribing = True
        controller.transcription_result = "stale"
        controller.is_analyzing_text = True
        controller.text_analysis_result = "stale"
        await controller.handle(GoBack())
        return controller

    controller = _run(scenario, speaker, assistant)
    assert controller.state == SessionState.AWAITING_COMMAND
    assert controller.previous_state is None
    assert controller.card_to_edit is None
    assert controller.card_for_stats is None
    assert controller.card_explanation is None
    assert controller.generated_image is None
    assert controller.image_to_analyze is None
    assert controller.analysis_result is None
    assert controller.transcription_result is None
    assert controller.text_analysis_result is None
    assert controller.recording is None
    assert recording.cancelled
    assert not controller.is_generating_explanation
    assert not controller.is_generating_image
    assert not controller.is_analyzing_image
    assert not controller.is_transcribing
    assert not controller.is_analyzing_text


def test_rating_a_card_whose_deck_was_deleted_ends_review(echo_home, speaker, assistant):
    deck = _seed_deck(count=3)

    async def scenario(controller):
        await controller.handle(SetStudyGoal(target=1, goal_type="session"))
        await controller.handle(StartReview(deck_name="World Capitals"))
        await controller.handle(ShowAnswer())
        with database.get_conn() as conn:
            storage.delete_deck(conn, deck.id)
        await controller.handle(RateCard(rating="GOOD"))
        await controller.wait_idle()
        return controller

    controller = _run(scenario, speaker, assistant)
    assert controller.state == SessionState.AWAITING_COMMAND
    assert controller.review_queue == []
    assert controller.current_card is None
    assert controller.session_progress_count == 0
    assert controller.achievements == []
    assert controller.status_text == "That card no longer exists, so I've ended this review."
    assert "Question 1?" not in speaker.spoken


def test_conversation_resumes_rating_after_playback_stops(echo_home, speaker, assistant):
    _seed_deck(count=1)

    async def scenario(controller):
        await controller.handle(StartReview(deck_name="World Capitals"))
        await controller.handle(ShowAnswer())
        await controller.wait_idle()
        await controller.handle(StartConversation(query="Why is that the answer?"))
        assert controller.state == SessionState.CONVERSATION
        assert controller.previous_state == SessionState.AWAITING_RATING
        await controller.wait_idle()
        return controller

    controller = _run(scenario, speaker, assistant)
    assert controller.state == SessionState.AWAITING_RATING
    assert controller.previous_state is None
    assert controller.status_text == "Okay, let's continue. How did you do on the card?"
    assert "Here is a hint." in speaker.spoken
    assert [m.source for m in controller.transcripts] == ["user", "assistant"]
    card, query = assistant.questions[0]
    assert card.question == "Question 0?"
    assert query == "Why is that the answer?"


def test_playback_stopped_event_restores_previous_state(echo_home, speaker, assistant):
    _seed_deck(count=1)

    async def scenario(controller):
        await controller.handle(StartReview(deck_name="World Capitals"))
        await controller.handle(ShowAnswer())
        await controller.handle(StartConversation(query="Hint?"))
        await controller.handle(PlaybackStopped())
        return controller

    controller = _run(scenario, speaker, assistant)
    assert controller.state == SessionState.AWAITING_RATING
    assert controller.previous_state is None


def test_stale_playback_stop_is_ignored(echo_home, speaker, assistant):
    async def scenario(controller):
        await controller.handle(StartConversation(query="What is spaced repetition?"))
        stale = controller.narrator.epoch - 1
        await controller.handle(PlaybackStopped(epoch=stale))
        return controller.state

    assert _run(scenario, speaker, assistant) == SessionState.CONVERSATION


def test_playback_stopped_outside_conversation_is_noop(echo_home, speaker, assistant):
    async def scenario(controller):
        await controller.handle(PlaybackStopped())
        return controller

    controller = _run(scenario, speaker, assistant)
    assert controller.state == SessionState.IDLE
    assert controller.previous_state is None


def test_late_conversation_reply_is_not_narrated(echo_home, speaker, assistant):
    async def scenario(controller):
        await controller.handle(ConversationReplied(text="Too late"))
        await controller.wait_idle()
        return controller

    controller = _run(scenario, speaker, assistant)
    assert "Too late" not in speaker.spoken
    assert controller.transcripts[-1].text == "Too late"


def test_conversation_not_allowed_from_secondary_view(echo_home, speaker, assistant):
    async def scenario(controller):
        await controller.submit({"name": "showTextAnalysisView"})
        await controller.handle(StartConversation(query="Hello"))
        return controller.state

    assert _run(scenario, speaker, assistant) == SessionState.ANALYZING_TEXT


def test_invalid_payload_is_acknowledged_without_state_change(echo_home, speaker, assistant):
    async def scenario(controller):
        ack = await controller.submit({"id": "7", "name": "rateCard", "rating": "PERFECT"})
        unknown = await controller.submit({"name": "danceParty"})
        return controller, ack, unknown

    controller, ack, unknown = _run(scenario, speaker, assistant)
    assert ack.id == "7"
    assert ack.result.startswith("ERROR")
    assert unknown.result.startswith("ERROR")
    assert controller.state == SessionState.IDLE


def test_card_stats_and_explanation(echo_home, speaker, assistant):
    _seed_deck(count=2)

    async def scenario(controller):
        await controller.submit({"name": "showCardStats", "deckName": "World Capitals", "questionQuery": "question 1"})
        assert controller.state == SessionState.SHOWING_CARD_STATS
        await controller.submit({"name": "explainCard"})
        await controller.wait_idle()
        return controller

    controller = _run(scenario, speaker, assistant)
    assert controller.card_for_stats.question == "Question 1?"
    assert controller.card_explanation == "Explanation of Question 1?"
    assert not controller.is_generating_explanation


def test_explanation_for_other_card_is_dropped(echo_home, speaker, assistant):
    _seed_deck(count=2)

    async def scenario(controller):
        await controller.submit({"name": "showCardStats", "deckName": "World Capitals", "questionQuery": "question 1"})
        await controller.handle(CardExplained(card_id=controller.card_for_stats.id + 100, text="wrong card"))
        return controller

    controller = _run(scenario, speaker, assistant)
    assert controller.card_explanation is None


def test_edit_card_content(echo_home, speaker, assistant):
    deck = _seed_deck(count=2)

    async def scenario(controller):
        await controller.submit({"name": "findCardToEdit", "deckName": "World Capitals", "questionQuery": "Question 0"})
        assert controller.state == SessionState.EDITING_CARD
        await controller.submit({"name": "updateCardContent", "newAnswer": "A brand new answer"})
        return controller

    controller = _run(scenario, speaker, assistant)
    assert controller.state == SessionState.AWAITING_COMMAND
    assert controller.card_to_edit is None
    with database.get_conn() as conn:
        card = storage.find_cards_by_question(conn, deck.id, "Question 0")[0]
    assert card.answer == "A brand new answer"
    assert card.question == "Question 0?"


def test_update_card_content_without_edit_view_is_noop(echo_home, speaker, assistant):
    async def scenario(controller):
        await controller.submit({"name": "updateCardContent", "newAnswer": "x"})
        return controller.state

    assert _run(scenario, speaker, assistant) == SessionState.IDLE


def test_generate_deck_from_form_creates_deck(echo_home, speaker, assistant):
    async def scenario(controller):
        await controller.submit({"name": "showSmartGenerationView"})
        await controller.submit(
            {"name": "generateDeckFromForm", "topic": "Photosynthesis", "depth": "beginner", "numberOfCards": 2}
        )
        assert controller.state == SessionState.PROCESSING
        await controller.wait_idle()
        return controller

    controller = _run(scenario, speaker, assistant)
    assert controller.state == SessionState.AWAITING_COMMAND
    with database.get_conn() as conn:
        decks = storage.get_decks(conn)
        assert [d.name for d in decks] == ["Photosynthesis"]
        assert len(storage.get_cards_for_deck(conn, decks[0].id)) == 2


def test_go_back_cancels_pending_generation(echo_home, speaker, assistant):
    class SlowAssistant(type(assistant)):
        async def generate_deck_from_topic(self, topic, depth, count):
            await asyncio.sleep(10)
            return self.cards

    async def scenario(controller):
        await controller.submit({"name": "generateDeckFromForm", "topic": "Slow topic"})
        await asyncio.sleep(0)
        await controller.handle(GoBack())
        await controller.wait_idle()
        return controller

    controller = _run(scenario, speaker, SlowAssistant())
    assert controller.state == SessionState.AWAITING_COMMAND
    with database.get_conn() as conn:
        assert storage.get_decks(conn) == []


def test_weakness_without_lapses(echo_home, speaker, assistant):
    _seed_deck(count=2)

    async def scenario(controller):
        await controller.submit({"name": "generateCardsFromWeakness", "deckName": "World Capitals"})
        await controller.wait_idle()
        return controller

    controller = _run(scenario, speaker, assistant)
    assert controller.state == SessionState.SHOWING_DECKS
    assert "don't seem to have any weak points" in controller.status_text
    assert assistant.targeted == []


def test_weakness_generates_targeted_cards(echo_home, speaker, assistant):
    deck = _seed_deck(count=2)
    with database.get_conn() as conn:
        conn.execute("INSERT INTO knowledge_chunks (text) VALUES (?)", ("Question zero is about capitals and answers.",))
        conn.execute("UPDATE cards SET lapses = 2 WHERE question = ?", ("Question 0?",))
        conn.commit()

    async def scenario(controller):
        await controller.submit({"name": "generateCardsFromWeakness", "deckName": "World Capitals"})
        await controller.wait_idle()
        return controller

    controller = _run(scenario, speaker, assistant)
    assert controller.state == SessionState.SHOWING_DECKS
    card, context, count = assistant.targeted[0]
    assert card.question == "Question 0?"
    assert "capitals" in context
    assert count == 3
    with database.get_conn() as conn:
        assert len(storage.get_cards_for_deck(conn, deck.id)) == 4


def test_text_analysis_view(echo_home, speaker, assistant):
    async def scenario(controller):
        await controller.submit({"name": "showTextAnalysisView"})
        await controller.submit(
            {"name": "analyzeText", "text": "Some text", "prompt": "Summarize", "complexity": "complex"}
        )
        await controller.wait_idle()
        return controller

    controller = _run(scenario, speaker, assistant)
    assert controller.text_analysis_result == "complex: Summarize"
    assert controller.state == SessionState.ANALYZING_TEXT


def test_image_analysis_requires_selected_image(echo_home, speaker, assistant):
    async def scenario(controller):
        await controller.submit({"name": "showImageAnalysisView"})
        await controller.submit({"name": "analyzeImage", "prompt": "What is this?"})
        await controller.wait_idle()
        assert controller.analysis_result is None
        await controller.submit({"name": "selectImage", "imagePath": "/tmp/cat.png"})
        await controller.submit({"name": "analyzeImage", "prompt": "What is this?"})
        await controller.wait_idle()
        return controller

    controller = _run(scenario, speaker, assistant)
    assert controller.analysis_result == "An image at /tmp/cat.png"


class FakeRecording:
    def __init__(self, path: Path):
        self.path = path
        self.cancelled = False

    async def stop(self):
        return self.path

    def cancel(self):
        self.cancelled = True


def test_recording_is_transcribed_and_removed(echo_home, speaker, assistant, tmp_path):
    audio = tmp_path / "take.wav"
    audio.write_bytes(b"RIFF")

    async def start_recording():
        return FakeRecording(audio)

    async def scenario(controller):
        await controller.submit({"name": "showTranscriptionView"})
        await controller.submit({"name": "startRecording"})
        assert controller.snapshot().is_recording
        await controller.submit({"name": "stopRecording"})
        await controller.wait_idle()
        return controller

    controller = _run(scenario, speaker, assistant, start_recording=start_recording)
    assert controller.transcription_result == "hello world"
    assert not controller.is_transcribing
    assert not audio.exists()


def test_go_back_cancels_recording(echo_home, speaker, assistant, tmp_path):
    recording = FakeRecording(tmp_path / "take.wav")

    async def start_recording():
        return recording

    async def scenario(controller):
        await controller.submit({"name": "showTranscriptionView"})
        await controller.submit({"name": "startRecording"})
        await controller.handle(GoBack())
        return controller

    controller = _run(scenario, speaker, assistant, start_recording=start_recording)
    assert recording.cancelled
    assert controller.recording is None


def test_deck_commands(echo_home, speaker, assistant):
    async def scenario(controller):
        await controller.submit({"name": "createDeck", "deckName": "Spanish"})
        await controller.submit({"name": "createDeck", "deckName": "spanish"})
        duplicate = controller.status_text
        await controller.submit(
            {"name": "createCard", "deckName": "Spanish", "question": "Hola?", "answer": "Hello"}
        )
        await controller.submit({"name": "listDecks"})
        listed = controller.status_text
        await controller.submit({"name": "deleteDeck", "deckName": "Spanish"})
        return duplicate, listed

    duplicate, listed = _run(scenario, speaker, assistant)
    assert "already have a deck" in duplicate
    assert listed == "Here are your decks: Spanish."
    with database.get_conn() as conn:
        assert storage.get_decks(conn) == []


def test_voice_preference_is_persisted(echo_home, speaker, assistant):
    async def scenario(controller):
        await controller.submit({"name": "setVoice", "voice": "en-gb"})
        await controller.submit({"name": "setConversationalMode", "enabled": True})
        return controller

    _run(scenario, speaker, assistant)
    assert speaker.voice == "en-gb"
    with database.get_conn() as conn:
        assert storage.get_voice_preference(conn) == "en-gb"
        assert storage.get_conversational_mode(conn) is True


def test_session_lifecycle(echo_home, speaker, assistant):
    async def scenario(controller):
        await controller.submit({"name": "startSession"})
        assert controller.state == SessionState.AWAITING_COMMAND
        await controller.submit({"name": "endSession"})
        return controller.state

    assert _run(scenario, speaker, assistant) == SessionState.IDLE


def test_every_command_and_event_has_a_handler(echo_home, speaker, assistant):
    async def scenario(controller):
        return controller._handlers

    handlers = _run(scenario, speaker, assistant)
    commands = get_args(get_args(Command)[0])
    events = get_args(Event)
    assert len(commands) == 35
    assert set(handlers) == set(commands) | set(events)


def test_handler_failure_recovers_to_command_state(echo_home, speaker, assistant):
    def broken_connect():
        raise RuntimeError("disk on fire")

    async def scenario(controller):
        controller._connect = broken_connect
        await controller.submit({"name": "listDecks"})
        return controller

    controller = _run(scenario, speaker, assistant)
    assert controller.state == SessionState.AWAITING_COMMAND
    assert controller.status_text == "Sorry, something went wrong. Please try again."


def test_conversation_waits_for_running_generation(echo_home, speaker, assistant):
    class TimedAssistant(type(assistant)):
        async def answer_question(self, card, query):
            await asyncio.sleep(0.1)
            return await super().answer_question(card, query)

        async def generate_deck_from_topic(self, topic, depth, count):
            await asyncio.sleep(0.01)
            return self.cards[:count]

    timed = TimedAssistant()

    async def scenario(controller):
        await controller.submit({"name": "generateDeckFromForm", "topic": "Volcanoes", "numberOfCards": 2})
        await controller.handle(StartConversation(query="How do volcanoes form?"))
        assert controller.state == SessionState.PROCESSING
        await controller.wait_idle()
        return controller

    controller = _run(scenario, speaker, timed)
    assert controller.state == SessionState.AWAITING_COMMAND
    assert controller.previous_state is None
    assert timed.questions == []
    with database.get_conn() as conn:
        decks = storage.get_decks(conn)
        assert [d.name for d in decks] == ["Volcanoes"]
        assert len(storage.get_cards_for_deck(conn, decks[0].id)) == 2


def test_session_goal_replaces_persisted_daily_goal(echo_home, speaker, assistant):
    async def scenario(controller):
        await controller.handle(SetStudyGoal(target=10, goal_type="daily"))
        await controller.handle(SetStudyGoal(target=4, goal_type="session"))
        return controller

    _run(scenario, speaker, assistant)

    async def restarted(controller):
        return controller.active_goal

    assert _run(restarted, speaker, assistant) is None
