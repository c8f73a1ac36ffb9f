"""Commands accepted by the session controller and the events it posts to itself.

External sources send each command as one flat JSON object, for example
``{"name": "startReview", "deckName": "World Capitals"}``. Argument names are
camelCase on the wire and snake_case in Python.
"""
from __future__ import annotations

from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel


class CommandBase(BaseModel):
    id: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class StartSession(CommandBase):
    name: Literal["startSession"] = "startSession"

class EndSession(CommandBase):
    name: Literal["endSession"] = "endSession"

class StartReview(CommandBase):
    name: Literal["startReview"] = "startReview"
    deck_name: str

class ShowAnswer(CommandBase):
    name: Literal["showAnswer"] = "showAnswer"

class RateCard(CommandBase):
    name: Literal["rateCard"] = "rateCard"
    rating: Literal["AGAIN", "HARD", "GOOD", "EASY"]

class StartConversation(CommandBase):
    name: Literal["startConversation"] = "startConversation"
    query: str

class SetStudyGoal(CommandBase):
    name: Literal["setStudyGoal"] = "setStudyGoal"
    target: int = Field(gt=0)
    goal_type: Literal["session", "daily"]

class CreateDeck(CommandBase):
    name: Literal["createDeck"] = "createDeck"
    deck_name: str = Field(min_length=1)

class DeleteDeck(CommandBase):
    name: Literal["deleteDeck"] = "deleteDeck"
    deck_name: str

class ListDecks(CommandBase):
    name: Literal["listDecks"] = "listDecks"

class ShowDecks(CommandBase):
    name: Literal["showDecks"] = "showDecks"

class CreateCard(CommandBase):
    name: Literal["createCard"] = "createCard"
    deck_name: str
    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)
    explanation: Optional[str] = None

class FindCardToEdit(CommandBase):
    name: Literal["findCardToEdit"] = "findCardToEdit"
    deck_name: str
    question_query: str

class UpdateCardContent(CommandBase):
    name: Literal["updateCardContent"] = "updateCardContent"
    new_question: Optional[str] = None
    new_answer: Optional[str] = None
    new_explanation: Optional[str] = None

class GoBack(CommandBase):
    name: Literal["goBack"] = "goBack"

class ShowImportView(CommandBase):
    name: Literal["showImportView"] = "showImportView"

class ImportDeck(CommandBase):
    name: Literal["importDeck"] = "importDeck"
    deck_name: str = Field(min_length=1)
    csv_content: str

class ShowSmartGenerationView(CommandBase):
    name: Literal["showSmartGenerationView"] = "showSmartGenerationView"

class GenerateDeckFromForm(CommandBase):
    name: Literal["generateDeckFromForm"] = "generateDeckFromForm"
    topic: str = Field(min_length=1)
    depth: str = "intermediate"
    number_of_cards: int = Field(default=10, gt=0, le=50)

class GenerateDeckFromDocument(CommandBase):
    name: Literal["generateDeckFromDocument"] = "generateDeckFromDocument"
    deck_name: str = Field(min_length=1)
    document_text: str = Field(min_length=1)

class ShowCardStats(CommandBase):
    name: Literal["showCardStats"] = "showCardStats"
    deck_name: str
    question_query: str

class ExplainCard(CommandBase):
    name: Literal["explainCard"] = "explainCard"

class GenerateCardsFromWeakness(CommandBase):
    name: Literal["generateCardsFromWeakness"] = "generateCardsFromWeakness"
    deck_name: str

class ShowImageGenerationView(CommandBase):
    name: Literal["showImageGenerationView"] = "showImageGenerationView"

class GenerateImage(CommandBase):
    name: Literal["generateImage"] = "generateImage"
    prompt: str = Field(min_length=1)

class ShowImageAnalysisView(CommandBase):
    name: Literal["showImageAnalysisView"] = "showImageAnalysisView"

class SelectImage(CommandBase):
    name: Literal["selectImage"] = "selectImage"
    image_path: str

class AnalyzeImage(CommandBase):
    name: Literal["analyzeImage"] = "analyzeImage"
    prompt: str = Field(min_length=1)

class ShowTranscriptionView(CommandBase):
    name: Literal["showTranscriptionView"] = "showTranscriptionView"

class StartRecording(CommandBase):
    name: Literal["startRecording"] = "startRecording"

class StopRecording(CommandBase):
    name: Literal["stopRecording"] = "stopRecording"

class ShowTextAnalysisView(CommandBase):
    name: Literal["showTextAnalysisView"] = "showTextAnalysisView"

class AnalyzeText(CommandBase):
    name: Literal["analyzeText"] = "analyzeText"
    text: str = Field(min_length=1)
    prompt: str = Field(min_length=1)
    complexity: Literal["simple", "complex"] = "simple"

class SetVoice(CommandBase):
    name: Literal["setVoice"] = "setVoice"
    voice: str = Field(min_length=1)

class SetConversationalMode(CommandBase):
    name: Literal["setConversationalMode"] = "setConversationalMode"
    enabled: bool


Command = Annotated[
    Union[
        StartSession, EndSession, StartReview, ShowAnswer, RateCard,
        StartConversation, SetStudyGoal, CreateDeck, DeleteDeck, ListDecks,
        ShowDecks, CreateCard, FindCardToEdit, UpdateCardContent, GoBack,
        ShowImportView, ImportDeck, ShowSmartGenerationView,
        GenerateDeckFromForm, GenerateDeckFromDocument, ShowCardStats,
        ExplainCard, GenerateCardsFromWeakness, ShowImageGenerationView,
        GenerateImage, ShowImageAnalysisView, SelectImage, AnalyzeImage,
        ShowTranscriptionView, StartRecording, StopRecording,
        ShowTextAnalysisView, AnalyzeText, SetVoice, SetConversationalMode,
    ],
    Field(discriminator="name"),
]

_command_adapter = TypeAdapter(Command)


class GeneratedCard(BaseModel):
    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)
    explanation: Optional[str] = None


# Internal events. These are posted by the controller's own jobs and by the
# narration collaborator; they never come from the command source.

class PlaybackStopped(BaseModel):
    name: Literal["playbackStopped"] = "playbackStopped"
    # Narration epoch the stop belongs to; stops from before an interrupt are stale.
    epoch: Optional[int] = None

class ConnectionLost(BaseModel):
    name: Literal["connectionLost"] = "connectionLost"
    message: str = "Connection error."

class ConversationReplied(BaseModel):
    name: Literal["conversationReplied"] = "conversationReplied"
    text: Optional[str] = None

class CardExplained(BaseModel):
    name: Literal["cardExplained"] = "cardExplained"
    card_id: int
    text: Optional[str] = None

class DeckGenerated(BaseModel):
    name: Literal["deckGenerated"] = "deckGenerated"
    deck_name: str
    cards: List[GeneratedCard] = []

class WeaknessCardsGenerated(BaseModel):
    name: Literal["weaknessCardsGenerated"] = "weaknessCardsGenerated"
    deck_id: int
    deck_name: str
    cards: List[GeneratedCard] = []

class ImageGenerated(BaseModel):
    name: Literal["imageGenerated"] = "imageGenerated"
    image: Optional[str] = None

class ImageAnalyzed(BaseModel):
    name: Literal["imageAnalyzed"] = "imageAnalyzed"
    text: Optional[str] = None

class AudioTranscribed(BaseModel):
    name: Literal["audioTranscribed"] = "audioTranscribed"
    text: Optional[str] = None
    error: Optional[str] = None

class TextAnalyzed(BaseModel):
    name: Literal["textAnalyzed"] = "textAnalyzed"
    text: Optional[str] = None


Event = Union[
    PlaybackStopped, ConnectionLost, ConversationReplied, CardExplained,
    DeckGenerated, WeaknessCardsGenerated, ImageGenerated, ImageAnalyzed,
    AudioTranscribed, TextAnalyzed,
]


class CommandAck(BaseModel):
    id: Optional[str] = None
    name: str
    result: str = "OK"


class InvalidCommand(ValueError):
    """Raised when a payload does not describe a known, well-formed command."""

    def __init__(self, name: str, detail: str):
        super().__init__(f"{name}: {detail}")
        self.name = name
        self.detail = detail


def parse_command(payload: Any):
    """Validate a raw payload into one of the ``Command`` models."""
    name = payload.get("name", "<missing>") if isinstance(payload, dict) else "<invalid>"
    try:
        return _command_adapter.validate_python(payload)
    except ValidationError as exc:
        raise InvalidCommand(str(name), exc.errors()[0]["msg"]) from exc
