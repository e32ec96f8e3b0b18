from typing import Literal, Union

from pydantic import BaseModel, model_serializer


# --- Request ---
class ContentPart(BaseModel):
    type: str
    text: str | None = None


class Message(BaseModel):
    role: str
    content: str | list[ContentPart] | None = None

    def text(self) -> str:
        """Plain text of the message, joining text parts of list content."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return "".join(
            part.text or ""
            for part in self.content
            if part.type in ("text", "input_text")
        )


class ChatRequest(BaseModel):
    messages: list[Message]
    stream: bool = False
    model: str


# --- Response ---
class AssistantMessage(BaseModel):
    role: str = "assistant"
    content: str


class Choice(BaseModel):
    index: int = 0
    message: AssistantMessage
    finish_reason: str = "stop"


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletion(BaseModel):
    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: list[Choice]
    usage: Usage = Usage()


# --- Streaming Response (SSE chunks) ---
class DeltaMessage(BaseModel):
    content: str | None = None

    @model_serializer(mode="wrap")
    def _drop_unset(self, handler):
        # The terminal chunk must serialize as an empty delta object.
        return {key: value for key, value in handler(self).items() if value is not None}


class StreamChoice(BaseModel):
    index: int = 0
    delta: DeltaMessage
    finish_reason: str | None = None


class ChatCompletionChunk(BaseModel):
    id: str
    object: str = "chat.completion.chunk"
    created: int
    model: str
    choices: list[StreamChoice]


# --- Models listing ---
class ModelCard(BaseModel):
    id: str
    object: str = "model"
    created: int
    owned_by: str


class ModelList(BaseModel):
    object: str = "list"
    data: list[ModelCard]


# --- Errors ---
class ErrorDetail(BaseModel):
    message: str
    type: str


class ErrorResponse(BaseModel):
    error: ErrorDetail

    @classmethod
    def build(cls, message: str, error_type: str) -> "ErrorResponse":
        return cls(error=ErrorDetail(message=message, type=error_type))


# --- Upstream request envelope ---
class InputTextPart(BaseModel):
    type: Literal["input_text"] = "input_text"
    text: str


class UpstreamInput(BaseModel):
    text: str
    content: list[InputTextPart]
    quoted_text: str = ""
    attachments: list = []


class EnvelopeParams(BaseModel):
    input: UpstreamInput


class UpstreamEnvelope(BaseModel):
    op: Literal["threads.create"] = "threads.create"
    params: EnvelopeParams


# --- Upstream SSE events ---
class TextDeltaPart(BaseModel):
    type: Literal["assistant_message.content_part.text_delta"]
    delta: str


class WrappedUpdate(BaseModel):
    entry: TextDeltaPart


class ItemUpdatedEvent(BaseModel):
    type: Literal["thread.item_updated"]
    update: Union[WrappedUpdate, TextDeltaPart]

    @property
    def part(self) -> TextDeltaPart:
        if isinstance(self.update, WrappedUpdate):
            return self.update.entry
        return self.update
