"""Event layer: closed, immutable event model published on device buses."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field

ASSISTANT_TOPIC = "assistant"

SignalKind = Literal["processing", "finish", "error", "complete"]
Severity = Literal["info", "error"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def local_now_display() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


class AssistantStep(str, Enum):
    """Pipeline states in the order they can be entered."""

    UPLOAD_AUDIO = "upload_audio"
    TRANSCRIPTION = "transcription"
    THINKING = "thinking"
    ANSWER = "answer"
    DRAW_IMAGE = "draw_image"
    WRITE_CODE = "write_code"
    SPEECH = "speech"


class _EventModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class SignalEvent(_EventModel):
    """Progress, error and completion markers for one invocation."""

    event: Literal["signal"] = "signal"
    kind: SignalKind
    step: AssistantStep | None = None
    message: str | None = None
    at: str = Field(default_factory=utc_now_iso)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def severity(self) -> Severity:
        return "error" if self.kind == "error" else "info"

    @classmethod
    def processing(cls, step: AssistantStep) -> "SignalEvent":
        return cls(kind="processing", step=step)

    @classmethod
    def finish(cls, step: AssistantStep) -> "SignalEvent":
        return cls(kind="finish", step=step)

    @classmethod
    def error(cls, message: str) -> "SignalEvent":
        return cls(kind="error", message=message)

    @classmethod
    def complete(cls) -> "SignalEvent":
        return cls(kind="complete")

    @property
    def is_terminal(self) -> bool:
        return self.kind in {"error", "complete"}


class InputSkeletonEvent(_EventModel):
    """Placeholder for a user message whose transcript is not known yet."""

    event: Literal["input_skeleton"] = "input_skeleton"
    id: str
    datetime: str = Field(default_factory=local_now_display)
    avatar: str = "https://i.pravatar.cc/128"
    name: str = "User"


class InputEvent(_EventModel):
    event: Literal["input"] = "input"
    id: str
    content: str


class ReplySkeletonEvent(_EventModel):
    """Placeholder for an assistant reply that is still being produced."""

    event: Literal["reply_skeleton"] = "reply_skeleton"
    id: str
    avatar: str = "/public/images/ava-small.png"
    name: str = "Ava"


class SpeechReply(_EventModel):
    type: Literal["speech"] = "speech"
    text: str
    url: str


class ImageReply(_EventModel):
    type: Literal["image"] = "image"
    url: str
    prompt: str


class MarkdownReply(_EventModel):
    type: Literal["markdown"] = "markdown"
    html: str


ReplyData = Annotated[
    Union[SpeechReply, ImageReply, MarkdownReply],
    Field(discriminator="type"),
]


class ReplyEvent(_EventModel):
    event: Literal["reply"] = "reply"
    id: str
    data: ReplyData


AssistantEvent = Annotated[
    Union[SignalEvent, InputSkeletonEvent, InputEvent, ReplySkeletonEvent, ReplyEvent],
    Field(discriminator="event"),
]
