"""Dataclasses describing the objects that flow through lazi."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from .errors import LaziError

PLACEHOLDER_API_KEY = "YOUR_OPENAI_API_KEY_HERE"

MIME_TYPES = {
    ".m4a": "audio/m4a",
    ".mp3": "audio/mpeg",
}
DEFAULT_MIME_TYPE = "audio/wav"


@dataclass(slots=True)
class Config:
    """User configuration stored on disk."""

    openai_api_key: Optional[str] = None
    api_base_url: str = "https://api.openai.com/v1"
    transcription_model: str = "whisper-1"
    chat_model: str = "gpt-3.5-turbo"
    language: str = "en"
    upload_timeout: float = 60.0
    chat_timeout: float = 20.0
    max_tokens: int = 50
    history_limit: int = 20
    compressed: bool = False
    recordings_dir: Optional[str] = None


@dataclass(slots=True)
class TranscriptRecord:
    """Represents a stored transcript entry."""

    id: int
    text: str
    created_at: datetime


class AudioFormat(Enum):
    UNCOMPRESSED = "wav"
    COMPRESSED = "m4a"

    @classmethod
    def for_flag(cls, compressed: bool) -> "AudioFormat":
        return cls.COMPRESSED if compressed else cls.UNCOMPRESSED

    @property
    def extension(self) -> str:
        return f".{self.value}"


@dataclass(slots=True)
class RecordingSession:
    """An in-progress recording. The recorder owns ``file_path`` until it stops."""

    file_path: Path
    format: AudioFormat
    started_at: datetime
    sample_rate: int
    channels: int


@dataclass(frozen=True, slots=True)
class TranscriptionRequest:
    audio_path: Path
    model: str = "whisper-1"
    language: str = "en"
    temperature: int = 0

    @property
    def filename(self) -> str:
        return self.audio_path.name

    @property
    def mime_type(self) -> str:
        return MIME_TYPES.get(self.audio_path.suffix.lower(), DEFAULT_MIME_TYPE)

    def form_fields(self) -> dict:
        return {
            "model": self.model,
            "language": self.language,
            "temperature": str(self.temperature),
        }


@dataclass(frozen=True, slots=True)
class TranscriptionSuccess:
    text: str


@dataclass(frozen=True, slots=True)
class TranscriptionFailure:
    error: LaziError

    @property
    def kind(self) -> str:
        return self.error.kind

    @property
    def message(self) -> str:
        return str(self.error)


TranscriptionResult = Union[TranscriptionSuccess, TranscriptionFailure]


@dataclass(frozen=True, slots=True)
class ContextQuery:
    """Input to the context classifier; ``history`` is newest first."""

    new_text: str
    history: List[str] = field(default_factory=list)


# Panel states. Exactly one is current at any time.


@dataclass(frozen=True, slots=True)
class Idle:
    pass


@dataclass(frozen=True, slots=True)
class Recording:
    file_path: Optional[Path] = None


@dataclass(frozen=True, slots=True)
class Transcribing:
    progress: float = 0.0


@dataclass(frozen=True, slots=True)
class Success:
    text: str


@dataclass(frozen=True, slots=True)
class Failure:
    message: str


PanelState = Union[Idle, Recording, Transcribing, Success, Failure]


# Context check states, independent of the panel state.


@dataclass(frozen=True, slots=True)
class NoContext:
    pass


@dataclass(frozen=True, slots=True)
class Checking:
    pass


@dataclass(frozen=True, slots=True)
class ContextResult:
    refers: bool


@dataclass(frozen=True, slots=True)
class ContextError:
    message: str


ContextState = Union[NoContext, Checking, ContextResult, ContextError]
