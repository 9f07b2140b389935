"""Core data models for the recognition client."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

DEFAULT_ENDPOINT = "wss://acp-api.amivoice.com/v1/"
DEFAULT_GRAMMAR = "-a-general"


class ConnectionState(str, Enum):
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"


class SessionPhase(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    NEGOTIATING = "NEGOTIATING"
    ACTIVE = "ACTIVE"
    ENDING = "ENDING"
    FAILED = "FAILED"


class RecordingState(str, Enum):
    IDLE = "IDLE"
    STARTING = "STARTING"
    RECORDING = "RECORDING"
    ERROR = "ERROR"


_INDEXED_PHASES =(SessionPhase.NEGOTIATING, SessionPhase.ACTIVE)


@dataclass(frozen=True)
class SessionState:
    """Protocol-level session state.

    ``codec_index`` is carried only by the phases that refer to a codec
    (negotiating and active); every other phase has ``None``.  Use the
    class constructors rather than building instances by hand.
    """

    phase: SessionPhase
    codec_index: Optional[int] = None

    def __post_init__(self) -> None:
        has_index = self.codec_index is not None
        if has_index != (self.phase in _INDEXED_PHASES):
            raise ValueError(f"invalid session state: {self.phase.value} with codec_index={self.codec_index}")

    @classmethod
    def not_started(cls) -> "SessionState":
        return cls(SessionPhase.NOT_STARTED)

    @classmethod
    def negotiating(cls, codec_index: int) -> "SessionState":
        return cls(SessionPhase.NEGOTIATING, codec_index)

    @classmethod
    def active(cls, codec_index: int) -> "SessionState":
        return cls(SessionPhase.ACTIVE, codec_index)

    @classmethod
    def ending(cls) -> "SessionState":
        return cls(SessionPhase.ENDING)

    @classmethod
    def failed(cls) -> "SessionState":
        return cls(SessionPhase.FAILED)

    @property
    def is_active(self) -> bool:
        return self.phase == SessionPhase.ACTIVE

    def __str__(self) -> str:
        if self.codec_index is None:
            return self.phase.value
        return f"{self.phase.value}({self.codec_index})"


@dataclass
class AudioFrame:
    pcm16_bytes: bytes
    sample_rate: int = 16000
    channels: int = 1
    timestamp_ms: int = 0

    @property
    def sample_count(self) -> int:
        return len(self.pcm16_bytes) // 2


@dataclass(frozen=True)
class RecognitionResult:
    text: str
    confidence: Optional[float] = None
    is_final: bool = False


@dataclass(frozen=True)
class ClientConfig:
    endpoint: str = DEFAULT_ENDPOINT
    credential: str = ""
    grammar_profile: str = DEFAULT_GRAMMAR
    enable_filtering: bool = True
    result_interval_ms: int = 1000
    codec: Optional[str] = None


@dataclass(frozen=True)
class EngineOption:
    id: str
    name: str
    description: str
    grammar_file_name: str


ENGINE_OPTIONS = (
    EngineOption("general", "General", "General-purpose Japanese recognition", "-a-general"),
    EngineOption("medical-meeting", "Medical meeting", "Medical meetings and consultations", "-a-medical"),
    EngineOption("medical-input", "Medical input", "Medical records and chart dictation", "-a-medical-input"),
)


def grammar_for_engine(engine_id: str) -> str:
    for option in ENGINE_OPTIONS:
        if option.id == engine_id:
            return option.grammar_file_name
    return DEFAULT_GRAMMAR
