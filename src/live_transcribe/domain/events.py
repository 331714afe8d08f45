from dataclasses import dataclass, field
from enum import Enum
from time import time


class BackendMode(Enum):
    REMOTE = "remote"
    LOCAL = "local"


@dataclass(frozen=True)
class DomainEvent:
    timestamp: float = field(default_factory=time)


@dataclass(frozen=True)
class TranscriptFragment(DomainEvent):
    session_id: str = ""
    text: str = ""
    is_final: bool = False


@dataclass(frozen=True)
class RecognitionWarning(DomainEvent):
    session_id: str = ""
    message: str = ""


@dataclass(frozen=True)
class TranscriptState:
    committed: str = ""
    interim: str = ""

    @property
    def display_text(self) -> str:
        if self.interim:
            return f"{self.committed} {self.interim}".strip()
        return self.committed.strip()


BackendEvent = TranscriptFragment | RecognitionWarning
