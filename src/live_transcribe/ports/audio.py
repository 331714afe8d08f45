from dataclasses import dataclass
from typing import Protocol, AsyncIterator


@dataclass(frozen=True)
class CaptureConstraints:
    sample_rate: int = 16000
    channel_count: int = 1
    echo_cancellation: bool = True
    noise_suppression: bool = True


CAPTURE_CONSTRAINTS = CaptureConstraints()
CHUNK_DURATION_MS = 250


class CaptureHandle(Protocol):
    @property
    def released(self) -> bool: ...
    def chunks(self) -> AsyncIterator[bytes]: ...
    async def release(self) -> None: ...


class AudioCapturePort(Protocol):
    async def acquire(self, constraints: CaptureConstraints) -> CaptureHandle: ...
