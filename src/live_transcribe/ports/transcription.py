from typing import Protocol, AsyncIterator

from live_transcribe.domain.events import BackendEvent, BackendMode
from live_transcribe.domain.subscription import FragmentSubscription


class TranscriptionBackend(Protocol):
    @property
    def mode(self) -> BackendMode: ...
    async def start(self, session_id: str, language: str) -> None: ...
    async def feed(self, chunk: bytes) -> None: ...
    async def stop(self, session_id: str) -> None: ...
    def events(self) -> AsyncIterator[BackendEvent]: ...
    async def close(self) -> None: ...


class TranscriptionProxyPort(Protocol):
    async def start_live_transcription(self, session_id: str, language: str) -> None: ...
    async def send_audio_chunk(self, session_id: str, chunk: bytes) -> None: ...
    async def stop_live_transcription(self, session_id: str) -> None: ...
    def subscribe(self) -> FragmentSubscription: ...
    async def close(self) -> None: ...
