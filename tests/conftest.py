import asyncio
from collections.abc import AsyncIterator

import numpy as np
import pytest

from live_transcribe.domain.assembler import TranscriptAssembler
from live_transcribe.domain.backends import LocalRecognitionBackend, RemoteStreamingBackend
from live_transcribe.domain.errors import ProxyCommandError
from live_transcribe.domain.events import TranscriptFragment
from live_transcribe.domain.session import SessionManager
from live_transcribe.domain.subscription import FragmentBroadcaster, FragmentSubscription
from live_transcribe.ports.audio import CaptureConstraints


SAMPLE_RATE = 16000
CHUNK_DURATION_MS = 250


def generate_silence(duration_ms: int = CHUNK_DURATION_MS, sample_rate: int = SAMPLE_RATE) -> bytes:
    num_samples = int(sample_rate * duration_ms / 1000)
    return np.zeros(num_samples, dtype=np.int16).tobytes()


def generate_sine_wave(
    frequency: float = 440.0,
    duration_ms: int = CHUNK_DURATION_MS,
    amplitude: float = 0.8,
    sample_rate: int = SAMPLE_RATE,
) -> bytes:
    num_samples = int(sample_rate * duration_ms / 1000)
    t = np.arange(num_samples) / sample_rate
    signal = np.sin(2 * np.pi * frequency * t) * amplitude
    return (signal * 32767).astype(np.int16).tobytes()


async def settle(cycles: int = 10) -> None:
    for _ in range(cycles):
        await asyncio.sleep(0)


class FakeCaptureHandle:
    def __init__(self, chunks: list[bytes], journal: list[str] | None = None) -> None:
        self._chunks = list(chunks)
        self._journal = journal
        self._released = asyncio.Event()
        self._iterated = False
        self.release_count = 0

    @property
    def released(self) -> bool:
        return self.release_count > 0

    def chunks(self) -> AsyncIterator[bytes]:
        if self._iterated:
            raise RuntimeError("Capture chunks can only be consumed once")
        self._iterated = True
        return self._read()

    async def _read(self) -> AsyncIterator[bytes]:
        for chunk in self._chunks:
            if self._released.is_set():
                return
            yield chunk
            await asyncio.sleep(0)
        await self._released.wait()

    async def release(self) -> None:
        self.release_count += 1
        if self._journal is not None:
            self._journal.append("release")
        self._released.set()


class FakeCapture:
    def __init__(
        self,
        chunks: list[bytes] | None = None,
        error: Exception | None = None,
        journal: list[str] | None = None,
    ) -> None:
        self._chunks = chunks or []
        self._error = error
        self._journal = journal
        self.gate: asyncio.Event | None = None
        self.constraints: list[CaptureConstraints] = []
        self.handles: list[FakeCaptureHandle] = []

    @property
    def outstanding(self) -> int:
        return sum(1 for handle in self.handles if not handle.released)

    async def acquire(self, constraints: CaptureConstraints) -> FakeCaptureHandle:
        self.constraints.append(constraints)
        if self.gate is not None:
            await self.gate.wait()
        if self._error is not None:
            raise self._error
        handle = FakeCaptureHandle(self._chunks, journal=self._journal)
        self.handles.append(handle)
        return handle


class FakeProxy:
    def __init__(self, journal: list[str] | None = None) -> None:
        self.broadcaster = FragmentBroadcaster()
        self.commands: list[tuple[str, str]] = []
        self.languages: dict[str, str] = {}
        self.active: set[str] = set()
        self.chunks: list[bytes] = []
        self.start_error: Exception | None = None
        self.send_error: Exception | None = None
        self.stop_error: Exception | None = None
        self.start_gate: asyncio.Event | None = None
        self.closed = False
        self._journal = journal

    def count(self, command: str) -> int:
        return sum(1 for name, _ in self.commands if name == command)

    def subscribe(self) -> FragmentSubscription:
        return self.broadcaster.subscribe()

    async def start_live_transcription(self, session_id: str, language: str) -> None:
        self.commands.append(("start", session_id))
        if self.start_gate is not None:
            await self.start_gate.wait()
        if self.start_error is not None:
            raise self.start_error
        if session_id in self.active:
            raise ProxyCommandError("Session already active")
        self.active.add(session_id)
        self.languages[session_id] = language

    async def send_audio_chunk(self, session_id: str, chunk: bytes) -> None:
        self.commands.append(("send", session_id))
        if self.send_error is not None:
            raise self.send_error
        if session_id not in self.active:
            raise ProxyCommandError("Invalid session")
        self.chunks.append(chunk)

    async def stop_live_transcription(self, session_id: str) -> None:
        self.commands.append(("stop", session_id))
        if self._journal is not None:
            self._journal.append("stop")
        if self.stop_error is not None:
            raise self.stop_error
        if session_id not in self.active:
            raise ProxyCommandError("Session not found")
        self.active.discard(session_id)

    async def close(self) -> None:
        self.closed = True
        self.broadcaster.close_all()

    def emit(self, session_id: str, text: str, is_final: bool) -> None:
        self.broadcaster.publish(TranscriptFragment(session_id=session_id, text=text, is_final=is_final))


class FakeRecognizer:
    def __init__(
        self,
        start_error: Exception | None = None,
        stop_error: Exception | None = None,
        flush_on_stop: str = "",
    ) -> None:
        self.start_error = start_error
        self.stop_error = stop_error
        self.flush_on_stop = flush_on_stop
        self.start_calls: list[dict] = []
        self.stop_count = 0
        self.running = False
        self._on_result = None
        self._on_error = None
        self._on_end = None

    async def start(self, *, language, continuous, interim_results, on_result, on_error, on_end) -> None:
        self.start_calls.append({
            "language": language,
            "continuous": continuous,
            "interim_results": interim_results,
        })
        if self.start_error is not None:
            raise self.start_error
        self._on_result = on_result
        self._on_error = on_error
        self._on_end = on_end
        self.running = True

    async def stop(self) -> None:
        self.stop_count += 1
        self.running = False
        if self.flush_on_stop and self._on_result is not None:
            self._on_result(self.flush_on_stop, True)
        if self.stop_error is not None:
            raise self.stop_error

    def result(self, text: str, is_final: bool) -> None:
        self._on_result(text, is_final)

    def error(self, message: str) -> None:
        self._on_error(message)

    def end(self) -> None:
        self.running = False
        self._on_end()


@pytest.fixture
def journal():
    return []


@pytest.fixture
def fake_capture(journal):
    return FakeCapture(journal=journal)


@pytest.fixture
def fake_proxy(journal):
    return FakeProxy(journal=journal)


@pytest.fixture
def fake_recognizer():
    return FakeRecognizer()


@pytest.fixture
def assembler():
    return TranscriptAssembler()


@pytest.fixture
def remote_manager(fake_capture, fake_proxy):
    return SessionManager(capture=fake_capture, backend=RemoteStreamingBackend(fake_proxy))


@pytest.fixture
def local_manager(fake_capture, fake_recognizer):
    return SessionManager(capture=fake_capture, backend=LocalRecognitionBackend(fake_recognizer))
