import asyncio
import logging
import uuid
from collections.abc import Callable

from live_transcribe.domain.assembler import TranscriptAssembler
from live_transcribe.domain.errors import (
    AlreadyActiveError,
    BackendStartError,
    BackendStopError,
    ChunkSendError,
    StartAbortedError,
)
from live_transcribe.domain.events import (
    BackendMode,
    RecognitionWarning,
    TranscriptState,
)
from live_transcribe.domain.state import SessionPhase, validate_transition
from live_transcribe.ports.audio import CAPTURE_CONSTRAINTS, AudioCapturePort, CaptureHandle
from live_transcribe.ports.transcription import TranscriptionBackend

logger = logging.getLogger(__name__)

EVENT_DRAIN_TIMEOUT = 2.0


class _SessionResources:
    """Everything one session acquired, released in reverse order."""

    def __init__(self, session_id: str, mode: BackendMode | None) -> None:
        self.session_id = session_id
        self.mode = mode
        self.capture: CaptureHandle | None = None
        self.backend: TranscriptionBackend | None = None
        self.chunk_task: asyncio.Task | None = None
        self.event_task: asyncio.Task | None = None
        self.abort_requested = False
        self.closed = asyncio.Event()


class SessionManager:
    """Owns the live transcription session.

    Wires audio capture into the selected backend and the backend's
    fragments into the transcript assembler. The backend variant is chosen
    once, when the manager is built; ``backend`` is ``None`` when no variant
    is available and every ``start`` then fails after acquiring the device.
    """

    def __init__(
        self,
        capture: AudioCapturePort,
        backend: TranscriptionBackend | None,
        assembler: TranscriptAssembler | None = None,
        on_update: Callable[[TranscriptState], None] | None = None,
    ) -> None:
        self._capture = capture
        self._backend = backend
        self._assembler = assembler or TranscriptAssembler()
        self._on_update = on_update

        self._phase = SessionPhase.IDLE
        self._session: _SessionResources | None = None
        self._session_id: str | None = None
        self._mode: BackendMode | None = None
        self._error: str | None = None
        self._chunks_dropped = 0

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def mode(self) -> BackendMode | None:
        return self._mode

    @property
    def available_mode(self) -> BackendMode | None:
        return self._backend.mode if self._backend else None

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def is_recording(self) -> bool:
        return self._phase == SessionPhase.ACTIVE

    @property
    def chunks_dropped(self) -> int:
        return self._chunks_dropped

    def get_state(self) -> TranscriptState:
        return self._assembler.state

    def clear(self) -> None:
        self._assembler.reset()
        self._notify()

    async def start(self, language: str) -> str:
        if self._phase != SessionPhase.IDLE:
            raise AlreadyActiveError(
                f"Session {self._session_id} is {self._phase.name.lower()}"
            )

        session_id = str(uuid.uuid4())
        resources = _SessionResources(session_id, self.available_mode)
        self._session = resources
        self._session_id = session_id
        self._mode = resources.mode
        self._error = None
        self._chunks_dropped = 0
        self._transition_to(SessionPhase.STARTING)
        self._assembler.bind(session_id)
        self._notify()
        logger.info("Starting session %s (language=%s)", session_id, language)

        try:
            resources.capture = await self._capture.acquire(CAPTURE_CONSTRAINTS)
            self._check_not_aborted(resources)

            backend = self._backend
            if backend is None:
                raise BackendStartError("Speech recognition not supported: no backend available")
            await backend.start(session_id, language)
            resources.backend = backend
            self._check_not_aborted(resources)
        except BaseException as exc:
            if not isinstance(exc, StartAbortedError):
                logger.error("Failed to start session %s: %s", session_id, exc)
                self._report_error(f"Failed to start recording: {exc}")
            await self._teardown(resources)
            self._finish(resources)
            raise

        self._transition_to(SessionPhase.ACTIVE)
        resources.event_task = asyncio.create_task(self._consume_events(backend, session_id))
        resources.chunk_task = asyncio.create_task(self._deliver_chunks(resources.capture, backend))
        logger.info("Session started: %s (mode=%s)", session_id, backend.mode.value)
        self._notify()
        return session_id

    async def stop(self) -> None:
        resources = self._session
        if self._phase == SessionPhase.IDLE or resources is None:
            return

        if self._phase == SessionPhase.STARTING:
            resources.abort_requested = True
            self._transition_to(SessionPhase.STOPPING)
            await resources.closed.wait()
            return

        if self._phase == SessionPhase.STOPPING:
            await resources.closed.wait()
            return

        self._transition_to(SessionPhase.STOPPING)
        await self._teardown(resources)
        self._finish(resources)
        logger.info("Session stopped: %s", resources.session_id)

    async def shutdown(self) -> None:
        await self.stop()
        if self._backend is not None:
            await self._backend.close()

    def _check_not_aborted(self, resources: _SessionResources) -> None:
        if resources.abort_requested:
            raise StartAbortedError(f"Session {resources.session_id} was stopped while starting")

    async def _teardown(self, resources: _SessionResources) -> None:
        await _cancel_task(resources.chunk_task)
        resources.chunk_task = None

        backend, resources.backend = resources.backend, None
        if backend is not None:
            try:
                await backend.stop(resources.session_id)
            except BackendStopError as exc:
                logger.warning("%s", exc)
            except Exception:
                logger.exception("Unexpected error stopping backend")

        # Apply whatever the backend flushed while stopping.
        await _drain_task(resources.event_task, EVENT_DRAIN_TIMEOUT)
        resources.event_task = None

        capture, resources.capture = resources.capture, None
        if capture is not None:
            try:
                await capture.release()
            except Exception:
                logger.exception("Failed to release audio capture")

        resources.closed.set()

    def _finish(self, resources: _SessionResources) -> None:
        if self._session is not resources:
            return
        self._session = None
        self._assembler.unbind()
        self._transition_to(SessionPhase.IDLE)
        self._notify()

    async def _deliver_chunks(self, capture: CaptureHandle, backend: TranscriptionBackend) -> None:
        try:
            async for chunk in capture.chunks():
                if not chunk:
                    continue
                try:
                    await backend.feed(chunk)
                except ChunkSendError as exc:
                    self._chunks_dropped += 1
                    logger.warning("Failed to send chunk: %s", exc)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Audio capture failed")
            self._report_error(f"Recording error occurred: {exc}")

    async def _consume_events(self, backend: TranscriptionBackend, session_id: str) -> None:
        async for event in backend.events():
            if isinstance(event, RecognitionWarning):
                if event.session_id == session_id:
                    self._report_error(event.message)
                continue
            if self._assembler.apply(event):
                self._notify()

    def _report_error(self, message: str) -> None:
        self._error = message
        self._notify()

    def _notify(self) -> None:
        if self._on_update:
            self._on_update(self._assembler.state)

    def _transition_to(self, target: SessionPhase) -> None:
        validate_transition(self._phase, target)
        logger.info("State: %s -> %s", self._phase.name, target.name)
        self._phase = target


async def _drain_task(task: asyncio.Task | None, timeout: float) -> None:
    if task is None:
        return
    if not task.done():
        _, pending = await asyncio.wait({task}, timeout=timeout)
        if pending:
            logger.warning("Backend events did not end within %.1fs, dropping the rest", timeout)
    await _cancel_task(task)


async def _cancel_task(task: asyncio.Task | None) -> None:
    if task is None:
        return
    if not task.done():
        task.cancel()
    try:
        await task
    except (asyncio.CancelledError, Exception):
        pass
