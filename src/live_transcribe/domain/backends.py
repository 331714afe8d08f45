import asyncio
import logging
from collections.abc import AsyncIterator

from live_transcribe.domain.errors import (
    BackendStartError,
    BackendStopError,
    ChunkSendError,
    ProxyCommandError,
    TranscriptionError,
)
from live_transcribe.domain.events import (
    BackendEvent,
    BackendMode,
    RecognitionWarning,
    TranscriptFragment,
)
from live_transcribe.domain.subscription import FragmentSubscription
from live_transcribe.ports.recognizer import SpeechRecognizerPort
from live_transcribe.ports.transcription import TranscriptionProxyPort

logger = logging.getLogger(__name__)


class RemoteStreamingBackend:
    """Drives a transcription proxy through its command/event contract.

    The fragment subscription is global: it yields fragments for every
    session the proxy knows about. Filtering by session id is left to the
    assembler so stale fragments from a just-ended session are dropped in
    one place.
    """

    def __init__(self, proxy: TranscriptionProxyPort) -> None:
        self._proxy = proxy
        self._session_id: str | None = None
        self._subscription: FragmentSubscription | None = None

    @property
    def mode(self) -> BackendMode:
        return BackendMode.REMOTE

    async def start(self, session_id: str, language: str) -> None:
        subscription = self._proxy.subscribe()
        try:
            await self._proxy.start_live_transcription(session_id, language)
        except ProxyCommandError as exc:
            subscription.close()
            raise BackendStartError(f"Transcription proxy rejected session: {exc}") from exc
        except Exception as exc:
            subscription.close()
            raise BackendStartError(f"Transcription proxy failed to start: {exc}") from exc
        except BaseException:
            subscription.close()
            raise
        self._session_id = session_id
        self._subscription = subscription
        logger.info("Remote transcription started (session=%s, language=%s)", session_id, language)

    async def feed(self, chunk: bytes) -> None:
        if not chunk or self._session_id is None:
            return
        try:
            await self._proxy.send_audio_chunk(self._session_id, chunk)
        except ProxyCommandError as exc:
            raise ChunkSendError(str(exc)) from exc

    async def stop(self, session_id: str) -> None:
        subscription, self._subscription = self._subscription, None
        self._session_id = None
        try:
            await self._proxy.stop_live_transcription(session_id)
        except ProxyCommandError as exc:
            raise BackendStopError(f"Stop transcription error: {exc}") from exc
        finally:
            if subscription:
                subscription.close()
        logger.info("Remote transcription stopped (session=%s)", session_id)

    async def events(self) -> AsyncIterator[BackendEvent]:
        subscription = self._subscription
        if subscription is None:
            return
        async for fragment in subscription:
            yield fragment

    async def close(self) -> None:
        await self._proxy.close()


class LocalRecognitionBackend:
    """Wraps an on-device recognizer that listens to the microphone itself.

    Audio chunks are ignored. When the recognizer signals that it ended on
    its own, recognition is restarted up to ``max_restarts`` times per
    session; after that the session stays active but silent and a warning
    is emitted.
    """

    def __init__(self, recognizer: SpeechRecognizerPort, max_restarts: int = 3) -> None:
        self._recognizer = recognizer
        self._max_restarts = max_restarts
        self._session_id: str | None = None
        self._language = ""
        self._queue: asyncio.Queue[BackendEvent | None] | None = None
        self._restarts = 0
        self._restart_task: asyncio.Task | None = None

    @property
    def mode(self) -> BackendMode:
        return BackendMode.LOCAL

    @property
    def restarts(self) -> int:
        return self._restarts

    async def start(self, session_id: str, language: str) -> None:
        self._session_id = session_id
        self._language = language
        self._queue = asyncio.Queue()
        self._restarts = 0
        try:
            await self._start_recognizer()
        except TranscriptionError as exc:
            self._session_id = None
            self._queue = None
            raise BackendStartError(f"Speech recognition not available: {exc}") from exc
        logger.info("Local recognition started (session=%s, language=%s)", session_id, language)

    async def feed(self, chunk: bytes) -> None:
        pass

    async def stop(self, session_id: str) -> None:
        if self._restart_task and not self._restart_task.done():
            self._restart_task.cancel()
            try:
                await self._restart_task
            except (asyncio.CancelledError, Exception):
                pass
        self._restart_task = None

        try:
            await self._recognizer.stop()
        except TranscriptionError as exc:
            raise BackendStopError(f"Failed to stop recognizer: {exc}") from exc
        finally:
            self._session_id = None
            if self._queue is not None:
                self._queue.put_nowait(None)
        logger.info("Local recognition stopped (session=%s)", session_id)

    async def events(self) -> AsyncIterator[BackendEvent]:
        queue = self._queue
        if queue is None:
            return
        while True:
            event = await queue.get()
            if event is None:
                return
            yield event

    async def close(self) -> None:
        pass

    async def _start_recognizer(self) -> None:
        await self._recognizer.start(
            language=self._language,
            continuous=True,
            interim_results=True,
            on_result=self._on_result,
            on_error=self._on_error,
            on_end=self._on_end,
        )

    def _emit(self, event: BackendEvent) -> None:
        if self._queue is not None and self._session_id is not None:
            self._queue.put_nowait(event)

    def _on_result(self, text: str, is_final: bool) -> None:
        if is_final:
            text = text.rstrip()
        self._emit(TranscriptFragment(session_id=self._session_id or "", text=text, is_final=is_final))

    def _on_error(self, message: str) -> None:
        logger.warning("Speech recognition error: %s", message)
        self._emit(RecognitionWarning(
            session_id=self._session_id or "",
            message=f"Speech recognition error: {message}",
        ))

    def _on_end(self) -> None:
        if self._session_id is None:
            return
        if self._restarts >= self._max_restarts:
            logger.warning("Recognition ended after %d restarts, giving up", self._restarts)
            self._emit(RecognitionWarning(
                session_id=self._session_id,
                message="Speech recognition ended and will not restart",
            ))
            return
        self._restarts += 1
        logger.info("Recognition ended, restarting (%d/%d)", self._restarts, self._max_restarts)
        self._restart_task = asyncio.create_task(self._restart())

    async def _restart(self) -> None:
        try:
            await self._start_recognizer()
        except TranscriptionError as exc:
            self._on_error(f"restart failed: {exc}")
