import asyncio
import logging

from deepgram import AsyncDeepgramClient
from deepgram.extensions.types.sockets.listen_v1_results_event import ListenV1ResultsEvent
from deepgram.listen.v1.socket_client import EventType

from live_transcribe.domain.errors import ProxyCommandError
from live_transcribe.domain.events import TranscriptFragment
from live_transcribe.domain.subscription import FragmentBroadcaster, FragmentSubscription

logger = logging.getLogger(__name__)


class _ProxySession:
    def __init__(self, session_id: str, queue_size: int) -> None:
        self.session_id = session_id
        self.audio_queue: asyncio.Queue[bytes | None] = asyncio.Queue(maxsize=queue_size)
        self.context_manager = None
        self.socket = None
        self.listener_task: asyncio.Task | None = None
        self.sender_task: asyncio.Task | None = None


class DeepgramTranscriptionProxy:
    """In-process transcription proxy backed by Deepgram's streaming API.

    Keeps one websocket per session id. Audio is buffered per session in a
    bounded queue and forwarded by a sender task; results are published to
    every open subscription tagged with their session id.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "nova-2",
        sample_rate: int = 16000,
        queue_size: int = 100,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._sample_rate = sample_rate
        self._queue_size = queue_size
        self._sessions: dict[str, _ProxySession] = {}
        self._broadcaster = FragmentBroadcaster()

    @property
    def active_sessions(self) -> list[str]:
        return list(self._sessions)

    def subscribe(self) -> FragmentSubscription:
        return self._broadcaster.subscribe()

    async def start_live_transcription(self, session_id: str, language: str) -> None:
        if session_id in self._sessions:
            raise ProxyCommandError("Session already active")

        session = _ProxySession(session_id, self._queue_size)
        try:
            client = AsyncDeepgramClient(api_key=self._api_key)
            session.context_manager = client.listen.v1.connect(
                model=self._model,
                language=language,
                encoding="linear16",
                sample_rate=str(self._sample_rate),
                channels="1",
                interim_results="true",
                smart_format="true",
                punctuate="true",
            )
            session.socket = await session.context_manager.__aenter__()
        except Exception as exc:
            raise ProxyCommandError(f"WebSocket connection failed: {exc}") from exc

        async def on_message(message) -> None:
            self._on_message(session_id, message)

        session.socket.on(EventType.MESSAGE, on_message)
        session.socket.on(EventType.ERROR, self._on_error)
        session.listener_task = asyncio.create_task(session.socket.start_listening())
        session.sender_task = asyncio.create_task(self._forward_audio(session))
        self._sessions[session_id] = session
        logger.info("Live transcription started for session: %s", session_id)

    async def send_audio_chunk(self, session_id: str, chunk: bytes) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise ProxyCommandError("Invalid session")
        if session.sender_task is None or session.sender_task.done():
            raise ProxyCommandError("Send failed or session closed")
        try:
            session.audio_queue.put_nowait(chunk)
        except asyncio.QueueFull as exc:
            raise ProxyCommandError("Send failed or session closed") from exc

    async def stop_live_transcription(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise ProxyCommandError("Session not found")
        await self._close_session(session)
        logger.info("Session removed: %s", session_id)

    async def close(self) -> None:
        for session_id in list(self._sessions):
            await self._close_session(self._sessions.pop(session_id))
        self._broadcaster.close_all()

    async def _forward_audio(self, session: _ProxySession) -> None:
        while True:
            chunk = await session.audio_queue.get()
            if chunk is None:
                break
            try:
                await session.socket._send(chunk)
            except Exception:
                logger.warning("Failed to send audio to Deepgram (session=%s)", session.session_id)
                break

    async def _close_session(self, session: _ProxySession) -> None:
        if session.sender_task and not session.sender_task.done():
            try:
                session.audio_queue.put_nowait(None)
                await asyncio.wait_for(session.sender_task, timeout=2.0)
            except (asyncio.QueueFull, asyncio.TimeoutError):
                session.sender_task.cancel()
            except Exception:
                pass

        if session.listener_task and not session.listener_task.done():
            session.listener_task.cancel()
            try:
                await session.listener_task
            except (asyncio.CancelledError, Exception):
                pass

        if session.context_manager:
            try:
                await session.context_manager.__aexit__(None, None, None)
            except Exception:
                pass
        session.context_manager = None
        session.socket = None

    def _on_message(self, session_id: str, message) -> None:
        if not isinstance(message, ListenV1ResultsEvent):
            return
        try:
            transcript = message.channel.alternatives[0].transcript
        except (IndexError, AttributeError):
            return
        if not transcript:
            return
        self._broadcaster.publish(TranscriptFragment(
            session_id=session_id,
            text=transcript,
            is_final=bool(message.is_final),
        ))

    async def _on_error(self, error) -> None:
        logger.error("Deepgram WebSocket error: %s", error)
