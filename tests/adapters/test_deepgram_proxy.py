import asyncio
from types import SimpleNamespace

import pytest

pytest.importorskip("deepgram")

from live_transcribe.adapters import deepgram_proxy
from live_transcribe.adapters.deepgram_proxy import DeepgramTranscriptionProxy
from live_transcribe.domain.errors import ProxyCommandError

from conftest import settle


class FakeSocket:
    def __init__(self) -> None:
        self.handlers = {}
        self.sent: list[bytes] = []
        self.send_gate: asyncio.Event | None = None
        self._closed = asyncio.Event()

    def on(self, event, handler) -> None:
        self.handlers[event] = handler

    async def start_listening(self) -> None:
        await self._closed.wait()

    async def _send(self, data: bytes) -> None:
        if self.send_gate is not None:
            await self.send_gate.wait()
        self.sent.append(data)


class FakeConnection:
    def __init__(self, socket: FakeSocket, error: Exception | None = None) -> None:
        self.socket = socket
        self.error = error
        self.exited = False

    async def __aenter__(self) -> FakeSocket:
        if self.error is not None:
            raise self.error
        return self.socket

    async def __aexit__(self, *exc_info) -> None:
        self.exited = True


class FakeDeepgramClient:
    instances: list["FakeDeepgramClient"] = []
    connect_error: Exception | None = None

    def __init__(self, api_key: str) -> None:
        self.api_key = api_key
        self.connect_kwargs: dict | None = None
        self.socket = FakeSocket()
        self.connection = FakeConnection(self.socket, error=FakeDeepgramClient.connect_error)
        self.listen = SimpleNamespace(v1=SimpleNamespace(connect=self._connect))
        FakeDeepgramClient.instances.append(self)

    def _connect(self, **kwargs) -> FakeConnection:
        self.connect_kwargs = kwargs
        return self.connection


class FakeResultsEvent:
    def __init__(self, transcript: str, is_final: bool) -> None:
        self.channel = SimpleNamespace(alternatives=[SimpleNamespace(transcript=transcript)])
        self.is_final = is_final


@pytest.fixture(autouse=True)
def fake_deepgram(monkeypatch):
    FakeDeepgramClient.instances = []
    FakeDeepgramClient.connect_error = None
    monkeypatch.setattr(deepgram_proxy, "AsyncDeepgramClient", FakeDeepgramClient)
    monkeypatch.setattr(deepgram_proxy, "ListenV1ResultsEvent", FakeResultsEvent)
    return FakeDeepgramClient


class TestSessionCommands:
    @pytest.mark.asyncio
    async def test_start_opens_socket_with_language(self):
        proxy = DeepgramTranscriptionProxy(api_key="key", sample_rate=16000)
        await proxy.start_live_transcription("s1", "es")

        client = FakeDeepgramClient.instances[0]
        assert client.api_key == "key"
        assert client.connect_kwargs["language"] == "es"
        assert client.connect_kwargs["model"] == "nova-2"
        assert client.connect_kwargs["interim_results"] == "true"
        assert client.connect_kwargs["sample_rate"] == "16000"
        assert proxy.active_sessions == ["s1"]
        await proxy.close()

    @pytest.mark.asyncio
    async def test_duplicate_session_rejected(self):
        proxy = DeepgramTranscriptionProxy(api_key="key")
        await proxy.start_live_transcription("s1", "en")
        with pytest.raises(ProxyCommandError, match="Session already active"):
            await proxy.start_live_transcription("s1", "en")
        await proxy.close()

    @pytest.mark.asyncio
    async def test_connection_failure(self, fake_deepgram):
        fake_deepgram.connect_error = OSError("network down")
        proxy = DeepgramTranscriptionProxy(api_key="key")
        with pytest.raises(ProxyCommandError, match="WebSocket connection failed"):
            await proxy.start_live_transcription("s1", "en")
        assert proxy.active_sessions == []

    @pytest.mark.asyncio
    async def test_client_construction_failure(self, monkeypatch):
        def broken_client(api_key):
            raise ValueError("bad api key")

        monkeypatch.setattr(deepgram_proxy, "AsyncDeepgramClient", broken_client)
        proxy = DeepgramTranscriptionProxy(api_key="key")
        with pytest.raises(ProxyCommandError, match="WebSocket connection failed: bad api key"):
            await proxy.start_live_transcription("s1", "en")
        assert proxy.active_sessions == []

    @pytest.mark.asyncio
    async def test_send_to_unknown_session(self):
        proxy = DeepgramTranscriptionProxy(api_key="key")
        with pytest.raises(ProxyCommandError, match="Invalid session"):
            await proxy.send_audio_chunk("missing", b"\x00")

    @pytest.mark.asyncio
    async def test_stop_unknown_session(self):
        proxy = DeepgramTranscriptionProxy(api_key="key")
        with pytest.raises(ProxyCommandError, match="Session not found"):
            await proxy.stop_live_transcription("missing")

    @pytest.mark.asyncio
    async def test_chunks_forwarded_to_socket(self):
        proxy = DeepgramTranscriptionProxy(api_key="key")
        await proxy.start_live_transcription("s1", "en")
        await proxy.send_audio_chunk("s1", b"\x01")
        await proxy.send_audio_chunk("s1", b"\x02")
        await settle()

        assert FakeDeepgramClient.instances[0].socket.sent == [b"\x01", b"\x02"]
        await proxy.close()

    @pytest.mark.asyncio
    async def test_full_queue_fails_send(self):
        proxy = DeepgramTranscriptionProxy(api_key="key", queue_size=1)
        await proxy.start_live_transcription("s1", "en")
        socket = FakeDeepgramClient.instances[0].socket
        socket.send_gate = asyncio.Event()

        await proxy.send_audio_chunk("s1", b"\x01")
        await settle()
        await proxy.send_audio_chunk("s1", b"\x02")
        with pytest.raises(ProxyCommandError, match="Send failed"):
            await proxy.send_audio_chunk("s1", b"\x03")

        socket.send_gate.set()
        await proxy.close()

    @pytest.mark.asyncio
    async def test_stop_closes_socket(self):
        proxy = DeepgramTranscriptionProxy(api_key="key")
        await proxy.start_live_transcription("s1", "en")
        await proxy.stop_live_transcription("s1")

        assert FakeDeepgramClient.instances[0].connection.exited
        assert proxy.active_sessions == []
        with pytest.raises(ProxyCommandError, match="Invalid session"):
            await proxy.send_audio_chunk("s1", b"\x00")


class TestResults:
    @pytest.mark.asyncio
    async def test_results_published_with_session_id(self):
        proxy = DeepgramTranscriptionProxy(api_key="key")
        subscription = proxy.subscribe()
        await proxy.start_live_transcription("s1", "en")
        on_message = FakeDeepgramClient.instances[0].socket.handlers[deepgram_proxy.EventType.MESSAGE]

        await on_message(FakeResultsEvent("hel", False))
        await on_message(FakeResultsEvent("", False))
        await on_message(FakeResultsEvent("hello", True))
        await on_message(SimpleNamespace(type="Metadata"))
        await proxy.close()

        fragments = [f async for f in subscription]
        assert [(f.session_id, f.text, f.is_final) for f in fragments] == [
            ("s1", "hel", False),
            ("s1", "hello", True),
        ]

    @pytest.mark.asyncio
    async def test_malformed_result_ignored(self):
        proxy = DeepgramTranscriptionProxy(api_key="key")
        subscription = proxy.subscribe()
        message = FakeResultsEvent("x", True)
        message.channel = SimpleNamespace(alternatives=[])

        proxy._on_message("s1", message)
        await proxy.close()

        assert [f async for f in subscription] == []
