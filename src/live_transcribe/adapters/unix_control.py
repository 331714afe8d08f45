import asyncio
import json
import logging
import os
from pathlib import Path

from live_transcribe.ports.control import ControlCommand, ControlHandler

logger = logging.getLogger(__name__)

DEFAULT_SOCKET_PATH = "/tmp/live-transcribe.sock"
MAX_REQUEST_BYTES = 64 * 1024


def _encode(message: dict) -> bytes:
    return (json.dumps(message, ensure_ascii=False) + "\n").encode()


class UnixSocketControlServer:
    """One JSON request line in, one JSON response line out, per connection.

    Each request is turned into a ``ControlCommand`` and awaited on the
    handler before the reply is written, so replies carry the state after
    the command took effect.
    """

    def __init__(
        self,
        handler: ControlHandler,
        socket_path: str = DEFAULT_SOCKET_PATH,
        read_timeout: float = 5.0,
    ) -> None:
        self._handler = handler
        self._socket_path = Path(socket_path)
        self._read_timeout = read_timeout
        self._server: asyncio.Server | None = None

    async def start(self) -> None:
        self._socket_path.unlink(missing_ok=True)
        self._server = await asyncio.start_unix_server(
            self._serve,
            path=str(self._socket_path),
            limit=MAX_REQUEST_BYTES,
        )
        os.chmod(self._socket_path, 0o600)
        logger.info("Control socket listening at %s", self._socket_path)

    async def stop(self) -> None:
        server, self._server = self._server, None
        if server:
            server.close()
            await server.wait_closed()
        self._socket_path.unlink(missing_ok=True)

    async def _serve(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            line = await asyncio.wait_for(reader.readline(), timeout=self._read_timeout)
            if line:
                writer.write(_encode(await self._dispatch(line)))
                await writer.drain()
        except asyncio.TimeoutError:
            logger.warning("Control client sent nothing within %.1fs", self._read_timeout)
        except (ValueError, ConnectionError) as exc:
            logger.warning("Control connection dropped: %s", exc)
        finally:
            writer.close()
            await writer.wait_closed()

    async def _dispatch(self, line: bytes) -> dict:
        try:
            request = json.loads(line)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON from control client")
            return {"status": "error", "error": "Invalid request"}
        if not isinstance(request, dict) or not isinstance(request.get("action"), str):
            return {"status": "error", "error": "Invalid request"}

        command = ControlCommand(action=request["action"], payload=request.get("payload"))
        logger.debug("Control command: %s", command.action)
        try:
            return await self._handler(command)
        except Exception as exc:
            logger.exception("Control command %s failed", command.action)
            return {"status": "error", "error": str(exc)}


class UnixSocketControlClient:
    def __init__(self, socket_path: str = DEFAULT_SOCKET_PATH, timeout: float = 10.0) -> None:
        self._socket_path = socket_path
        self._timeout = timeout

    async def send_command(self, action: str, payload: dict | None = None) -> dict:
        request: dict = {"action": action}
        if payload:
            request["payload"] = payload

        reader, writer = await asyncio.open_unix_connection(self._socket_path)
        try:
            writer.write(_encode(request))
            await writer.drain()
            line = await asyncio.wait_for(reader.readline(), timeout=self._timeout)
        finally:
            writer.close()
            await writer.wait_closed()

        if not line:
            raise ConnectionError("Daemon closed the connection without replying")
        return json.loads(line)
