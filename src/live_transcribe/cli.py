import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path

from live_transcribe.config import SUPPORTED_LANGUAGES, LiveTranscribeConfig
from live_transcribe.domain.errors import TranscriptionError
from live_transcribe.domain.session import SessionManager
from live_transcribe.log_format import ColoredFormatter
from live_transcribe.ports.control import ControlCommand

ENV_FILE_PATH = Path.home() / ".config" / "live-transcribe" / "env"


def _load_env_file(path: Path = ENV_FILE_PATH) -> None:
    if not path.exists():
        return
    with open(path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip().strip("'\"")
            if key not in os.environ:
                os.environ[key] = value


def _configure_logging(verbose: bool, log_file: str) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    console = logging.StreamHandler()
    console.setFormatter(ColoredFormatter(datefmt="%H:%M:%S", use_color=sys.stderr.isatty()))
    handlers: list[logging.Handler] = [console]
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(ColoredFormatter(datefmt="%Y-%m-%d %H:%M:%S", use_color=False))
        handlers.append(file_handler)
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    if verbose:
        logging.getLogger("websockets").setLevel(logging.INFO)
        logging.getLogger("httpcore").setLevel(logging.INFO)
        logging.getLogger("httpx").setLevel(logging.INFO)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Live speech-to-text transcription")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    parser.add_argument("--autostart", action="store_true", help="Start recording when the daemon starts")
    parser.add_argument(
        "--language", "-l",
        choices=sorted(SUPPORTED_LANGUAGES),
        help="Recognition language (default from config)",
    )

    subparsers = parser.add_subparsers(dest="command")

    start_parser = subparsers.add_parser("start", help="Start a recording session")
    start_parser.add_argument(
        "--language", "-l",
        dest="start_language",
        choices=sorted(SUPPORTED_LANGUAGES),
        help="Recognition language",
    )

    subparsers.add_parser("stop", help="Stop the recording session")
    subparsers.add_parser("clear", help="Clear the transcript")
    subparsers.add_parser("status", help="Show session state and transcript")

    return parser


def main() -> None:
    _load_env_file()
    args = build_parser().parse_args()

    config = LiveTranscribeConfig()
    if args.language:
        config.language = args.language

    _configure_logging(args.verbose, config.log_file)

    if args.command in ("start", "stop", "clear", "status"):
        asyncio.run(_run_client_command(args, config))
    else:
        asyncio.run(_run_daemon(config, autostart=args.autostart))


async def _run_client_command(args: argparse.Namespace, config: LiveTranscribeConfig) -> None:
    from live_transcribe.adapters.unix_control import UnixSocketControlClient

    client = UnixSocketControlClient(socket_path=config.socket_path)

    payload = None
    if args.command == "start":
        payload = {"language": args.start_language or config.language}

    try:
        result = await client.send_command(args.command, payload)
    except (ConnectionError, FileNotFoundError):
        print("Live transcription daemon is not running", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(result, indent=2, ensure_ascii=False))
    if result.get("status") != "ok":
        sys.exit(1)


def describe_session(manager: SessionManager, status: str = "ok") -> dict:
    state = manager.get_state()
    mode = manager.mode or manager.available_mode
    return {
        "status": status,
        "phase": manager.phase.name.lower(),
        "mode": mode.value if mode else None,
        "session_id": manager.session_id,
        "committed": state.committed,
        "interim": state.interim,
        "error": manager.error,
    }


def make_control_handler(manager: SessionManager, default_language: str):
    async def handle(command: ControlCommand) -> dict:
        try:
            if command.action == "start":
                language = (command.payload or {}).get("language", default_language)
                await manager.start(language)
            elif command.action == "stop":
                await manager.stop()
            elif command.action == "clear":
                manager.clear()
            elif command.action != "status":
                return {"status": "error", "error": f"Unknown command: {command.action}"}
        except TranscriptionError as exc:
            response = describe_session(manager, status="error")
            response["error"] = str(exc)
            return response
        return describe_session(manager)

    return handle


async def _run_daemon(config: LiveTranscribeConfig, autostart: bool = False) -> None:
    from live_transcribe.adapters.unix_control import UnixSocketControlServer
    from live_transcribe.factory import create_session_manager
    from live_transcribe.health import has_critical_failures, run_startup_checks

    results = run_startup_checks(config)
    if has_critical_failures(results):
        logging.error("Critical health check failures, aborting startup")
        sys.exit(1)

    manager = create_session_manager(config)
    control = UnixSocketControlServer(
        make_control_handler(manager, config.language),
        socket_path=config.socket_path,
    )

    shutdown_event = asyncio.Event()
    shutdown_triggered = False

    def handle_signal() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            logging.warning("Forced exit")
            sys.exit(1)
        shutdown_triggered = True
        logging.info("Shutting down...")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    await control.start()

    try:
        if autostart:
            try:
                await manager.start(config.language)
            except TranscriptionError as exc:
                logging.error("%s", exc)
        await shutdown_event.wait()
    finally:
        try:
            await asyncio.wait_for(manager.shutdown(), timeout=5.0)
        except asyncio.TimeoutError:
            logging.warning("Session teardown timed out")
        await control.stop()
