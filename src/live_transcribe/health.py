import importlib.util
import logging
from dataclasses import dataclass
from pathlib import Path

from live_transcribe.config import LiveTranscribeConfig
from live_transcribe.domain.events import BackendMode

logger = logging.getLogger(__name__)


@dataclass
class HealthCheckResult:
    name: str
    passed: bool
    detail: str


def probe_backend_mode(config: LiveTranscribeConfig) -> BackendMode | None:
    remote = _remote_available(config)
    local = _local_available(config)

    if config.backend == "remote":
        return BackendMode.REMOTE if remote else None
    if config.backend == "local":
        return BackendMode.LOCAL if local else None
    if remote:
        return BackendMode.REMOTE
    if local:
        return BackendMode.LOCAL
    return None


def run_startup_checks(config: LiveTranscribeConfig) -> list[HealthCheckResult]:
    results = [
        _check_audio_device(config),
        _check_deepgram_key(config),
        _check_vosk_model(config),
        _check_backend(config),
    ]

    passed = sum(1 for r in results if r.passed)

    logger.info("Health check: %d/%d passed", passed, len(results))
    for result in results:
        level = logging.INFO if result.passed else logging.WARNING
        symbol = "OK" if result.passed else "FAIL"
        logger.log(level, "  [%s] %s: %s", symbol, result.name, result.detail)

    return results


def has_critical_failures(results: list[HealthCheckResult]) -> bool:
    critical_checks = {"audio_device", "backend"}
    return any(not r.passed and r.name in critical_checks for r in results)


def _remote_available(config: LiveTranscribeConfig) -> bool:
    return bool(config.deepgram_key())


def _local_available(config: LiveTranscribeConfig) -> bool:
    if importlib.util.find_spec("vosk") is None:
        return False
    if config.vosk_allow_download:
        return True
    paths = [config.vosk_model_path, *config.vosk_model_paths.values()]
    return any(path and Path(path).is_dir() for path in paths)


def _check_audio_device(config: LiveTranscribeConfig) -> HealthCheckResult:
    name = "audio_device"
    try:
        import sounddevice as sd

        for dev in sd.query_devices():
            if config.capture_device.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
                return HealthCheckResult(name=name, passed=True, detail=f"Device '{config.capture_device}' found")

        try:
            default = sd.query_devices(kind="input")
        except sd.PortAudioError:
            return HealthCheckResult(name=name, passed=False, detail="No input devices available")
        return HealthCheckResult(
            name=name,
            passed=True,
            detail=f"'{config.capture_device}' not in PortAudio (will use PIPEWIRE_NODE), default input: {default['name']}",
        )
    except Exception as exc:
        return HealthCheckResult(name=name, passed=False, detail=str(exc))


def _check_deepgram_key(config: LiveTranscribeConfig) -> HealthCheckResult:
    name = "deepgram_key"
    if config.deepgram_key():
        return HealthCheckResult(name=name, passed=True, detail="Deepgram API key loaded")
    return HealthCheckResult(
        name=name,
        passed=False,
        detail=f"Missing ({config.deepgram_api_key_file or 'not configured'})",
    )


def _check_vosk_model(config: LiveTranscribeConfig) -> HealthCheckResult:
    name = "vosk_model"
    if importlib.util.find_spec("vosk") is None:
        return HealthCheckResult(name=name, passed=False, detail="vosk is not installed")
    if _local_available(config):
        detail = "Model download allowed" if config.vosk_allow_download else "Model directory found"
        return HealthCheckResult(name=name, passed=True, detail=detail)
    return HealthCheckResult(
        name=name,
        passed=False,
        detail=f"No model at '{config.vosk_model_path or 'not configured'}'",
    )


def _check_backend(config: LiveTranscribeConfig) -> HealthCheckResult:
    name = "backend"
    mode = probe_backend_mode(config)
    if mode is None:
        return HealthCheckResult(
            name=name,
            passed=False,
            detail=f"No transcription backend available (requested={config.backend})",
        )
    return HealthCheckResult(name=name, passed=True, detail=f"Using {mode.value} backend")
