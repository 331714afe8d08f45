import logging
from collections.abc import Callable

from live_transcribe.config import LiveTranscribeConfig
from live_transcribe.domain.backends import LocalRecognitionBackend, RemoteStreamingBackend
from live_transcribe.domain.events import BackendMode, TranscriptState
from live_transcribe.domain.session import SessionManager
from live_transcribe.health import probe_backend_mode
from live_transcribe.ports.audio import AudioCapturePort
from live_transcribe.ports.transcription import TranscriptionBackend

logger = logging.getLogger(__name__)


def create_capture(config: LiveTranscribeConfig) -> AudioCapturePort:
    from live_transcribe.adapters.sounddevice_capture import SounddeviceCapture

    return SounddeviceCapture(
        device=None,
        echo_cancel_device=config.capture_device,
        chunk_duration_ms=config.chunk_duration_ms,
        gain=config.capture_gain,
        queue_size=config.capture_queue_size,
    )


def create_backend(
    config: LiveTranscribeConfig, mode: BackendMode | None
) -> TranscriptionBackend | None:
    if mode == BackendMode.REMOTE:
        from live_transcribe.adapters.deepgram_proxy import DeepgramTranscriptionProxy

        proxy = DeepgramTranscriptionProxy(
            api_key=config.deepgram_key(),
            model=config.deepgram_model,
            sample_rate=config.sample_rate,
            queue_size=config.proxy_queue_size,
        )
        return RemoteStreamingBackend(proxy)

    if mode == BackendMode.LOCAL:
        from live_transcribe.adapters.vosk_recognizer import VoskRecognizer

        recognizer = VoskRecognizer(
            model_path=config.vosk_model_path,
            model_paths=config.vosk_model_paths,
            allow_download=config.vosk_allow_download,
            sample_rate=config.sample_rate,
        )
        return LocalRecognitionBackend(recognizer, max_restarts=config.local_max_restarts)

    return None


def create_session_manager(
    config: LiveTranscribeConfig,
    on_update: Callable[[TranscriptState], None] | None = None,
) -> SessionManager:
    mode = probe_backend_mode(config)
    if mode is None:
        logger.warning("No transcription backend available, recording will fail")
    else:
        logger.info("Selected %s transcription backend", mode.value)

    return SessionManager(
        capture=create_capture(config),
        backend=create_backend(config, mode),
        on_update=on_update,
    )
