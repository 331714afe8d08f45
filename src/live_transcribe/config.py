import os
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_LANGUAGES: dict[str, str] = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "ja": "Japanese",
    "ko": "Korean",
    "zh": "Chinese",
    "hi": "Hindi",
}


class LiveTranscribeConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LIVE_TRANSCRIBE_")

    backend: Literal["auto", "remote", "local"] = "auto"
    language: str = "en"

    deepgram_api_key: str = ""
    deepgram_api_key_file: str = ""
    deepgram_model: str = "nova-2"
    proxy_queue_size: int = 100

    vosk_model_path: str = ""
    vosk_model_paths: dict[str, str] = {}
    vosk_allow_download: bool = False
    local_max_restarts: int = 3

    capture_device: str = "echo-cancel-source"
    capture_gain: float = 1.0
    sample_rate: int = 16000
    chunk_duration_ms: int = 250
    capture_queue_size: int = 40

    socket_path: str = "/tmp/live-transcribe.sock"
    log_file: str = ""

    def read_secret(self, path: str) -> str:
        if not path:
            return ""
        try:
            with open(path) as f:
                return f.read().strip()
        except FileNotFoundError:
            return ""

    def deepgram_key(self) -> str:
        if self.deepgram_api_key:
            return self.deepgram_api_key
        key = self.read_secret(self.deepgram_api_key_file)
        if key:
            return key
        return os.environ.get("DEEPGRAM_API_KEY", "")
