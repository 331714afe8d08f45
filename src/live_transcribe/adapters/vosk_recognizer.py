import asyncio
import json
import logging
from pathlib import Path

import janus
import sounddevice as sd
from vosk import KaldiRecognizer, Model, SetLogLevel

from live_transcribe.domain.errors import RecognitionError, RecognizerUnavailableError
from live_transcribe.ports.recognizer import EndCallback, ErrorCallback, ResultCallback

logger = logging.getLogger(__name__)

SetLogLevel(-1)


class VoskRecognizer:
    """Offline streaming recognizer reading the microphone directly.

    ``AcceptWaveform`` returning true marks a natural endpoint and yields a
    final result; otherwise a changed partial is reported as interim.
    Callbacks run on the event loop.
    """

    def __init__(
        self,
        model_path: str = "",
        model_paths: dict[str, str] | None = None,
        allow_download: bool = False,
        device: str | int | None = None,
        sample_rate: int = 16000,
        block_duration_ms: int = 100,
        stop_timeout: float = 5.0,
    ) -> None:
        self._model_path = model_path
        self._model_paths = model_paths or {}
        self._allow_download = allow_download
        self._device = device
        self._sample_rate = sample_rate
        self._block_size = int(sample_rate * block_duration_ms / 1000)
        self._stop_timeout = stop_timeout
        self._models: dict[str, Model] = {}

        self._stream: sd.RawInputStream | None = None
        self._queue: janus.Queue[bytes] | None = None
        self._recognizer: KaldiRecognizer | None = None
        self._task: asyncio.Task | None = None
        self._on_result: ResultCallback | None = None
        self._stopping = False

    async def start(
        self,
        *,
        language: str,
        continuous: bool,
        interim_results: bool,
        on_result: ResultCallback,
        on_error: ErrorCallback,
        on_end: EndCallback,
    ) -> None:
        if self._stream:
            self._stream.close()
            self._stream = None

        model = await asyncio.to_thread(self._load_model, language)
        recognizer = KaldiRecognizer(model, self._sample_rate)
        recognizer.SetMaxAlternatives(0)
        recognizer.SetWords(False)

        loop = asyncio.get_running_loop()
        queue: janus.Queue[bytes] = janus.Queue(maxsize=100)

        def audio_callback(indata, frames: int, time_info, status) -> None:
            if status:
                loop.call_soon_threadsafe(on_error, str(status))
            try:
                queue.sync_q.put_nowait(bytes(indata))
            except janus.SyncQueueFull:
                pass

        def finished_callback() -> None:
            loop.call_soon_threadsafe(queue.close)

        try:
            stream = sd.RawInputStream(
                device=self._device,
                samplerate=self._sample_rate,
                blocksize=self._block_size,
                channels=1,
                dtype="int16",
                callback=audio_callback,
                finished_callback=finished_callback,
            )
            stream.start()
        except sd.PortAudioError as exc:
            queue.close()
            raise RecognitionError(f"Cannot open microphone: {exc}") from exc

        self._stopping = False
        self._stream = stream
        self._queue = queue
        self._recognizer = recognizer
        self._on_result = on_result
        self._task = asyncio.create_task(
            self._recognize(recognizer, queue, continuous, interim_results, on_result, on_error, on_end)
        )
        logger.info("Vosk recognition started (language=%s)", language)

    async def stop(self) -> None:
        self._stopping = True
        close_error: sd.PortAudioError | None = None
        stream, self._stream = self._stream, None
        if stream:
            try:
                stream.stop()
                stream.close()
            except sd.PortAudioError as exc:
                close_error = exc
        queue, self._queue = self._queue, None
        if queue:
            queue.close()

        drained = True
        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=self._stop_timeout)
            except asyncio.TimeoutError:
                # A worker thread may still be inside AcceptWaveform.
                logger.warning("Vosk recognition did not finish within %.1fs", self._stop_timeout)
                drained = False
            self._task = None

        recognizer, self._recognizer = self._recognizer, None
        if drained and recognizer is not None and self._on_result is not None:
            text = json.loads(recognizer.FinalResult()).get("text", "").strip()
            if text:
                self._on_result(text, True)
        self._on_result = None
        logger.info("Vosk recognition stopped")
        if close_error is not None:
            raise RecognitionError(f"Failed to close microphone: {close_error}") from close_error

    async def _recognize(
        self,
        recognizer: KaldiRecognizer,
        queue: janus.Queue[bytes],
        continuous: bool,
        interim_results: bool,
        on_result: ResultCallback,
        on_error: ErrorCallback,
        on_end: EndCallback,
    ) -> None:
        last_partial = ""
        while True:
            try:
                data = await queue.async_q.get()
            except janus.AsyncQueueShutDown:
                break

            try:
                accepted = await asyncio.to_thread(recognizer.AcceptWaveform, data)
                if accepted:
                    text = json.loads(recognizer.Result()).get("text", "").strip()
                    last_partial = ""
                    if text:
                        on_result(text, True)
                        if not continuous:
                            break
                elif interim_results:
                    partial = json.loads(recognizer.PartialResult()).get("partial", "").strip()
                    if partial and partial != last_partial:
                        on_result(partial, False)
                        last_partial = partial
            except Exception as exc:
                logger.error("Vosk recognition error: %s", exc)
                on_error(str(exc))

        if not self._stopping:
            on_end()

    def _load_model(self, language: str) -> Model:
        key = self._model_paths.get(language) or self._model_path
        cache_key = key or f"lang:{language}"
        if cache_key in self._models:
            return self._models[cache_key]

        if key:
            if not Path(key).is_dir():
                raise RecognizerUnavailableError(f"Vosk model not found at {key}")
            logger.info("Loading Vosk model from %s...", key)
            try:
                model = Model(key)
            except Exception as exc:
                raise RecognizerUnavailableError(f"Failed to load Vosk model: {exc}") from exc
        elif self._allow_download:
            logger.info("Loading Vosk model for language '%s'...", language)
            try:
                model = Model(lang=language)
            except Exception as exc:
                raise RecognizerUnavailableError(f"No Vosk model for '{language}': {exc}") from exc
        else:
            raise RecognizerUnavailableError(f"No Vosk model configured for '{language}'")

        self._models[cache_key] = model
        return model
