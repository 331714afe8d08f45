import asyncio
import logging
import os
from collections.abc import AsyncIterator

import janus
import numpy as np
import sounddevice as sd

from live_transcribe.domain.errors import DeviceUnavailableError, PermissionDeniedError
from live_transcribe.ports.audio import CHUNK_DURATION_MS, CaptureConstraints

logger = logging.getLogger(__name__)


class SounddeviceCaptureHandle:
    def __init__(self, stream: sd.InputStream, queue: janus.Queue[bytes]) -> None:
        self._stream: sd.InputStream | None = stream
        self._queue: janus.Queue[bytes] | None = queue
        self._iterated = False

    @property
    def released(self) -> bool:
        return self._stream is None

    def chunks(self) -> AsyncIterator[bytes]:
        if self._iterated:
            raise RuntimeError("Capture chunks can only be consumed once")
        self._iterated = True
        return self._read_chunks()

    async def _read_chunks(self) -> AsyncIterator[bytes]:
        queue = self._queue
        if queue is None:
            return
        while True:
            try:
                chunk = await asyncio.wait_for(queue.async_q.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except janus.AsyncQueueShutDown:
                break
            yield chunk

    async def release(self) -> None:
        stream, self._stream = self._stream, None
        queue, self._queue = self._queue, None
        try:
            if stream:
                try:
                    stream.stop()
                finally:
                    stream.close()
                logger.info("Audio capture released")
        except sd.PortAudioError as exc:
            raise DeviceUnavailableError(f"Failed to close audio device: {exc}") from exc
        finally:
            if queue:
                queue.close()


class SounddeviceCapture:
    def __init__(
        self,
        device: str | int | None = None,
        echo_cancel_device: str = "echo-cancel-source",
        chunk_duration_ms: int = CHUNK_DURATION_MS,
        gain: float = 1.0,
        queue_size: int = 40,
    ) -> None:
        self._device = device
        self._echo_cancel_device = echo_cancel_device
        self._chunk_duration_ms = chunk_duration_ms
        self._gain = gain
        self._queue_size = queue_size

    async def acquire(self, constraints: CaptureConstraints) -> SounddeviceCaptureHandle:
        queue: janus.Queue[bytes] = janus.Queue(maxsize=self._queue_size)
        frame_size = int(constraints.sample_rate * self._chunk_duration_ms / 1000)
        gain = self._gain

        def audio_callback(indata: np.ndarray, frames: int, time_info, status) -> None:
            if status:
                logger.warning("Audio capture status: %s", status)
            samples = np.clip(indata[:, 0] * gain, -1.0, 1.0)
            pcm_bytes = (samples * 32767).astype(np.int16).tobytes()
            try:
                queue.sync_q.put_nowait(pcm_bytes)
            except janus.SyncQueueFull:
                logger.warning("Capture queue full, dropping chunk")

        if constraints.noise_suppression:
            logger.debug("Noise suppression is left to the capture source")

        device = self._resolve_device(constraints)
        try:
            stream = sd.InputStream(
                device=device,
                samplerate=constraints.sample_rate,
                channels=constraints.channel_count,
                dtype="float32",
                blocksize=frame_size,
                callback=audio_callback,
            )
            stream.start()
        except PermissionError as exc:
            queue.close()
            raise PermissionDeniedError(f"Microphone permission denied: {exc}") from exc
        except sd.PortAudioError as exc:
            queue.close()
            if "permission" in str(exc).lower():
                raise PermissionDeniedError(f"Microphone permission denied: {exc}") from exc
            raise DeviceUnavailableError(f"Audio device unavailable: {exc}") from exc

        logger.info(
            "Audio capture started (device=%s, rate=%d, chunk=%dms)",
            device, constraints.sample_rate, self._chunk_duration_ms,
        )
        return SounddeviceCaptureHandle(stream, queue)

    def _resolve_device(self, constraints: CaptureConstraints) -> str | int | None:
        target = self._device
        if target is None and constraints.echo_cancellation:
            target = self._echo_cancel_device
        if not target:
            return None
        if isinstance(target, int):
            return target
        try:
            return int(target)
        except ValueError:
            pass
        try:
            devices = sd.query_devices()
        except sd.PortAudioError as exc:
            raise DeviceUnavailableError(f"Audio device unavailable: {exc}") from exc
        for i, dev in enumerate(devices):
            if target.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
                logger.info("Resolved device '%s' -> %d (%s)", target, i, dev["name"])
                return i
        os.environ["PIPEWIRE_NODE"] = target
        logger.info("Device '%s' not in PortAudio, set PIPEWIRE_NODE for PipeWire routing", target)
        return None
