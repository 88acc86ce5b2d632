from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, Optional

import sounddevice as sd


class MicrophoneListener:
    """Pushes fixed-size 16-bit mono PCM frames from an input device onto the loop.

    The PortAudio callback thread never calls ``on_frame`` directly; frames are
    handed over with ``call_soon_threadsafe`` so all consumers run on the loop.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        on_frame: Callable[[bytes], None],
        sample_rate: int = 16000,
        frame_ms: int = 100,
        channels: int = 1,
        preferred_device: Optional[str] = None,
    ) -> None:
        self._loop = loop
        self._on_frame = on_frame
        self._sample_rate = sample_rate
        self._frame_samples = max(1, int(sample_rate * frame_ms / 1000))
        self._channels = channels
        self._preferred_device = preferred_device
        self._stream: Optional[sd.RawInputStream] = None
        self._lock = threading.Lock()
        self._running = False
        self.frames_delivered = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def frame_samples(self) -> int:
        return self._frame_samples

    @staticmethod
    def list_input_devices() -> list[str]:
        devices = sd.query_devices()
        names: list[str] = []
        for d in devices:
            if int(d.get("max_input_channels", 0)) > 0:
                names.append(str(d.get("name", "Unknown input device")))
        return names

    def start(self) -> None:
        if self._running:
            return
        device = self._resolve_input_device()
        self._stream = sd.RawInputStream(
            samplerate=self._sample_rate,
            channels=self._channels,
            dtype="int16",
            callback=self._audio_callback,
            device=device,
            blocksize=self._frame_samples,
        )
        try:
            self._stream.start()
        except Exception:
            # A stream that never started must not leave the listener looking active.
            self._stream.close()
            self._stream = None
            raise
        with self._lock:
            self._running = True
        logging.info("microphone_started device=%s rate=%d frame_samples=%d", device or "default", self._sample_rate, self._frame_samples)

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        logging.info("microphone_stopped frames=%d", self.frames_delivered)

    def _audio_callback(self, indata, frames, time_info, status) -> None:
        del frames, time_info
        if status:
            # Overflow/underflow notices are not fatal; keep capturing.
            logging.debug("microphone_status %s", status)
        with self._lock:
            if not self._running:
                return
        self._loop.call_soon_threadsafe(self._publish_frame, bytes(indata))

    def _publish_frame(self, pcm: bytes) -> None:
        if not self._running:
            return
        self.frames_delivered += 1
        self._on_frame(pcm)

    def _resolve_input_device(self) -> Optional[str]:
        if not self._preferred_device:
            return None
        lowered_target = self._preferred_device.lower()
        for name in self.list_input_devices():
            if lowered_target in name.lower():
                return name
        raise RuntimeError(f"AUDIO_INPUT_DEVICE '{self._preferred_device}' was not found among input devices.")
