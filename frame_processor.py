from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Optional

import numpy as np

from protocol import SERVICE_SAMPLE_RATE

PCM16_MIN = -32768
PCM16_MAX = 32767
PCM16_FULL_SCALE = 32768.0


@dataclass
class ProcessedFrame:
    audio_b64: str
    loudness: Optional[float] = None
    sample_count: int = 0


def decode_pcm16(pcm: bytes) -> np.ndarray:
    usable = len(pcm) - (len(pcm) % 2)
    return np.frombuffer(pcm[:usable], dtype="<i2").astype(np.int16)


def apply_gain(samples: np.ndarray, gain: float) -> np.ndarray:
    if gain == 1.0:
        return np.asarray(samples, dtype=np.int16)
    scaled = np.rint(np.asarray(samples, dtype=np.float32) * gain)
    # Clip before the cast so loud input saturates instead of wrapping around.
    return np.clip(scaled, PCM16_MIN, PCM16_MAX).astype(np.int16)


def rms_level(samples: np.ndarray, max_samples: int = 2048) -> float:
    window = np.asarray(samples[:max_samples], dtype=np.float64)
    if window.shape[0] == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(window * window)))
    return min(1.0, rms / PCM16_FULL_SCALE)


def resample_pcm16(samples: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    mono = np.asarray(samples, dtype=np.float32).reshape(-1)
    if source_rate == target_rate or mono.shape[0] == 0:
        return np.asarray(samples, dtype=np.int16).reshape(-1)
    target_len = max(1, int(round(mono.shape[0] * target_rate / source_rate)))
    src_x = np.linspace(0.0, 1.0, num=mono.shape[0], endpoint=False)
    dst_x = np.linspace(0.0, 1.0, num=target_len, endpoint=False)
    resampled = np.interp(dst_x, src_x, mono)
    return np.clip(np.rint(resampled), PCM16_MIN, PCM16_MAX).astype(np.int16)


class FrameProcessor:
    def __init__(
        self,
        gain: float = 1.5,
        source_rate: int = 16000,
        target_rate: int = SERVICE_SAMPLE_RATE,
        meter_every: int = 4,
        meter_max_samples: int = 2048,
    ) -> None:
        self._gain = gain
        self._source_rate = source_rate
        self._target_rate = target_rate
        self._meter_every = max(1, meter_every)
        self._meter_max_samples = meter_max_samples
        self._frames_seen = 0

    @property
    def frames_seen(self) -> int:
        return self._frames_seen

    def reset(self) -> None:
        self._frames_seen = 0

    def process(self, pcm: bytes) -> ProcessedFrame:
        samples = apply_gain(decode_pcm16(pcm), self._gain)
        loudness = None
        if self._frames_seen % self._meter_every == 0:
            loudness = rms_level(samples, self._meter_max_samples)
        self._frames_seen += 1
        outbound = resample_pcm16(samples, self._source_rate, self._target_rate)
        return ProcessedFrame(
            audio_b64=base64.b64encode(outbound.astype("<i2").tobytes()).decode("ascii"),
            loudness=loudness,
            sample_count=int(samples.shape[0]),
        )
