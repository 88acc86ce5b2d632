from __future__ import annotations

import base64
import unittest

import numpy as np

from frame_processor import FrameProcessor, apply_gain, decode_pcm16, resample_pcm16, rms_level


def _pcm(samples) -> bytes:
    return np.asarray(samples, dtype="<i2").tobytes()


class GainTests(unittest.TestCase):
    def test_gain_scales_and_clips_to_int16(self) -> None:
        samples = np.array([1000, -1000, 30000, -30000, 0], dtype=np.int16)

        boosted = apply_gain(samples, 1.5)

        self.assertEqual(boosted.dtype, np.int16)
        self.assertEqual(boosted.tolist(), [1500, -1500, 32767, -32768, 0])

    def test_unity_gain_is_passthrough(self) -> None:
        samples = np.array([1, -2, 3], dtype=np.int16)

        self.assertEqual(apply_gain(samples, 1.0).tolist(), [1, -2, 3])


class LoudnessTests(unittest.TestCase):
    def test_rms_of_constant_signal(self) -> None:
        samples = np.full(1600, 16384, dtype=np.int16)

        self.assertAlmostEqual(rms_level(samples), 0.5)

    def test_rms_uses_only_leading_window(self) -> None:
        samples = np.concatenate([np.zeros(2048, dtype=np.int16), np.full(2000, 32767, dtype=np.int16)])

        self.assertEqual(rms_level(samples), 0.0)

    def test_rms_is_capped_and_handles_empty_input(self) -> None:
        self.assertLessEqual(rms_level(np.full(10, -32768, dtype=np.int16)), 1.0)
        self.assertEqual(rms_level(np.array([], dtype=np.int16)), 0.0)


class DecodeAndResampleTests(unittest.TestCase):
    def test_odd_trailing_byte_is_dropped(self) -> None:
        self.assertEqual(decode_pcm16(_pcm([5, -5]) + b"\x01").tolist(), [5, -5])

    def test_resample_16k_to_24k_length(self) -> None:
        samples = np.zeros(1600, dtype=np.int16)

        self.assertEqual(resample_pcm16(samples, 16000, 24000).shape[0], 2400)

    def test_resample_same_rate_is_passthrough(self) -> None:
        samples = np.array([1, 2, 3], dtype=np.int16)

        self.assertEqual(resample_pcm16(samples, 24000, 24000).tolist(), [1, 2, 3])


class FrameProcessorTests(unittest.TestCase):
    def test_loudness_reported_every_fourth_frame(self) -> None:
        processor = FrameProcessor(gain=1.0)
        frame = _pcm(np.full(1600, 8192))

        loudness = [processor.process(frame).loudness for _ in range(9)]

        self.assertEqual([value is not None for value in loudness], [True, False, False, False, True, False, False, False, True])
        self.assertAlmostEqual(loudness[0], 0.25)
        self.assertEqual(processor.frames_seen, 9)

    def test_loudness_measured_after_gain(self) -> None:
        processor = FrameProcessor(gain=2.0)

        frame = processor.process(_pcm(np.full(1600, 8192)))

        self.assertAlmostEqual(frame.loudness, 0.5)

    def test_outbound_audio_is_base64_pcm16_at_service_rate(self) -> None:
        processor = FrameProcessor(gain=1.5, source_rate=16000, target_rate=24000)

        frame = processor.process(_pcm(np.full(1600, 1000)))

        outbound = np.frombuffer(base64.b64decode(frame.audio_b64), dtype="<i2")
        self.assertEqual(frame.sample_count, 1600)
        self.assertEqual(outbound.shape[0], 2400)
        self.assertTrue(np.all(outbound == 1500))

    def test_reset_restarts_meter_cadence(self) -> None:
        processor = FrameProcessor(gain=1.0)
        frame = _pcm(np.full(160, 100))
        processor.process(frame)
        processor.process(frame)

        processor.reset()

        self.assertIsNotNone(processor.process(frame).loudness)


if __name__ == "__main__":
    unittest.main()
