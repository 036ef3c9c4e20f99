"""Tests for silence trimming, window selection and normalization."""

from __future__ import annotations

import numpy as np
import pytest

from voice_input.core.speech_preprocessor import (
    PreprocessorConfig,
    SpeechPreprocessor,
    frame_rms,
)

PAD = PreprocessorConfig().pad_samples


def test_pad_is_180_ms_at_16_khz() -> None:
    assert PAD == 2880


def test_frame_rms_handles_short_last_frame() -> None:
    samples = np.concatenate([np.zeros(160), np.full(40, 0.5)]).astype(np.float32)

    rms = frame_rms(samples, 160)

    assert rms.shape == (2,)
    assert rms[0] == 0.0
    assert rms[1] == pytest.approx(0.5)


def test_all_silence_trims_to_empty_and_falls_back_to_raw() -> None:
    preprocessor = SpeechPreprocessor()
    raw = np.full(16000, 0.001, dtype=np.float32)

    assert preprocessor.trim_silence(raw).size == 0
    np.testing.assert_array_equal(preprocessor.select_window(raw), raw)


def test_speech_in_middle_third_is_kept_with_pad() -> None:
    preprocessor = SpeechPreprocessor()
    raw = np.zeros(48000, dtype=np.float32)
    raw[16000:32000] = 0.1

    trimmed = preprocessor.trim_silence(raw)

    np.testing.assert_array_equal(trimmed, raw[16000 - PAD : 32000 + PAD])


def test_trim_is_clamped_to_bounds() -> None:
    preprocessor = SpeechPreprocessor()
    raw = np.zeros(16000, dtype=np.float32)
    raw[:1600] = 0.1

    trimmed = preprocessor.trim_silence(raw)

    assert trimmed.size == 1600 + PAD
    np.testing.assert_array_equal(trimmed, raw[: 1600 + PAD])


def test_short_trim_falls_back_to_raw_window() -> None:
    preprocessor = SpeechPreprocessor(
        PreprocessorConfig(pad_seconds=0.0, min_trimmed_samples=800)
    )
    raw = np.zeros(8000, dtype=np.float32)
    raw[4000:4320] = 0.1

    assert preprocessor.trim_silence(raw).size == 320
    np.testing.assert_array_equal(preprocessor.select_window(raw), raw)


def test_quiet_input_is_boosted_up_to_max_gain() -> None:
    preprocessor = SpeechPreprocessor()
    samples = np.array([0.0, 0.01, -0.005], dtype=np.float32)

    out = preprocessor.normalize(samples)

    # target/peak would be 18x; capped at 12x
    assert float(np.max(np.abs(out))) == pytest.approx(0.12, rel=1e-5)


def test_input_near_target_is_scaled_to_target() -> None:
    preprocessor = SpeechPreprocessor()
    samples = np.array([0.17, -0.1], dtype=np.float32)

    out = preprocessor.normalize(samples)

    assert float(np.max(np.abs(out))) == pytest.approx(0.18, rel=1e-5)


def test_loud_input_is_never_scaled_up() -> None:
    preprocessor = SpeechPreprocessor()
    samples = np.array([0.5, -0.25, 0.1], dtype=np.float32)

    np.testing.assert_array_equal(preprocessor.normalize(samples), samples)


def test_output_is_always_clipped() -> None:
    preprocessor = SpeechPreprocessor()
    samples = np.array([1.5, -2.0, 0.5], dtype=np.float32)

    out = preprocessor.normalize(samples)

    assert float(out.max()) <= 1.0
    assert float(out.min()) >= -1.0
    np.testing.assert_array_equal(out, np.array([1.0, -1.0, 0.5], dtype=np.float32))


def test_process_empty_input_returns_empty() -> None:
    assert SpeechPreprocessor().process(np.zeros(0, dtype=np.float32)).size == 0


def test_process_trims_then_normalizes() -> None:
    preprocessor = SpeechPreprocessor()
    raw = np.zeros(48000, dtype=np.float32)
    raw[16000:32000] = 0.05

    out = preprocessor.process(raw)

    assert out.size == 16000 + 2 * PAD
    assert float(np.max(np.abs(out))) == pytest.approx(0.18, rel=1e-5)
