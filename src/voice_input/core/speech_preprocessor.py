"""
Speech window extraction for the decode passes.

Turns the raw trailing window held by the ring buffer into the sample array
handed to Whisper:

1. Energy-based silence trimming on 10 ms frames, with a pre/post pad
2. Fallback to the raw window when trimming leaves too little audio
3. Peak normalization with a capped gain, clipped to [-1, 1]

Everything here is pure: same input, same output, no shared state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from voice_input.common.config import VoiceInputConfig

# Target sample rate for Whisper (technical requirement, not configurable)
SAMPLE_RATE = 16000


@dataclass(frozen=True)
class PreprocessorConfig:
    """Tuning constants for trimming and normalization."""

    frame_size: int = 160  # 10 ms @ 16 kHz
    energy_threshold: float = 0.0025
    pad_seconds: float = 0.18
    min_trimmed_samples: int = 800
    target_peak: float = 0.18
    max_gain: float = 12.0
    gain_threshold: float = 1.01

    @property
    def pad_samples(self) -> int:
        return int(self.pad_seconds * SAMPLE_RATE)

    @classmethod
    def from_config(cls, config: VoiceInputConfig) -> PreprocessorConfig:
        section = config.section("preprocessing")
        defaults = cls()
        return cls(
            frame_size=int(section.get("frame_size", defaults.frame_size)),
            energy_threshold=float(
                section.get("energy_threshold", defaults.energy_threshold)
            ),
            pad_seconds=float(section.get("pad_seconds", defaults.pad_seconds)),
            min_trimmed_samples=int(
                section.get("min_trimmed_samples", defaults.min_trimmed_samples)
            ),
            target_peak=float(section.get("target_peak", defaults.target_peak)),
            max_gain=float(section.get("max_gain", defaults.max_gain)),
            gain_threshold=float(section.get("gain_threshold", defaults.gain_threshold)),
        )


def frame_rms(samples: np.ndarray, frame_size: int) -> np.ndarray:
    """RMS of consecutive frames; the last frame may be shorter than frame_size."""
    if samples.size == 0:
        return np.zeros(0, dtype=np.float32)
    starts = np.arange(0, samples.size, frame_size)
    squared = samples.astype(np.float64) ** 2
    sums = np.add.reduceat(squared, starts)
    lengths = np.diff(np.append(starts, samples.size))
    return np.sqrt(sums / lengths).astype(np.float32)


class SpeechPreprocessor:
    """Selects and normalizes the speech window from a raw sample array."""

    def __init__(self, config: PreprocessorConfig | None = None):
        self.config = config or PreprocessorConfig()

    def trim_silence(self, samples: np.ndarray) -> np.ndarray:
        """
        Cut leading and trailing silence.

        Returns the span from the first speech frame minus the pad to the end of
        the last speech frame plus the pad, clamped to the array. Returns an
        empty array when no frame reaches the energy threshold.
        """
        samples = np.asarray(samples, dtype=np.float32)
        if samples.size == 0:
            return samples

        cfg = self.config
        rms = frame_rms(samples, cfg.frame_size)
        speech_frames = np.flatnonzero(rms >= cfg.energy_threshold)
        if speech_frames.size == 0:
            return np.zeros(0, dtype=np.float32)

        first_speech = int(speech_frames[0]) * cfg.frame_size
        last_speech = min(samples.size, (int(speech_frames[-1]) + 1) * cfg.frame_size)

        start = max(0, first_speech - cfg.pad_samples)
        end = min(samples.size, last_speech + cfg.pad_samples)
        return samples[start:end]

    def select_window(self, raw: np.ndarray) -> np.ndarray:
        """Trimmed audio, or the whole raw window if trimming was too aggressive."""
        raw = np.asarray(raw, dtype=np.float32)
        trimmed = self.trim_silence(raw)
        if trimmed.size >= self.config.min_trimmed_samples:
            return trimmed
        return raw

    def normalize(self, samples: np.ndarray) -> np.ndarray:
        """Boost quiet input toward the target peak; never attenuate."""
        samples = np.asarray(samples, dtype=np.float32)
        if samples.size == 0:
            return samples

        cfg = self.config
        peak = float(np.max(np.abs(samples)))
        out = samples
        if peak > 0:
            gain = min(cfg.max_gain, cfg.target_peak / peak)
            if gain > cfg.gain_threshold:
                out = samples * np.float32(gain)
        return np.clip(out, -1.0, 1.0).astype(np.float32, copy=False)

    def process(self, raw: np.ndarray) -> np.ndarray:
        """Full pipeline: window selection followed by normalization."""
        raw = np.asarray(raw, dtype=np.float32)
        if raw.size == 0:
            return raw
        return self.normalize(self.select_window(raw))
