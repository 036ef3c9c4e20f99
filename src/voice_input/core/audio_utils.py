"""
Audio and device utilities for Voice Input.

Provides:
- GPU availability checks and cache cleanup after model unloads
- Audio file loading (16 kHz mono float32) for offline decoding
"""

import gc
import logging
from pathlib import Path
from typing import Tuple

import numpy as np
from scipy.signal import resample_poly

logger = logging.getLogger(__name__)

# Try to import optional dependencies
try:
    import torch

    HAS_TORCH = True
except ImportError:
    torch = None  # type: ignore
    HAS_TORCH = False

try:
    import soundfile as sf

    HAS_SOUNDFILE = True
except ImportError:
    sf = None  # type: ignore
    HAS_SOUNDFILE = False


def clear_gpu_cache() -> None:
    """
    Clear GPU cache and run garbage collection.

    Use this after unloading models to free GPU memory.
    """
    try:
        gc.collect()

        if HAS_TORCH and torch is not None and torch.cuda.is_available():
            torch.cuda.empty_cache()
            logger.debug("GPU cache cleared")
    except Exception as e:
        logger.debug(f"Could not clear GPU cache: {e}")


def check_cuda_available() -> bool:
    """Check if CUDA is available for GPU acceleration."""
    if not HAS_TORCH or torch is None:
        return False
    return torch.cuda.is_available()


def resolve_device(device: str) -> str:
    """Map "auto" to cuda/cpu; fall back to cpu when cuda is requested but missing."""
    requested = (device or "auto").lower()
    if requested in ("auto", "cuda"):
        if check_cuda_available():
            return "cuda"
        if requested == "cuda":
            logger.warning("CUDA requested but not available, using CPU")
        return "cpu"
    return requested


def load_audio(
    file_path: str,
    target_sample_rate: int = 16000,
) -> Tuple[np.ndarray, int]:
    """
    Load an audio file and return as numpy array.

    Args:
        file_path: Path to audio file (any format libsndfile reads)
        target_sample_rate: Target sample rate for resampling

    Returns:
        Tuple of (audio_data as float32 array, sample_rate)
    """
    if not HAS_SOUNDFILE or sf is None:
        raise ImportError("soundfile library is required for audio loading")

    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    audio_data, sample_rate = sf.read(str(path), dtype="float32")

    # Handle stereo by averaging channels
    if audio_data.ndim > 1:
        audio_data = np.mean(audio_data, axis=1)

    if sample_rate != target_sample_rate:
        divisor = np.gcd(int(sample_rate), int(target_sample_rate))
        audio_data = resample_poly(
            audio_data,
            target_sample_rate // divisor,
            int(sample_rate) // divisor,
        )
        logger.info(f"Resampled {path.name} from {sample_rate} Hz to {target_sample_rate} Hz")
        sample_rate = target_sample_rate

    return np.asarray(audio_data, dtype=np.float32), sample_rate
