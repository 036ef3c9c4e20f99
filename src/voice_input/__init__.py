"""
Voice Input: push-to-talk local speech-to-text.

Packages:
- common: configuration, logging, shared types and adapters
- core: audio capture, speech preprocessing, Whisper inference and the
  transcription scheduler
"""

from voice_input.common.version import get_version

__version__ = get_version()
