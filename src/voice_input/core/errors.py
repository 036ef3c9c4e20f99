"""Exception types raised by the capture and decode pipeline."""


class VoiceInputError(Exception):
    """Base class for Voice Input pipeline errors."""

    pass


class EngineStartError(VoiceInputError):
    """Raised when the audio input device or converter cannot be set up."""

    pass


class ModelLoadError(VoiceInputError):
    """Raised when a model file cannot be loaded or its decode slots created."""

    pass


class EngineNotReadyError(VoiceInputError):
    """Raised when a decode is attempted without a successfully loaded model."""

    pass


class DecodeError(VoiceInputError):
    """Raised when the underlying decode call fails."""

    pass
