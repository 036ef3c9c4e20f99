"""
Resolves model identifiers to paths for the inference engine.

Models live as CTranslate2 directories (the layout faster-whisper loads)
under the configured models directory. Identifiers that match nothing local
are passed through unchanged, so hub names like "small" or
"Systran/faster-whisper-large-v3" still work.
"""

import logging
import os
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

# File every converted CTranslate2 model directory contains
MODEL_WEIGHTS_FILE = "model.bin"


def is_model_dir(path: Path) -> bool:
    return path.is_dir() and (path / MODEL_WEIGHTS_FILE).is_file()


class LocalModelStore:
    """Looks up model directories inside one models directory."""

    def __init__(self, models_dir: Union[str, Path]):
        self.models_dir = Path(models_dir).expanduser()

    def model_path(self, model_id: str) -> str:
        """
        Resolve a model identifier.

        Order: an existing path given directly, then a model directory named
        `model_id` (or `faster-whisper-<model_id>`) inside models_dir, then the
        identifier itself.
        """
        model_id = str(model_id).strip()
        direct = Path(os.path.expandvars(model_id)).expanduser()
        if direct.exists() and (direct.is_absolute() or is_model_dir(direct)):
            return str(direct)

        for candidate in (
            self.models_dir / model_id,
            self.models_dir / f"faster-whisper-{model_id}",
        ):
            if is_model_dir(candidate):
                return str(candidate)

        logger.debug(f"Model '{model_id}' not found in {self.models_dir}, using as-is")
        return model_id

