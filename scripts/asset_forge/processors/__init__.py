"""
Bundled processors for images, models, audio and atlases.
"""

from typing import Dict

from ..transforms import AssetKind
from .base import Processor, ProcessorError
from .image import ImageProcessor, QUALITY_PRESETS
from .model import ModelProcessor, model_info, estimate_lod_levels
from .audio import AudioProcessor, audio_info
from .atlas import AtlasProcessor, sprite_ids


def default_processors() -> Dict[AssetKind, Processor]:
    """One processor instance per asset kind."""
    return {
        AssetKind.IMAGE: ImageProcessor(),
        AssetKind.MODEL: ModelProcessor(),
        AssetKind.AUDIO: AudioProcessor(),
    }


__all__ = [
    "Processor",
    "ProcessorError",
    "ImageProcessor",
    "ModelProcessor",
    "AudioProcessor",
    "AtlasProcessor",
    "QUALITY_PRESETS",
    "default_processors",
    "model_info",
    "estimate_lod_levels",
    "audio_info",
    "sprite_ids",
]
