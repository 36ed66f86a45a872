"""
Atlas processor: packs a group of sprite images and encodes the page.
"""

import json
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..processing.atlas import AtlasPacker, AtlasPage, SpriteInput
from ..transforms import AtlasSettings, Pipeline, TransformKind
from ..utils.image import ImageUtils
from .base import ProcessorError
from .image import ImageProcessor


def sprite_ids(paths: Sequence[str]) -> List[str]:
    """File stems, falling back to full file names where stems collide."""
    names = [PurePosixPath(path).name for path in paths]
    stems = [PurePosixPath(path).stem for path in paths]
    return [stem if stems.count(stem) == 1 else name for stem, name in zip(stems, names)]


class AtlasProcessor:
    """Builds an atlas image plus its metadata from member sprite bytes."""

    def __init__(self, image_processor: Optional[ImageProcessor] = None):
        self.image_processor = image_processor or ImageProcessor()

    def pack(self, sprites: Sequence[Tuple[str, bytes]], settings: AtlasSettings) -> AtlasPage:
        inputs = []
        for sprite_id, data in sprites:
            try:
                image = ImageUtils.load_image(data)
            except ValueError as e:
                raise ProcessorError(f"Sprite '{sprite_id}': {e}")
            inputs.append(SpriteInput(sprite_id, image, settings.trim))

        packer = AtlasPacker(settings.max_width, settings.max_height, settings.padding, settings.power_of_two)
        return packer.pack(inputs)

    def build(self, sprites: Sequence[Tuple[str, bytes]], pipeline: Pipeline,
              image_name: str) -> Tuple[bytes, Dict[str, Any]]:
        """
        Pack and encode one atlas.

        Raises:
            AtlasOverflow: If the sprites do not fit on one page
            ProcessorError: If a sprite cannot be decoded or the page cannot be encoded
        """
        if pipeline.atlas is None:
            raise ProcessorError("Pipeline has no atlas settings")

        page = self.pack(sprites, pipeline.atlas)
        recompress = pipeline.find_step(TransformKind.RECOMPRESS)
        if recompress is None:
            raise ProcessorError("Atlas pipeline has no recompress step")

        return self.image_processor.encode(page.compose(), recompress), page.metadata(image_name)

    @staticmethod
    def encode_metadata(metadata: Dict[str, Any]) -> bytes:
        return (json.dumps(metadata, indent=2, sort_keys=True) + "\n").encode("utf-8")
