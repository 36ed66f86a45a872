"""
Image processor backed by Pillow.
"""

from dataclasses import dataclass
from typing import Optional
from PIL import Image

from ..transforms import AssetKind, Pipeline, TransformKind
from ..utils.image import ImageUtils
from .base import Processor, ProcessorError


# Named quality presets used by the optimize command
QUALITY_PRESETS = {
    "fast": 70,
    "balanced": 80,
    "high": 90,
    "ultra": 95,
}


@dataclass
class ImageState:
    image: Image.Image
    output: Optional[bytes] = None


class ImageProcessor(Processor):
    """Trim, resize and re-encode raster images."""

    kind = AssetKind.IMAGE

    def handlers(self):
        return {
            TransformKind.TRIM: self._trim,
            TransformKind.RESIZE: self._resize,
            TransformKind.RECOMPRESS: self._recompress,
            TransformKind.GENERATE_MIP: self.unsupported("mip chains need a KTX2 encoder"),
        }

    def decode(self, data: bytes, pipeline: Pipeline) -> ImageState:
        try:
            return ImageState(ImageUtils.load_image(data))
        except ValueError as e:
            raise ProcessorError(str(e))

    def finish(self, state: ImageState, pipeline: Pipeline) -> bytes:
        if state.output is None:
            raise ProcessorError("Image pipeline has no recompress step")
        return state.output

    def _trim(self, state: ImageState, step) -> ImageState:
        image, _ = ImageUtils.trim_transparent(state.image)
        return ImageState(image)

    def _resize(self, state: ImageState, step) -> ImageState:
        target = ImageUtils.fit_within(state.image.size, step.max_size)
        if target == state.image.size:
            return state
        return ImageState(ImageUtils.resize_with_quality(state.image, target))

    def _recompress(self, state: ImageState, step) -> ImageState:
        return ImageState(state.image, self.encode(state.image, step))

    def encode(self, image: Image.Image, step) -> bytes:
        """Encode an image with the settings of a Recompress step."""
        if step.format == "ktx2":
            raise ProcessorError("KTX2 encoding requires an external encoder", step.kind)
        try:
            return ImageUtils.encode_image(image, step.format, step.quality, step.compress)
        except (ValueError, OSError) as e:
            raise ProcessorError(f"Cannot encode {step.format}: {e}", step.kind)
