"""
Image helpers shared by the image processor, the atlas packer and the CLI.
"""

from typing import Tuple, Optional, Union
from PIL import Image
import io


class ImageUtils:
    """Utility class for common image operations."""

    @staticmethod
    def load_image(data: Union[bytes, str, Image.Image]) -> Image.Image:
        """
        Load image from various sources.

        Args:
            data: Image data as bytes, file path, or PIL Image

        Returns:
            PIL Image object with pixel data loaded

        Raises:
            ValueError: If data cannot be loaded as image
        """
        if isinstance(data, Image.Image):
            return data
        elif isinstance(data, bytes):
            try:
                image = Image.open(io.BytesIO(data))
                image.load()
                return image
            except Exception as e:
                raise ValueError(f"Cannot load image from bytes: {e}")
        elif isinstance(data, str):
            try:
                image = Image.open(data)
                image.load()
                return image
            except Exception as e:
                raise ValueError(f"Cannot load image from path '{data}': {e}")
        else:
            raise ValueError(f"Unsupported image data type: {type(data)}")

    @staticmethod
    def encode_image(image: Image.Image, format: str, quality: int = 90, compress: bool = True) -> bytes:
        """
        Encode an image to bytes.

        Args:
            image: Image to encode
            format: png, jpeg or webp
            quality: Lossy quality (1-100), also selects the PNG compression level
            compress: Spend extra effort on smaller PNG output
        """
        buffer = io.BytesIO()
        format = format.lower()

        if format == 'png':
            level = 9 if compress else max(1, min(9, quality // 11))
            image.save(buffer, format='PNG', optimize=compress, compress_level=level)
        elif format in ('jpeg', 'jpg'):
            # JPEG has no alpha channel
            if image.mode not in ('RGB', 'L'):
                image = image.convert('RGB')
            image.save(buffer, format='JPEG', quality=quality, optimize=compress)
        elif format == 'webp':
            image.save(buffer, format='WEBP', quality=quality, method=6 if compress else 4)
        else:
            raise ValueError(f"Unsupported image format: {format}")

        return buffer.getvalue()

    @staticmethod
    def ensure_rgba(image: Image.Image) -> Image.Image:
        """Convert image to RGBA mode if not already."""
        if image.mode != 'RGBA':
            return image.convert('RGBA')
        return image

    @staticmethod
    def fit_within(size: Tuple[int, int], max_size: int) -> Tuple[int, int]:
        """Largest size no bigger than max_size on either edge, keeping aspect ratio."""
        width, height = size
        if width <= max_size and height <= max_size:
            return width, height
        scale = max_size / max(width, height)
        return max(1, round(width * scale)), max(1, round(height * scale))

    @staticmethod
    def resize_with_quality(image: Image.Image, target_size: Tuple[int, int]) -> Image.Image:
        """Resize using Lanczos resampling."""
        return image.resize(target_size, Image.Resampling.LANCZOS)

    @staticmethod
    def get_bounding_box(image: Image.Image) -> Optional[Tuple[int, int, int, int]]:
        """
        Get bounding box of non-transparent content.

        Returns:
            Bounding box as (left, top, right, bottom) or None if fully transparent
        """
        rgba = ImageUtils.ensure_rgba(image)
        return rgba.getchannel('A').getbbox()

    @staticmethod
    def trim_transparent(image: Image.Image) -> Tuple[Image.Image, Tuple[int, int]]:
        """
        Crop to the non-transparent bounding box.

        Returns:
            (cropped image, (offset_x, offset_y)). A fully transparent image
            trims to a single pixel at the origin.
        """
        rgba = ImageUtils.ensure_rgba(image)
        bbox = rgba.getchannel('A').getbbox()
        if bbox is None:
            return rgba.crop((0, 0, 1, 1)), (0, 0)
        return rgba.crop(bbox), (bbox[0], bbox[1])

    @staticmethod
    def uncompressed_size(image: Image.Image) -> int:
        """Bytes needed for the raw pixel data."""
        return image.width * image.height * len(image.getbands())
