"""
Sprite atlas packing.

Sprites are optionally trimmed to their opaque bounds, sorted by descending
height, then descending width, then id, and placed with a shelf heuristic
into a single page. Identical inputs always produce identical layouts.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Sequence, Tuple
from PIL import Image
import logging

from ..utils.image import ImageUtils


logger = logging.getLogger(__name__)


class AtlasOverflow(Exception):
    """Raised when the sprites cannot fit on one page within the size limits."""

    def __init__(self, message: str, required_width: int, required_height: int):
        super().__init__(message)
        self.required_width = required_width
        self.required_height = required_height


@dataclass
class Rectangle:
    """Rectangle for atlas layout calculations."""
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def intersects(self, other: 'Rectangle') -> bool:
        """Check if this rectangle intersects with another."""
        return not (self.right <= other.x or other.right <= self.x or
                    self.bottom <= other.y or other.bottom <= self.y)


@dataclass
class SpriteInput:
    """One sprite to pack."""
    id: str
    image: Image.Image
    trim: bool = False


@dataclass(frozen=True)
class PackedRect:
    """Placement of one sprite on the page."""
    id: str
    x: int
    y: int
    width: int
    height: int
    trim_offset: Tuple[int, int] = (0, 0)
    original_size: Tuple[int, int] = (0, 0)

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def padded(self, padding: int) -> Rectangle:
        """Bounding box including the trailing padding gutter."""
        return Rectangle(self.x, self.y, self.width + padding, self.height + padding)

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "trimmed": {
                "offsetX": self.trim_offset[0],
                "offsetY": self.trim_offset[1],
                "originalWidth": self.original_size[0],
                "originalHeight": self.original_size[1],
            },
        }


@dataclass
class AtlasPage:
    """A packed page: dimensions, placements and the trimmed sprite images."""
    width: int
    height: int
    rects: List[PackedRect] = field(default_factory=list)
    padding: int = 0
    images: Dict[str, Image.Image] = field(default_factory=dict, repr=False)

    def rect(self, sprite_id: str) -> PackedRect:
        for rect in self.rects:
            if rect.id == sprite_id:
                return rect
        raise KeyError(sprite_id)

    @property
    def efficiency(self) -> float:
        """Used area / page area."""
        area = self.width * self.height
        used = sum(rect.width * rect.height for rect in self.rects)
        return used / area if area > 0 else 0.0

    def compose(self) -> Image.Image:
        """Paste the sprites into a transparent RGBA page."""
        canvas = Image.new('RGBA', (max(1, self.width), max(1, self.height)), (0, 0, 0, 0))
        for rect in self.rects:
            canvas.paste(self.images[rect.id], (rect.x, rect.y))
        return canvas

    def metadata(self, image_name: str) -> Dict[str, Any]:
        """Metadata needed to rebuild untrimmed sprite bounds at runtime."""
        return {
            "image": image_name,
            "width": self.width,
            "height": self.height,
            "sprites": [rect.to_metadata() for rect in sorted(self.rects, key=lambda r: r.id)],
        }

    def validate(self) -> List[str]:
        """
        Check that every rect lies inside the page and that no two padded
        bounding boxes overlap.

        Returns:
            List of validation error messages
        """
        errors = []

        for rect in self.rects:
            if rect.x < 0 or rect.y < 0 or rect.right > self.width or rect.bottom > self.height:
                errors.append(
                    f"Sprite '{rect.id}' at ({rect.x}, {rect.y}) size {rect.width}x{rect.height} "
                    f"exceeds page bounds {self.width}x{self.height}"
                )

        for i, first in enumerate(self.rects):
            first_box = first.padded(self.padding)
            for second in self.rects[i + 1:]:
                if first_box.intersects(second.padded(self.padding)):
                    errors.append(f"Sprites '{first.id}' and '{second.id}' overlap")

        return errors


@dataclass
class _Shelf:
    y: int
    height: int
    cursor: int = 0


@dataclass
class _Item:
    id: str
    image: Image.Image
    trim_offset: Tuple[int, int]
    original_size: Tuple[int, int]

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height


class AtlasPacker:
    """Shelf packer producing a single atlas page."""

    def __init__(self, max_width: int = 2048, max_height: int = 2048,
                 padding: int = 2, power_of_two: bool = False):
        if max_width <= 0 or max_height <= 0:
            raise ValueError("Atlas dimensions must be positive")
        if padding < 0:
            raise ValueError("Atlas padding must not be negative")
        self.max_width = max_width
        self.max_height = max_height
        self.padding = padding
        self.power_of_two = power_of_two

    def pack(self, sprites: Sequence[SpriteInput]) -> AtlasPage:
        """
        Pack sprites into one page.

        Raises:
            AtlasOverflow: If the sprites do not fit within max_width x max_height
            ValueError: If two sprites share an id
        """
        ids = [sprite.id for sprite in sprites]
        if len(set(ids)) != len(ids):
            raise ValueError("Sprite ids must be unique")

        items = sorted(
            (self._prepare(sprite) for sprite in sprites),
            key=lambda item: (-item.height, -item.width, item.id),
        )
        if not items:
            return AtlasPage(0, 0, [], self.padding)

        placements = self._place(items, self.max_width, self.max_height)
        if placements is None:
            required_width, required_height = self._required_size(items)
            raise AtlasOverflow(
                f"{len(items)} sprites need at least {required_width}x{required_height} "
                f"but the atlas is limited to {self.max_width}x{self.max_height}",
                required_width,
                required_height,
            )

        rects = [
            PackedRect(item.id, x, y, item.width, item.height, item.trim_offset, item.original_size)
            for item, (x, y) in zip(items, placements)
        ]
        width = max(rect.right for rect in rects)
        height = max(rect.bottom for rect in rects)
        if self.power_of_two:
            width = min(self._next_power_of_two(width), self.max_width)
            height = min(self._next_power_of_two(height), self.max_height)

        page = AtlasPage(width, height, rects, self.padding, {item.id: item.image for item in items})
        logger.debug(f"Packed {len(rects)} sprites into {width}x{height} ({page.efficiency:.0%} used)")
        return page

    def _prepare(self, sprite: SpriteInput) -> _Item:
        image = ImageUtils.ensure_rgba(sprite.image)
        original_size = (image.width, image.height)
        if sprite.trim:
            image, offset = ImageUtils.trim_transparent(image)
        else:
            offset = (0, 0)
        return _Item(sprite.id, image, offset, original_size)

    def _place(self, items: List[_Item], max_width: int,
               max_height: Optional[int]) -> Optional[List[Tuple[int, int]]]:
        """Shelf placement; None when an item does not fit."""
        shelves: List[_Shelf] = []
        next_y = 0
        placements = []

        for item in items:
            needed = item.width + self.padding
            shelf = next((s for s in shelves if s.cursor + needed <= max_width), None)

            if shelf is None:
                if needed > max_width:
                    return None
                if max_height is not None and next_y + item.height + self.padding > max_height:
                    return None
                # Items arrive tallest first, so the opening item sets the shelf height
                shelf = _Shelf(y=next_y, height=item.height + self.padding)
                shelves.append(shelf)
                next_y += shelf.height

            placements.append((shelf.cursor, shelf.y))
            shelf.cursor += needed

        return placements

    def _required_size(self, items: List[_Item]) -> Tuple[int, int]:
        """Smallest width/height the layout needs if height were unbounded."""
        width = max(self.max_width, max(item.width + self.padding for item in items))
        placements = self._place(items, width, None)
        height = max(y + item.height + self.padding for item, (_, y) in zip(items, placements))
        return width, height

    @staticmethod
    def _next_power_of_two(n: int) -> int:
        """Find the next power of two greater than or equal to n."""
        if n <= 0:
            return 1

        # Check if n is already a power of two
        if n & (n - 1) == 0:
            return n

        power = 1
        while power < n:
            power <<= 1

        return power
