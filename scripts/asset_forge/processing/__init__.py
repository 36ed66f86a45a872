"""
Atlas packing.
"""

from .atlas import AtlasPacker, AtlasPage, AtlasOverflow, PackedRect, SpriteInput

__all__ = [
    "AtlasPacker",
    "AtlasPage",
    "AtlasOverflow",
    "PackedRect",
    "SpriteInput",
]
