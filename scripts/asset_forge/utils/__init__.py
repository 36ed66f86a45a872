"""
Utility modules for image handling, hashing and atomic file writes.
"""

from .image import ImageUtils
from .fs import sha256_bytes, atomic_write, directory_size, format_size, format_size_change

__all__ = [
    "ImageUtils",
    "sha256_bytes",
    "atomic_write",
    "directory_size",
    "format_size",
    "format_size_change",
]
