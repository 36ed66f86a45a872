"""
Transform steps and the Pipeline value type.

A Pipeline is an ordered tuple of Transform steps plus the output format. It is
immutable and serializes to a deterministic signature that forms part of the
cache key, so any change to a step or its parameters forces a rebuild.
"""

import json
from dataclasses import dataclass, asdict, fields
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, ClassVar, Dict, Optional, Tuple, Union


class AssetKind(Enum):
    """Asset categories, inferred from the source file extension."""
    IMAGE = "image"
    MODEL = "model"
    AUDIO = "audio"
    UNKNOWN = "unknown"

    @classmethod
    def from_extension(cls, extension: str) -> "AssetKind":
        return _EXTENSION_KINDS.get(extension.lower().lstrip('.'), cls.UNKNOWN)

    @classmethod
    def from_path(cls, path: Union[str, PurePosixPath]) -> "AssetKind":
        return cls.from_extension(PurePosixPath(str(path)).suffix)


_EXTENSION_KINDS = {
    **{ext: AssetKind.IMAGE for ext in ("png", "jpg", "jpeg", "webp", "bmp", "gif", "tga", "ktx2", "basis")},
    **{ext: AssetKind.MODEL for ext in ("gltf", "glb", "obj", "fbx")},
    **{ext: AssetKind.AUDIO for ext in ("wav", "mp3", "ogg", "flac", "aac", "m4a")},
}

# Output format -> file extension
FORMAT_EXTENSIONS = {
    "png": "png",
    "jpeg": "jpg",
    "webp": "webp",
    "ktx2": "ktx2",
    "glb": "glb",
    "gltf": "gltf",
    "obj": "obj",
    "fbx": "fbx",
    "ogg": "ogg",
    "wav": "wav",
}

# Formats that can carry a mip chain
MIP_CAPABLE_FORMATS = frozenset({"ktx2"})


class TransformKind(Enum):
    """The closed set of pipeline step kinds."""
    RESIZE = "resize"
    TRIM = "trim"
    RECOMPRESS = "recompress"
    GENERATE_MIP = "generate_mip"
    SIMPLIFY = "simplify"
    BUFFER_COMPRESS = "buffer_compress"
    NORMALIZE = "normalize"
    RESAMPLE = "resample"
    ENCODE = "encode"


class _Step:
    kind: ClassVar[TransformKind]

    def params(self) -> Dict[str, Any]:
        return asdict(self)

    def describe(self) -> str:
        args = ", ".join(f"{f.name}={getattr(self, f.name)!r}" for f in fields(self))
        return f"{self.kind.value}({args})"


@dataclass(frozen=True)
class Resize(_Step):
    """Fit within max_size on the longest edge, preserving aspect ratio."""
    kind: ClassVar[TransformKind] = TransformKind.RESIZE
    max_size: int


@dataclass(frozen=True)
class Trim(_Step):
    """Crop to the non-transparent bounding box."""
    kind: ClassVar[TransformKind] = TransformKind.TRIM


@dataclass(frozen=True)
class Recompress(_Step):
    kind: ClassVar[TransformKind] = TransformKind.RECOMPRESS
    format: str
    quality: int = 90
    compress: bool = True


@dataclass(frozen=True)
class GenerateMip(_Step):
    kind: ClassVar[TransformKind] = TransformKind.GENERATE_MIP


@dataclass(frozen=True)
class Simplify(_Step):
    """Mesh LOD generation."""
    kind: ClassVar[TransformKind] = TransformKind.SIMPLIFY
    ratio: float = 0.5
    lod_count: int = 3


@dataclass(frozen=True)
class BufferCompress(_Step):
    kind: ClassVar[TransformKind] = TransformKind.BUFFER_COMPRESS
    method: str = "meshopt"


@dataclass(frozen=True)
class Normalize(_Step):
    """Scale samples so the absolute peak equals `peak`."""
    kind: ClassVar[TransformKind] = TransformKind.NORMALIZE
    peak: float = 0.95


@dataclass(frozen=True)
class Resample(_Step):
    kind: ClassVar[TransformKind] = TransformKind.RESAMPLE
    sample_rate: int


@dataclass(frozen=True)
class Encode(_Step):
    kind: ClassVar[TransformKind] = TransformKind.ENCODE
    format: str
    quality: Optional[int] = None


Transform = Union[Resize, Trim, Recompress, GenerateMip, Simplify, BufferCompress, Normalize, Resample, Encode]

TRANSFORM_TYPES: Dict[TransformKind, type] = {
    cls.kind: cls
    for cls in (Resize, Trim, Recompress, GenerateMip, Simplify, BufferCompress, Normalize, Resample, Encode)
}
assert set(TRANSFORM_TYPES) == set(TransformKind), "every TransformKind needs a step type"


@dataclass(frozen=True)
class AtlasSettings:
    """Packing settings shared by all members of an atlas group."""
    max_width: int = 2048
    max_height: int = 2048
    padding: int = 2
    trim: bool = False
    power_of_two: bool = False


@dataclass(frozen=True)
class Pipeline:
    """Ordered transform steps for one asset plus its output format."""
    kind: AssetKind
    steps: Tuple[Transform, ...] = ()
    output_format: Optional[str] = None
    output_pattern: Optional[str] = None
    atlas: Optional[AtlasSettings] = None

    @classmethod
    def noop(cls) -> "Pipeline":
        return cls(kind=AssetKind.UNKNOWN)

    @property
    def is_noop(self) -> bool:
        return self.kind is AssetKind.UNKNOWN or self.output_format is None

    @property
    def is_atlas(self) -> bool:
        return self.atlas is not None

    @property
    def extension(self) -> Optional[str]:
        if self.output_format is None:
            return None
        return FORMAT_EXTENSIONS.get(self.output_format, self.output_format)

    def find_step(self, kind: TransformKind) -> Optional[Transform]:
        for step in self.steps:
            if step.kind is kind:
                return step
        return None

    def signature(self) -> str:
        """Deterministic serialization used as the pipeline signature."""
        payload = {
            "kind": self.kind.value,
            "format": self.output_format,
            "steps": [{"op": step.kind.value, **step.params()} for step in self.steps],
            "atlas": asdict(self.atlas) if self.atlas is not None else None,
        }
        return json.dumps(payload, sort_keys=True, separators=(",", ":"))

    def describe(self) -> str:
        if self.is_noop:
            return "(skip)"
        return " -> ".join(step.describe() for step in self.steps) or "(copy)"
