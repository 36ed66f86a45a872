"""
Build job records: source snapshots, per-asset jobs and atlas groups.
"""

import os
import hashlib
import posixpath
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional, Tuple, Union

from .transforms import Pipeline
from .utils.fs import sha256_bytes


@dataclass(frozen=True)
class AssetRecord:
    """Immutable snapshot of one source file."""
    path: str
    abs_path: Path
    content_hash: str
    size: int
    mtime: int

    @classmethod
    def from_path(cls, abs_path: Union[str, Path], source_root: Union[str, Path]) -> "AssetRecord":
        """Read and hash a source file, recording its path relative to the source root."""
        abs_path = Path(abs_path)
        rel = Path(os.path.abspath(abs_path)).relative_to(Path(source_root).resolve()).as_posix()
        data = abs_path.read_bytes()
        stat = abs_path.stat()
        return cls(
            path=rel,
            abs_path=abs_path,
            content_hash=sha256_bytes(data),
            size=len(data),
            mtime=int(stat.st_mtime),
        )

    @property
    def parent(self) -> str:
        return posixpath.dirname(self.path)


@dataclass(frozen=True)
class AtlasGroup:
    """Atlas members sharing a source directory; built as a single job."""
    group_id: str
    members: Tuple[AssetRecord, ...]
    pipeline: Pipeline

    @property
    def content_hash(self) -> str:
        """Combined hash over every member's path and content hash."""
        digest = hashlib.sha256()
        for member in sorted(self.members, key=lambda m: m.path):
            digest.update(f"{member.path}\0{member.content_hash}\n".encode("utf-8"))
        return digest.hexdigest()

    @property
    def mtime(self) -> int:
        return max((member.mtime for member in self.members), default=0)

    @property
    def size(self) -> int:
        return sum(member.size for member in self.members)

    @property
    def stem(self) -> str:
        return self.group_id or "atlas"

    @property
    def output_path(self) -> str:
        return f"{self.stem}.{self.pipeline.extension}"

    @property
    def metadata_path(self) -> str:
        return f"{self.stem}.json"


@dataclass(frozen=True)
class BuildJob:
    """The unit of scheduling: one asset (or one atlas group) and where it goes."""
    pipeline: Pipeline
    output_path: str
    record: Optional[AssetRecord] = None
    group: Optional[AtlasGroup] = None

    @classmethod
    def for_asset(cls, record: AssetRecord, pipeline: Pipeline, output_path: str) -> "BuildJob":
        return cls(pipeline=pipeline, output_path=output_path, record=record)

    @classmethod
    def for_atlas(cls, group: AtlasGroup) -> "BuildJob":
        return cls(pipeline=group.pipeline, output_path=group.output_path, group=group)

    @property
    def is_atlas(self) -> bool:
        return self.group is not None

    @property
    def content_hash(self) -> str:
        return self.group.content_hash if self.group is not None else self.record.content_hash

    @property
    def source_path(self) -> str:
        """Source-relative path this job's cache entry belongs to."""
        return self.group.group_id if self.group is not None else self.record.path

    @property
    def mtime(self) -> int:
        return self.group.mtime if self.group is not None else self.record.mtime

    @property
    def size(self) -> int:
        """Source bytes the job reads."""
        return self.group.size if self.group is not None else self.record.size

    @property
    def output_paths(self) -> Tuple[str, ...]:
        """Every file the job writes, relative to the output root."""
        if self.group is not None:
            return (self.output_path, self.group.metadata_path)
        return (self.output_path,)

    @property
    def label(self) -> str:
        if self.group is not None:
            return f"atlas:{self.group.stem}"
        return self.record.path

    def cache_key(self) -> str:
        return compute_cache_key(self.content_hash, self.pipeline.signature(), self.output_path)


def normalize_output_path(output_path: str) -> str:
    return PurePosixPath(posixpath.normpath(output_path.replace('\\', '/'))).as_posix()


def compute_cache_key(content_hash: str, signature: str, output_path: str) -> str:
    """sha256(contentHash ++ pipelineSignature ++ normalizedOutputPath)"""
    digest = hashlib.sha256()
    for part in (content_hash, signature, normalize_output_path(output_path)):
        digest.update(part.encode("utf-8"))
        digest.update(b"\0")
    return digest.hexdigest()
