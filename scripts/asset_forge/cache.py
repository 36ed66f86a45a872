"""
Content-addressed build cache.

Entries are keyed by the job's cache key and persisted in a JSON manifest
inside the cache directory. The manifest is written atomically, so an
interrupted build loses at most the entries committed since the last flush.
"""

import json
import shutil
import logging
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .utils.fs import atomic_write, directory_size


logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
MANIFEST_VERSION = 1


class CacheCorruption(Exception):
    """Raised when the manifest cannot be read; recovered as an empty cache."""
    pass


@dataclass(frozen=True)
class CacheEntry:
    """A committed build result."""
    key: str
    output_path: str
    output_hash: str
    timestamp: int
    source_path: str = ""

    REQUIRED_FIELDS = ("key", "output_path", "output_hash", "timestamp")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["CacheEntry"]:
        """Build an entry from manifest data; None when required fields are missing."""
        if not isinstance(data, dict) or any(name not in data for name in cls.REQUIRED_FIELDS):
            return None
        try:
            return cls(
                key=str(data["key"]),
                output_path=str(data["output_path"]),
                output_hash=str(data["output_hash"]),
                timestamp=int(data["timestamp"]),
                source_path=str(data.get("source_path", "")),
            )
        except (TypeError, ValueError):
            return None


@dataclass
class CacheStats:
    total: int = 0
    valid: int = 0
    stale: int = 0
    size_bytes: int = 0


class CacheStore:
    """
    Manifest-backed cache shared by every worker of one build.

    lookup() and commit() are safe to call from worker threads; load(),
    flush() and purge() belong to the coordinating thread.
    """

    def __init__(self, directory: Union[str, Path], enabled: bool = True):
        self.directory = Path(directory)
        self.enabled = enabled
        self._entries: Dict[str, CacheEntry] = {}
        self._by_output: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._dirty = False

    @property
    def manifest_path(self) -> Path:
        return self.directory / MANIFEST_NAME

    def load(self) -> Dict[str, CacheEntry]:
        """Load the manifest. Missing or unreadable manifests yield an empty cache."""
        with self._lock:
            self._entries = {}
            self._by_output = {}
            self._dirty = False

        if not self.enabled:
            return {}

        try:
            entries = self._read_manifest()
        except CacheCorruption as e:
            logger.warning(f"Cache manifest unreadable, rebuilding everything: {e}")
            entries = []

        with self._lock:
            for entry in entries:
                self._insert(entry)
            logger.debug(f"Loaded {len(self._entries)} cache entries from {self.manifest_path}")
            return dict(self._entries)

    def _read_manifest(self) -> List[CacheEntry]:
        if not self.manifest_path.exists():
            return []

        try:
            with open(self.manifest_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CacheCorruption(f"{self.manifest_path}: {e}")

        if not isinstance(data, dict):
            raise CacheCorruption(f"{self.manifest_path}: expected an object")
        if data.get("version") != MANIFEST_VERSION:
            raise CacheCorruption(f"{self.manifest_path}: unsupported version {data.get('version')!r}")
        raw_entries = data.get("entries", [])
        if not isinstance(raw_entries, list):
            raise CacheCorruption(f"{self.manifest_path}: entries must be a list")

        entries = []
        for raw in raw_entries:
            entry = CacheEntry.from_dict(raw)
            if entry is None:
                logger.debug(f"Skipping malformed cache entry: {raw!r}")
                continue
            entries.append(entry)
        return entries

    def _insert(self, entry: CacheEntry) -> None:
        # One entry per output path; the newest commit wins
        previous = self._by_output.get(entry.output_path)
        if previous is not None and previous != entry.key:
            self._entries.pop(previous, None)
        self._entries[entry.key] = entry
        self._by_output[entry.output_path] = entry.key

    def lookup(self, key: str) -> Optional[CacheEntry]:
        if not self.enabled:
            return None
        with self._lock:
            return self._entries.get(key)

    def commit(self, entry: CacheEntry) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._insert(entry)
            self._dirty = True

    def invalidate(self, source_path: str) -> List[CacheEntry]:
        """Drop every entry built from source_path and return them."""
        with self._lock:
            removed = [entry for entry in self._entries.values() if entry.source_path == source_path]
            for entry in removed:
                self._remove(entry)
            if removed:
                self._dirty = True
        return removed

    def _remove(self, entry: CacheEntry) -> None:
        self._entries.pop(entry.key, None)
        if self._by_output.get(entry.output_path) == entry.key:
            del self._by_output[entry.output_path]

    def prune(self, source_root: Union[str, Path]) -> List[CacheEntry]:
        """Drop entries whose source no longer exists under source_root."""
        source_root = Path(source_root)
        with self._lock:
            removed = [
                entry for entry in self._entries.values()
                if not (source_root / entry.source_path).exists()
            ]
            for entry in removed:
                self._remove(entry)
            if removed:
                self._dirty = True
        if removed:
            logger.info(f"Pruned {len(removed)} cache entries for deleted sources")
        return removed

    def entries(self) -> List[CacheEntry]:
        with self._lock:
            return sorted(self._entries.values(), key=lambda entry: entry.key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def flush(self) -> bool:
        """Write the manifest if anything changed. Returns True when written."""
        if not self.enabled:
            return False

        with self._lock:
            if not self._dirty:
                return False
            payload = {
                "version": MANIFEST_VERSION,
                "entries": [entry.to_dict() for entry in sorted(self._entries.values(), key=lambda e: e.key)],
            }

        content = json.dumps(payload, indent=2, sort_keys=True) + "\n"
        atomic_write(self.manifest_path, content.encode("utf-8"))
        with self._lock:
            self._dirty = False
        logger.debug(f"Flushed {len(payload['entries'])} cache entries to {self.manifest_path}")
        return True

    def purge(self) -> int:
        """Delete the manifest and cache directory contents. Returns bytes freed."""
        freed = directory_size(self.directory)
        if self.directory.exists():
            shutil.rmtree(self.directory)
        with self._lock:
            self._entries = {}
            self._by_output = {}
            self._dirty = False
        logger.info(f"Purged cache directory {self.directory}")
        return freed

    def stats(self, output_root: Optional[Union[str, Path]] = None) -> CacheStats:
        """Entry counts; entries whose output file is gone count as stale."""
        entries = self.entries()
        stats = CacheStats(total=len(entries), size_bytes=directory_size(self.directory))
        for entry in entries:
            if output_root is None or (Path(output_root) / entry.output_path).exists():
                stats.valid += 1
            else:
                stats.stale += 1
        return stats
