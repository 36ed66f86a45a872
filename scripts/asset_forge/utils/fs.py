"""
File helpers: content hashing, atomic writes and size reporting.
"""

import os
import hashlib
import tempfile
from pathlib import Path
from typing import Union

# mkstemp creates 0600 files; outputs get the usual umask-based mode instead
_UMASK = os.umask(0)
os.umask(_UMASK)
FILE_MODE = 0o666 & ~_UMASK


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def atomic_write(path: Union[str, Path], data: bytes) -> None:
    """
    Write bytes so readers only ever see the old or the complete new file.

    The data goes to a temporary file in the destination directory which is
    then renamed over the target.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, FILE_MODE)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def directory_size(path: Union[str, Path]) -> int:
    """Total size in bytes of all files below path."""
    path = Path(path)
    if path.is_file():
        return path.stat().st_size
    if not path.exists():
        return 0
    return sum(p.stat().st_size for p in path.rglob('*') if p.is_file())


def format_size(size: int) -> str:
    """Human readable byte count."""
    value = float(size)
    for unit in ('B', 'KB', 'MB', 'GB'):
        if value < 1024 or unit == 'GB':
            return f"{value:.0f} {unit}" if unit == 'B' else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


def format_size_change(original: int, output: int) -> str:
    """'12.0 KB → 8.0 KB (-33.3%)'"""
    if not original:
        return f"{format_size(original)} → {format_size(output)}"
    change = (output / original - 1.0) * 100.0
    return f"{format_size(original)} → {format_size(output)} ({change:+.1f}%)"
