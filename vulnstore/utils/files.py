"""File walking, JSON loading, time handling and version helpers."""

from __future__ import annotations

import json
import logging
import os
import re
import stat
import sys
import tempfile
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from typing import Any, BinaryIO

logger = logging.getLogger(__name__)

_RFC3339 = re.compile(
    r"[0-9]{4}-[0-9]{2}-[0-9]{2}T[0-9]{2}:[0-9]{2}:[0-9]{2}(\.[0-9]+)?(Z|[+-][0-9]{2}:[0-9]{2})"
)


def _iter_files(path: str) -> Iterator[tuple[str, int]]:
    """Yield (path, size) of every non-directory below path, in lexical order."""
    info = os.lstat(path)
    if not stat.S_ISDIR(info.st_mode):
        yield path, info.st_size
        return
    with os.scandir(path) as it:
        names = sorted(entry.name for entry in it)
    for name in names:
        yield from _iter_files(os.path.join(path, name))


def file_walk(root: str | os.PathLike[str], walk_fn: Callable[[BinaryIO, str], Any]) -> None:
    """Call walk_fn with an open binary file and its path for each non-empty file under root."""
    for path, size in _iter_files(os.fspath(root)):
        if size == 0:
            logger.info("Invalid file size: %s (size=%d)", path, size)
            continue
        with open(path, "rb") as file:
            walk_fn(file, path)


def exists(path: str | os.PathLike[str]) -> bool:
    """Tell whether path exists; errors other than a missing path propagate."""
    try:
        os.stat(path)
    except FileNotFoundError:
        return False
    return True


def load_json_file(file_name: str | os.PathLike[str]) -> Any:
    """Read and decode a JSON file."""
    with open(file_name, "rb") as file:
        return json.load(file)


def must_time_parse(value: str) -> datetime:
    """Parse an RFC 3339 timestamp, raising ValueError if it is malformed."""
    match = _RFC3339.fullmatch(value) if isinstance(value, str) else None
    try:
        if match is None:
            raise ValueError(f"cannot parse {value!r} as an RFC 3339 time")
        fraction = (match[1] or "")[:7]
        return datetime.fromisoformat(value[: match.start(1) if match[1] else match.start(2)]
                                      + fraction + match[2].replace("Z", "+00:00"))
    except ValueError as exc:
        logger.error("Failed to parse time: value=%r error=%s", value, exc)
        raise


def _format_time(value: datetime) -> str:
    """RFC 3339 text with trailing zeros of the fraction dropped and "Z" for UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += f".{value.microsecond:06d}".rstrip("0")
    minutes = int(value.utcoffset().total_seconds()) // 60
    if not minutes:
        return text + "Z"
    hours, rest = divmod(abs(minutes), 60)
    return f"{text}{'+' if minutes > 0 else '-'}{hours:02d}:{rest:02d}"


def _user_cache_dir() -> str:
    if sys.platform == "win32":
        base = os.environ.get("LOCALAPPDATA")
    elif sys.platform == "darwin":
        home = os.environ.get("HOME")
        base = os.path.join(home, "Library", "Caches") if home else None
    else:
        base = os.environ.get("XDG_CACHE_HOME")
        if base and not os.path.isabs(base):
            base = None
        elif not base:
            home = os.environ.get("HOME")
            base = os.path.join(home, ".cache") if home else None
    if not base:
        raise OSError("user cache directory is not defined")
    return base


def cache_dir() -> str:
    """Default cache directory, falling back to the temporary directory."""
    try:
        base = _user_cache_dir()
    except OSError:
        base = tempfile.gettempdir()
    return os.path.join(base, "vulnstore")


def construct_version(epoch: str, version: str, release: str) -> str:
    """Compose "epoch:version-release", leaving out a zero or empty epoch and an empty release."""
    text = f"{epoch}:" if epoch not in ("0", "") else ""
    text += version
    return f"{text}-{release}" if release else text