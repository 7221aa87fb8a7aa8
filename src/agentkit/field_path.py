"""Dotted field paths over JSON records (``"customer.address.city"``, ``"items.0.sku"``)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List

_MISSING = object()


@dataclass
class FieldPathError(Exception):
    message: str
    path: str
    segment: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        if self.segment is None:
            return f"{self.message} (path={self.path!r})"
        return f"{self.message} (path={self.path!r}, segment={self.segment!r})"


def split_path(path: str) -> List[str]:
    if not isinstance(path, str) or path == "":
        raise FieldPathError("Field path must be a non-empty string", str(path))
    segments = path.split(".")
    for segment in segments:
        if segment == "":
            raise FieldPathError("Empty path segment", path, segment)
    return segments


def _step(current: Any, segment: str) -> Any:
    if isinstance(current, dict):
        return current.get(segment, _MISSING)
    if isinstance(current, list):
        if not segment.isdigit():
            return _MISSING
        idx = int(segment)
        if idx >= len(current):
            return _MISSING
        return current[idx]
    return _MISSING


def _lookup(obj: Any, path: str) -> Any:
    current = obj
    for segment in split_path(path):
        current = _step(current, segment)
        if current is _MISSING:
            return _MISSING
    return current


def get_field(obj: Any, path: str, default: Any = None) -> Any:
    """Resolve ``path`` against ``obj``; missing segments yield ``default``."""
    value = _lookup(obj, path)
    return default if value is _MISSING else value


def has_field(obj: Any, path: str) -> bool:
    return _lookup(obj, path) is not _MISSING


def set_field(obj: dict, path: str, value: Any) -> None:
    """Write ``value`` at ``path``, creating intermediate objects as needed."""
    segments = split_path(path)
    current: Any = obj
    for segment in segments[:-1]:
        if isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            nxt = current[int(segment)]
            if nxt is None:
                nxt = {}
                current[int(segment)] = nxt
        elif isinstance(current, dict):
            nxt = current.get(segment)
            if nxt is None:
                nxt = {}
                current[segment] = nxt
        else:
            raise FieldPathError("Cannot traverse into non-container", path, segment)
        current = nxt

    last = segments[-1]
    if isinstance(current, dict):
        current[last] = value
        return
    if isinstance(current, list) and last.isdigit() and int(last) < len(current):
        current[int(last)] = value
        return
    raise FieldPathError("Cannot assign into non-container", path, last)
