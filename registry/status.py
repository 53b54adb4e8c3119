"""Transient status prefixes shown on names while an operation is in flight."""

from __future__ import annotations

from enum import Enum


class StatusPrefix(str, Enum):
    MOVING = "Moving"
    GROUPING = "Grouping"
    UNGROUPING = "Ungrouping"
    COPYING = "Copying"
    IMPORTING = "Importing"


_MARKERS = tuple(f"{prefix.value}: " for prefix in StatusPrefix)


def tag(prefix: StatusPrefix, name: str) -> str:
    return f"{StatusPrefix(prefix).value}: {name}"


def untag(name: str) -> str:
    """Strip every leading status prefix; plain names come back unchanged."""
    while True:
        for marker in _MARKERS:
            if name.startswith(marker):
                name = name[len(marker):]
                break
        else:
            return name


def is_tagged(name: str) -> bool:
    return name.startswith(_MARKERS)


__all__ = ["StatusPrefix", "is_tagged", "tag", "untag"]
