"""Path identity helpers: canonical paths, node ids and derived names."""

from __future__ import annotations

import os
import posixpath
import re
from typing import Callable, Iterable
from urllib.parse import quote, unquote

SEP = "/"

_SUFFIX_RE = re.compile(r"^(.*?)-(\d+)$")
_WHITESPACE_RE = re.compile(r"\s+")


def canonicalize(path: str) -> str:
    """Strip trailing separators. The filesystem root stays ``/``."""
    if not path:
        return path
    stripped = path.rstrip(SEP)
    return stripped or SEP


def identity_of(path: str) -> str:
    """Collision-free id for ``path`` that contains no separators.

    The canonical path is percent-escaped, ``_`` is escaped as well, and then
    every ``%`` becomes ``_``. Only escapes produce ``_``, so the mapping can be
    reversed with :func:`path_of_identity`.
    """
    escaped = quote(canonicalize(path), safe="")
    return escaped.replace("_", "%5F").replace("%", "_")


def path_of_identity(node_id: str) -> str:
    return unquote(node_id.replace("_", "%"))


def display_name_of(path: str) -> str:
    canonical = canonicalize(path)
    segments = [part for part in canonical.split(SEP) if part]
    return segments[-1] if segments else canonical


def parent_of(path: str) -> str:
    return posixpath.dirname(canonicalize(path)) or SEP


def join(parent: str, name: str) -> str:
    return canonicalize(posixpath.join(canonicalize(parent), name))


def next_duplicate_path(path: str, is_taken: Callable[[str], bool]) -> str:
    """First free ``<base>-<n>`` sibling of ``path``.

    A name already ending in ``-N`` continues counting from ``N + 1``.
    """
    canonical = canonicalize(path)
    parent = parent_of(canonical)
    name = display_name_of(canonical)
    match = _SUFFIX_RE.match(name)
    if match:
        base = match.group(1) or name
        counter = int(match.group(2)) + 1
    else:
        base, counter = name, 1
    while True:
        candidate = join(parent, f"{base}-{counter}")
        if not is_taken(candidate):
            return candidate
        counter += 1


def sanitize_group_name(name: str) -> str:
    return _WHITESPACE_RE.sub("_", name.strip())


def common_parent(paths: Iterable[str]) -> str:
    """Directory that should receive a physical group of ``paths``.

    This is the longest common prefix by whole segments. When that prefix is
    itself one of the selected folders its parent is used, so a folder is
    never moved inside itself.
    """
    canonical = [canonicalize(p) for p in paths]
    if not canonical:
        raise ValueError("common_parent() needs at least one path")
    prefix = canonicalize(os.path.commonpath(canonical))
    if prefix in canonical:
        prefix = parent_of(prefix)
    return prefix


def is_within(path: str, ancestor: str) -> bool:
    path, ancestor = canonicalize(path), canonicalize(ancestor)
    if ancestor == SEP:
        return path.startswith(SEP)
    return path == ancestor or path.startswith(ancestor + SEP)


__all__ = [
    "canonicalize",
    "common_parent",
    "display_name_of",
    "identity_of",
    "is_within",
    "join",
    "next_duplicate_path",
    "parent_of",
    "path_of_identity",
    "sanitize_group_name",
]
