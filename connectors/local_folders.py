"""Filesystem primitives: copy, move and delete whole project folders.

``copy_tree`` copies what git would consider part of the project (tracked plus
untracked-but-not-ignored files), the ``.git`` directory itself, and any
explicitly included files even when they are ignored (``.env.local`` and the
like). Symlinks stay symlinks and file modes are preserved. A locally
configured git identity is re-applied on the copy.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from .git_info import run_git, apply_git_identity, git_dir_of, local_git_identity

logger = logging.getLogger(__name__)


def tracked_and_untracked_files(src: str | Path) -> list[str] | None:
    """Relative paths from ``git ls-files -co --exclude-standard``; None outside a work tree."""
    output = run_git(["ls-files", "-z", "-co", "--exclude-standard"], src)
    if output is None:
        return None
    return [name for name in output.split("\0") if name.strip()]


def _copy_entry(src_file: Path, dest_file: Path) -> None:
    dest_file.parent.mkdir(parents=True, exist_ok=True)
    if src_file.is_symlink():
        if dest_file.is_symlink() or dest_file.exists():
            dest_file.unlink()
        os.symlink(os.readlink(src_file), dest_file)
    elif src_file.is_file():
        shutil.copy2(src_file, dest_file)


def copy_tree(src: str | Path, dest: str | Path, include_files: list[str] | None = None) -> None:
    """Selective project copy of ``src`` into ``dest``."""
    src, dest = Path(src), Path(dest)
    if not src.is_dir():
        raise FileNotFoundError(f"Source does not exist: {src}")

    files = tracked_and_untracked_files(src) if git_dir_of(src) is not None else None
    if files is None:
        logger.info("%s is not a git work tree, copying everything", src)
        shutil.copytree(src, dest, symlinks=True, dirs_exist_ok=True)
        return

    dest.mkdir(parents=True, exist_ok=True)
    identity = local_git_identity(src)

    dot_git = src / ".git"
    if dot_git.is_dir():
        logger.info("Copying .git folder to %s", dest)
        shutil.copytree(dot_git, dest / ".git", symlinks=True, dirs_exist_ok=True)
    elif dot_git.is_file():
        shutil.copy2(dot_git, dest / ".git")

    selected = dict.fromkeys(files)
    explicit = 0
    for name in include_files or []:
        if (src / name).exists() or (src / name).is_symlink():
            selected.setdefault(name)
            explicit += 1
    logger.info("Copying %d files (%d explicitly included) from %s", len(selected), explicit, src)

    for name in selected:
        try:
            _copy_entry(src / name, dest / name)
        except OSError as exc:
            logger.error("Failed to copy %s: %s", src / name, exc)

    if identity:
        apply_git_identity(dest, identity)
    logger.info("Copied %s to %s", src, dest)


def move_tree(src: str | Path, dest: str | Path) -> None:
    """Rename ``src`` to ``dest``; across devices, copy everything and delete the source."""
    src, dest = Path(src), Path(dest)
    if not src.exists():
        raise FileNotFoundError(f"Source does not exist: {src}")
    dest.parent.mkdir(parents=True, exist_ok=True)
    try:
        os.rename(src, dest)
    except OSError as exc:
        logger.warning("Rename %s -> %s failed (%s), falling back to copy+delete", src, dest, exc)
        shutil.copytree(src, dest, symlinks=True)
        shutil.rmtree(src)


def delete_tree(path: str | Path) -> None:
    """Remove a folder; a registered symlink (even a dangling one) is unlinked, not followed."""
    path = Path(path)
    if path.is_symlink():
        path.unlink()
        return
    if not path.exists():
        raise FileNotFoundError(f"Path does not exist: {path}")
    shutil.rmtree(path)


def remove_empty_directory(path: str | Path) -> None:
    """rmdir; raises OSError when the directory is missing or not empty."""
    os.rmdir(path)


def list_directories(path: str | Path) -> dict:
    """Visible sub-directories of ``path`` for a browser-side folder picker."""
    base = Path(path)
    dirs = [
        {"name": entry.name, "path": str(base / entry.name)}
        for entry in sorted(os.scandir(base), key=lambda e: e.name.lower())
        if entry.is_dir() and not entry.name.startswith(".")
    ]
    return {"current_path": str(base), "parent": str(base.parent), "dirs": dirs}


def write_file(folder: str | Path, filename: str, content: str) -> Path:
    """Write ``filename`` at the root of ``folder``."""
    target = Path(folder) / filename
    if target.parent != Path(folder):
        raise ValueError(f"Managed files must live at the folder root: {filename!r}")
    target.write_text(content, encoding="utf-8")
    return target


__all__ = [
    "copy_tree",
    "delete_tree",
    "list_directories",
    "move_tree",
    "remove_empty_directory",
    "tracked_and_untracked_files",
    "write_file",
]
