"""Per-folder git status watches built on watchdog.

Each watched folder gets two watches, started and stopped together:

* a content watch on the folder (events deeper than ``depth`` levels, or inside
  ignored directories such as ``.git`` and ``node_modules``, are dropped);
* a watch on the repository's git directory that only reacts to ``HEAD`` and
  ``index``, so commits, checkouts and staging are noticed.

Every accepted event re-reads the status right away, on the observer thread,
and hands it to ``on_status``. There is no polling.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Callable, Iterable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import ObservedWatch

from connectors.git_info import git_dir_of, read_git_status

from .models import GitStatus
from .paths import canonicalize

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str, GitStatus], None]

RELEVANT_EVENTS = {"created", "deleted", "modified", "moved"}
GIT_STATE_FILES = {"HEAD", "index"}


class _ContentHandler(FileSystemEventHandler):
    def __init__(self, watcher: GitStatusWatcher, root: str):
        self.watcher = watcher
        self.root = root

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in RELEVANT_EVENTS:
            return
        if not any(self.watcher.accepts(self.root, p) for p in _event_paths(event)):
            return
        logger.debug("[Watcher] File event: %s in %s", event.event_type, self.root)
        self.watcher.refresh(self.root)


class _GitStateHandler(FileSystemEventHandler):
    def __init__(self, watcher: GitStatusWatcher, root: str):
        self.watcher = watcher
        self.root = root

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in RELEVANT_EVENTS:
            return
        if not any(os.path.basename(p) in GIT_STATE_FILES for p in _event_paths(event)):
            return
        logger.debug("[Watcher] Git event: %s in %s", event.event_type, self.root)
        self.watcher.refresh(self.root)


def _event_paths(event: FileSystemEvent) -> list[str]:
    paths = [os.fsdecode(event.src_path)]
    dest = getattr(event, "dest_path", "")
    if dest:
        paths.append(os.fsdecode(dest))
    return paths


@dataclass
class WatchHandle:
    content: ObservedWatch
    git_state: ObservedWatch | None = None


class GitStatusWatcher:
    """Owns the observer and the table of active per-path watches."""

    def __init__(
        self,
        on_status: StatusCallback,
        *,
        read_status: Callable[[str], GitStatus] = read_git_status,
        ignore: Iterable[str] = (".git", "node_modules"),
        depth: int = 1,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        self._on_status = on_status
        self._read_status = read_status
        self.ignore = set(ignore)
        self.depth = depth
        self._observer_factory = observer_factory
        self._observer = None
        self._watches: dict[str, WatchHandle] = {}
        self._lock = threading.Lock()

    # -- state --------------------------------------------------------------

    def is_watching(self, path: str) -> bool:
        return canonicalize(path) in self._watches

    def watched_paths(self) -> set[str]:
        return set(self._watches)

    def accepts(self, root: str, event_path: str) -> bool:
        """True when a content event under ``root`` should refresh its status."""
        rel = os.path.relpath(event_path, root)
        if rel.startswith(os.pardir):
            return False
        parts = [] if rel == os.curdir else rel.split(os.sep)
        if any(part in self.ignore for part in parts):
            return False
        return len(parts) <= self.depth + 1

    # -- lifecycle ----------------------------------------------------------

    def _ensure_observer(self):
        if self._observer is None:
            self._observer = self._observer_factory()
            self._observer.daemon = True
            self._observer.start()
        return self._observer

    def start_watching(self, path: str) -> bool:
        """Begin watching ``path``; no-op (False) when already watched or unwatchable."""
        root = canonicalize(path)
        with self._lock:
            if root in self._watches:
                return False
            if not os.path.isdir(root):
                logger.warning("[Watcher] Not a directory, not watching: %s", root)
                return False
            observer = self._ensure_observer()
            try:
                content = observer.schedule(_ContentHandler(self, root), root, recursive=True)
            except OSError as exc:
                logger.warning("[Watcher] Cannot watch %s: %s", root, exc)
                return False
            git_state = None
            git_dir = git_dir_of(root)
            if git_dir is not None and git_dir.is_dir():
                try:
                    git_state = observer.schedule(_GitStateHandler(self, root), str(git_dir), recursive=False)
                except OSError as exc:
                    logger.warning("[Watcher] Cannot watch git state of %s: %s", root, exc)
            self._watches[root] = WatchHandle(content=content, git_state=git_state)
        logger.info("[Watcher] Starting for: %s", root)
        return True

    def stop_watching(self, path: str) -> bool:
        """Release both watches of ``path``. Safe to call repeatedly."""
        root = canonicalize(path)
        with self._lock:
            handle = self._watches.pop(root, None)
            if handle is None or self._observer is None:
                return False
            for watch in (handle.content, handle.git_state):
                if watch is None:
                    continue
                try:
                    self._observer.unschedule(watch)
                except (KeyError, OSError) as exc:
                    logger.debug("[Watcher] unschedule failed for %s: %s", root, exc)
        logger.info("[Watcher] Stopped for: %s", root)
        return True

    def restart_watching(self, old_path: str, new_path: str) -> None:
        self.stop_watching(old_path)
        self.start_watching(new_path)

    def close(self) -> None:
        for root in list(self._watches):
            self.stop_watching(root)
        with self._lock:
            observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join(timeout=5)

    # -- status -------------------------------------------------------------

    def get_status(self, path: str) -> GitStatus:
        """On-demand read; degrades to the default status instead of raising."""
        try:
            return self._read_status(canonicalize(path))
        except Exception:
            logger.exception("[Watcher] Status read failed for %s", path)
            return GitStatus()

    def refresh(self, path: str) -> None:
        root = canonicalize(path)
        if root not in self._watches:
            return
        status = self.get_status(root)
        try:
            self._on_status(root, status)
        except Exception:
            logger.exception("[Watcher] Status callback failed for %s", root)


__all__ = ["GitStatusWatcher", "WatchHandle"]
