"""
folder_service.py
-----------------
Background execution of folder operations.

Each request method validates its arguments synchronously, starts the work as
an asyncio task (the blocking filesystem calls run in worker threads) and
returns at once. The outcome is published on the NotificationChannel as a
completion message carrying the caller's ``request_id``.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Callable, Iterable

from registry.errors import InvalidRequest
from registry.models import (
    DeletionComplete,
    DuplicationComplete,
    FolderPicked,
    MoveBulkComplete,
    MoveResult,
    OperationMode,
)
from registry.notifications import NotificationChannel
from registry.paths import canonicalize, display_name_of, join, next_duplicate_path

from . import local_folders
from .os_adapter import OSAdapter, get_os_adapter

logger = logging.getLogger(__name__)

TARGET_EXISTS = "Target exists"
SOURCE_MISSING = "Source does not exist"


class FolderService:
    """Runs CopyTree / MoveTree / DeleteTree off the event loop and reports back."""

    def __init__(
        self,
        channel: NotificationChannel,
        *,
        copy_tree: Callable[[str, str, list[str]], None] = local_folders.copy_tree,
        move_tree: Callable[[str, str], None] = local_folders.move_tree,
        delete_tree: Callable[[str], None] = local_folders.delete_tree,
        remove_directory: Callable[[str], None] = local_folders.remove_empty_directory,
        os_adapter: OSAdapter | None = None,
    ):
        self.channel = channel
        self._copy_tree = copy_tree
        self._move_tree = move_tree
        self._delete_tree = delete_tree
        self._remove_directory = remove_directory
        self._os = os_adapter or get_os_adapter()
        self._tasks: set[asyncio.Task] = set()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # -- folder picker ------------------------------------------------------

    def pick_folder(self, request_id: str | None = None) -> None:
        self._spawn(self._pick_folder(request_id))

    async def _pick_folder(self, request_id: str | None) -> None:
        try:
            path = await asyncio.to_thread(self._os.pick_folder)
        except Exception:
            logger.exception("Folder picker failed")
            path = None
        self.channel.publish(FolderPicked(path=path, request_id=request_id))

    # -- duplicate ----------------------------------------------------------

    def duplicate(self, path: str, include_files: list[str] | None = None, request_id: str | None = None,
                  avoid: Iterable[str] = (), target: str | None = None) -> None:
        """Copy ``path`` to ``target`` when free, else to the next free ``name-N`` sibling.

        Names in ``avoid`` are never used.
        """
        path = canonicalize(path or "")
        if not path or not os.path.isdir(path):
            raise InvalidRequest(f"Invalid path: {path!r}")
        target = canonicalize(target) if target else None
        self._spawn(self._duplicate(path, list(include_files or []), request_id, set(avoid), target))

    def _claim_duplicate_path(self, path: str, avoid: set[str], target: str | None) -> str:
        """Create the empty destination directory. mkdir fails on a taken name, which is then skipped."""
        taken = {canonicalize(p) for p in avoid}
        candidate = target if target and target not in taken else None
        while True:
            if candidate is None:
                candidate = next_duplicate_path(path, lambda p: p in taken or os.path.lexists(p))
            try:
                os.mkdir(candidate)
            except FileExistsError:
                taken.add(candidate)
                candidate = None
                continue
            return candidate

    async def _duplicate(self, path: str, include_files: list[str], request_id: str | None,
                         avoid: set[str], target: str | None) -> None:
        try:
            new_path = self._claim_duplicate_path(path, avoid, target)
        except OSError as exc:
            logger.error("[Duplicate] Cannot create a copy of %s: %s", path, exc)
            self.channel.publish(DuplicationComplete(path=path, success=False, error=str(exc),
                                                     request_id=request_id))
            return
        logger.info("[Duplicate] Starting: %s -> %s", path, new_path)
        try:
            await asyncio.to_thread(self._copy_tree, path, new_path, include_files)
        except Exception as exc:
            logger.error("[Duplicate] Failed for %s: %s", path, exc)
            await self._discard(new_path)
            self.channel.publish(DuplicationComplete(path=path, success=False, error=str(exc),
                                                     request_id=request_id))
            return
        logger.info("[Duplicate] Successfully duplicated: %s", new_path)
        self.channel.publish(DuplicationComplete(path=path, success=True, new_path=new_path,
                                                 request_id=request_id))

    async def _discard(self, path: str) -> None:
        try:
            await asyncio.to_thread(self._delete_tree, path)
        except OSError as exc:
            logger.warning("[Duplicate] Could not remove partial copy %s: %s", path, exc)

    # -- delete -------------------------------------------------------------

    def delete(self, path: str, request_id: str | None = None) -> None:
        path = canonicalize(path or "")
        if not path or not os.path.lexists(path):
            raise InvalidRequest(f"Invalid path: {path!r}")
        self._spawn(self._delete(path, request_id))

    async def _delete(self, path: str, request_id: str | None) -> None:
        logger.info("[Delete] Deleting folder: %s", path)
        try:
            await asyncio.to_thread(self._delete_tree, path)
        except Exception as exc:
            logger.error("[Delete] Deletion failed for %s: %s", path, exc)
            self.channel.publish(DeletionComplete(path=path, success=False, error=str(exc),
                                                  request_id=request_id))
            return
        logger.info("[Delete] Deleted: %s", path)
        self.channel.publish(DeletionComplete(path=path, success=True, request_id=request_id))

    # -- bulk move ----------------------------------------------------------

    def move_bulk(self, paths: list[str], target_parent: str, include_files: list[str] | None = None,
                  mode: OperationMode = "move", request_id: str | None = None) -> None:
        if not isinstance(paths, list) or not target_parent:
            raise InvalidRequest("paths must be a list and target_parent is required")
        if mode not in ("move", "copy"):
            raise InvalidRequest(f"Unknown mode: {mode!r}")
        logger.info("[Move] Mode: %s, Items: %d, Target: %s", mode, len(paths), target_parent)
        self._spawn(self._move_bulk([canonicalize(p) for p in paths], canonicalize(target_parent),
                                    list(include_files or []), mode, request_id))

    async def _move_bulk(self, paths: list[str], target_parent: str, include_files: list[str],
                         mode: OperationMode, request_id: str | None) -> None:
        results = []
        for src in paths:
            results.append(await asyncio.to_thread(self._move_one, src, target_parent, include_files, mode))
        logger.info("[Move] Finished bulk move. Results: %d", len(results))
        self.channel.publish(MoveBulkComplete(results=results, request_id=request_id))

    def _move_one(self, src: str, target_parent: str, include_files: list[str], mode: OperationMode) -> MoveResult:
        if not os.path.exists(src):
            logger.warning("[Move] Source does not exist: %s", src)
            return MoveResult(path=src, success=False, error=SOURCE_MISSING)
        dest = join(target_parent, display_name_of(src))
        if os.path.lexists(dest):
            logger.warning("[Move] Target already exists: %s", dest)
            return MoveResult(path=src, success=False, error=TARGET_EXISTS)
        try:
            if mode == "move":
                self._move_tree(src, dest)
            else:
                self._copy_tree(src, dest, include_files)
                self._delete_tree(src)
        except Exception as exc:
            logger.error("[Move] Failed for %s: %s", src, exc)
            return MoveResult(path=src, success=False, error=str(exc))
        logger.info("[Move] Successfully moved: %s -> %s", src, dest)
        return MoveResult(path=src, success=True, new_path=dest)

    # -- small synchronous helpers -------------------------------------------

    async def remove_empty_directory(self, path: str) -> bool:
        """Best effort; failures are logged and reported as False."""
        try:
            await asyncio.to_thread(self._remove_directory, path)
        except OSError as exc:
            logger.warning("Could not remove group directory %s: %s", path, exc)
            return False
        return True

    async def open_in_editor(self, editor: str, path: str) -> None:
        await asyncio.to_thread(self._os.open_in_editor, editor, path)

    async def write_file(self, folder: str, filename: str, content: str) -> None:
        await asyncio.to_thread(local_folders.write_file, folder, filename, content)


__all__ = ["FolderService", "SOURCE_MISSING", "TARGET_EXISTS"]
