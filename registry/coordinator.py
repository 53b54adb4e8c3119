"""The single owner of the registry.

``BulkOperationCoordinator`` holds the tree, the preferences, the notification
channel, the git watcher, the feedback board and the state file, and runs
every mutation on the event loop. Operations are begun synchronously (so
validation errors reach the caller before anything happens) and finished in
a task.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Iterable

from pydantic import ValidationError

from common.config import Settings
from connectors.folder_service import FolderService

from .errors import InvalidRequest, OperationFailed, UnknownEntry
from .feedback import FeedbackBoard
from .models import GitInfoUpdate, GitStatus, Preferences, RegistryState, RegistryUpdated, now_ms
from .notifications import NotificationChannel
from .operations import (
    DeleteOperation,
    DuplicateOperation,
    GroupOperation,
    ImportOperation,
    MoveBulkOperation,
    Operation,
    OperationOutcome,
    UngroupOperation,
)
from .paths import canonicalize, display_name_of
from .persistence import StateStore, heal_nodes
from .tree import TreeStore
from .watcher import GitStatusWatcher

logger = logging.getLogger(__name__)


class BulkOperationCoordinator:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        channel: NotificationChannel | None = None,
        service: FolderService | None = None,
        watcher: GitStatusWatcher | None = None,
        store: StateStore | None = None,
        state: RegistryState | None = None,
    ):
        self.settings = settings or Settings()
        self.channel = channel or NotificationChannel()
        self.service = service or FolderService(self.channel)
        self.watcher = watcher or GitStatusWatcher(
            self._status_from_watcher,
            ignore=self.settings.watch_ignore,
            depth=self.settings.watch_depth,
        )
        self.store = store
        self.feedback = FeedbackBoard(
            self.channel.publish,
            success_delay=self.settings.success_toast_seconds,
            failure_delay=self.settings.failure_toast_seconds,
        )
        state = state or RegistryState()
        self.tree = TreeStore(heal_nodes(state.nodes))
        self.preferences = state.preferences
        self._active: list[Operation] = []
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe = self.channel.subscribe(self._on_message)

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Load the state file, watch every folder and read its status."""
        self.channel.bind(asyncio.get_running_loop())
        if self.store is not None:
            state = self.store.load()
            self.tree = TreeStore(state.nodes)
            self.preferences = state.preferences
        for leaf in self.tree.flatten():
            self.watcher.start_watching(leaf.path)
        logger.info("Registry loaded: %d folders", len(self.tree.flatten()))
        await self.refresh_status()

    async def shutdown(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._unsubscribe()
        self.watcher.close()
        self.feedback.clear()
        self.save()

    # -- state --------------------------------------------------------------

    def state(self) -> RegistryState:
        return RegistryState(nodes=self.tree.ordered(self.preferences.sort_by_name), preferences=self.preferences)

    def settled_view(self) -> TreeStore:
        """The tree with every in-flight prediction undone."""
        view = self.tree.copy()
        for op in reversed(self._active):
            view.restore(op.snapshot)
        return view

    def reserved_paths(self, exclude: Operation | None = None) -> set[str]:
        """Paths claimed by the previews of in-flight operations other than ``exclude``."""
        return {path for op in self._active if op is not exclude for path in op.snapshot.preview_paths}

    def save(self) -> None:
        if self.store is None:
            return
        state = RegistryState(nodes=self.settled_view().nodes, preferences=self.preferences)
        try:
            self.store.save(state)
        except OSError as exc:
            logger.error("Could not save registry to %s: %s", self.store.path, exc)

    def publish_registry(self) -> None:
        self.channel.publish(RegistryUpdated(revision=self.tree.revision,
                                             nodes=self.tree.ordered(self.preferences.sort_by_name)))

    def commit(self) -> None:
        self.publish_registry()
        self.save()

    def include_files(self, extra: Iterable[str] = ()) -> list[str]:
        return list(dict.fromkeys([*self.preferences.copy_include_files, *extra]))

    # -- operation plumbing ---------------------------------------------------

    def submit(self, op: Operation) -> asyncio.Task:
        """Begin ``op`` now and finish it in a task."""
        op.begin()
        if not op.noop:
            self.publish_registry()
        task = asyncio.get_running_loop().create_task(op.finish())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def operation_started(self, op: Operation) -> None:
        self._active.append(op)

    def operation_finished(self, op: Operation, *, success: bool, toast: str) -> None:
        if op in self._active:
            self._active.remove(op)
        for old, new in op.moved:
            self.watcher.restart_watching(old, new)
        for path in op.added:
            self.watcher.start_watching(path)
        for path in op.removed:
            self.watcher.stop_watching(path)
        self.feedback.settle(op.toast_id, success, toast)
        self.commit()
        refreshed = [new for _, new in op.moved] + [p for p in op.added if not isinstance(op, ImportOperation)]
        if refreshed:
            self._spawn(self.refresh_status(refreshed))

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # -- git status ------------------------------------------------------------

    def _status_from_watcher(self, path: str, status: GitStatus) -> None:
        # observer thread
        self.channel.publish_threadsafe(GitInfoUpdate(path=path, **status.model_dump()))

    def _on_message(self, message: Any) -> None:
        if isinstance(message, GitInfoUpdate) and self._apply_status(message.path, message.status):
            self.publish_registry()

    def _apply_status(self, path: str, status: GitStatus) -> bool:
        return self.tree.update_leaf(path, lambda leaf: leaf.with_status(status))

    async def read_status(self, path: str) -> GitStatus:
        return await asyncio.to_thread(self.watcher.get_status, path)

    async def refresh_status(self, paths: Iterable[str] | None = None) -> int:
        """Re-read git status for ``paths`` (every folder by default)."""
        targets = [canonicalize(p) for p in paths] if paths is not None else [leaf.path for leaf in self.tree.flatten()]
        updated = 0
        for path in targets:
            status = await self.read_status(path)
            if self.tree.find_by_path(path) is None:
                continue
            self.channel.publish(GitInfoUpdate(path=path, **status.model_dump()))
            updated += 1
        return updated

    # -- operations --------------------------------------------------------------

    async def import_folder(self, path: str) -> OperationOutcome:
        return await self.submit(ImportOperation(self, path))

    async def pick_and_import(self) -> OperationOutcome | None:
        """Show the native folder picker and import the choice; None when cancelled."""
        request_id = uuid.uuid4().hex
        pending = self.channel.expect("FOLDER_PICKED", lambda msg: msg.request_id == request_id, key=request_id)
        self.service.pick_folder(request_id)
        message = await pending.wait(self.settings.picker_timeout)
        if not message.path:
            logger.info("Folder picker cancelled")
            return None
        return await self.import_folder(message.path)

    async def duplicate(self, path: str, extra_include_files: Iterable[str] = ()) -> OperationOutcome:
        return await self.submit(DuplicateOperation(self, path, extra_include_files))

    async def delete(self, path: str) -> OperationOutcome:
        return await self.submit(DeleteOperation(self, path))

    async def move_bulk(self, paths: list[str], target_parent: str, extra_include_files: Iterable[str] = (),
                        mode: str | None = None) -> OperationOutcome:
        return await self.submit(MoveBulkOperation(self, paths, target_parent, extra_include_files, mode))

    async def group(self, paths: list[str], name: str, extra_include_files: Iterable[str] = ()) -> OperationOutcome:
        return await self.submit(GroupOperation(self, paths, name, extra_include_files))

    async def ungroup(self, group_id: str) -> OperationOutcome:
        return await self.submit(UngroupOperation(self, group_id))

    async def open_in_editor(self, path: str, editor: str | None = None) -> str:
        path = canonicalize(path or "")
        if self.tree.find_by_path(path) is None:
            raise UnknownEntry(f"Not registered: {path!r}")
        editor = editor or self.preferences.editor.value
        if not editor:
            raise InvalidRequest("No editor configured")
        try:
            await self.service.open_in_editor(editor, path)
        except OSError as exc:
            self.feedback.settle(None, False, f"Could not open {display_name_of(path)} in {editor}: {exc}")
            raise OperationFailed(f"Could not launch {editor}: {exc}") from exc
        self.tree.update_leaf(path, lambda leaf: leaf.model_copy(update={"last_used_at": now_ms()}))
        self.commit()
        logger.info("Opened %s in %s", path, editor)
        return editor

    async def sync_managed_file(self, file_id: str) -> dict[str, list[str]]:
        """Write a managed file into every folder whose name matches its pattern."""
        managed = next((f for f in self.preferences.managed_files if f.id == file_id), None)
        if managed is None:
            raise UnknownEntry(f"Unknown managed file: {file_id!r}")
        if not managed.filename or not managed.target_pattern:
            raise InvalidRequest("Managed file needs a filename and a target pattern")
        written: list[str] = []
        failed: list[str] = []
        for leaf in self.tree.flatten():
            if not managed.matches(display_name_of(leaf.path)):
                continue
            try:
                await self.service.write_file(leaf.path, managed.filename, managed.content)
            except (OSError, ValueError) as exc:
                logger.error("Could not write %s into %s: %s", managed.filename, leaf.path, exc)
                failed.append(leaf.path)
            else:
                written.append(leaf.path)
        self.feedback.settle(None, not failed,
                             f"Synced {managed.filename} to {len(written)} folder(s)"
                             + (f", {len(failed)} failed" if failed else ""))
        return {"written": written, "failed": failed}

    def update_preferences(self, patch: dict[str, Any]) -> Preferences:
        try:
            preferences = Preferences.model_validate({**self.preferences.model_dump(), **patch})
        except ValidationError as exc:
            raise InvalidRequest(f"Invalid preferences: {exc}") from exc
        self.preferences = preferences
        self.commit()
        return preferences


__all__ = ["BulkOperationCoordinator"]
