"""Optimistic registry operations.

Every mutating operation follows the same transaction:

``begin()``
    validate (raising :class:`InvalidRequest` before any side effect), capture
    a snapshot of the affected entries and show a prediction tagged with a
    status prefix.
``await finish()``
    run the filesystem work, then either reconcile (restore the snapshot and
    apply the authoritative outcome) or roll back (restore the snapshot),
    re-register git watches, settle the toast and persist.

Subclasses only provide the ``validate``/``predict``/``execute``/``apply``
steps; the coordinator drives them.
"""

from __future__ import annotations

import logging
import os
import uuid
from typing import TYPE_CHECKING, Any, Iterable

from pydantic import BaseModel, Field

from .errors import InvalidRequest, OperationFailed, UnknownEntry
from .models import (
    GitStatus,
    GroupNode,
    LeafNode,
    MoveResult,
    OperationMode,
    group_id_for,
    logical_group_path,
    now_ms,
    pending_id,
)
from .paths import (
    canonicalize,
    common_parent,
    display_name_of,
    is_within,
    join,
    next_duplicate_path,
    parent_of,
    sanitize_group_name,
)
from .status import StatusPrefix, tag
from .tree import Snapshot, TreeStore

if TYPE_CHECKING:
    from .coordinator import BulkOperationCoordinator

logger = logging.getLogger(__name__)

LOADING = "loading..."


class OperationOutcome(BaseModel):
    """What an operation reports back to its caller."""

    kind: str
    success: bool
    message: str = ""
    new_path: str | None = None
    group_id: str | None = None
    results: list[MoveResult] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# helpers shared by the move-based operations


def predict_destinations(tree: TreeStore, paths: Iterable[str], target_parent: str) -> dict[str, str | None]:
    """Predicted new path per source, or None when it would collide.

    A destination collides when a registered leaf already lives there or an
    earlier source in the same batch claimed it.
    """
    known = tree.paths()
    claimed: set[str] = set()
    predicted: dict[str, str | None] = {}
    for path in paths:
        dest = join(target_parent, display_name_of(path))
        if dest == path or dest in known or dest in claimed:
            predicted[path] = None
            continue
        claimed.add(dest)
        predicted[path] = dest
    return predicted


def preview_leaf(leaf: LeafNode, prefix: StatusPrefix, dest: str | None) -> LeafNode:
    moved = leaf.moved_to(dest) if dest else leaf
    return moved.renamed(tag(prefix, moved.name))


def apply_moves(tree: TreeStore, results: Iterable[MoveResult]) -> list[tuple[str, str]]:
    """Rewrite successfully moved leaves in place; returns ``(old, new)`` pairs."""
    moved: list[tuple[str, str]] = []
    for result in results:
        if not result.success or not result.new_path:
            continue
        new_path = canonicalize(result.new_path)
        if tree.find_by_path(new_path) is not None:
            # already registered at the destination; keep that entry
            tree.remove_by_paths([result.path])
        else:
            tree.update_leaf(result.path, lambda leaf, p=new_path: leaf.moved_to(p))
        moved.append((canonicalize(result.path), new_path))
    return moved


def _require_directory(path: str) -> str:
    path = canonicalize(path or "")
    if not path or not os.path.isdir(path):
        raise InvalidRequest(f"Invalid path: {path!r}")
    return path


def _summarize_failures(results: list[MoveResult]) -> str:
    return "; ".join(f"{display_name_of(r.path)}: {r.error}" for r in results if not r.success)


# ---------------------------------------------------------------------------


class Operation:
    """Base optimistic transaction."""

    kind = "operation"
    prefix: StatusPrefix | None = None

    def __init__(self, coordinator: BulkOperationCoordinator):
        self.coordinator = coordinator
        self.request_id = uuid.uuid4().hex
        self.snapshot: Snapshot | None = None
        self.toast_id: str | None = None
        self.noop = False
        self.moved: list[tuple[str, str]] = []
        self.added: list[str] = []
        self.removed: list[str] = []

    @property
    def tree(self) -> TreeStore:
        return self.coordinator.tree

    # -- steps supplied by subclasses ----------------------------------------

    def validate(self) -> None:
        pass

    def capture(self) -> Snapshot:
        return self.tree.capture([])

    def predict(self) -> None:
        """Show the predicted outcome through the tree's ``preview_*`` edits."""

    async def execute(self) -> Any:
        return None

    def apply(self, outcome: Any) -> OperationOutcome:
        raise NotImplementedError

    async def cleanup(self, outcome: OperationOutcome) -> None:
        """Best-effort work after a successful reconcile."""

    def progress_message(self) -> str:
        return f"{self.kind}..."

    def failure_message(self, exc: Exception) -> str:
        return f"{self.kind} failed: {exc}"

    # -- driver --------------------------------------------------------------

    def begin(self) -> None:
        self.validate()
        if self.noop:
            return
        self.snapshot = self.capture()
        self.predict()
        self.toast_id = self.coordinator.feedback.start(self.progress_message())
        self.coordinator.operation_started(self)

    async def finish(self) -> OperationOutcome:
        if self.noop:
            return self.noop_outcome()
        try:
            raw = await self.execute()
        except Exception as exc:
            logger.error("[%s] %s", self.kind, exc)
            return self.abort(exc)
        try:
            self.tree.restore(self.snapshot)
            outcome = self.apply(raw)
        except Exception as exc:
            logger.exception("[%s] Could not reconcile the registry", self.kind)
            return self.abort(exc)
        self.coordinator.operation_finished(self, success=outcome.success, toast=outcome.message)
        if outcome.success:
            await self.cleanup(outcome)
        return outcome

    def abort(self, exc: Exception) -> OperationOutcome:
        """Roll back, settle the toast and report the failure."""
        self.moved, self.added, self.removed = [], [], []
        self.rollback()
        message = self.failure_message(exc)
        self.coordinator.operation_finished(self, success=False, toast=message)
        return OperationOutcome(kind=self.kind, success=False, message=message,
                                results=getattr(self, "results", []))

    def rollback(self) -> None:
        if self.snapshot is not None:
            self.tree.restore(self.snapshot)

    def noop_outcome(self) -> OperationOutcome:
        return OperationOutcome(kind=self.kind, success=True, message="Nothing to do")

    async def await_completion(self, kind: str, start) -> Any:
        """Register for the completion message, start the work, then wait for it."""
        channel = self.coordinator.channel
        pending = channel.expect(kind, lambda msg: msg.request_id == self.request_id, key=self.request_id)
        try:
            start()
        except Exception:
            pending.cancel()
            raise
        return await pending.wait(self.coordinator.settings.completion_timeout)


class ImportOperation(Operation):
    kind = "Import"
    prefix = StatusPrefix.IMPORTING

    def __init__(self, coordinator: BulkOperationCoordinator, path: str):
        super().__init__(coordinator)
        self.path = canonicalize(path or "")

    def validate(self) -> None:
        self.path = _require_directory(self.path)
        if self.tree.find_by_path(self.path) is not None:
            logger.info("[Import] Already registered: %s", self.path)
            self.noop = True

    def predict(self) -> None:
        leaf = LeafNode.for_path(self.path, status=GitStatus(last_commit_summary=LOADING))
        self.tree.preview_insert(self.snapshot, leaf.renamed(tag(self.prefix, leaf.name)))

    async def execute(self) -> GitStatus:
        self.coordinator.watcher.start_watching(self.path)
        return await self.coordinator.read_status(self.path)

    def apply(self, status: GitStatus) -> OperationOutcome:
        self.tree.upsert_leaf(LeafNode.for_path(self.path, status=status))
        self.added.append(self.path)
        return OperationOutcome(kind=self.kind, success=True, new_path=self.path,
                                message=f"Imported {display_name_of(self.path)}")

    def rollback(self) -> None:
        super().rollback()
        self.coordinator.watcher.stop_watching(self.path)

    def noop_outcome(self) -> OperationOutcome:
        return OperationOutcome(kind=self.kind, success=True, new_path=self.path,
                                message=f"{display_name_of(self.path)} is already registered")

    def progress_message(self) -> str:
        return f"Importing {display_name_of(self.path)}..."


class DuplicateOperation(Operation):
    kind = "Duplicate"
    prefix = StatusPrefix.COPYING

    def __init__(self, coordinator: BulkOperationCoordinator, path: str, extra_include_files: Iterable[str] = ()):
        super().__init__(coordinator)
        self.path = canonicalize(path or "")
        self.extra_include_files = list(extra_include_files)
        self.predicted: str | None = None

    def validate(self) -> None:
        if self.tree.find_by_path(self.path) is None:
            raise UnknownEntry(f"Not registered: {self.path!r}")
        self.path = _require_directory(self.path)

    def predict(self) -> None:
        known = self.tree.paths()
        self.predicted = next_duplicate_path(self.path, lambda p: p in known or os.path.lexists(p))
        preview = LeafNode.for_path(self.predicted, name=tag(self.prefix, display_name_of(self.predicted)),
                                    status=GitStatus(last_commit_summary=LOADING))
        self.tree.preview_insert(self.snapshot, preview, after=self.path)

    async def execute(self):
        include = self.coordinator.include_files(self.extra_include_files)
        avoid = self.coordinator.settled_view().paths() | self.coordinator.reserved_paths(self)
        message = await self.await_completion(
            "DUPLICATION_COMPLETE",
            lambda: self.coordinator.service.duplicate(self.path, include, self.request_id,
                                                       target=self.predicted, avoid=avoid),
        )
        if not message.success:
            raise OperationFailed(message.error or "copy failed")
        return message

    def apply(self, message) -> OperationOutcome:
        new_path = canonicalize(message.new_path)
        leaf = LeafNode.for_path(new_path, added_at=now_ms())
        index, group, source = self.tree.locate(self.path) or (None, None, None)
        if group is not None:
            position = [c.path for c in group.children].index(self.path) + 1
            self.tree.upsert_leaf(leaf, position, group_id=group.id)
        else:
            self.tree.upsert_leaf(leaf, None if index is None else index + 1)
        self.added.append(new_path)
        return OperationOutcome(kind=self.kind, success=True, new_path=new_path,
                                message=f"Duplicated {display_name_of(self.path)} to {display_name_of(new_path)}")

    def progress_message(self) -> str:
        return f"Duplicating {display_name_of(self.path)}..."


class DeleteOperation(Operation):
    """Removes the folder from disk, then from the registry. Not predicted."""

    kind = "Delete"

    def __init__(self, coordinator: BulkOperationCoordinator, path: str):
        super().__init__(coordinator)
        self.path = canonicalize(path or "")

    def validate(self) -> None:
        if self.tree.find_by_path(self.path) is None:
            raise UnknownEntry(f"Not registered: {self.path!r}")
        if not os.path.lexists(self.path):
            raise InvalidRequest(f"Path no longer exists: {self.path!r}")

    async def execute(self):
        message = await self.await_completion(
            "DELETION_COMPLETE",
            lambda: self.coordinator.service.delete(self.path, self.request_id),
        )
        if not message.success:
            raise OperationFailed(message.error or "delete failed")
        return message

    def apply(self, message) -> OperationOutcome:
        self.tree.remove_by_paths([self.path])
        self.removed.append(self.path)
        return OperationOutcome(kind=self.kind, success=True, message=f"Deleted {display_name_of(self.path)}")

    def progress_message(self) -> str:
        return f"Deleting {display_name_of(self.path)}..."


class MoveBulkOperation(Operation):
    kind = "Move"
    prefix = StatusPrefix.MOVING

    def __init__(self, coordinator: BulkOperationCoordinator, paths: Iterable[str], target_parent: str,
                 extra_include_files: Iterable[str] = (), mode: OperationMode | None = None):
        super().__init__(coordinator)
        self.paths = list(dict.fromkeys(canonicalize(p) for p in paths or [] if p))
        self.target_parent = canonicalize(target_parent or "")
        self.extra_include_files = list(extra_include_files)
        self.mode = mode or coordinator.preferences.operation_mode
        self.results: list[MoveResult] = []

    def validate(self) -> None:
        if not self.paths:
            raise InvalidRequest("No paths to move")
        if not self.target_parent:
            raise InvalidRequest("target_parent is required")
        if self.mode not in ("move", "copy"):
            raise InvalidRequest(f"Unknown mode: {self.mode!r}")
        for path in self.paths:
            if self.tree.find_by_path(path) is None:
                raise UnknownEntry(f"Not registered: {path!r}")
            if is_within(self.target_parent, path):
                raise InvalidRequest(f"Cannot move {path!r} inside itself")

    def capture(self) -> Snapshot:
        return self.tree.capture(self.paths)

    def predict(self) -> None:
        predicted = predict_destinations(self.tree, self.paths, self.target_parent)
        for slot in self.snapshot.leaves:
            self.tree.preview_replace(self.snapshot, slot.leaf.path,
                                      preview_leaf(slot.leaf, self.prefix, predicted[slot.leaf.path]))

    async def move(self, paths: list[str], target_parent: str, mode: OperationMode) -> list[MoveResult]:
        include = self.coordinator.include_files(self.extra_include_files)
        message = await self.await_completion(
            "MOVE_BULK_COMPLETE",
            lambda: self.coordinator.service.move_bulk(paths, target_parent, include, mode, self.request_id),
        )
        self.results = list(message.results)
        if paths and not any(r.success for r in self.results):
            raise OperationFailed(_summarize_failures(self.results) or "nothing was moved")
        return self.results

    async def execute(self) -> list[MoveResult]:
        return await self.move(self.paths, self.target_parent, self.mode)

    def apply(self, results: list[MoveResult]) -> OperationOutcome:
        self.moved = apply_moves(self.tree, results)
        failed = [r for r in results if not r.success]
        message = f"Moved {len(self.moved)} of {len(results)} to {self.target_parent}"
        if failed:
            message += f" ({_summarize_failures(results)})"
        return OperationOutcome(kind=self.kind, success=True, message=message, results=results)

    def progress_message(self) -> str:
        verb = "Moving" if self.mode == "move" else "Copying"
        return f"{verb} {len(self.paths)} folder(s) to {self.target_parent}..."


class GroupOperation(MoveBulkOperation):
    """Wrap leaves in a group; physical when they live under different parents."""

    kind = "Group"
    prefix = StatusPrefix.GROUPING

    def __init__(self, coordinator: BulkOperationCoordinator, paths: Iterable[str], name: str,
                 extra_include_files: Iterable[str] = ()):
        super().__init__(coordinator, paths, "", extra_include_files)
        self.raw_name = name or ""
        self.name = ""
        self.group_kind = "logical"
        self.group_path = ""
        self.existing: GroupNode | None = None

    def validate(self) -> None:
        self.name = sanitize_group_name(self.raw_name)
        if not self.name:
            raise InvalidRequest("Group name is empty")
        if not self.paths:
            raise InvalidRequest("No paths to group")
        for path in self.paths:
            if self.tree.find_by_path(path) is None:
                raise UnknownEntry(f"Not registered: {path!r}")
        parents = {parent_of(p) for p in self.paths}
        if len(parents) == 1:
            self.group_kind = "logical"
            self.group_path = logical_group_path(parents.pop(), self.name)
            if self.tree.find_group(group_id_for(self.group_path)) is not None:
                raise InvalidRequest(f"Group {self.name!r} already exists")
            return
        self.group_kind = "physical"
        self.target_parent = self.group_path = join(common_parent(self.paths), self.name)
        if any(is_within(self.group_path, p) for p in self.paths):
            raise InvalidRequest(f"Group directory {self.group_path!r} would be inside a selected folder")
        self.mode = self.coordinator.preferences.operation_mode
        existing = self.tree.find_group(group_id_for(self.group_path))
        if existing is not None and existing.kind != "physical":
            raise InvalidRequest(f"Group {self.name!r} already exists")
        self.existing = existing

    def capture(self) -> Snapshot:
        return self.tree.capture(self.paths)

    def predict(self) -> None:
        if self.group_kind == "physical":
            predicted = predict_destinations(self.tree, self.paths, self.group_path)
        else:
            predicted = {path: None for path in self.paths}
        position = self.snapshot.first_index
        members = [preview_leaf(leaf, self.prefix, predicted[leaf.path])
                   for leaf in self.tree.preview_detach(self.snapshot, self.paths)]
        if self.existing is not None and self.tree.find_group(self.existing.id) is not None:
            for member in members:
                self.tree.preview_insert(self.snapshot, member, group_id=self.existing.id)
            return
        group = GroupNode(id=pending_id(), name=tag(self.prefix, self.name), path=self.group_path,
                          kind=self.group_kind, children=members)
        self.tree.preview_insert(self.snapshot, group, index=position)

    async def execute(self) -> list[MoveResult] | None:
        if self.group_kind == "logical":
            return None
        return await self.move(self.paths, self.group_path, self.mode)

    def apply(self, results: list[MoveResult] | None) -> OperationOutcome:
        position = self.snapshot.first_index
        if results is None:
            members = [leaf for leaf in map(self.tree.find_by_path, self.paths) if leaf is not None]
            member_paths = self.paths
        else:
            self.moved = [(canonicalize(r.path), canonicalize(r.new_path))
                          for r in results if r.success and r.new_path]
            members = [self.tree.find_by_path(old).moved_to(new) for old, new in self.moved
                       if self.tree.find_by_path(old) is not None]
            member_paths = [old for old, _ in self.moved]
        self.tree.remove_by_paths(member_paths)
        if self.existing is not None and self.tree.find_group(self.existing.id) is not None:
            current = self.tree.find_group(self.existing.id)
            known = self.tree.paths()
            children = [*current.children, *(m for m in members if m.path not in known)]
            self.tree.replace_group(current.model_copy(update={"children": children}))
            group_id = current.id
        else:
            group = GroupNode(name=self.name, path=self.group_path, kind=self.group_kind, children=members)
            self.tree.insert(group, position)
            group_id = group.id
        message = f"Grouped {len(members)} folder(s) into {self.name}"
        if results is not None and len(members) < len(results):
            message += f" ({_summarize_failures(results)})"
        return OperationOutcome(kind=self.kind, success=True, message=message,
                                group_id=group_id, results=results or [])

    def progress_message(self) -> str:
        return f"Grouping {len(self.paths)} folder(s) into {sanitize_group_name(self.raw_name)}..."


class UngroupOperation(MoveBulkOperation):
    """Dissolve a group; a physical group's children move to its parent directory."""

    kind = "Ungroup"
    prefix = StatusPrefix.UNGROUPING

    def __init__(self, coordinator: BulkOperationCoordinator, group_id: str):
        super().__init__(coordinator, [], "")
        self.group_id = group_id
        self.group: GroupNode | None = None

    def validate(self) -> None:
        group = self.tree.find_group(self.group_id)
        if group is None:
            raise UnknownEntry(f"Unknown group: {self.group_id!r}")
        self.group = group
        self.paths = [child.path for child in group.children]
        if group.kind == "physical":
            self.target_parent = parent_of(group.path)
            self.mode = "move"

    def capture(self) -> Snapshot:
        return self.tree.capture([], group_ids=[self.group_id])

    def predict(self) -> None:
        if self.group.kind == "logical":
            released = list(self.group.children)
        else:
            predicted = predict_destinations(self.tree, self.paths, self.target_parent)
            released = [preview_leaf(child, self.prefix, predicted[child.path]) for child in self.group.children]
        index = self.snapshot.first_index
        self.tree.remove_node(self.group_id)
        for offset, leaf in enumerate(released):
            self.tree.preview_insert(self.snapshot, leaf, index=index + offset)

    async def execute(self) -> list[MoveResult] | None:
        if self.group.kind == "logical":
            return None
        return await self.move(self.paths, self.target_parent, self.mode)

    def apply(self, results: list[MoveResult] | None) -> OperationOutcome:
        group = self.tree.find_group(self.group_id)
        if group is None:
            return OperationOutcome(kind=self.kind, success=False, message="Group disappeared")
        index = self.tree.index_of(group.id)
        moved_to = {}
        if results is None:
            released = list(group.children)
        else:
            moved_to = {canonicalize(r.path): canonicalize(r.new_path)
                        for r in results if r.success and r.new_path}
            released = [c.moved_to(moved_to[c.path]) for c in group.children if c.path in moved_to]
            self.moved = list(moved_to.items())
        remaining = [c for c in group.children if results is not None and c.path not in moved_to]
        self.tree.remove_node(group.id)
        for offset, leaf in enumerate(released):
            self.tree.upsert_leaf(leaf, index + offset)
        if remaining:
            self.tree.insert(group.model_copy(update={"children": remaining}), index + len(released))
            message = f"Ungrouped {len(released)} of {len(group.children)} from {group.name} ({_summarize_failures(results)})"
        else:
            message = f"Ungrouped {group.name}"
        return OperationOutcome(kind=self.kind, success=True, message=message, results=results or [])

    async def cleanup(self, outcome: OperationOutcome) -> None:
        if self.group.kind != "physical" or self.tree.find_group(self.group_id) is not None:
            return
        await self.coordinator.service.remove_empty_directory(self.group.path)

    def progress_message(self) -> str:
        return f"Ungrouping {self.group.name}..."


__all__ = [
    "DeleteOperation",
    "DuplicateOperation",
    "GroupOperation",
    "ImportOperation",
    "MoveBulkOperation",
    "Operation",
    "OperationOutcome",
    "UngroupOperation",
    "apply_moves",
    "predict_destinations",
]
