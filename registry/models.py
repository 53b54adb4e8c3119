"""Pydantic models for registry nodes, preferences and pushed messages."""

from __future__ import annotations

import os
import re
import time
import uuid
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, computed_field, model_validator

from .paths import canonicalize, display_name_of, identity_of, parent_of
from .status import untag

NO_BRANCH = "no branch"

# camelCase keys written by older releases
_LEGACY_KEYS = {
    "diffCount": "dirty_count",
    "dirtyCount": "dirty_count",
    "latestCommit": "last_commit_summary",
    "lastCommitSummary": "last_commit_summary",
    "addedAt": "added_at",
    "lastUsedAt": "last_used_at",
}


def now_ms() -> int:
    return int(time.time() * 1000)


def _rename_legacy_keys(data: Any) -> Any:
    if not isinstance(data, dict):
        return data
    renamed = dict(data)
    for old, new in _LEGACY_KEYS.items():
        if old in renamed:
            value = renamed.pop(old)
            renamed.setdefault(new, value)
    return renamed


class GitStatus(BaseModel):
    """Snapshot of a folder's git state."""

    branch: str = NO_BRANCH
    dirty_count: int = Field(default=0, ge=0)
    last_commit_summary: str = ""


class LeafNode(BaseModel):
    """One registered folder. ``id`` is always derived from ``path``."""

    type: Literal["leaf"] = "leaf"
    id: str = ""
    path: str = Field(..., min_length=1)
    name: str = ""
    branch: str = NO_BRANCH
    dirty_count: int = 0
    last_commit_summary: str = ""
    added_at: int = Field(default_factory=now_ms)
    last_used_at: int = 0

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_keys(cls, data: Any) -> Any:
        return _rename_legacy_keys(data)

    @model_validator(mode="after")
    def _derive_identity(self) -> LeafNode:
        self.path = canonicalize(self.path)
        self.id = identity_of(self.path)
        if not self.name:
            self.name = display_name_of(self.path)
        return self

    @classmethod
    def for_path(cls, path: str, *, name: str | None = None, status: GitStatus | None = None,
                 added_at: int | None = None) -> LeafNode:
        fields = (status or GitStatus()).model_dump()
        return cls(path=path, name=name or "", added_at=added_at or now_ms(), **fields)

    @property
    def status(self) -> GitStatus:
        return GitStatus(branch=self.branch, dirty_count=self.dirty_count,
                         last_commit_summary=self.last_commit_summary)

    def moved_to(self, path: str) -> LeafNode:
        """Copy at ``path`` with id and plain name recomputed."""
        canonical = canonicalize(path)
        return self.model_copy(update={"path": canonical, "id": identity_of(canonical),
                                       "name": display_name_of(canonical)})

    def with_status(self, status: GitStatus) -> LeafNode:
        return self.model_copy(update=status.model_dump())

    def renamed(self, name: str) -> LeafNode:
        return self.model_copy(update={"name": name})


GroupKind = Literal["logical", "physical"]
LOGICAL_PATH_PREFIX = "group:"


def logical_group_path(parent: str, name: str) -> str:
    """Synthetic identity for a logical group; not a real directory."""
    return f"{LOGICAL_PATH_PREFIX}{canonicalize(parent).rstrip('/')}/{name}"


def group_id_for(path: str) -> str:
    return "group-" + identity_of(path)


def pending_id() -> str:
    return "pending-" + uuid.uuid4().hex


def _holds_children(path: str, children: list[LeafNode]) -> bool:
    """True when ``path`` is an existing directory and the parent of every child."""
    if not children or path.startswith(LOGICAL_PATH_PREFIX):
        return False
    directory = canonicalize(path)
    return os.path.isdir(directory) and all(parent_of(child.path) == directory for child in children)


class GroupNode(BaseModel):
    """Named collection of leaves.

    A physical group's ``path`` is the real directory holding its children.
    A logical group only associates leaves; its ``path`` is synthetic.
    """

    type: Literal["group"] = "group"
    id: str = ""
    name: str
    path: str = ""
    kind: GroupKind = "logical"
    children: list[LeafNode] = Field(default_factory=list)
    added_at: int = Field(default_factory=now_ms)

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_keys(cls, data: Any) -> Any:
        return _rename_legacy_keys(data)

    @model_validator(mode="after")
    def _derive_identity(self) -> GroupNode:
        if not self.path:
            # legacy groups were stored without a path
            parents = {parent_of(child.path) for child in self.children}
            parent = parents.pop() if len(parents) == 1 else "/"
            self.path = logical_group_path(parent, untag(self.name))
            self.kind = "logical"
        elif "kind" not in self.model_fields_set and _holds_children(self.path, self.children):
            # legacy groups did not record their kind
            self.kind = "physical"
        if self.kind == "physical":
            self.path = canonicalize(self.path)
        if not self.id:
            self.id = group_id_for(self.path)
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def last_used_at(self) -> int:
        return max((child.last_used_at for child in self.children), default=0)

    @property
    def is_pending(self) -> bool:
        return self.id.startswith("pending-")


Node = Annotated[Union[LeafNode, GroupNode], Field(discriminator="type")]


class MoveResult(BaseModel):
    path: str
    success: bool
    new_path: str | None = None
    error: str | None = None


class EditorConfig(BaseModel):
    kind: Literal["preset", "custom"] = "preset"
    value: str = "Cursor"


class ManagedFile(BaseModel):
    """A file kept in sync across every folder whose name matches a pattern."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:8])
    filename: str = ""
    content: str = ""
    target_pattern: str = ""

    def matches(self, folder_name: str) -> bool:
        if not self.target_pattern:
            return False
        return re.fullmatch(rf"{re.escape(self.target_pattern)}(-\d+)?", folder_name) is not None


OperationMode = Literal["move", "copy"]


class Preferences(BaseModel):
    editor: EditorConfig = Field(default_factory=EditorConfig)
    copy_include_files: list[str] = Field(default_factory=lambda: [".env.local"])
    operation_mode: OperationMode = "move"
    sort_by_name: bool = False
    managed_files: list[ManagedFile] = Field(default_factory=list)


class RegistryState(BaseModel):
    """Everything persisted between runs."""

    nodes: list[Node] = Field(default_factory=list)
    preferences: Preferences = Field(default_factory=Preferences)

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_layouts(cls, data: Any) -> Any:
        if isinstance(data, list):
            # the oldest format was a bare list of folders
            data = {"nodes": data}
        if not isinstance(data, dict):
            return data
        nodes = []
        for raw in data.get("nodes") or []:
            if isinstance(raw, dict) and "type" not in raw:
                raw = {**raw, "type": "group" if "children" in raw else "leaf"}
            nodes.append(raw)
        return {**data, "nodes": nodes}


class Toast(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:8])
    message: str
    kind: Literal["loading", "success", "error"] = "loading"


# ---------------------------------------------------------------------------
# messages pushed to subscribers


class FolderPicked(BaseModel):
    type: Literal["FOLDER_PICKED"] = "FOLDER_PICKED"
    path: str | None = None
    request_id: str | None = None


class DuplicationComplete(BaseModel):
    type: Literal["DUPLICATION_COMPLETE"] = "DUPLICATION_COMPLETE"
    path: str
    success: bool
    new_path: str | None = None
    error: str | None = None
    request_id: str | None = None


class DeletionComplete(BaseModel):
    type: Literal["DELETION_COMPLETE"] = "DELETION_COMPLETE"
    path: str
    success: bool
    error: str | None = None
    request_id: str | None = None


class MoveBulkComplete(BaseModel):
    type: Literal["MOVE_BULK_COMPLETE"] = "MOVE_BULK_COMPLETE"
    results: list[MoveResult] = Field(default_factory=list)
    request_id: str | None = None


class GitInfoUpdate(GitStatus):
    type: Literal["GIT_INFO_UPDATE"] = "GIT_INFO_UPDATE"
    path: str

    @property
    def status(self) -> GitStatus:
        return GitStatus(branch=self.branch, dirty_count=self.dirty_count,
                         last_commit_summary=self.last_commit_summary)


class RegistryUpdated(BaseModel):
    type: Literal["REGISTRY_UPDATED"] = "REGISTRY_UPDATED"
    revision: int
    nodes: list[Node]


class ToastsUpdated(BaseModel):
    type: Literal["TOASTS_UPDATED"] = "TOASTS_UPDATED"
    toasts: list[Toast]


ServerMessage = Annotated[
    Union[FolderPicked, DuplicationComplete, DeletionComplete, MoveBulkComplete,
          GitInfoUpdate, RegistryUpdated, ToastsUpdated],
    Field(discriminator="type"),
]
MESSAGE_ADAPTER: TypeAdapter[Any] = TypeAdapter(ServerMessage)


__all__ = [
    "DeletionComplete",
    "DuplicationComplete",
    "EditorConfig",
    "FolderPicked",
    "GitInfoUpdate",
    "GitStatus",
    "GroupNode",
    "LeafNode",
    "MESSAGE_ADAPTER",
    "ManagedFile",
    "MoveBulkComplete",
    "MoveResult",
    "NO_BRANCH",
    "Node",
    "Preferences",
    "RegistryState",
    "RegistryUpdated",
    "ServerMessage",
    "Toast",
    "ToastsUpdated",
    "group_id_for",
    "logical_group_path",
    "now_ms",
    "pending_id",
]
