"""In-memory registry of top-level nodes (leaves and groups)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Union

from .models import GroupNode, LeafNode
from .paths import canonicalize

AnyNode = Union[LeafNode, GroupNode]
LeafUpdate = Callable[[LeafNode], LeafNode]


@dataclass
class LeafSlot:
    """Where a captured leaf sat: top-level ``index``, or ``index`` within ``group``.

    ``group`` is a childless copy of the containing group, enough to recreate
    it when the preview emptied it. ``replaced_by`` is the id of the preview
    leaf shown in its place, if any.
    """

    leaf: LeafNode
    index: int
    group: GroupNode | None = None
    group_index: int | None = None
    replaced_by: str | None = None

    @property
    def top_index(self) -> int:
        return self.index if self.group_index is None else self.group_index


@dataclass
class Snapshot:
    """What an operation's preview displaced, at leaf granularity.

    ``leaves`` are the captured leaves in tree order; ``groups`` are whole
    groups captured by id as ``(index, group)``. ``preview_ids`` are the nodes
    the preview inserted or swapped in; restore removes exactly those, so
    edits made meanwhile by other operations survive.
    """

    paths: frozenset[str]
    leaves: list[LeafSlot] = field(default_factory=list)
    groups: list[tuple[int, GroupNode]] = field(default_factory=list)
    preview_ids: set[str] = field(default_factory=set)
    preview_paths: set[str] = field(default_factory=set)

    @property
    def first_index(self) -> int | None:
        indexes = [slot.top_index for slot in self.leaves] + [index for index, _ in self.groups]
        return min(indexes) if indexes else None

    def track(self, node: AnyNode) -> None:
        """Record a node the preview put into the tree."""
        self.preview_ids.add(node.id)
        if isinstance(node, GroupNode):
            self.preview_paths.update(child.path for child in node.children)
        else:
            self.preview_paths.add(node.path)


class TreeStore:
    """Ordered top-level nodes. No leaf path appears twice anywhere."""

    def __init__(self, nodes: Iterable[AnyNode] | None = None):
        self._nodes: list[AnyNode] = []
        self.revision = 0
        for node in nodes or []:
            self._nodes.append(node)
        self._dedupe()

    @property
    def nodes(self) -> list[AnyNode]:
        return list(self._nodes)

    def copy(self) -> TreeStore:
        clone = TreeStore(node.model_copy(deep=True) for node in self._nodes)
        clone.revision = self.revision
        return clone

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[AnyNode]:
        return iter(list(self._nodes))

    def _touch(self) -> None:
        self.revision += 1

    # -- queries ------------------------------------------------------------

    def flatten(self) -> list[LeafNode]:
        leaves: list[LeafNode] = []
        for node in self._nodes:
            if isinstance(node, GroupNode):
                leaves.extend(node.children)
            else:
                leaves.append(node)
        return leaves

    def paths(self) -> set[str]:
        return {leaf.path for leaf in self.flatten()}

    def find_by_path(self, path: str) -> LeafNode | None:
        located = self.locate(path)
        return located[2] if located else None

    def locate(self, path: str) -> tuple[int, GroupNode | None, LeafNode] | None:
        """``(top-level index, containing group or None, leaf)`` for ``path``."""
        wanted = canonicalize(path)
        for index, node in enumerate(self._nodes):
            if isinstance(node, GroupNode):
                for child in node.children:
                    if child.path == wanted:
                        return index, node, child
            elif node.path == wanted:
                return index, None, node
        return None

    def find_group(self, group_id: str) -> GroupNode | None:
        for node in self._nodes:
            if isinstance(node, GroupNode) and node.id == group_id:
                return node
        return None

    def index_of(self, node_id: str) -> int | None:
        for index, node in enumerate(self._nodes):
            if node.id == node_id:
                return index
        return None

    def ordered(self, sort_by_name: bool = False) -> list[AnyNode]:
        """Display order: insertion order, or case-insensitive by name."""
        if not sort_by_name:
            return self.nodes
        return sorted(self._nodes, key=lambda node: node.name.lower())

    # -- edits --------------------------------------------------------------

    def update_leaves(self, update: LeafUpdate) -> None:
        """Apply ``update`` to every leaf, top-level or nested."""
        updated: list[AnyNode] = []
        for node in self._nodes:
            if isinstance(node, GroupNode):
                updated.append(node.model_copy(update={"children": [update(c) for c in node.children]}))
            else:
                updated.append(update(node))
        self._nodes = updated
        self._dedupe()
        self._touch()

    def update_leaf(self, path: str, update: LeafUpdate) -> bool:
        wanted = canonicalize(path)
        found = False

        def apply(leaf: LeafNode) -> LeafNode:
            nonlocal found
            if leaf.path != wanted:
                return leaf
            found = True
            return update(leaf)

        self.update_leaves(apply)
        return found

    def remove_by_paths(self, paths: Iterable[str]) -> list[LeafNode]:
        """Drop matching leaves everywhere; groups left empty go too."""
        doomed = {canonicalize(p) for p in paths}
        removed: list[LeafNode] = []
        kept: list[AnyNode] = []
        for node in self._nodes:
            if isinstance(node, GroupNode):
                children = []
                for child in node.children:
                    (removed if child.path in doomed else children).append(child)
                kept.append(node.model_copy(update={"children": children}))
            elif node.path in doomed:
                removed.append(node)
            else:
                kept.append(node)
        self._nodes = kept
        self._prune()
        self._touch()
        return removed

    def upsert_leaf(self, leaf: LeafNode, index: int | None = None, group_id: str | None = None) -> bool:
        """Insert ``leaf`` unless its path is already registered."""
        if self.find_by_path(leaf.path) is not None:
            return False
        if group_id is not None:
            group = self.find_group(group_id)
            if group is None:
                return False
            children = list(group.children)
            children.insert(len(children) if index is None else index, leaf)
            self._replace(group.id, group.model_copy(update={"children": children}))
        else:
            self._nodes.insert(len(self._nodes) if index is None else index, leaf)
        self._touch()
        return True

    def insert(self, node: AnyNode, index: int | None = None) -> None:
        if isinstance(node, LeafNode):
            self.upsert_leaf(node, index)
            return
        known = self.paths()
        children = [c for c in node.children if c.path not in known]
        if not children:
            return
        self._nodes.insert(len(self._nodes) if index is None else min(index, len(self._nodes)),
                           node.model_copy(update={"children": children}))
        self._touch()

    def remove_node(self, node_id: str) -> AnyNode | None:
        index = self.index_of(node_id)
        if index is None:
            return None
        node = self._nodes.pop(index)
        self._touch()
        return node

    def replace_group(self, group: GroupNode) -> None:
        self._replace(group.id, group)
        self._prune()
        self._touch()

    # -- optimistic previews ------------------------------------------------

    def capture(self, paths: Iterable[str], group_ids: Iterable[str] = ()) -> Snapshot:
        """Copy the leaves at ``paths`` with their positions, and whole groups by id."""
        wanted = frozenset(canonicalize(p) for p in paths)
        ids = set(group_ids)
        snapshot = Snapshot(paths=wanted)
        for index, node in enumerate(self._nodes):
            if isinstance(node, GroupNode):
                if node.id in ids:
                    snapshot.groups.append((index, node.model_copy(deep=True)))
                    continue
                shell = None
                for position, child in enumerate(node.children):
                    if child.path in wanted:
                        if shell is None:
                            shell = node.model_copy(update={"children": []})
                        snapshot.leaves.append(LeafSlot(child.model_copy(deep=True), position,
                                                        group=shell, group_index=index))
            elif node.path in wanted:
                snapshot.leaves.append(LeafSlot(node.model_copy(deep=True), index))
        return snapshot

    def preview_replace(self, snapshot: Snapshot, path: str, leaf: LeafNode) -> None:
        """Show ``leaf`` in place of the captured leaf at ``path``."""
        wanted = canonicalize(path)
        for slot in snapshot.leaves:
            if slot.leaf.path == wanted and self._swap_leaf(slot.leaf.id, leaf):
                slot.replaced_by = leaf.id
                snapshot.track(leaf)
                self._touch()
                return

    def preview_insert(self, snapshot: Snapshot, node: AnyNode, index: int | None = None,
                       after: str | None = None, group_id: str | None = None) -> None:
        """Insert a preview node.

        It goes right after the leaf at ``after`` (inside that leaf's group, if
        any), at the end of group ``group_id``, or at top-level ``index``.
        """
        group = self.find_group(group_id) if group_id is not None else None
        position = len(group.children) if group is not None else index
        located = self.locate(after) if after is not None else None
        if located is not None:
            top, group, leaf = located
            position = [c.path for c in group.children].index(leaf.path) + 1 if group is not None else top + 1
        if group is not None:
            children = list(group.children)
            children.insert(position, node)
            self._replace(group.id, group.model_copy(update={"children": children}))
        else:
            self._nodes.insert(len(self._nodes) if position is None else min(position, len(self._nodes)), node)
        snapshot.track(node)
        self._touch()

    def preview_detach(self, snapshot: Snapshot, paths: Iterable[str]) -> list[LeafNode]:
        """Take captured leaves out of the tree; restore puts them back."""
        return self.remove_by_paths({canonicalize(p) for p in paths} & snapshot.paths)

    def restore(self, snapshot: Snapshot) -> None:
        """Undo one operation's preview and nothing else.

        Preview leaves shown in place are swapped back, inserted preview nodes
        are dropped, and detached leaves and captured groups go back to their
        positions. Git status picked up while the preview was shown is kept.
        """
        latest = {leaf.path: leaf.status for leaf in self.flatten()}
        swapped: set[str] = set()
        detached: list[LeafSlot] = []
        for slot in snapshot.leaves:
            original = _refresh_status(slot.leaf, latest)
            if slot.replaced_by is not None and self._swap_leaf(slot.replaced_by, original):
                swapped.add(original.id)
            else:
                detached.append(slot)
        self._drop((snapshot.preview_ids - swapped) | {group.id for _, group in snapshot.groups})

        for index, group in sorted(snapshot.groups, key=lambda entry: entry[0]):
            known = self.paths()
            children = [_refresh_status(c, latest) for c in group.children if c.path not in known]
            if children:
                self._nodes.insert(min(index, len(self._nodes)), group.model_copy(update={"children": children}))
        for slot in sorted(detached, key=lambda s: (s.top_index, s.index)):
            if self.find_by_path(slot.leaf.path) is not None:
                continue
            original = _refresh_status(slot.leaf, latest)
            current = self.find_group(slot.group.id) if slot.group is not None else None
            if current is not None:
                children = list(current.children)
                children.insert(min(slot.index, len(children)), original)
                self._replace(current.id, current.model_copy(update={"children": children}))
            elif slot.group is not None:
                self._nodes.insert(min(slot.group_index, len(self._nodes)),
                                   slot.group.model_copy(update={"children": [original]}))
            else:
                self._nodes.insert(min(slot.index, len(self._nodes)), original)
        self._dedupe()
        self._touch()

    # -- internals ----------------------------------------------------------

    def _replace(self, node_id: str, node: AnyNode) -> None:
        self._nodes = [node if current.id == node_id else current for current in self._nodes]

    def _swap_leaf(self, leaf_id: str, leaf: LeafNode) -> bool:
        """Put ``leaf`` where the leaf with ``leaf_id`` is, top-level or nested."""
        for index, node in enumerate(self._nodes):
            if isinstance(node, GroupNode):
                ids = [child.id for child in node.children]
                if leaf_id in ids:
                    children = list(node.children)
                    children[ids.index(leaf_id)] = leaf
                    self._nodes[index] = node.model_copy(update={"children": children})
                    return True
            elif node.id == leaf_id:
                self._nodes[index] = leaf
                return True
        return False

    def _drop(self, ids: set[str]) -> None:
        """Remove nodes and group children by id. Emptied groups stay until the next prune."""
        kept: list[AnyNode] = []
        for node in self._nodes:
            if node.id in ids:
                continue
            if isinstance(node, GroupNode) and any(child.id in ids for child in node.children):
                node = node.model_copy(update={"children": [c for c in node.children if c.id not in ids]})
            kept.append(node)
        self._nodes = kept

    def _prune(self) -> None:
        self._nodes = [n for n in self._nodes if not (isinstance(n, GroupNode) and not n.children)]

    def _dedupe(self) -> None:
        seen: set[str] = set()
        kept: list[AnyNode] = []
        for node in self._nodes:
            if isinstance(node, GroupNode):
                children = [c for c in node.children if c.path not in seen]
                seen.update(c.path for c in children)
                kept.append(node if len(children) == len(node.children)
                            else node.model_copy(update={"children": children}))
            elif node.path not in seen:
                seen.add(node.path)
                kept.append(node)
        self._nodes = kept
        self._prune()


def _refresh_status(node: AnyNode, latest: dict) -> AnyNode:
    if isinstance(node, GroupNode):
        children = [c.with_status(latest[c.path]) if c.path in latest else c for c in node.children]
        return node.model_copy(update={"children": children})
    return node.with_status(latest[node.path]) if node.path in latest else node


__all__ = ["AnyNode", "LeafSlot", "Snapshot", "TreeStore"]
