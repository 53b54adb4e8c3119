"""Load and save the registry state as a JSON file."""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Iterable

from pydantic import ValidationError

from .models import GroupNode, LeafNode, RegistryState
from .status import untag
from .tree import AnyNode, TreeStore

logger = logging.getLogger(__name__)


def heal_nodes(nodes: Iterable[AnyNode]) -> list[AnyNode]:
    """Repair state left behind by an interrupted run.

    Status prefixes are stripped, ids recomputed from paths, groups that were
    still pending are unwrapped into top-level leaves, and duplicate paths and
    empty groups are dropped.
    """
    healed: list[AnyNode] = []
    for node in nodes:
        if isinstance(node, GroupNode):
            children = [_heal_leaf(child) for child in node.children]
            if node.is_pending:
                healed.extend(children)
                continue
            healed.append(node.model_copy(update={"name": untag(node.name) or node.name, "children": children}))
        else:
            healed.append(_heal_leaf(node))
    return TreeStore(healed).nodes


def _heal_leaf(leaf: LeafNode) -> LeafNode:
    # re-validate so id and name are derived from the path again
    data = leaf.model_dump()
    data.update(id="", name=untag(leaf.name))
    return LeafNode.model_validate(data)


class StateStore:
    """JSON file holding a :class:`RegistryState`."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> RegistryState:
        """Healed state from disk; an empty registry when missing or unreadable."""
        if not self.path.exists():
            return RegistryState()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            state = RegistryState.model_validate(raw)
        except (OSError, ValueError, ValidationError) as exc:
            aside = self.path.with_name(f"{self.path.name}.corrupt-{int(time.time())}")
            logger.error("Unreadable registry %s (%s), moving it to %s", self.path, exc, aside)
            try:
                os.replace(self.path, aside)
            except OSError as move_exc:
                logger.error("Could not move %s aside: %s", self.path, move_exc)
            return RegistryState()
        return state.model_copy(update={"nodes": heal_nodes(state.nodes)})

    def save(self, state: RegistryState) -> None:
        """Write atomically: temp file in the same directory, then rename."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, self.path)


__all__ = ["StateStore", "heal_nodes"]
