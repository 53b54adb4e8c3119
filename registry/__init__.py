"""Folder registry core: nodes, tree store, notifications and status labels."""

from .errors import CompletionTimeout, InvalidRequest, OperationFailed, RegistryError, UnknownEntry
from .models import GitStatus, GroupNode, LeafNode, Preferences, RegistryState
from .notifications import NotificationChannel
from .paths import canonicalize, identity_of
from .status import StatusPrefix, tag, untag
from .tree import Snapshot, TreeStore

__all__ = [
    "CompletionTimeout",
    "GitStatus",
    "GroupNode",
    "InvalidRequest",
    "LeafNode",
    "NotificationChannel",
    "OperationFailed",
    "Preferences",
    "RegistryError",
    "RegistryState",
    "Snapshot",
    "StatusPrefix",
    "TreeStore",
    "UnknownEntry",
    "canonicalize",
    "identity_of",
    "tag",
    "untag",
]
