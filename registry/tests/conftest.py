import asyncio
import os

import pytest

from common.config import Settings
from registry.coordinator import BulkOperationCoordinator
from registry.models import (
    DeletionComplete,
    DuplicationComplete,
    FolderPicked,
    GitStatus,
    MoveBulkComplete,
    MoveResult,
    RegistryState,
)
from registry.notifications import NotificationChannel
from registry.paths import display_name_of, join, next_duplicate_path


class FakeWatcher:
    """Records watch registrations instead of touching the filesystem."""

    def __init__(self, status=None):
        self.status = status or GitStatus(branch="main", dirty_count=1, last_commit_summary="init (abc1234)")
        self.watched = set()
        self.started = []
        self.stopped = []
        self.closed = False

    def start_watching(self, path):
        if path in self.watched:
            return False
        self.watched.add(path)
        self.started.append(path)
        return True

    def stop_watching(self, path):
        if path not in self.watched:
            return False
        self.watched.discard(path)
        self.stopped.append(path)
        return True

    def restart_watching(self, old_path, new_path):
        self.stop_watching(old_path)
        self.start_watching(new_path)

    def get_status(self, path):
        return self.status

    def close(self):
        self.closed = True


class FakeService:
    """Completion source standing in for FolderService.

    Messages are published on the next loop iteration, like real background
    work. With ``hold=True`` they are queued until ``release()``; with
    ``silent=True`` they are never sent.
    """

    def __init__(self, channel):
        self.channel = channel
        self.calls = []
        self.move_errors = {}
        self.duplicate_error = None
        self.delete_error = None
        self.picked = None
        self.hold = False
        self.silent = False
        self.held = []
        self.removed_dirs = []
        self.opened = []
        self.written = {}
        self.open_error = None
        self.targets = []

    def _send(self, message):
        if self.silent:
            return
        if self.hold:
            self.held.append(message)
            return
        asyncio.get_running_loop().call_soon(self.channel.publish, message)

    def release(self, reverse=False):
        held, self.held = self.held, []
        self.hold = False
        for message in reversed(held) if reverse else held:
            self._send(message)

    def pick_folder(self, request_id=None):
        self.calls.append(("pick_folder",))
        self._send(FolderPicked(path=self.picked, request_id=request_id))

    def duplicate(self, path, include_files=None, request_id=None, avoid=(), target=None):
        self.calls.append(("duplicate", path, list(include_files or [])))
        if self.duplicate_error:
            self._send(DuplicationComplete(path=path, success=False, error=self.duplicate_error,
                                           request_id=request_id))
            return
        taken = set(avoid)
        if target and target not in taken and not os.path.lexists(target):
            new_path = target
        else:
            new_path = next_duplicate_path(path, lambda p: p in taken or os.path.lexists(p))
        self.targets.append(new_path)
        self._send(DuplicationComplete(path=path, success=True, new_path=new_path, request_id=request_id))

    def delete(self, path, request_id=None):
        self.calls.append(("delete", path))
        self._send(DeletionComplete(path=path, success=self.delete_error is None, error=self.delete_error,
                                    request_id=request_id))

    def move_bulk(self, paths, target_parent, include_files=None, mode="move", request_id=None):
        self.calls.append(("move_bulk", list(paths), target_parent, mode))
        results = []
        for path in paths:
            error = self.move_errors.get(path)
            if error:
                results.append(MoveResult(path=path, success=False, error=error))
            else:
                results.append(MoveResult(path=path, success=True,
                                          new_path=join(target_parent, display_name_of(path))))
        self._send(MoveBulkComplete(results=results, request_id=request_id))

    async def remove_empty_directory(self, path):
        self.removed_dirs.append(path)
        return True

    async def open_in_editor(self, editor, path):
        if self.open_error is not None:
            raise self.open_error
        self.opened.append((editor, path))

    async def write_file(self, folder, filename, content):
        self.written[os.path.join(folder, filename)] = content


@pytest.fixture
def make_coordinator():
    """Factory for a coordinator wired to fakes: make_coordinator(nodes=[...], **settings)."""

    def factory(nodes=(), store=None, preferences=None, **settings):
        settings.setdefault("completion_timeout", 2.0)
        channel = NotificationChannel()
        service = FakeService(channel)
        watcher = FakeWatcher()
        state = RegistryState(nodes=list(nodes), **({"preferences": preferences} if preferences else {}))
        coordinator = BulkOperationCoordinator(
            Settings(**settings), channel=channel, service=service, watcher=watcher, store=store, state=state,
        )
        return coordinator

    return factory
