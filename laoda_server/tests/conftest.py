import pytest
from fastapi.testclient import TestClient

from common.config import Settings
from connectors.folder_service import FolderService
from laoda_server.daemon import create_app
from registry.coordinator import BulkOperationCoordinator
from registry.models import GitStatus
from registry.notifications import NotificationChannel
from registry.persistence import StateStore


class StubWatcher:
    def __init__(self):
        self.watched = set()

    def start_watching(self, path):
        self.watched.add(path)
        return True

    def stop_watching(self, path):
        self.watched.discard(path)
        return True

    def restart_watching(self, old_path, new_path):
        self.stop_watching(old_path)
        self.start_watching(new_path)

    def get_status(self, path):
        return GitStatus(branch="main")

    def close(self):
        pass


class StubOS:
    def __init__(self):
        self.picked = None
        self.opened = []

    def pick_folder(self):
        return self.picked

    def open_in_editor(self, editor, path):
        self.opened.append((editor, path))


@pytest.fixture
def daemon_env(tmp_path):
    """Coordinator on real folders (under tmp_path/work) with stubbed watcher and desktop."""
    work = tmp_path / "work"
    work.mkdir()
    settings = Settings(state_file=tmp_path / "state.json", completion_timeout=10)
    channel = NotificationChannel()
    os_stub = StubOS()
    coordinator = BulkOperationCoordinator(
        settings,
        channel=channel,
        service=FolderService(channel, os_adapter=os_stub),
        watcher=StubWatcher(),
        store=StateStore(settings.state_file),
    )
    return work, coordinator, os_stub


@pytest.fixture
def client(daemon_env):
    _, coordinator, _ = daemon_env
    with TestClient(create_app(coordinator.settings, coordinator=coordinator)) as test_client:
        yield test_client
