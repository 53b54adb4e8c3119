import os

import pytest
from watchdog.events import FileClosedEvent, FileCreatedEvent, FileModifiedEvent

from registry.models import GitStatus
from registry.watcher import GitStatusWatcher


class FakeObserver:
    def __init__(self):
        self.scheduled = []
        self.unscheduled = []
        self.running = False
        self.daemon = False

    def start(self):
        self.running = True

    def stop(self):
        self.running = False

    def join(self, timeout=None):
        pass

    def schedule(self, handler, path, recursive=False):
        watch = (handler, path, recursive)
        self.scheduled.append(watch)
        return watch

    def unschedule(self, watch):
        self.unscheduled.append(watch)


@pytest.fixture
def setup(tmp_path):
    observer = FakeObserver()
    updates = []
    reads = []

    def read_status(path):
        reads.append(path)
        return GitStatus(branch="main", dirty_count=len(reads))

    watcher = GitStatusWatcher(lambda path, status: updates.append((path, status)), read_status=read_status,
                               observer_factory=lambda: observer)
    repo = tmp_path / "repo"
    (repo / ".git").mkdir(parents=True)
    (repo / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
    plain = tmp_path / "plain"
    plain.mkdir()
    return watcher, observer, updates, repo, plain


def test_repository_gets_content_and_head_watches(setup):
    watcher, observer, _, repo, _ = setup
    assert watcher.start_watching(str(repo) + "/")
    assert [path for _, path, _ in observer.scheduled] == [str(repo), str(repo / ".git")]
    assert observer.running


def test_start_is_idempotent_and_stop_pairs_with_start(setup):
    watcher, observer, _, repo, plain = setup
    watcher.start_watching(str(repo))
    assert not watcher.start_watching(str(repo))
    assert watcher.is_watching(str(repo) + "/")
    watcher.start_watching(str(plain))
    assert len(observer.scheduled) == 3
    assert watcher.stop_watching(str(repo))
    assert not watcher.stop_watching(str(repo))
    assert sorted(p for _, p, _ in observer.unscheduled) == sorted([str(repo), str(repo / ".git")])
    assert watcher.watched_paths() == {str(plain)}


def test_missing_directory_is_not_watched(setup, tmp_path):
    watcher, observer, *_ = setup
    assert not watcher.start_watching(str(tmp_path / "gone"))
    assert observer.scheduled == []


def test_content_events_refresh_status(setup):
    watcher, observer, updates, repo, _ = setup
    watcher.start_watching(str(repo))
    content_handler = observer.scheduled[0][0]
    content_handler.dispatch(FileModifiedEvent(str(repo / "main.py")))
    content_handler.dispatch(FileCreatedEvent(str(repo / "src" / "mod.py")))
    # too deep, ignored directory, non-mutating event
    content_handler.dispatch(FileModifiedEvent(str(repo / "a" / "b" / "c" / "d.py")))
    content_handler.dispatch(FileModifiedEvent(str(repo / "node_modules" / "x.js")))
    content_handler.dispatch(FileClosedEvent(str(repo / "main.py")))
    assert [path for path, _ in updates] == [str(repo), str(repo)]
    assert updates[-1][1].dirty_count == 2


def test_git_events_only_for_head_and_index(setup):
    watcher, observer, updates, repo, _ = setup
    watcher.start_watching(str(repo))
    git_handler = observer.scheduled[1][0]
    git_handler.dispatch(FileModifiedEvent(str(repo / ".git" / "index")))
    git_handler.dispatch(FileModifiedEvent(str(repo / ".git" / "HEAD")))
    git_handler.dispatch(FileModifiedEvent(str(repo / ".git" / "ORIG_HEAD.lock")))
    assert len(updates) == 2


def test_get_status_never_raises(tmp_path):
    def broken(path):
        raise RuntimeError("git exploded")

    watcher = GitStatusWatcher(lambda *a: None, read_status=broken, observer_factory=FakeObserver)
    assert watcher.get_status(str(tmp_path)) == GitStatus()


def test_close_stops_everything(setup):
    watcher, observer, _, repo, plain = setup
    watcher.start_watching(str(repo))
    watcher.start_watching(str(plain))
    watcher.close()
    assert watcher.watched_paths() == set()
    assert len(observer.unscheduled) == 3
    assert not observer.running
    assert os.path.isdir(repo)
