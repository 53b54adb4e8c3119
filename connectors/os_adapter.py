"""
os_adapter.py
-------------
Platform glue: the native folder picker and launching an editor on a folder.

Both calls are blocking (the picker waits for the user), so callers run them
in a worker thread. Only one picker can be open at a time; a second request
while one is showing returns None immediately.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
import threading
from typing import Protocol

logger = logging.getLogger(__name__)

# editor presets -> command line launcher on Linux
LINUX_EDITOR_COMMANDS = {
    "Cursor": "cursor",
    "VSCode": "code",
    "Trae": "trae",
    "Qoder": "qoder",
    "Antigravity": "antigravity",
}


class OSAdapter(Protocol):
    """What the daemon needs from the desktop."""

    def pick_folder(self) -> str | None: ...
    def open_in_editor(self, editor: str, path: str) -> None: ...


class _PickerGuard:
    def __init__(self) -> None:
        self._lock = threading.Lock()

    def run(self, pick) -> str | None:
        if not self._lock.acquire(blocking=False):
            logger.info("Picker already open, ignoring request.")
            return None
        try:
            return pick()
        finally:
            self._lock.release()


class MacOSAdapter:
    def __init__(self) -> None:
        self._guard = _PickerGuard()

    def pick_folder(self) -> str | None:
        return self._guard.run(self._pick)

    def _pick(self) -> str | None:
        try:
            output = subprocess.run(
                ["osascript", "-e", 'POSIX path of (choose folder with prompt "Select a folder")'],
                capture_output=True, text=True, check=True,
            ).stdout.strip()
        except (OSError, subprocess.CalledProcessError) as exc:
            # osascript exits 1 when the dialog is cancelled
            logger.info("Picker closed or failed: %s", exc)
            return None
        logger.info("Picker returned path: %s", output or "none")
        return output or None

    def open_in_editor(self, editor: str, path: str) -> None:
        logger.info('Executing: open -a "%s" "%s"', editor, path)
        subprocess.Popen(["open", "-a", editor, path])


class LinuxAdapter:
    def __init__(self) -> None:
        self._guard = _PickerGuard()

    def pick_folder(self) -> str | None:
        return self._guard.run(self._pick)

    def _pick(self) -> str | None:
        if shutil.which("zenity") is None:
            logger.warning("zenity not found; use the /api/ls browser instead")
            return None
        try:
            output = subprocess.run(
                ["zenity", "--file-selection", "--directory", "--title=Select a folder"],
                capture_output=True, text=True, check=True,
            ).stdout.strip()
        except (OSError, subprocess.CalledProcessError) as exc:
            logger.info("Picker closed or failed: %s", exc)
            return None
        return output or None

    def open_in_editor(self, editor: str, path: str) -> None:
        command = LINUX_EDITOR_COMMANDS.get(editor, editor)
        logger.info("Executing: %s %s", command, path)
        subprocess.Popen([command, path], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
                         start_new_session=True)


def get_os_adapter() -> OSAdapter:
    if sys.platform == "darwin":
        return MacOSAdapter()
    return LinuxAdapter()


__all__ = ["LinuxAdapter", "MacOSAdapter", "OSAdapter", "get_os_adapter"]
