"""HTTP client for a running laoda daemon."""

from typing import Any

import httpx
from box import Box, BoxList


class LaodaClient:
    """
    Thin session over the daemon's REST API.

    Args:
        base_URL (str): Daemon URL including scheme and port,
            e.g. "http://127.0.0.1:26124".
        timeout (float): Seconds to wait for a response. Operations answer
            only once the filesystem work has finished, so keep this generous.
    """

    def __init__(self, base_URL: str, timeout: float = 330.0, transport: httpx.BaseTransport | None = None):
        self.base_URL = base_URL.rstrip("/")
        self._client = httpx.Client(base_url=self.base_URL, timeout=timeout, transport=transport)

    def __enter__(self) -> "LaodaClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def request(self, method: str, endpoint: str, **kwargs) -> httpx.Response:
        """
        Call the daemon; raise_for_status() is applied to the response.

        Example: client.request("GET", "/api/ls", params={"path": "/tmp"})
        """
        response = self._client.request(method, f"/{endpoint.lstrip('/')}", **kwargs)
        response.raise_for_status()
        return response

    def _json(self, method: str, endpoint: str, **kwargs) -> Any:
        data = self.request(method, endpoint, **kwargs).json()
        if isinstance(data, list):
            return BoxList(data)
        return Box(data) if isinstance(data, dict) else data

    @property
    def is_alive(self) -> bool:
        try:
            return self.request("GET", "/status", timeout=2).status_code == 200
        except httpx.HTTPError:
            return False

    # -- registry --------------------------------------------------------------

    def status(self) -> Box:
        return self._json("GET", "/status")

    def nodes(self) -> BoxList:
        return self._json("GET", "/api/nodes")

    def preferences(self) -> Box:
        return self._json("GET", "/api/preferences")

    def update_preferences(self, **patch: Any) -> Box:
        return self._json("PATCH", "/api/preferences", json=patch)

    def list_directories(self, path: str | None = None) -> Box:
        return self._json("GET", "/api/ls", params={"path": path} if path else None)

    # -- operations --------------------------------------------------------------

    def import_folder(self, path: str) -> Box:
        return self._json("POST", "/api/import", json={"path": path})

    def pick_folder(self) -> Box:
        return self._json("POST", "/api/pick-folder")

    def open_in_editor(self, path: str, editor: str | None = None) -> Box:
        return self._json("POST", "/api/open", json={"path": path, "editor": editor})

    def duplicate(self, path: str, include_files: list[str] | None = None) -> Box:
        return self._json("POST", "/api/duplicate", json={"path": path, "include_files": include_files or []})

    def delete(self, path: str) -> Box:
        return self._json("POST", "/api/delete", json={"path": path})

    def move_bulk(self, paths: list[str], target_parent: str, mode: str | None = None,
                  include_files: list[str] | None = None) -> Box:
        body = {"paths": paths, "target_parent": target_parent, "mode": mode, "include_files": include_files or []}
        return self._json("POST", "/api/move-bulk", json=body)

    def group(self, paths: list[str], name: str) -> Box:
        return self._json("POST", "/api/group", json={"paths": paths, "name": name})

    def ungroup(self, group_id: str) -> Box:
        return self._json("POST", "/api/ungroup", json={"group_id": group_id})

    def sync_managed_file(self, file_id: str) -> Box:
        return self._json("POST", f"/api/managed-files/{file_id}/sync")

    def refresh(self) -> Box:
        return self._json("POST", "/api/refresh")

    def shutdown(self) -> Box:
        return self._json("POST", "/shutdown")
