"""Runtime settings for the laoda daemon and its command line tools.

Settings are read from ``$LAODA_HOME/config.yaml`` (``~/.laoda`` by default).
The file may be YAML or JSON; environment variables override the port.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, ValidationError

DEFAULT_PORT = 26124
SUPPORTED_EDITORS = ["Cursor", "VSCode", "Trae", "Qoder", "Antigravity"]


def laoda_home() -> Path:
    """Directory holding the config file, the registry state and the logs."""
    return Path(os.environ.get("LAODA_HOME") or Path.home() / ".laoda")


class Settings(BaseModel):
    """Daemon configuration."""

    host: str = "127.0.0.1"
    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    state_file: Path | None = Field(default=None, description="Registry JSON file; defaults to <home>/state.json")
    completion_timeout: float = Field(default=300.0, gt=0, description="Seconds to wait for a copy/move/delete to report back")
    picker_timeout: float = Field(default=600.0, gt=0, description="Seconds to wait for the folder picker")
    success_toast_seconds: float = Field(default=2.0, ge=0)
    failure_toast_seconds: float = Field(default=3.0, ge=0)
    watch_ignore: list[str] = Field(default_factory=lambda: [".git", "node_modules"])
    watch_depth: int = Field(default=1, ge=0, description="Directory levels below a project that trigger status refresh")
    editors: list[str] = Field(default_factory=lambda: list(SUPPORTED_EDITORS))

    def resolved_state_file(self) -> Path:
        return self.state_file or laoda_home() / "state.json"


def load_settings(path: Path | None = None, environ: Mapping[str, str] | None = None) -> Settings:
    """Load settings from ``path`` (or the default config file) and the environment."""
    env = os.environ if environ is None else environ
    config_path = path or laoda_home() / "config.yaml"
    payload: dict[str, Any] = {}
    if config_path.exists():
        payload = _load_text_payload(config_path.read_text())
    port = env.get("LAODA_PORT") or env.get("PORT")
    if port:
        payload["port"] = port
    try:
        return Settings.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration in {config_path}") from exc


def _load_text_payload(raw: str) -> dict[str, Any]:
    """Interpret raw text as YAML first, falling back to JSON."""
    try:
        loaded = yaml.safe_load(raw) or {}
    except yaml.YAMLError:
        loaded = json.loads(raw)
    if not isinstance(loaded, dict):
        raise ValueError("Configuration must be a mapping")
    return loaded


__all__ = ["DEFAULT_PORT", "SUPPORTED_EDITORS", "Settings", "laoda_home", "load_settings"]
