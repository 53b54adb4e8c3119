"""
This file is the entry point for the 'laoda-cli' command-line tool.
It drives a running laoda daemon over its REST API.
"""
import json
from typing import Optional

import httpx
import psutil
import typer

from common.app_setup import monkeypatch_print, print_and_log, print_error, setup_logging
from common.config import load_settings
from connectors.laoda_client import LaodaClient
from laoda_server.launcher import _find_daemon_pid, _get_listening_port_of_pid

app = typer.Typer(add_completion=False, help="Operate on the folder registry of a running laoda daemon.")

logger = setup_logging(app_name="laoda_cli", daemon=False)
monkeypatch_print()

_state = {"url": None}


@app.callback()
def main(
    url: Optional[str] = typer.Option(None, envvar="LAODA_URL", help="Daemon URL (discovered if not set)"),
):
    _state["url"] = url


def _daemon_url() -> str:
    if _state["url"]:
        return _state["url"]
    port = None
    try:
        port = _get_listening_port_of_pid(_find_daemon_pid())
    except psutil.NoSuchProcess:
        pass
    if port is None:
        port = load_settings().port
    return f"http://127.0.0.1:{port}"


def _call(action):
    """Run ``action(client)`` and print its JSON result; HTTP errors exit with 1."""
    try:
        with LaodaClient(_daemon_url()) as client:
            result = action(client)
    except httpx.HTTPStatusError as e:
        detail = e.response.text
        try:
            detail = e.response.json().get("detail", detail)
        except ValueError:
            pass
        print_error(f"{e.response.status_code}: {detail}")
        raise typer.Exit(1)
    except httpx.HTTPError as e:
        print_error(f"Cannot reach the laoda daemon: {e}")
        raise typer.Exit(1)
    print_and_log(json.dumps(result, indent=2))
    return result


@app.command("list")
def list_nodes():
    """List registered folders and groups."""
    _call(lambda c: c.nodes())


@app.command("import")
def import_folder(path: Optional[str] = typer.Argument(None, help="Folder to register; opens the picker if omitted")):
    """Register a folder."""
    if path:
        _call(lambda c: c.import_folder(path))
    else:
        _call(lambda c: c.pick_folder())


@app.command("open")
def open_in_editor(path: str, editor: Optional[str] = typer.Option(None, help="Editor preset or application")):
    """Open a registered folder in an editor."""
    _call(lambda c: c.open_in_editor(path, editor))


@app.command()
def duplicate(path: str, include: list[str] = typer.Option([], "--include", help="Extra file to copy even if ignored")):
    """Copy a folder next to itself as <name>-N."""
    _call(lambda c: c.duplicate(path, include))


@app.command()
def delete(path: str, yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation")):
    """Delete a folder from disk and from the registry."""
    if not yes:
        typer.confirm(f"Delete {path} from disk?", abort=True)
    _call(lambda c: c.delete(path))


@app.command()
def move(
    paths: list[str] = typer.Argument(..., help="Folders to move"),
    target: str = typer.Option(..., "--to", help="Target parent directory"),
    mode: Optional[str] = typer.Option(None, help="move or copy (default from preferences)"),
    include: list[str] = typer.Option([], "--include", help="Extra file to copy in copy mode"),
):
    """Move several folders into one parent directory."""
    _call(lambda c: c.move_bulk(paths, target, mode, include))


@app.command()
def group(paths: list[str] = typer.Argument(..., help="Folders to group"),
          name: str = typer.Option(..., "--name", help="Group name")):
    """Group folders (physically when they live under different parents)."""
    _call(lambda c: c.group(paths, name))


@app.command()
def ungroup(group_id: str):
    """Dissolve a group."""
    _call(lambda c: c.ungroup(group_id))


@app.command()
def sync(file_id: str):
    """Write a managed file into every matching folder."""
    _call(lambda c: c.sync_managed_file(file_id))


@app.command()
def refresh():
    """Re-read git status of every folder."""
    _call(lambda c: c.refresh())


@app.command()
def ls(path: Optional[str] = typer.Argument(None)):
    """List sub-directories, as the browser picker does."""
    _call(lambda c: c.list_directories(path))


@app.command()
def prefs(
    editor: Optional[str] = typer.Option(None, help="Editor preset"),
    mode: Optional[str] = typer.Option(None, help="move or copy"),
    sort_by_name: Optional[bool] = typer.Option(None, "--sort-by-name/--no-sort-by-name"),
):
    """Show preferences, or update the given ones."""
    patch = {}
    if editor is not None:
        patch["editor"] = {"kind": "preset", "value": editor}
    if mode is not None:
        patch["operation_mode"] = mode
    if sort_by_name is not None:
        patch["sort_by_name"] = sort_by_name
    if patch:
        _call(lambda c: c.update_preferences(**patch))
    else:
        _call(lambda c: c.preferences())


if __name__ == "__main__":
    app()
