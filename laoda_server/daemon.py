"""
laoda_server.daemon
-------------------
The laoda daemon: a FastAPI application owning the folder registry.

REST endpoints drive registry operations; each answers once the operation
has been reconciled. Every registry change, git status update and toast is
also pushed to WebSocket clients connected to ``/ws``.
"""
import asyncio
import json
import logging
import os
import socket
import sys
from contextlib import asynccontextmanager
from pathlib import Path

import typer
import uvicorn
from fastapi import Body, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from common.app_setup import setup_logging
from common.config import Settings, load_settings
from connectors import local_folders
from registry.coordinator import BulkOperationCoordinator
from registry.errors import CompletionTimeout, InvalidRequest, OperationFailed, UnknownEntry
from registry.models import Node, Preferences, RegistryUpdated, ToastsUpdated
from registry.operations import OperationOutcome
from registry.persistence import StateStore

logger = logging.getLogger(__name__)


# Request bodies
class PathRequest(BaseModel):
    path: str = Field(..., min_length=1)


class OpenRequest(PathRequest):
    editor: str | None = None


class DuplicateRequest(PathRequest):
    include_files: list[str] = Field(default_factory=list)


class MoveBulkRequest(BaseModel):
    paths: list[str]
    target_parent: str
    mode: str | None = None
    include_files: list[str] = Field(default_factory=list)


class GroupRequest(BaseModel):
    paths: list[str]
    name: str
    include_files: list[str] = Field(default_factory=list)


class UngroupRequest(BaseModel):
    group_id: str


def create_app(settings: Settings | None = None, coordinator: BulkOperationCoordinator | None = None) -> FastAPI:
    """Build the application. A prepared coordinator can be passed in (tests)."""
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        coord = coordinator or BulkOperationCoordinator(settings, store=StateStore(settings.resolved_state_file()))
        app.state.coordinator = coord
        await coord.start()
        logger.info("Registry ready")
        try:
            yield
        finally:
            await coord.shutdown()
            logger.info("Registry saved, daemon stopping")

    app = FastAPI(title="laoda", lifespan=lifespan)
    app.state.settings = settings

    @app.exception_handler(UnknownEntry)
    async def _unknown(request: Request, exc: UnknownEntry):
        logger.warning("%s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidRequest)
    async def _invalid(request: Request, exc: InvalidRequest):
        logger.warning("%s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(CompletionTimeout)
    async def _timeout(request: Request, exc: CompletionTimeout):
        logger.error("%s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=504, content={"detail": str(exc)})

    @app.exception_handler(OperationFailed)
    async def _failed(request: Request, exc: OperationFailed):
        logger.error("%s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    def coord_of(request: Request) -> BulkOperationCoordinator:
        return request.app.state.coordinator

    @app.post("/shutdown")
    async def shutdown(request: Request):
        """Shutdown the server gracefully."""
        logger.info("Shutdown requested via /shutdown endpoint.")
        server = getattr(request.app.state, "uvicorn_server", None)
        if server:
            server.should_exit = True
        return {"message": "Server shutting down"}

    @app.get("/status")
    async def status(request: Request):
        """Health/status endpoint."""
        server = getattr(request.app.state, "uvicorn_server", None)
        coord = coord_of(request)
        return {
            "status": "shutting_down" if server and server.should_exit else "ok",
            "folders": len(coord.tree.flatten()),
            "revision": coord.tree.revision,
            "pending": coord.channel.pending_count,
        }

    # -- registry -----------------------------------------------------------

    @app.get("/api/nodes", response_model=list[Node])
    async def list_nodes(request: Request):
        coord = coord_of(request)
        return coord.tree.ordered(coord.preferences.sort_by_name)

    @app.get("/api/preferences", response_model=Preferences)
    async def get_preferences(request: Request):
        return coord_of(request).preferences

    @app.patch("/api/preferences", response_model=Preferences)
    async def update_preferences(request: Request, patch: dict = Body(...)):
        logger.info("Updating preferences: %s", sorted(patch))
        return coord_of(request).update_preferences(patch)

    @app.get("/api/ls")
    async def list_directories(path: str | None = None):
        """Sub-directories of ``path`` (home by default), for browsing without a native picker."""
        target = path or str(Path.home())
        try:
            return await asyncio.to_thread(local_folders.list_directories, target)
        except (FileNotFoundError, NotADirectoryError, PermissionError) as exc:
            raise InvalidRequest(f"Cannot list {target!r}: {exc}") from exc

    # -- operations ---------------------------------------------------------

    @app.post("/api/pick-folder")
    async def pick_folder(request: Request):
        outcome = await coord_of(request).pick_and_import()
        if outcome is None:
            return {"path": None, "cancelled": True}
        return {"path": outcome.new_path, "cancelled": False, "outcome": outcome.model_dump()}

    @app.post("/api/import", response_model=OperationOutcome)
    async def import_folder(request: Request, body: PathRequest):
        return await coord_of(request).import_folder(body.path)

    @app.post("/api/open")
    async def open_in_editor(request: Request, body: OpenRequest):
        editor = await coord_of(request).open_in_editor(body.path, body.editor)
        return {"success": True, "editor": editor}

    @app.post("/api/duplicate", response_model=OperationOutcome)
    async def duplicate(request: Request, body: DuplicateRequest):
        return await coord_of(request).duplicate(body.path, body.include_files)

    @app.post("/api/delete", response_model=OperationOutcome)
    async def delete(request: Request, body: PathRequest):
        return await coord_of(request).delete(body.path)

    @app.post("/api/move-bulk", response_model=OperationOutcome)
    async def move_bulk(request: Request, body: MoveBulkRequest):
        return await coord_of(request).move_bulk(body.paths, body.target_parent, body.include_files, body.mode)

    @app.post("/api/group", response_model=OperationOutcome)
    async def group(request: Request, body: GroupRequest):
        return await coord_of(request).group(body.paths, body.name, body.include_files)

    @app.post("/api/ungroup", response_model=OperationOutcome)
    async def ungroup(request: Request, body: UngroupRequest):
        return await coord_of(request).ungroup(body.group_id)

    @app.post("/api/managed-files/{file_id}/sync")
    async def sync_managed_file(request: Request, file_id: str):
        return await coord_of(request).sync_managed_file(file_id)

    @app.post("/api/refresh")
    async def refresh(request: Request):
        return {"updated": await coord_of(request).refresh_status()}

    # -- push channel -------------------------------------------------------

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await websocket.accept()
        coord: BulkOperationCoordinator = websocket.app.state.coordinator
        queue: asyncio.Queue = asyncio.Queue()
        unsubscribe = coord.channel.subscribe(queue.put_nowait)
        logger.info("[WS] Client connected")
        await websocket.send_json(RegistryUpdated(
            revision=coord.tree.revision, nodes=coord.tree.ordered(coord.preferences.sort_by_name),
        ).model_dump(mode="json"))
        await websocket.send_json(ToastsUpdated(toasts=coord.feedback.toasts).model_dump(mode="json"))
        sender = asyncio.create_task(_forward(websocket, queue))
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info("[WS] Client disconnected")
        finally:
            unsubscribe()
            sender.cancel()

    return app


async def _forward(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(message.model_dump(mode="json"))


app_cli = typer.Typer()


@app_cli.command()
def run(
    port: int = typer.Option(None, help="Port to run the server on (auto if 0, config/default if not set)"),
    config: Path = typer.Option(None, help="Configuration file (YAML or JSON)"),
):
    """Run the daemon with Uvicorn on localhost, reporting the actual port used."""
    setup_logging(app_name="laoda", daemon=True)
    try:
        settings = load_settings(config)
    except ValueError as exc:
        logger.error(f"Bad configuration: {exc}")
        sys.exit(78)  # EX_CONFIG
    if port is None:
        port = settings.port
    if port == 0:
        # Bind to port 0 to get a free port, then close and reuse
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind((settings.host, 0))
            port = s.getsockname()[1]
        logger.info(f"Selected port: {port}")
        print(json.dumps({"event": "port_selected", "port": port}), flush=True)
    else:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            try:
                s.bind((settings.host, port))
            except OSError:
                logger.error(f"ERROR: Port {port} is already in use.")
                sys.exit(98)  # 98 = EADDRINUSE
        logger.info(f"Using port: {port}")
        print(json.dumps({"event": "port_used", "port": port}), flush=True)
    settings = settings.model_copy(update={"port": port})
    app = create_app(settings)
    server = uvicorn.Server(uvicorn.Config(app, host=settings.host, port=port, log_level="info"))
    app.state.uvicorn_server = server  # Store server instance for shutdown
    logger.info(f"Starting Uvicorn server on port {port}")
    try:
        server.run()
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt in main thread")
    logger.info("Server stopped, exiting process")
    os._exit(0)


def main():
    app_cli()


if __name__ == "__main__":
    main()
