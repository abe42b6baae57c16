"""
OpenClaw Admin - FastAPI Application
======================================
Creates and configures the web application behind the admin panel.

Responsibilities:
    - Resolve the compose project layout (PROJECT_DIR / HOST_PROJECT_DIR)
    - Initialize managers (config, auth, websocket, operations)
    - Register API routes and the /ws push endpoint
    - Serve the built frontend (dist/) with SPA fallback

Architecture:
    The frontend is a single-page app built into dist/. Its hashed
    bundles live in dist/assets and are mounted as static files; every
    other non-API GET returns a file from dist/ or index.html.

    API endpoints are prefixed with /api/.
    WebSocket is available at /ws.
"""

import os
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from provisioner import ProjectLayout, build_engine
from provisioner.oplog import OperationLogger
from server.auth import AuthManager
from server.config import ConfigManager
from server.manager import OperationManager
from server.routes import create_router
from server.websocket import WebSocketManager


REPO_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def create_app(project_dir: str | None = None) -> FastAPI:
    """
    Application factory: create and configure the FastAPI instance.

    Args:
        project_dir: Compose project root. If None, resolved from
                     PROJECT_DIR / ADMIN_PROJECT_DIR / the working directory.

    Returns:
        Configured FastAPI application ready to run with uvicorn.
    """
    # -- Resolve directories ---------------------------------------------------
    if project_dir is None:
        layout = ProjectLayout.from_environment()
    else:
        layout = ProjectLayout(project_dir, host_dir=os.environ.get("HOST_PROJECT_DIR") or None)

    config_manager = ConfigManager(layout=layout)
    settings = config_manager.load()
    state_dir = config_manager.state_dir(settings)
    static_dir = settings["web"].get("static_dir") or os.path.join(REPO_DIR, "dist")

    # -- Initialize managers ---------------------------------------------------
    auth_manager = AuthManager(state_dir)
    ws_manager = WebSocketManager()
    oplog = OperationLogger(os.path.join(state_dir, "logs"), ws_manager)
    operation_manager = OperationManager(ws_manager, oplog)

    # -- Create FastAPI app ----------------------------------------------------
    app = FastAPI(
        title="OpenClaw Admin",
        description="Local administration panel for the OpenClaw gateway",
        version="1.0.0",
        docs_url="/docs",
        redoc_url=None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -- Store managers on app state -------------------------------------------
    app.state.layout = layout
    app.state.config_manager = config_manager
    app.state.auth_manager = auth_manager
    app.state.ws_manager = ws_manager
    app.state.operation_manager = operation_manager
    # Rebuilt per request so admin.yaml edits apply to the next operation
    app.state.engine_factory = lambda: build_engine(layout, config_manager.load())

    # -- Register API routes ---------------------------------------------------
    app.include_router(create_router(
        auth_manager=auth_manager,
        config_manager=config_manager,
        operation_manager=operation_manager,
    ))

    # -- WebSocket endpoint ----------------------------------------------------
    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Dashboard push channel: operation progress and status snapshots."""
        await ws_manager.connect(websocket)
        try:
            await websocket.send_json({"type": "status", "data": operation_manager.status})
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            ws_manager.disconnect(websocket)

    # -- Frontend --------------------------------------------------------------
    assets_dir = os.path.join(static_dir, "assets")
    if os.path.isdir(assets_dir):
        app.mount("/assets", StaticFiles(directory=assets_dir), name="assets")

    @app.get("/{full_path:path}", include_in_schema=False)
    async def spa_fallback(full_path: str):
        """Serve a file from dist/, or index.html for client-side routes."""
        if full_path.startswith("api/"):
            raise HTTPException(status_code=404, detail="Not Found")

        root = os.path.realpath(static_dir)
        candidate = os.path.realpath(os.path.join(root, full_path))
        if full_path and candidate.startswith(root + os.sep) and os.path.isfile(candidate):
            return FileResponse(candidate)

        index_path = os.path.join(root, "index.html")
        if os.path.isfile(index_path):
            return FileResponse(index_path)
        return PlainTextResponse(
            "Frontend not built yet: run `npm run build` to create dist/",
            status_code=404,
        )

    return app
