"""
OpenClaw Admin - REST API Routes
==================================
All HTTP API endpoints of the admin panel.

Route groups:
    /api/auth/*        - Authentication (status, setup, login, password change)
    /api/config        - Panel settings (read / update admin.yaml)
    /api/config/keys   - Gateway credentials in .env (list masked / set / delete)
    /api/meta          - Runtime metadata (ports, image, token, entry URLs)
    /api/health        - Gateway health probe
    /api/operations    - In-flight operations; /api/history - operation log tail

Streaming routes (text/event-stream, see server/streaming.py):
    GET  /api/status                   - docker compose ps -a
    POST /api/install                  - first-time install workflow
    POST /api/start | stop | restart   - gateway lifecycle
    POST /api/update                   - pull + recreate
    POST /api/backup                   - tar of data/
    POST /api/doctor                   - openclaw-cli doctor
    GET  /api/logs                     - follow gateway logs
    POST /api/channel/add              - enable + register a channel
    POST /api/pair                     - approve a channel pairing code
    POST /api/pairing/approve-pending  - approve pending device pairings

Parameter errors are answered with HTTP 400 before any stream opens.
All routes except /api/auth/* require a valid token once a password is set.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from provisioner import WorkflowEngine
from provisioner.compose import ParameterError, normalize_channel, normalize_pairing
from server.auth import AuthManager, require_auth
from server.config import ConfigManager
from server.manager import OperationManager
from server.streaming import stream_operation


# =============================================================================
# Request/Response Models (Pydantic)
# =============================================================================

class SetupRequest(BaseModel):
    """First-time setup: set admin password."""
    password: str = Field(..., description="Admin password")

class LoginRequest(BaseModel):
    password: str = Field(..., description="Admin password")

class PasswordChangeRequest(BaseModel):
    current_password: str = Field(..., description="Current admin password")
    new_password: str = Field(..., description="New admin password")

class TokenResponse(BaseModel):
    """JWT token returned after successful auth."""
    token: str
    message: str = "success"

class StatusResponse(BaseModel):
    """What the frontend needs to pick its first screen."""
    is_configured: bool = Field(description="Whether an admin password is set")
    has_api_key: bool = Field(description="Whether at least one AI key is in .env")
    installed: bool = Field(description="Whether the gateway data directories exist")

class ConfigUpdateRequest(BaseModel):
    """Partial admin.yaml update; any combination of sections."""
    web: dict | None = None
    docker: dict | None = None
    gateway: dict | None = None
    install: dict | None = None
    logs: dict | None = None

class ChannelAddRequest(BaseModel):
    """Channel registration; validated by normalize_channel, not by pydantic."""
    model_config = ConfigDict(populate_by_name=True)

    channel: str | None = None
    token: str | None = None
    app_token: str | None = Field(None, alias="appToken")

class PairRequest(BaseModel):
    platform: str | None = None
    code: str | None = None


def get_engine(request: Request) -> WorkflowEngine:
    """Build a WorkflowEngine from the current settings."""
    return request.app.state.engine_factory()


# =============================================================================
# Router Factory
# =============================================================================

def create_router(
    auth_manager: AuthManager,
    config_manager: ConfigManager,
    operation_manager: OperationManager,
) -> APIRouter:
    """
    Create the API router with all endpoints.

    Args:
        auth_manager:      Password verification and JWT tokens.
        config_manager:    admin.yaml settings and .env credentials.
        operation_manager: Registers and logs streamed operations.
    """
    router = APIRouter(prefix="/api")
    auth = Depends(require_auth(auth_manager))

    def stream(name: str, operation):
        return stream_operation(operation_manager, name, operation)

    # =========================================================================
    # AUTH ROUTES - No authentication required
    # =========================================================================

    @router.get("/auth/status", response_model=StatusResponse)
    async def auth_status():
        return StatusResponse(
            is_configured=auth_manager.is_configured(),
            has_api_key=config_manager.has_any_api_key(),
            installed=config_manager.store.runtime_meta()["installed"],
        )

    @router.post("/auth/setup", response_model=TokenResponse)
    async def setup(req: SetupRequest):
        """First-time setup: set the admin password, returns a token."""
        if auth_manager.is_configured():
            raise HTTPException(status_code=400, detail="Already configured")
        try:
            token = auth_manager.setup_password(req.password)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return TokenResponse(token=token, message="Setup complete")

    @router.post("/auth/login", response_model=TokenResponse)
    async def login(req: LoginRequest):
        token = auth_manager.verify_password(req.password)
        if not token:
            raise HTTPException(status_code=401, detail="Invalid password")
        return TokenResponse(token=token)

    @router.post("/auth/password", dependencies=[auth])
    async def change_password(req: PasswordChangeRequest):
        if not auth_manager.verify_password(req.current_password):
            raise HTTPException(status_code=401, detail="Current password is incorrect")
        try:
            token = auth_manager.setup_password(req.new_password, force=True)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"message": "Password changed successfully", "token": token}

    # =========================================================================
    # CONFIG ROUTES
    # =========================================================================

    @router.get("/config", dependencies=[auth])
    async def get_config():
        return config_manager.load()

    @router.put("/config", dependencies=[auth])
    async def update_config(req: ConfigUpdateRequest):
        """Update admin.yaml; takes effect for the next operation."""
        updates = req.model_dump(exclude_none=True)
        if not updates:
            raise HTTPException(status_code=400, detail="No updates provided")
        try:
            return config_manager.update(updates)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @router.get("/config/keys", dependencies=[auth])
    async def get_api_keys():
        """Credentials in the gateway .env, masked."""
        return config_manager.get_api_keys()

    @router.put("/config/keys", dependencies=[auth])
    async def update_api_keys(body: dict[str, str]):
        """Set one or more .env credentials from a flat {KEY: value} dict."""
        try:
            config_manager.set_api_keys(body)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except OSError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"message": "Keys updated", "keys": config_manager.get_api_keys()["keys"]}

    @router.delete("/config/keys/{key_name}", dependencies=[auth])
    async def delete_api_key(key_name: str):
        try:
            config_manager.delete_api_key(key_name)
        except KeyError as e:
            raise HTTPException(status_code=404, detail=str(e.args[0]))
        except OSError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"message": f"Key '{key_name}' deleted"}

    # =========================================================================
    # RUNTIME INFO
    # =========================================================================

    @router.get("/meta", dependencies=[auth])
    async def get_meta():
        """Ports, image, gateway token and entry URLs shown on the dashboard."""
        return config_manager.store.runtime_meta()

    @router.get("/health", dependencies=[auth])
    async def get_health(engine: WorkflowEngine = Depends(get_engine)):
        return {"healthy": await engine.check_health()}

    @router.get("/operations", dependencies=[auth])
    async def get_operations():
        return operation_manager.status

    @router.get("/history", dependencies=[auth])
    async def get_history(lines: int = Query(100, ge=1, le=1000)):
        """Most recent lines of the operation log."""
        return operation_manager.oplog.tail(lines)

    # =========================================================================
    # STREAMING OPERATIONS
    # =========================================================================

    @router.get("/status", dependencies=[auth])
    async def gateway_status(engine: WorkflowEngine = Depends(get_engine)):
        return stream("status", engine.status)

    @router.post("/install", dependencies=[auth])
    async def install(engine: WorkflowEngine = Depends(get_engine)):
        return stream("install", engine.install)

    @router.post("/start", dependencies=[auth])
    async def start(engine: WorkflowEngine = Depends(get_engine)):
        return stream("start", engine.start)

    @router.post("/stop", dependencies=[auth])
    async def stop(engine: WorkflowEngine = Depends(get_engine)):
        """Stop the gateway only; the panel keeps running."""
        return stream("stop", engine.stop)

    @router.post("/restart", dependencies=[auth])
    async def restart(engine: WorkflowEngine = Depends(get_engine)):
        return stream("restart", engine.restart)

    @router.post("/update", dependencies=[auth])
    async def update(engine: WorkflowEngine = Depends(get_engine)):
        return stream("update", engine.update)

    @router.post("/backup", dependencies=[auth])
    async def backup(engine: WorkflowEngine = Depends(get_engine)):
        return stream("backup", engine.backup)

    @router.post("/doctor", dependencies=[auth])
    async def doctor(engine: WorkflowEngine = Depends(get_engine)):
        return stream("doctor", engine.doctor)

    @router.get("/logs", dependencies=[auth])
    async def logs(
        tail: int | None = Query(None, ge=1, le=5000),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        """Follow gateway logs; the stream ends when the client disconnects."""
        return stream("logs", lambda sink: engine.logs(sink, tail))

    @router.post("/channel/add", dependencies=[auth])
    async def add_channel(req: ChannelAddRequest, engine: WorkflowEngine = Depends(get_engine)):
        try:
            channel = normalize_channel(req.channel, req.token)
        except ParameterError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return stream(
            "channel-add",
            lambda sink: engine.add_channel(sink, channel, req.token, req.app_token),
        )

    @router.post("/pair", dependencies=[auth])
    async def pair(req: PairRequest, engine: WorkflowEngine = Depends(get_engine)):
        """Approve a pairing code sent by a messaging platform user."""
        try:
            platform, code = normalize_pairing(req.platform, req.code)
        except ParameterError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return stream("pair", lambda sink: engine.pair(sink, platform, code))

    @router.post("/pairing/approve-pending", dependencies=[auth])
    async def approve_pending(engine: WorkflowEngine = Depends(get_engine)):
        """Approve pending device pairings (fixes "pairing required" in the console)."""
        return stream("approve-pending", engine.approve_pending)

    return router
