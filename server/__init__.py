"""
OpenClaw Admin - Server Package
=================================
The web layer of the gateway admin panel.

This package provides:
- FastAPI application serving the built frontend
- REST API endpoints for runtime info, settings and credentials
- Server-Sent-Events streams for every gateway operation
- WebSocket endpoint mirroring operation progress to all dashboards
- Password protection with bcrypt hashes and JWT tokens

Architecture:
    main.py      -> FastAPI app creation, middleware, frontend serving
    auth.py      -> Password hashing, JWT tokens, route protection
    config.py    -> admin.yaml settings and .env credential management
    routes.py    -> All REST and streaming endpoint handlers
    streaming.py -> Operation coroutine -> text/event-stream response
    websocket.py -> WebSocket connection manager and broadcasting
    manager.py   -> In-flight operation registry and logging hooks
"""
