# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fortress

"""FastAPI gateway for the Fortress relay.

Serves `/health` and the `/ws` WebSocket used by the browser chat. Every
response carries the security headers; every WebSocket is authenticated
before it is accepted.
"""

import json
import uuid
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request, Response, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from coreason_fortress import __version__
from coreason_fortress.models import Allowed, ChannelType, IncomingMessage
from coreason_fortress.sessions import now_ms
from coreason_fortress.utils.logger import logger

if TYPE_CHECKING:
    from coreason_fortress.main import Fortress

CONTENT_SECURITY_POLICY = "; ".join(
    [
        "default-src 'self'",
        "script-src 'self'",
        "style-src 'self' 'unsafe-inline'",
        "img-src 'self' data:",
        "connect-src 'self' ws://localhost:* wss://localhost:*",
        "font-src 'self'",
        "object-src 'none'",
        "media-src 'none'",
        "frame-src 'none'",
        "base-uri 'self'",
        "form-action 'self'",
        "frame-ancestors 'none'",
    ]
)

SECURITY_HEADERS = {
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "X-DNS-Prefetch-Control": "off",
    "X-Permitted-Cross-Domain-Policies": "none",
}


class HealthResponse(BaseModel):
    """Response model for the health check."""

    status: str
    version: str
    connections: int


def extract_token(websocket: WebSocket) -> Optional[str]:
    """Reads the token from `Authorization: Bearer ...` or the `token` query parameter."""
    header = websocket.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return websocket.query_params.get("token") or None


def create_app(fortress: Optional["Fortress"] = None) -> FastAPI:
    """Builds the gateway app.

    Args:
        fortress: The wired security stack. When omitted, one is built from
            the environment on startup and closed on shutdown.

    Returns:
        The FastAPI application.
    """
    connections: Dict[str, WebSocket] = {}

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if fortress is not None:
            app.state.fortress = fortress
            yield
            return

        from coreason_fortress.main import Fortress

        owned = Fortress()
        app.state.fortress = owned
        try:
            yield
        finally:
            await owned.aclose()

    app = FastAPI(title="OpenClaw Fortress Gateway", version=__version__, lifespan=lifespan)
    if fortress is not None:
        app.state.fortress = fortress
        origin = fortress.settings.cors_origin
    else:
        origin = "http://localhost:18789"

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin],
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
        allow_credentials=True,
        max_age=86400,
    )

    @app.middleware("http")
    async def security_headers(request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
        response: Response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value
        response.headers["X-Request-Id"] = str(uuid.uuid4())
        return response

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Reports liveness, version and open WebSocket count."""
        return HealthResponse(status="ok", version=__version__, connections=len(connections))

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        """Authenticates, then relays each `{"text": ...}` frame through the pipeline."""
        fx: "Fortress" = websocket.app.state.fortress
        ip = websocket.client.host if websocket.client else "unknown"

        auth = fx.authenticate(extract_token(websocket), ip)
        if not auth.ok:
            fx.audit_log.warn("ws_connection_rejected", details={"ip": ip, "reason": auth.reason})
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()
        conn_id = str(uuid.uuid4())
        connections[conn_id] = websocket
        fx.audit_log.info("ws_connected", details={"connId": conn_id, "ip": ip})

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    parsed = json.loads(raw)
                except json.JSONDecodeError:
                    await websocket.send_json({"type": "error", "text": "Failed to process message"})
                    continue
                text = parsed.get("text", "") if isinstance(parsed, dict) else ""

                msg = IncomingMessage(
                    channel=ChannelType.WEBCHAT,
                    contact_id=conn_id,
                    text=str(text),
                    timestamp=now_ms(),
                )
                result = await fx.pipeline.process(msg)
                if isinstance(result, Allowed):
                    await websocket.send_json({"type": "message", "text": result.reply})
                elif not result.silent:
                    await websocket.send_json({"type": "error", "text": result.reason})
        except WebSocketDisconnect:
            logger.debug(f"WebSocket {conn_id} disconnected")
        finally:
            connections.pop(conn_id, None)
            fx.agent.clear_session(conn_id, ChannelType.WEBCHAT)
            fx.audit_log.info("ws_disconnected", details={"connId": conn_id})

    return app
