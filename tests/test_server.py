# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fortress

from typing import Any, Callable, Generator, List

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from coreason_fortress import __version__
from coreason_fortress.audit import AuditLogger
from coreason_fortress.config import Settings
from coreason_fortress.main import Fortress
from coreason_fortress.server import SECURITY_HEADERS, create_app

TOKEN = "ab" * 32


@pytest.fixture
def fortress(
    make_settings: Callable[..., Settings], llm: Any, encryption_key: str, audit_log: AuditLogger
) -> Fortress:
    settings = make_settings(gateway_token=TOKEN, encryption_key=encryption_key)
    return Fortress(settings, llm=llm, audit_logger=audit_log)


@pytest.fixture
def client(fortress: Fortress) -> Generator[TestClient, None, None]:
    with TestClient(create_app(fortress)) as test_client:
        yield test_client


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": __version__, "connections": 0}


def test_security_headers_on_every_response(client: TestClient) -> None:
    for path in ("/health", "/does-not-exist"):
        response = client.get(path)
        for name, value in SECURITY_HEADERS.items():
            assert response.headers[name] == value
        assert response.headers["X-Request-Id"]
    assert client.get("/health").headers["X-Request-Id"] != client.get("/health").headers["X-Request-Id"]


def test_websocket_requires_token(client: TestClient, events: Callable[[], List[str]]) -> None:
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/ws"):
            pass  # pragma: no cover
    assert exc_info.value.code == 1008
    assert "gateway_auth_missing_token" in events()
    assert "ws_connection_rejected" in events()


def test_websocket_rejects_wrong_token(client: TestClient) -> None:
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/ws?token=" + "cd" * 32):
            pass  # pragma: no cover
    assert exc_info.value.code == 1008


def test_websocket_chat_round_trip(client: TestClient, events: Callable[[], List[str]]) -> None:
    with client.websocket_connect("/ws", headers={"Authorization": f"Bearer {TOKEN}"}) as ws:
        ws.send_text('{"text": "hello"}')
        assert ws.receive_json() == {"type": "message", "text": "echo: hello"}

        ws.send_text("not json")
        assert ws.receive_json() == {"type": "error", "text": "Failed to process message"}

        ws.send_text('{"text": "<script>alert(1)</script>"}')
        assert ws.receive_json() == {"type": "error", "text": "Your message was blocked by a security policy."}

    recorded = events()
    assert "ws_connected" in recorded
    assert "ws_disconnected" in recorded


def test_websocket_token_in_query(client: TestClient) -> None:
    with client.websocket_connect(f"/ws?token={TOKEN}") as ws:
        ws.send_text('{"text": "hi"}')
        assert ws.receive_json()["type"] == "message"


def test_open_gateway_without_token(make_settings: Callable[..., Settings], llm: Any) -> None:
    fortress = Fortress(make_settings(), llm=llm)
    with TestClient(create_app(fortress)) as client:
        with client.websocket_connect("/ws") as ws:
            ws.send_text('{"text": "hi"}')
            assert ws.receive_json() == {"type": "message", "text": "echo: hi"}


def test_websocket_disconnect_drops_agent_session(client: TestClient, fortress: Fortress) -> None:
    assert fortress.persistence is not None
    with client.websocket_connect(f"/ws?token={TOKEN}") as ws:
        ws.send_text('{"text": "hello"}')
        ws.receive_json()
        assert fortress.agent.get_session_count() == 1
        assert len(fortress.persistence.list_sessions()) == 1

    assert fortress.agent.get_session_count() == 0
    assert fortress.persistence.list_sessions() == []
