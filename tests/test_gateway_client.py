from __future__ import annotations

import pytest

from chatrelay.client.gateway_client import GatewayClient, parse_sse_lines
from chatrelay.engine.errors import GatewayRequestError


def test_parse_sse_frame_with_json_data() -> None:
    frame = ["event: chat", 'data: {"state": "delta", "seq": 3}']

    assert parse_sse_lines(frame) == ("chat", {"state": "delta", "seq": 3})


def test_parse_sse_joins_multiline_data_and_defaults_event() -> None:
    assert parse_sse_lines(["data: line one", "data: line two"]) == ("message", "line one\nline two")


def test_parse_sse_ignores_comments_and_empty_frames() -> None:
    assert parse_sse_lines([": keepalive"]) is None
    assert parse_sse_lines([]) is None


def test_route_maps_request_methods() -> None:
    client = GatewayClient("http://gw:1/")

    assert client._route("chat.history", {"sessionKey": "main", "limit": 50}) == (
        "GET", "/chat/history", {"params": {"sessionKey": "main", "limit": "50"}},
    )
    assert client._route("chat.send", {"sessionKey": "main", "message": "hi"}) == (
        "POST", "/chat/send", {"json": {"sessionKey": "main", "message": "hi"}},
    )
    assert client._route("chat.abort", {"sessionKey": "main"})[1] == "/chat/abort"
    assert client._route("sessions.patch", {"sessionKey": "main", "verboseLevel": "on"}) == (
        "PATCH", "/sessions/main", {"json": {"verboseLevel": "on"}},
    )


def test_route_rejects_unknown_method() -> None:
    with pytest.raises(GatewayRequestError, match="unknown request method"):
        GatewayClient("http://gw:1")._route("chat.teleport", {})
