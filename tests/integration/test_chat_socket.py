import asyncio
import json
import time
from pathlib import Path

import pytest
from conftest import FakeAgentSource, result_message, text_event, tool_message
from fastapi.testclient import TestClient
from starlette.testclient import WebSocketDenialResponse
from starlette.websockets import WebSocketDisconnect

from docrelay.api.main import create_app
from docrelay.config import ChatConfig, DocsConfig, Settings

SECRET = "s3cret"


def _client(docs_root: Path, source: FakeAgentSource, **chat: object) -> TestClient:
    chat.setdefault("secret", SECRET)
    settings = Settings(docs=DocsConfig(docs_dir=docs_root), chat=ChatConfig(**chat))
    return TestClient(create_app(settings, agent_source=source))


def _authenticate(ws) -> None:
    ws.send_text(json.dumps({"type": "auth", "token": SECRET}))
    assert ws.receive_json() == {"type": "auth-ok"}


def _turn(ws, prompt: str) -> list[dict]:
    ws.send_text(prompt)
    return _drain(ws)


def _drain(ws) -> list[dict]:
    events = []
    while True:
        event = ws.receive_json()
        events.append(event)
        if event["type"] in {"done", "error"}:
            return events


def _wait_until(condition, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            pytest.fail("condition not met before timeout")
        time.sleep(0.01)


def test_two_turns_carry_the_session_forward(docs_root: Path) -> None:
    source = FakeAgentSource(
        [text_event("Hi"), text_event(" there"), result_message("s1", cost=0.01, turns=1)],
        [tool_message(("Read", {"file_path": "notes.md"})), result_message("s1", cost=0.03, turns=2)],
    )
    client = _client(docs_root, source)

    with client.websocket_connect("/ws") as ws:
        _authenticate(ws)
        first = _turn(ws, "hello")
        second = _turn(ws, "continue")

    assert first == [
        {"type": "text-delta", "delta": "Hi"},
        {"type": "text-delta", "delta": " there"},
        {"type": "done", "cost": 0.01, "turns": 1, "session_id": "s1"},
    ]
    assert second == [
        {"type": "tool-use", "name": "Read", "input": {"file_path": "notes.md"}},
        {"type": "done", "cost": 0.03, "turns": 2, "session_id": "s1"},
    ]
    assert source.calls == [("hello", None), ("continue", "s1")]

    traces = client.get("/-/traces").json()["items"]
    assert [record["resumed_from"] for record in traces] == [None, "s1"]
    assert client.get("/-/metrics").json()["completed_turns"] == 2

    detail = client.get(f"/-/traces/{traces[1]['trace_id']}")
    assert detail.status_code == 200
    assert detail.json()["tool_calls"] == ["Read"]
    unknown = client.get("/-/traces/no-such-trace")
    assert unknown.status_code == 404
    assert unknown.json() == {"detail": "'Trace not found: no-such-trace'"}


@pytest.mark.parametrize(
    "frame",
    [
        json.dumps({"type": "auth", "token": "nope"}),
        json.dumps({"type": "hello", "token": SECRET}),
        json.dumps({"token": SECRET}),
        "what is in the docs?",
    ],
)
def test_bad_first_frame_closes_with_auth_code(docs_root: Path, frame: str) -> None:
    source = FakeAgentSource()
    client = _client(docs_root, source)

    with client.websocket_connect("/ws") as ws:
        ws.send_text(frame)
        with pytest.raises(WebSocketDisconnect) as excinfo:
            ws.receive_json()

    assert excinfo.value.code == 4001
    assert source.calls == []


def test_second_connection_refused_until_first_closes(docs_root: Path) -> None:
    client = _client(docs_root, FakeAgentSource())

    with client.websocket_connect("/ws") as first:
        _authenticate(first)
        with pytest.raises(WebSocketDenialResponse) as excinfo:
            with client.websocket_connect("/ws"):
                pass
        assert excinfo.value.status_code == 429

    with client.websocket_connect("/ws") as again:
        _authenticate(again)


def test_refused_when_secret_not_configured(docs_root: Path) -> None:
    client = _client(docs_root, FakeAgentSource(), secret=None)

    with pytest.raises(WebSocketDenialResponse) as excinfo:
        with client.websocket_connect("/ws"):
            pass

    assert excinfo.value.status_code == 503


def test_cross_origin_upgrade_refused(docs_root: Path) -> None:
    client = _client(docs_root, FakeAgentSource(), allowed_origins=["https://docs.example.com"])

    with pytest.raises(WebSocketDenialResponse) as excinfo:
        with client.websocket_connect("/ws", headers={"origin": "https://evil.example.com"}):
            pass
    assert excinfo.value.status_code == 403

    with client.websocket_connect("/ws", headers={"origin": "https://docs.example.com"}) as ws:
        _authenticate(ws)


def test_upstream_failure_keeps_connection_usable(docs_root: Path) -> None:
    source = FakeAgentSource(
        [text_event("par"), RuntimeError("upstream crashed")],
        [text_event("ok"), result_message("s2")],
    )
    client = _client(docs_root, source)

    with client.websocket_connect("/ws") as ws:
        _authenticate(ws)
        failed = _turn(ws, "hello")
        recovered = _turn(ws, "again")

    assert [event["type"] for event in failed] == ["text-delta", "error"]
    assert failed[-1]["recoverable"] is False
    assert recovered[-1] == {"type": "done", "cost": 0.01, "turns": 1, "session_id": "s2"}
    # The failed turn left the prior handle unchanged.
    assert source.calls == [("hello", None), ("again", None)]


def test_session_query_parameter_resumes_first_turn(docs_root: Path) -> None:
    source = FakeAgentSource([result_message("abc")])
    client = _client(docs_root, source)

    with client.websocket_connect("/ws?session=abc") as ws:
        _authenticate(ws)
        _turn(ws, "pick up where we left off")

    assert source.calls == [("pick up where we left off", "abc")]


def test_prompts_sent_during_a_turn_run_in_order(docs_root: Path) -> None:
    async def _slow() -> None:
        await asyncio.sleep(0.05)

    source = FakeAgentSource(
        [text_event("one"), _slow, result_message("s1")],
        [text_event("two"), result_message("s1", turns=2)],
    )
    client = _client(docs_root, source)

    with client.websocket_connect("/ws") as ws:
        _authenticate(ws)
        ws.send_text("first")
        ws.send_text("second")
        first = _drain(ws)
        second = _drain(ws)

    assert first[0] == {"type": "text-delta", "delta": "one"}
    assert second[0] == {"type": "text-delta", "delta": "two"}
    assert source.calls == [("first", None), ("second", "s1")]


def test_client_leaving_mid_turn_releases_upstream_and_slot(docs_root: Path) -> None:
    async def _hang() -> None:
        await asyncio.sleep(3600)

    source = FakeAgentSource([text_event("thinking"), _hang, result_message("s1")])
    client = _client(docs_root, source)
    gate = client.app.state.chat_service.gate

    with client.websocket_connect("/ws") as ws:
        _authenticate(ws)
        ws.send_text("long task")
        assert ws.receive_json() == {"type": "text-delta", "delta": "thinking"}
        ws.close()
        _wait_until(lambda: source.closed == 1 and gate.active == 0)

    assert source.closed == 1
    assert client.get("/-/metrics").json()["abandoned_turns"] == 1

    with client.websocket_connect("/ws") as ws:
        _authenticate(ws)
