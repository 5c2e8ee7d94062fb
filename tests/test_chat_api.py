from __future__ import annotations

import asyncio
import time

import httpx
import pytest
from fastapi.testclient import TestClient
from loguru import logger

from chat_relay.main import app
from chat_relay.models.stream import StreamResult
from chat_relay.services.chat_service import ChatService, get_chat_service
from chat_relay.utils.error_handler import ConfigurationError, UpstreamStatusError
from chat_relay.utils.streaming import STREAM_ERROR_MARKER

from .conftest import ScriptedUpstreamClient, fragment

HELLO = {"messages": [{"role": "user", "content": "Hello"}]}


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def use_service(make_service):
    def install(upstream: ScriptedUpstreamClient) -> ChatService:
        service = make_service(upstream)
        app.dependency_overrides[get_chat_service] = lambda: service
        return service

    return install


def wait_for_messages(client: TestClient, conversation_id: str, count: int) -> list[dict]:
    for _ in range(50):
        response = client.get(f"/conversations/{conversation_id}/messages")
        assert response.status_code == 200
        if len(response.json()) >= count:
            return response.json()
        time.sleep(0.02)
    return response.json()


def test_chat_streams_reply_and_stores_turn(use_service) -> None:
    use_service(
        ScriptedUpstreamClient(
            [fragment("chatcmpl-1", "Hel"), fragment("chatcmpl-1", "lo"), fragment("chatcmpl-1", "!")]
        )
    )

    with TestClient(app) as client:
        response = client.post("/chat", json=HELLO)

        assert response.status_code == 200
        assert response.text == "Hello!"
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["x-conversation-id"] == "chatcmpl-1"

        stored = wait_for_messages(client, "chatcmpl-1", 2)

    assert [(m["role"], m["content"]) for m in stored] == [("user", "Hello"), ("assistant", "Hello!")]


def test_supplied_conversation_id_is_echoed(use_service) -> None:
    use_service(ScriptedUpstreamClient([fragment("chatcmpl-2", "Hi there")]))

    with TestClient(app) as client:
        response = client.post("/chat", json={**HELLO, "conversation_id": "convo-42"})

        assert response.status_code == 200
        assert response.headers["x-conversation-id"] == "convo-42"
        stored = wait_for_messages(client, "convo-42", 2)

    assert stored[-1]["content"] == "Hi there"


def test_malformed_body_is_rejected(use_service) -> None:
    upstream = ScriptedUpstreamClient([])
    use_service(upstream)

    with TestClient(app) as client:
        response = client.post(
            "/chat", content=b"{not json", headers={"Content-Type": "application/json"}
        )

    assert response.status_code == 400
    assert upstream.requests == []


def test_unknown_role_is_rejected(use_service) -> None:
    upstream = ScriptedUpstreamClient([])
    use_service(upstream)

    with TestClient(app) as client:
        response = client.post("/chat", json={"messages": [{"role": "unknown", "content": "?"}]})

    assert response.status_code == 400
    assert "invalid message role" in response.json()["detail"]
    assert upstream.requests == []


def test_missing_token_budget_is_a_server_error(store) -> None:
    def broken_config():
        raise ConfigurationError("invalid provider configuration: MAX_TOKENS")

    upstream = ScriptedUpstreamClient([])
    service = ChatService(store=store, upstream=upstream, config_loader=broken_config)
    app.dependency_overrides[get_chat_service] = lambda: service

    with TestClient(app) as client:
        response = client.post("/chat", json=HELLO)

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal Server Error"}
    assert upstream.requests == []


def test_upstream_failure_before_output_is_a_bad_gateway(use_service) -> None:
    use_service(ScriptedUpstreamClient([StreamResult.failure(UpstreamStatusError(401, "invalid api key"))]))

    with TestClient(app) as client:
        response = client.post("/chat", json=HELLO)

    assert response.status_code == 502
    assert response.json() == {"detail": "Bad Gateway"}
    assert "invalid api key" not in response.text


def test_upstream_setup_failure_is_a_bad_gateway(use_service) -> None:
    use_service(ScriptedUpstreamClient([], setup_error="failed to send request"))

    with TestClient(app) as client:
        response = client.post("/chat", json=HELLO)

    assert response.status_code == 502


def test_upstream_failure_mid_stream_truncates_with_marker(use_service, store) -> None:
    use_service(
        ScriptedUpstreamClient(
            [
                fragment("chatcmpl-3", "Hel"),
                StreamResult.failure(UpstreamStatusError(500)),
                fragment("chatcmpl-3", "lo"),
            ]
        )
    )

    with TestClient(app) as client:
        response = client.post("/chat", json=HELLO)

    assert response.status_code == 200
    assert response.text == "Hel" + STREAM_ERROR_MARKER
    assert store.get_recent("chatcmpl-3", 20) == []


def test_history_endpoint_validates_limit(use_service) -> None:
    use_service(ScriptedUpstreamClient([]))

    with TestClient(app) as client:
        assert client.get("/conversations/unknown/messages").json() == []
        assert client.get("/conversations/unknown/messages?limit=0").status_code == 400
        assert client.get("/conversations/unknown/messages?limit=21").status_code == 400


def test_status_and_health() -> None:
    with TestClient(app) as client:
        assert client.get("/status").json() == {"status": "OK"}
        assert client.get("/health").json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_concurrent_requests_do_not_interfere(use_service, store) -> None:
    service = use_service(
        ScriptedUpstreamClient([fragment("shared", "one "), fragment("shared", "reply")])
    )

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://relay.test") as client:
        responses = await asyncio.gather(
            *(
                client.post("/chat", json={**HELLO, "conversation_id": f"convo-{index}"})
                for index in range(5)
            )
        )
    await service.drain()

    assert [r.text for r in responses] == ["one reply"] * 5
    for index in range(5):
        stored = store.get_recent(f"convo-{index}", 20)
        assert [(m.role, m.content) for m in stored] == [("user", "Hello"), ("assistant", "one reply")]


@pytest.fixture
def request_log():
    lines: list[str] = []
    sink_id = logger.add(
        lambda message: lines.append(message.record["message"]),
        filter=lambda record: record["extra"].get("component") == "http",
        level="INFO",
    )
    yield lines
    logger.remove(sink_id)


def test_request_log_records_method_path_and_status(use_service, request_log) -> None:
    use_service(ScriptedUpstreamClient([fragment("chatcmpl-5", "streamed")]))

    with TestClient(app) as client:
        client.get("/status")
        client.post("/chat", json=HELLO)
        client.post("/chat", json={"messages": [{"role": "unknown", "content": "?"}]})

    assert len(request_log) == 3
    assert request_log[0].startswith("GET /status 200 ")
    assert request_log[1].startswith("POST /chat 200 ")
    assert request_log[2].startswith("POST /chat 400 ")
    assert all(line.endswith("testclient:50000") for line in request_log)
