"""HTTP tests for the history endpoint, content negotiation and the app lifespan."""

import asyncio
import json
import re
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from channel_tail.core.errors import BrokerConnectError
from channel_tail.core.normalizer import MAX_NESTING_DEPTH, normalize
from channel_tail.core.state import ServicePhase, ServiceState
from channel_tail.core.types import MappingMessage, ScalarMessage
from channel_tail.services.api.main import create_app, is_constrained_client
from channel_tail.services.subscriber.main import BrokerSubscription, SubscriptionBridge

_BROWSER_UA = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"
_CLOCK = re.compile(r"^\d{2}:\d{2}:\d{2}$")


def _client(state: ServiceState) -> TestClient:
    return TestClient(create_app(state))


def test_empty_history_returns_empty_array() -> None:
    """A fresh service serves an empty JSON array."""

    client = _client(ServiceState.create())
    response = client.get("/", headers={"User-Agent": _BROWSER_UA})
    assert response.status_code == 200
    assert response.json() == []


def test_published_sequence_is_served_with_timestamp() -> None:
    """A sequence payload comes back with its clock token prepended."""

    state = ServiceState.create()
    state.history.insert(normalize(b'["ping"]'))

    response = _client(state).get("/", headers={"User-Agent": _BROWSER_UA})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/json")

    body = response.json()
    assert len(body) == 1
    stamp, value = body[0]
    assert _CLOCK.match(stamp)
    assert value == "ping"


def test_browser_gets_compact_json() -> None:
    """Non-constrained clients receive compact JSON without a trailing newline."""

    state = ServiceState.create()
    state.history.insert(MappingMessage(fields={"a": 1}))

    response = _client(state).get("/", headers={"User-Agent": _BROWSER_UA})
    assert response.text == '[{"a":1}]'


def test_curl_gets_pretty_text_with_newline() -> None:
    """Command-line clients receive indented text terminated by a newline."""

    state = ServiceState.create()
    state.history.insert(ScalarMessage(value="plain"))
    state.history.insert(normalize(b'["x","y"]', now=datetime(2024, 1, 1, 7, 5, 9)))

    response = _client(state).get("/", headers={"User-Agent": "curl/8.4.0"})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text.endswith("\n")
    assert response.text == json.dumps([["07:05:09", "x", "y"], "plain"], indent=2) + "\n"


def test_mobile_browser_is_constrained() -> None:
    """Mobile user agents also get the readable rendering."""

    state = ServiceState.create()
    ua = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile/15E148"

    response = _client(state).get("/", headers={"User-Agent": ua})
    assert response.text == "[]\n"


def test_constrained_client_pattern_is_configurable() -> None:
    """A custom pattern replaces the default mobile-or-curl match."""

    app = create_app(ServiceState.create(), constrained_clients=r"Wget")
    client = TestClient(app)

    assert client.get("/", headers={"User-Agent": "Wget/1.21"}).text == "[]\n"
    assert client.get("/", headers={"User-Agent": "curl/8.4.0"}).text == "[]"


def test_is_constrained_client_handles_missing_header() -> None:
    pattern = re.compile(r"(Mobile|curl)")
    assert not is_constrained_client(None, pattern)
    assert not is_constrained_client("", pattern)
    assert is_constrained_client("curl/7.88.1", pattern)


def test_unknown_path_is_empty_404() -> None:
    """Paths other than the root return 404 with no body."""

    client = _client(ServiceState.create())
    response = client.get("/nonexistent")
    assert response.status_code == 404
    assert response.content == b""


def test_other_verbs_and_docs_are_empty_404() -> None:
    """Only GET on the root exists; docs and schema routes are disabled."""

    client = _client(ServiceState.create())
    for response in (client.post("/", json=[1]), client.get("/docs"), client.get("/openapi.json")):
        assert response.status_code == 404
        assert response.content == b""


def test_served_snapshot_is_not_mutated_by_later_inserts() -> None:
    """Rendering copies message contents so readers never alias stored values."""

    state = ServiceState.create()
    state.history.insert(MappingMessage(fields={"nested": [1, 2]}))
    client = _client(state)

    first = client.get("/", headers={"User-Agent": _BROWSER_UA}).json()
    state.history.insert(ScalarMessage(value=3))
    second = client.get("/", headers={"User-Agent": _BROWSER_UA}).json()

    assert first == [{"nested": [1, 2]}]
    assert second == [3, {"nested": [1, 2]}]


def test_lifespan_subscribes_and_closes(fake_redis) -> None:
    """The lifespan opens the subscription before serving and closes it afterwards."""

    state = ServiceState.create()
    subscription = BrokerSubscription(fake_redis, "events")
    bridge = SubscriptionBridge(subscription, state, announce=True)

    with TestClient(create_app(state, bridge=bridge)) as client:
        assert state.phase == ServicePhase.RUNNING
        assert fake_redis.pubsub_handle.channels == ["events"]

        body = client.get("/", headers={"User-Agent": _BROWSER_UA}).json()
        assert len(body) == 1
        assert body[0][1:] == ["debug", "subscribeChannel", "events"]
        assert _CLOCK.match(body[0][0])

    assert state.phase == ServicePhase.STOPPED
    assert fake_redis.pubsub_handle.unsubscribed == ["events"]
    assert fake_redis.pubsub_handle.closed
    assert fake_redis.closed


def test_failed_subscribe_never_reaches_running(unreachable_redis) -> None:
    """A connect failure releases the client and leaves the service stopped."""

    state = ServiceState.create()
    bridge = SubscriptionBridge(BrokerSubscription(unreachable_redis, "events"), state)
    app = create_app(state, bridge=bridge)

    async def run_lifespan() -> None:
        async with app.router.lifespan_context(app):
            raise AssertionError("lifespan should not start")

    with pytest.raises(BrokerConnectError):
        asyncio.run(run_lifespan())

    assert state.phase == ServicePhase.STOPPED
    assert unreachable_redis.closed


def test_overflowing_number_never_reaches_the_endpoint(fake_redis) -> None:
    """A payload decoding to infinity is dropped, so both renderings stay valid JSON."""

    state = ServiceState.create()
    pipeline = SubscriptionBridge(BrokerSubscription(fake_redis, "events"), state).pipeline

    assert pipeline.handle(b"[1e400]") is None
    pipeline.handle(b'{"ok":1.5}')
    client = _client(state)

    browser = client.get("/", headers={"User-Agent": _BROWSER_UA})
    assert browser.status_code == 200
    assert browser.json() == [{"ok": 1.5}]

    text = client.get("/", headers={"User-Agent": "curl/8.4.0"})
    assert text.status_code == 200
    assert json.loads(text.text) == [{"ok": 1.5}]
    assert pipeline.dropped == 1


def test_deeply_nested_payloads_render_or_are_dropped(fake_redis) -> None:
    """Nesting at the accepted limit renders; deeper payloads never enter the history."""

    state = ServiceState.create()
    pipeline = SubscriptionBridge(BrokerSubscription(fake_redis, "events"), state).pipeline

    deep = MAX_NESTING_DEPTH
    assert pipeline.handle(b"[" * 600 + b"]" * 600) is None
    assert pipeline.handle(b'{"a":' * deep + b"1" + b"}" * deep) is not None
    assert pipeline.handle(b"[" * deep + b"]" * deep) is not None
    client = _client(state)

    browser = client.get("/", headers={"User-Agent": _BROWSER_UA})
    assert browser.status_code == 200
    assert len(browser.json()) == 2

    text = client.get("/", headers={"User-Agent": "curl/8.4.0"})
    assert text.status_code == 200
    assert text.text.endswith("\n")
