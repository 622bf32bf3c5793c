"""Tests for KapacitorRestApiClient against a fake Kapacitor server.

The server is an ``httpx.MockTransport`` handler, so these tests exercise the
real request path (URL joining, headers, JSON encoding, status handling and
decoding) without a network. Request shapes are covered exhaustively in
test_builder.py; here the focus is on what the client does with responses.
"""

import json
import threading
import time
from collections.abc import Callable

import httpx
import pytest

from kapacitor_client.metrics import RequestMetrics
from kapacitor_client.restapi import client, types
from kapacitor_client.restapi.errors import (
    InvalidArgumentError,
    ResponseDecodeError,
    TransportError,
    UnexpectedStatusError,
)

Handler = Callable[[httpx.Request], httpx.Response]

DBRPS = [{"db": "telegraf", "rp": "autogen"}]

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sent() -> list[httpx.Request]:
    """Requests received by the fake server, in order."""
    return []


@pytest.fixture
def make_client(sent: list[httpx.Request]):
    """Factory for clients talking to a fake server built from a handler."""
    created: list[client.KapacitorRestApiClient] = []

    def _make(handler: Handler, **kwargs) -> client.KapacitorRestApiClient:
        def record(request: httpx.Request) -> httpx.Response:
            sent.append(request)
            return handler(request)

        api_client = client.KapacitorRestApiClient(
            base_url="http://kapacitor:9092",
            transport=httpx.MockTransport(record),
            **kwargs,
        )
        created.append(api_client)
        return api_client

    yield _make
    for api_client in created:
        api_client.close()


def _task_payload(task_id: str) -> dict:
    return {
        "id": task_id,
        "template-id": "",
        "type": "stream",
        "dbrps": DBRPS,
        "script": "stream|from()",
        "status": "enabled",
        "executing": True,
        "created": "2026-10-01T00:00:00Z",
        "link": {"rel": "self", "href": f"/kapacitor/v1/tasks/{task_id}"},
    }


def _task_ids_then_details(ids: list[str], failing: str | None = None) -> Handler:
    """Serve one page of ids, then empty pages, plus a detail per id."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/kapacitor/v1/tasks":
            page = ids if request.url.params["offset"] == "0" else []
            return httpx.Response(200, json={"tasks": [{"id": i} for i in page]})
        task_id = request.url.path.rsplit("/", 1)[1]
        if task_id == failing:
            return httpx.Response(500, json={"error": "boom"})
        return httpx.Response(200, json=_task_payload(task_id))

    return handler


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def test_init_rejects_empty_base_url():
    with pytest.raises(ValueError, match="base_url"):
        client.KapacitorRestApiClient(base_url="")


def test_init_rejects_non_positive_timeout():
    with pytest.raises(ValueError, match="timeout"):
        client.KapacitorRestApiClient(timeout=0)


def test_api_url_includes_version():
    api_client = client.KapacitorRestApiClient(base_url="http://kapacitor:9092/", api_version="v2")
    assert api_client.api_url == "http://kapacitor:9092/kapacitor/v2"


def test_requests_use_base_path_and_json_headers(make_client, sent):
    """Paths are joined under /kapacitor/{version} and JSON headers are sent."""
    make_client(lambda r: httpx.Response(204), api_version="v2").ping()

    request = sent[0]
    assert request.url.path == "/kapacitor/v2/ping"
    assert request.headers["Content-Type"] == "application/json"
    assert request.headers["Accept"] == "application/json"


def test_close_closes_thread_clients(make_client):
    api_client = make_client(lambda r: httpx.Response(204))
    api_client.ping()
    http_client = api_client.client

    api_client.close()

    assert http_client.is_closed


def test_context_manager_closes_on_exit():
    transport = httpx.MockTransport(lambda r: httpx.Response(204))
    with client.KapacitorRestApiClient(transport=transport) as api_client:
        api_client.ping()
        http_client = api_client.client
    assert http_client.is_closed


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def test_define_template_returns_parsed_template(make_client, sent):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        return httpx.Response(200, json={**body, "vars": {}, "link": {"rel": "self"}})

    template = make_client(handler).define_template("cpu", "stream", "stream|from()")

    assert isinstance(template, types.Template)
    assert (template.id, template.type, template.script) == ("cpu", "stream", "stream|from()")
    assert sent[0].method == "POST"
    assert sent[0].url.path == "/kapacitor/v1/templates"


def test_update_template_without_fields_sends_nothing(make_client, sent):
    result = make_client(lambda r: httpx.Response(200, json={})).update_template("cpu")
    assert result is None
    assert sent == []


def test_list_templates_paginates_until_empty_page(make_client, sent):
    """Pages of 100, 100, 37, 0 yield 237 templates from four requests."""
    sizes = {0: 100, 100: 100, 200: 37, 300: 0}

    def handler(request: httpx.Request) -> httpx.Response:
        offset = int(request.url.params["offset"])
        page = [{"id": f"t{offset + i}", "type": "stream"} for i in range(sizes[offset])]
        return httpx.Response(200, json={"templates": page})

    templates = make_client(handler).list_templates()

    assert len(templates) == 237
    assert templates[0].id == "t0"
    assert templates[-1].id == "t236"
    assert [int(r.url.params["offset"]) for r in sent] == [0, 100, 200, 300]
    assert {r.url.params["limit"] for r in sent} == {"100"}


def test_list_templates_starts_at_caller_offset(make_client, sent):
    def handler(request: httpx.Request) -> httpx.Response:
        offset = int(request.url.params["offset"])
        page = [{"id": "t"}] if offset < 30 else []
        return httpx.Response(200, json={"templates": page})

    templates = make_client(handler).list_templates(offset=10, limit=10)

    assert len(templates) == 2
    assert [r.url.params["offset"] for r in sent] == ["10", "20", "30"]


def test_list_templates_treats_null_page_as_empty(make_client):
    templates = make_client(lambda r: httpx.Response(200, json={"templates": None})).list_templates()
    assert templates == []


def test_list_templates_failure_discards_partial_results(make_client, sent):
    """A failing page aborts the listing with the error."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["offset"] == "0":
            return httpx.Response(200, json={"templates": [{"id": "t0"}]})
        return httpx.Response(503, json={"error": "overloaded"})

    with pytest.raises(UnexpectedStatusError) as exc_info:
        make_client(handler).list_templates(limit=1)

    assert exc_info.value.status_code == 503
    assert len(sent) == 2


def test_list_templates_rejects_malformed_page(make_client):
    api_client = make_client(lambda r: httpx.Response(200, json={"templates": "nope"}))
    with pytest.raises(ResponseDecodeError, match="templates"):
        api_client.list_templates()


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


def test_define_task_sends_template_id(make_client, sent):
    api_client = make_client(lambda r: httpx.Response(200, json=_task_payload("cpu_alert")))

    task = api_client.define_task("cpu_alert", DBRPS, template_id="cpu")

    assert task.id == "cpu_alert"
    assert task.dbrps == [types.Dbrp(db="telegraf", rp="autogen")]
    assert json.loads(sent[0].content) == {
        "id": "cpu_alert",
        "dbrps": DBRPS,
        "status": "enabled",
        "template-id": "cpu",
    }


def test_define_task_invalid_source_sends_nothing(make_client, sent):
    api_client = make_client(lambda r: httpx.Response(200, json=_task_payload("t")))
    with pytest.raises(InvalidArgumentError):
        api_client.define_task("t", DBRPS, template_id="cpu", script="stream|from()")
    assert sent == []


def test_update_task_sends_status_as_given(make_client, sent):
    api_client = make_client(lambda r: httpx.Response(200, json=_task_payload("t")))

    api_client.update_task("t", status="enabled")

    assert sent[0].method == "PATCH"
    assert sent[0].url.path == "/kapacitor/v1/tasks/t"
    assert json.loads(sent[0].content) == {"status": "enabled"}


def test_update_task_without_fields_sends_nothing(make_client, sent):
    assert make_client(lambda r: httpx.Response(200, json={})).update_task("t") is None
    assert sent == []


def test_get_task_keeps_unmodelled_fields(make_client):
    task = make_client(lambda r: httpx.Response(200, json=_task_payload("t"))).get_task("t")
    assert task.executing is True
    assert task.model_extra["created"] == "2026-10-01T00:00:00Z"


def test_get_task_rejects_record_without_id(make_client):
    api_client = make_client(lambda r: httpx.Response(200, json={"status": "enabled"}))
    with pytest.raises(ResponseDecodeError, match="Task"):
        api_client.get_task("t")


def test_list_tasks_fetches_detail_per_id(make_client, sent):
    """One ids request per page until empty, plus one detail fetch per id."""
    tasks = make_client(_task_ids_then_details(["a", "b", "c"])).list_tasks()

    assert [t.id for t in tasks] == ["a", "b", "c"]
    assert len(sent) == 2 + 3
    id_pages = [r for r in sent if r.url.path == "/kapacitor/v1/tasks"]
    assert [r.url.params["offset"] for r in id_pages] == ["0", "100"]
    assert {r.url.params["fields"] for r in id_pages} == {"id"}


def test_list_tasks_with_workers_preserves_discovery_order(make_client, sent):
    """Parallel detail fetches still return tasks in listing order."""
    details = _task_ids_then_details(["a", "b", "c", "d"])

    def slow_first(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/tasks/a"):
            time.sleep(0.05)
        return details(request)

    tasks = make_client(slow_first).list_tasks(detail_workers=4)

    assert [t.id for t in tasks] == ["a", "b", "c", "d"]
    assert len(sent) == 2 + 4


@pytest.mark.parametrize("detail_workers", [None, 2])
def test_list_tasks_detail_failure_aborts(make_client, detail_workers):
    api_client = make_client(_task_ids_then_details(["a", "b", "c"], failing="b"))
    with pytest.raises(UnexpectedStatusError, match="boom"):
        api_client.list_tasks(detail_workers=detail_workers)


def test_list_tasks_with_workers_does_not_accumulate_clients(make_client):
    """Repeated parallel listings keep only the calling thread's client."""
    api_client = make_client(_task_ids_then_details(["a", "b", "c"]))

    for _ in range(5):
        api_client.list_tasks(detail_workers=2)

    assert len(api_client._clients) == 1


def test_finished_thread_clients_are_closed():
    """Clients owned by exited threads are closed when released."""
    api_client = client.KapacitorRestApiClient(base_url="http://kapacitor:9092")
    created: list[httpx.Client] = []
    worker = threading.Thread(target=lambda: created.append(api_client.client))
    worker.start()
    worker.join()

    api_client._close_finished_thread_clients()

    assert created[0].is_closed
    assert api_client._clients == []


def test_list_tasks_rejects_non_positive_workers(make_client, sent):
    with pytest.raises(InvalidArgumentError):
        make_client(_task_ids_then_details([])).list_tasks(detail_workers=0)
    assert sent == []


def test_delete_task_error_status_carries_server_message(make_client):
    """A 500 with an error body surfaces both the code and the message."""
    api_client = make_client(lambda r: httpx.Response(500, json={"error": "task not found"}))

    with pytest.raises(UnexpectedStatusError) as exc_info:
        api_client.delete_task("missing")

    error = exc_info.value
    assert error.status_code == 500
    assert error.reason == "Internal Server Error"
    assert error.error_message == "task not found"
    assert "500" in str(error)
    assert "task not found" in str(error)


def test_delete_task_no_content_returns_none(make_client, sent):
    """A 204 with an empty body is a success, not a decode error."""
    assert make_client(lambda r: httpx.Response(204)).delete_task("t") is None
    assert sent[0].method == "DELETE"
    assert sent[0].url.path == "/kapacitor/v1/tasks/t"


def test_delete_with_ok_instead_of_no_content_fails(make_client):
    api_client = make_client(lambda r: httpx.Response(200, json={}))
    with pytest.raises(UnexpectedStatusError) as exc_info:
        api_client.delete_template("cpu")
    assert exc_info.value.status_code == 200
    assert exc_info.value.error_message is None


def test_error_status_with_non_json_body(make_client):
    api_client = make_client(lambda r: httpx.Response(502, content=b"<html>bad gateway</html>"))
    with pytest.raises(UnexpectedStatusError) as exc_info:
        api_client.get_task("t")
    assert exc_info.value.error_message is None


# ---------------------------------------------------------------------------
# Decoding and transport errors
# ---------------------------------------------------------------------------


def test_malformed_json_raises_decode_error(make_client):
    api_client = make_client(lambda r: httpx.Response(200, content=b"{not json"))
    with pytest.raises(ResponseDecodeError, match="decode"):
        api_client.get_template("cpu")


def test_transport_failure_is_wrapped(make_client):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError, match="GET") as exc_info:
        make_client(handler).list_topics()

    error = exc_info.value
    assert error.method == "GET"
    assert error.path == "/alerts/topics"
    assert isinstance(error.cause, httpx.ConnectError)
    assert error.__cause__ is error.cause


# ---------------------------------------------------------------------------
# Alert topics and handlers
# ---------------------------------------------------------------------------

SLACK = {"kind": "slack", "options": {"channel": "#alerts"}}


def test_define_topic_handler_wraps_single_action(make_client, sent):
    def echo(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={**json.loads(request.content), "topic": "cpu"})

    handler = make_client(echo).define_topic_handler("slack", "cpu", SLACK)

    assert handler.actions == [SLACK]
    assert handler.topic == "cpu"
    assert sent[0].url.path == "/kapacitor/v1/alerts/topics/cpu/handlers"
    assert json.loads(sent[0].content) == {"id": "slack", "actions": [SLACK]}


def test_update_topic_handler_puts_to_handler_path(make_client, sent):
    api_client = make_client(lambda r: httpx.Response(200, json={"id": "slack", "actions": [SLACK]}))

    api_client.update_topic_handler("slack", "cpu", [SLACK])

    assert sent[0].method == "PUT"
    assert sent[0].url.path == "/kapacitor/v1/alerts/topics/cpu/handlers/slack"


def test_topic_handler_without_actions_sends_nothing(make_client, sent):
    api_client = make_client(lambda r: httpx.Response(200, json={}))
    with pytest.raises(InvalidArgumentError):
        api_client.define_topic_handler("slack", "cpu", [])
    assert sent == []


def test_list_topic_handlers_returns_handlers(make_client, sent):
    payload = {
        "link": {"rel": "self", "href": "/kapacitor/v1/alerts/topics/cpu/handlers"},
        "topic": "cpu",
        "handlers": [
            {"id": "slack", "kind": "slack", "actions": [SLACK]},
            {"id": "log", "kind": "log", "actions": [{"kind": "log"}]},
        ],
    }
    handlers = make_client(lambda r: httpx.Response(200, json=payload)).list_topic_handlers("cpu")

    assert [h.id for h in handlers] == ["slack", "log"]
    assert len(sent) == 1


def test_get_topic_handler(make_client, sent):
    payload = {"id": "slack", "kind": "slack", "topic": "cpu", "actions": [SLACK]}
    handler = make_client(lambda r: httpx.Response(200, json=payload)).get_topic_handler("slack", "cpu")

    assert handler.id == "slack"
    assert handler.actions == [SLACK]
    assert sent[0].url.path == "/kapacitor/v1/alerts/topics/cpu/handlers/slack"


def test_delete_topic_handler(make_client, sent):
    assert make_client(lambda r: httpx.Response(204)).delete_topic_handler("slack", "cpu") is None
    assert sent[0].method == "DELETE"
    assert sent[0].url.path == "/kapacitor/v1/alerts/topics/cpu/handlers/slack"


def test_list_topics_returns_ids(make_client):
    payload = {
        "link": {"rel": "self", "href": "/kapacitor/v1/alerts/topics"},
        "topics": [
            {"id": "cpu", "level": "CRITICAL", "collected": 5},
            {"id": "disk", "level": "OK", "collected": 0},
        ],
    }
    topics = make_client(lambda r: httpx.Response(200, json=payload)).list_topics()
    assert topics == ["cpu", "disk"]


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


def test_requests_are_recorded_in_metrics(make_client):
    metrics = RequestMetrics()
    api_client = make_client(lambda r: httpx.Response(204), metrics=metrics)

    api_client.ping()
    api_client.delete_task("t")

    assert metrics.registry.get_sample_value(
        "kapacitor_client_requests_total",
        {"method": "GET", "status": "204"},
    ) == 1
    assert metrics.registry.get_sample_value(
        "kapacitor_client_requests_total",
        {"method": "DELETE", "status": "204"},
    ) == 1


def test_transport_failures_are_recorded_as_errors(make_client):
    metrics = RequestMetrics()

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(TransportError):
        make_client(handler, metrics=metrics).ping()

    assert metrics.registry.get_sample_value(
        "kapacitor_client_requests_total",
        {"method": "GET", "status": "error"},
    ) == 1
