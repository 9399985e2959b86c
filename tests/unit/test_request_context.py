"""Unit tests for request context propagation into log records."""

import logging
import threading
import uuid

from service_template.domain.request_context import (
    RequestContext,
    RequestContextLoggerAdapter,
    bind_request_context,
    clear_request_context,
    generate_request_id,
    get_logger,
    get_request_context,
    get_request_id,
)


def test_generate_request_id_is_uuid4():
    """Generated identifiers are UUID4 strings."""
    value = generate_request_id()
    assert uuid.UUID(value).version == 4


def test_bind_and_clear_request_context():
    """A bound context is visible until it is cleared."""
    clear_request_context()
    bind_request_context(RequestContext("abc", "GET", "/health/live"))

    assert get_request_id() == "abc"
    assert get_request_context().path == "/health/live"

    clear_request_context()
    assert get_request_context() is None


def test_context_is_isolated_between_threads():
    """A context bound in one thread is invisible in another."""
    bind_request_context(RequestContext("main-thread"))
    seen = []

    thread = threading.Thread(target=lambda: seen.append(get_request_id()))
    thread.start()
    thread.join()

    assert seen == [None]
    clear_request_context()


def test_adapter_injects_request_id_and_component(caplog):
    """Records carry the bound request id and the component name."""
    caplog.set_level(logging.INFO)
    adapter = get_logger("handlers.health")
    bind_request_context(RequestContext("req-42"))
    try:
        adapter.info("liveness", extra={"event": "liveness_probe"})
    finally:
        clear_request_context()

    record = caplog.records[-1]
    assert record.request_id == "req-42"
    assert record.component == "handlers.health"
    assert record.event == "liveness_probe"


def test_adapter_uses_placeholder_without_context(caplog):
    """Outside a request the request id is a dash."""
    caplog.set_level(logging.INFO)
    clear_request_context()
    adapter = RequestContextLoggerAdapter(logging.getLogger("other"), {})

    adapter.info("outside")

    record = caplog.records[-1]
    assert record.request_id == "-"
    assert record.component == "other"
