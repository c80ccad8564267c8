from __future__ import annotations

import json
import logging

from api.app import observability as obs


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("branchwatch.test", logging.INFO, __file__, 1, "checked %s devices", (3,), None)
    for k, v in extra.items():
        setattr(record, k, v)
    return record


def test_json_formatter_includes_request_id_and_fields() -> None:
    fmt = obs.JsonFormatter(obs.JsonLogConfig())

    payload = json.loads(fmt.format(_record(request_id="rid-1", fields={"checked": 3})))

    assert payload["message"] == "checked 3 devices"
    assert payload["severity"] == "INFO"
    assert payload["logger"] == "branchwatch.test"
    assert payload["service"] == "branchwatch"
    assert payload["request_id"] == "rid-1"
    assert payload["fields"] == {"checked": 3}


def test_json_formatter_omits_empty_context() -> None:
    fmt = obs.JsonFormatter(obs.JsonLogConfig(service_name="svc"))

    payload = json.loads(fmt.format(_record(request_id=None)))

    assert "request_id" not in payload
    assert "fields" not in payload
    assert payload["service"] == "svc"


def test_context_filter_reads_request_id_contextvar() -> None:
    token = obs.request_id_ctx.set("abc")
    try:
        record = _record()
        obs.ContextFilter().filter(record)
    finally:
        obs.request_id_ctx.reset(token)

    assert record.request_id == "abc"


def test_configure_logging_replaces_handlers() -> None:
    root = logging.getLogger()
    saved = list(root.handlers), root.level
    try:
        obs.configure_logging(level=logging.DEBUG, log_format="json")
        obs.configure_logging(level=logging.DEBUG, log_format="json")
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, obs.JsonFormatter)
    finally:
        root.handlers[:] = saved[0]
        root.setLevel(saved[1])
