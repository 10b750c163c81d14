"""Tests for structured logging, request_id propagation and config validation."""

import json
import logging

import pytest

from tentquest.core.config import Settings, validate_config
from tentquest.core.logging import JsonFormatter, PrettyFormatter, latency_bucket_ms, log_event


def test_request_id_in_response_and_logs(client, caplog):
    with caplog.at_level(logging.INFO, logger="tentquest"):
        response = client.get("/healthz")
    rid = response.headers.get("x-request-id")
    assert rid
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    assert records, "Expected logs to contain request_id from response"
    assert len({r.request_id for r in records}) == 1


def test_request_id_in_error_response(client):
    response = client.get("/v1/quests/999999/prerequisites")
    rid = response.headers.get("x-request-id")
    assert response.status_code == 404
    assert rid
    assert response.json()["error"]["request_id"] == rid


def test_log_event_truncates_extra(caplog):
    with caplog.at_level(logging.INFO, logger="tentquest"):
        log_event("info", "sync.note", user_id="u1", event_type="admin", extra={"blob": "x" * 600})

    record = caplog.records[-1]
    assert record.user_id == "u1"
    assert record.blob.endswith("...<truncated>")


def test_json_formatter_emits_known_fields():
    record = logging.LogRecord("tentquest", logging.INFO, __file__, 1, "progress.quest_completed", None, None)
    record.request_id = "rid-9"
    record.user_id = "u1"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "progress.quest_completed"
    assert payload["request_id"] == "rid-9"
    assert payload["user_id"] == "u1"


def test_latency_buckets():
    assert latency_bucket_ms(None) == "unknown"
    assert latency_bucket_ms(5) == "<10ms"
    assert latency_bucket_ms(250) == "100-500ms"
    assert latency_bucket_ms(2000) == ">=1000ms"


def test_validate_config_strict_raises_on_missing_keys():
    cfg = Settings(DATABASE_URL=None, ADMIN_KEY=None)
    with pytest.raises(RuntimeError, match="ADMIN_KEY"):
        validate_config(strict=True, settings_obj=cfg)


def test_validate_config_rejects_bad_schedule_hour_in_strict_mode():
    cfg = Settings(DATABASE_URL="sqlite://", ADMIN_KEY="k", SAFETY_CHECK_HOUR_UTC=25)
    with pytest.raises(RuntimeError, match="SAFETY_CHECK_HOUR_UTC"):
        validate_config(strict=True, settings_obj=cfg)


def test_validate_config_warns_when_not_strict(caplog):
    cfg = Settings(DATABASE_URL=None, ADMIN_KEY=None)
    with caplog.at_level(logging.WARNING, logger="tentquest"):
        assert validate_config(strict=False, settings_obj=cfg) is True
    assert any("Missing required configuration" in r.getMessage() for r in caplog.records)


def test_json_formatter_keeps_every_extra_field():
    logger = logging.getLogger("tentquest.progress")
    record = logger.makeRecord(
        logger.name, logging.INFO, __file__, 1, "progress.safety_check_completed", None, None,
        extra={"users_checked": 3, "users_degraded": 1, "errors_count": 0},
    )

    payload = json.loads(JsonFormatter().format(record))

    assert payload["logger"] == "tentquest.progress"
    assert payload["users_checked"] == 3
    assert payload["users_degraded"] == 1
    assert payload["errors_count"] == 0
    assert "args" not in payload and "lineno" not in payload


def test_pretty_formatter_appends_extra_fields():
    record = logging.LogRecord("tentquest.quests", logging.INFO, __file__, 1, "sync.completed", None, None)
    record.tents_created = 2
    record.request_id = "rid-3"

    line = PrettyFormatter().format(record)

    assert "[rid=rid-3]" in line
    assert line.endswith("sync.completed tents_created=2")
