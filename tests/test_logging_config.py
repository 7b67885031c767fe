"""Tests for structlog setup and secret redaction."""

from __future__ import annotations

import structlog

from streampay_escrow.logging_config import (
    REDACTED,
    bind_request_context,
    redact_secrets,
)

SECRET = "S" + "A" * 55
CONTRACT = "C" + "A" * 55
ACCOUNT = "G" + "B" * 55


class TestRedactSecrets:
    def test_masks_secret_seed(self) -> None:
        event = redact_secrets(None, "info", {"event": "x", "key": SECRET})
        assert event["key"] == REDACTED

    def test_masks_seed_inside_message(self) -> None:
        event = redact_secrets(None, "error", {"event": "x", "error": f"bad key {SECRET}!"})
        assert SECRET not in event["error"]
        assert event["error"].startswith("bad key ")

    def test_nested_values(self) -> None:
        event = redact_secrets(
            None, "info", {"event": "x", "ctx": {"keys": (SECRET, "ok")}, "n": 3}
        )
        assert event["ctx"] == {"keys": (REDACTED, "ok")}
        assert event["n"] == 3

    def test_public_identifiers_untouched(self) -> None:
        event = redact_secrets(None, "info", {"contract": CONTRACT, "account": ACCOUNT})
        assert event == {"contract": CONTRACT, "account": ACCOUNT}


class TestRequestContext:
    def test_bind_replaces_previous_context(self) -> None:
        structlog.contextvars.bind_contextvars(stale="yes")

        bind_request_context("req-1", path="/health")

        context = structlog.contextvars.get_contextvars()
        assert context == {"request_id": "req-1", "path": "/health"}
        structlog.contextvars.clear_contextvars()
