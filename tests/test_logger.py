# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_session_auth

import hashlib
import hmac
import json
import logging
import os
from collections.abc import Generator
from unittest.mock import patch

import pytest
from loguru import logger
from opentelemetry.sdk.trace import TracerProvider

from coreason_session_auth.utils.logger import anonymize, configure_logging


@pytest.fixture
def capture_logs(capfd: pytest.CaptureFixture[str]) -> Generator[pytest.CaptureFixture[str], None, None]:
    """Captures stdout/stderr and restores the default configuration afterwards."""
    yield capfd
    configure_logging()


def _json_records(out: str, needle: str) -> list[dict[str, object]]:
    records = []
    for line in out.strip().split("\n"):
        if needle in line:
            records.append(json.loads(line)["record"])
    return records


def test_anonymize_is_salted_hmac() -> None:
    expected = hmac.new(b"test-salt", b"alice", hashlib.sha256).hexdigest()[:16]
    assert anonymize("alice", "test-salt") == expected
    assert anonymize("alice", "other-salt") != expected
    assert "alice" not in anonymize("alice", "test-salt")


def test_json_configuration(capture_logs: pytest.CaptureFixture[str]) -> None:
    with patch.dict(os.environ, {"COREASON_LOG_JSON": "true", "COREASON_LOG_LEVEL": "INFO"}):
        configure_logging()
        logger.info("JSON message")

        out, err = capture_logs.readouterr()
        assert not err
        (record,) = _json_records(out, "JSON message")
        assert record["message"] == "JSON message"


def test_trace_id_injection(capture_logs: pytest.CaptureFixture[str]) -> None:
    tracer = TracerProvider().get_tracer(__name__)

    with patch.dict(os.environ, {"COREASON_LOG_JSON": "true"}):
        configure_logging()
        with tracer.start_as_current_span("test_span") as span:
            logger.info("Trace message")
            ctx = span.get_span_context()

        out, _ = capture_logs.readouterr()
        (record,) = _json_records(out, "Trace message")
        extra = record["extra"]
        assert isinstance(extra, dict)
        assert extra["trace_id"] == format(ctx.trace_id, "032x")
        assert extra["span_id"] == format(ctx.span_id, "016x")
        assert extra["correlation_id"] == extra["trace_id"]


def test_standard_logging_interception(capture_logs: pytest.CaptureFixture[str]) -> None:
    with patch.dict(os.environ, {"COREASON_LOG_JSON": "true"}):
        configure_logging()
        logging.getLogger("httpx").info("HTTP Request: POST https://idp.example.com/")

        out, _ = capture_logs.readouterr()
        assert _json_records(out, "HTTP Request")


def test_default_text_logging(capture_logs: pytest.CaptureFixture[str]) -> None:
    with patch.dict(os.environ, {"COREASON_LOG_JSON": "false"}):
        configure_logging()
        logger.info("Text message")

        _, err = capture_logs.readouterr()
        assert "Text message" in err
        assert not err.strip().startswith("{")


def test_invalid_log_level_falls_back_to_info(capture_logs: pytest.CaptureFixture[str]) -> None:
    with patch.dict(os.environ, {"COREASON_LOG_LEVEL": "NOT_A_LEVEL", "COREASON_LOG_JSON": "false"}):
        configure_logging()
        logger.debug("hidden")
        logger.info("shown")

        _, err = capture_logs.readouterr()
        assert "shown" in err
        assert "hidden" not in err


def test_unwritable_log_directory_is_tolerated() -> None:
    with patch("pathlib.Path.mkdir", side_effect=PermissionError("read-only")):
        configure_logging()
    configure_logging()
