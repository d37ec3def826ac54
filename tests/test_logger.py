# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

import json
import logging
import os
from collections.abc import Generator
from unittest.mock import patch

import pytest
from loguru import logger
from opentelemetry.sdk.trace import TracerProvider

from coreason_gatekeeper.utils.logger import configure_logging


@pytest.fixture
def clean_logger() -> Generator[None, None, None]:
    """Restore the default configuration after each test."""
    yield
    configure_logging()


def json_records(out: str) -> list[dict]:
    records = []
    for line in out.strip().splitlines():
        try:
            records.append(json.loads(line)["record"])
        except (json.JSONDecodeError, KeyError):
            continue
    return records


@pytest.mark.usefixtures("clean_logger")
def test_text_logging_to_stderr(capsys: pytest.CaptureFixture[str]) -> None:
    with patch.dict(os.environ, {"GATEKEEPER_LOG_JSON": "false"}):
        configure_logging()
        logger.info("Text Log")

    captured = capsys.readouterr()
    assert "Text Log" in captured.err
    assert "Text Log" not in captured.out


@pytest.mark.usefixtures("clean_logger")
def test_json_logging_to_stdout(capsys: pytest.CaptureFixture[str]) -> None:
    with patch.dict(os.environ, {"GATEKEEPER_LOG_JSON": "true"}):
        configure_logging()
        logger.info("JSON Log")

    captured = capsys.readouterr()
    assert not captured.err
    messages = [record["message"] for record in json_records(captured.out)]
    assert "JSON Log" in messages


@pytest.mark.usefixtures("clean_logger")
def test_log_level(capsys: pytest.CaptureFixture[str]) -> None:
    with patch.dict(os.environ, {"GATEKEEPER_LOG_LEVEL": "WARNING", "GATEKEEPER_LOG_JSON": "false"}):
        configure_logging()
        logger.info("hidden")
        logger.warning("shown")

    err = capsys.readouterr().err
    assert "hidden" not in err
    assert "shown" in err


@pytest.mark.usefixtures("clean_logger")
def test_unknown_level_falls_back_to_info(capsys: pytest.CaptureFixture[str]) -> None:
    with patch.dict(os.environ, {"GATEKEEPER_LOG_LEVEL": "CHATTY", "GATEKEEPER_LOG_JSON": "false"}):
        configure_logging()
        logger.debug("hidden")
        logger.info("shown")

    err = capsys.readouterr().err
    assert "hidden" not in err
    assert "shown" in err


@pytest.mark.usefixtures("clean_logger")
def test_stdlib_logging_is_intercepted(capsys: pytest.CaptureFixture[str]) -> None:
    """uvicorn and httpx log through the standard library; their records reach the same sink."""
    with patch.dict(os.environ, {"GATEKEEPER_LOG_JSON": "true"}):
        configure_logging()
        logging.getLogger("uvicorn.error").warning("Started server process")

    records = json_records(capsys.readouterr().out)
    assert any(record["message"] == "Started server process" for record in records)


@pytest.mark.usefixtures("clean_logger")
def test_trace_id_injection(capsys: pytest.CaptureFixture[str]) -> None:
    tracer = TracerProvider().get_tracer(__name__)

    with patch.dict(os.environ, {"GATEKEEPER_LOG_JSON": "true"}):
        configure_logging()
        with tracer.start_as_current_span("test_span") as span:
            logger.info("Trace message")
            ctx = span.get_span_context()

    records = [r for r in json_records(capsys.readouterr().out) if r["message"] == "Trace message"]
    assert records
    assert records[0]["extra"]["trace_id"] == format(ctx.trace_id, "032x")
    assert records[0]["extra"]["span_id"] == format(ctx.span_id, "016x")


@pytest.mark.usefixtures("clean_logger")
def test_no_trace_id_outside_span(capsys: pytest.CaptureFixture[str]) -> None:
    with patch.dict(os.environ, {"GATEKEEPER_LOG_JSON": "true"}):
        configure_logging()
        logger.info("No span")

    records = [r for r in json_records(capsys.readouterr().out) if r["message"] == "No span"]
    assert records
    assert "trace_id" not in records[0]["extra"]


@pytest.mark.usefixtures("clean_logger")
def test_multiple_configure_calls() -> None:
    configure_logging()
    handler_count_1 = len(logger._core.handlers)  # type: ignore[attr-defined]

    configure_logging()
    handler_count_2 = len(logger._core.handlers)  # type: ignore[attr-defined]

    assert handler_count_1 == handler_count_2
