"""Unit tests for structured logging setup."""

from __future__ import annotations

import json
import logging

import structlog

from bidintake.core.logging import (
    HANDLER_NAME,
    bind_document_context,
    clear_document_context,
    configure_logging,
)


def own_handlers() -> list[logging.Handler]:
    return [h for h in logging.getLogger().handlers if h.get_name() == HANDLER_NAME]


def test_document_context_bound_and_cleared():
    bind_document_context("doc-1", "project-9")

    assert structlog.contextvars.get_contextvars() == {
        "document_id": "doc-1",
        "project_id": "project-9",
    }

    clear_document_context()
    assert structlog.contextvars.get_contextvars() == {}


def test_pipeline_logger_lines_carry_document_context(capsys):
    configure_logging(level="INFO", json_logs=True)
    bind_document_context("doc-1", "project-9")
    try:
        logging.getLogger("bidintake.pipeline.dispatcher").info("Processing BIDX document schedule.xml")
    finally:
        clear_document_context()

    line = capsys.readouterr().err.strip().splitlines()[-1]
    record = json.loads(line)
    assert record["event"] == "Processing BIDX document schedule.xml"
    assert record["document_id"] == "doc-1"
    assert record["project_id"] == "project-9"
    assert record["logger"] == "bidintake.pipeline.dispatcher"
    assert record["level"] == "info"
    assert "timestamp" in record


def test_exceptions_rendered_into_json(capsys):
    configure_logging(level="INFO", json_logs=True)

    try:
        raise ValueError("bad workbook")
    except ValueError:
        logging.getLogger("bidintake.pipeline.queue").error("Dispatch failed", exc_info=True)

    record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert record["level"] == "error"
    assert "ValueError: bad workbook" in record["exception"]


def test_level_filters_records(capsys):
    configure_logging(level="WARNING", json_logs=True)

    logging.getLogger("bidintake.ingestion").info("quiet")
    logging.getLogger("bidintake.ingestion").warning("loud")

    err = capsys.readouterr().err
    assert "quiet" not in err
    assert "loud" in err


def test_json_logs_from_environment(monkeypatch):
    monkeypatch.setenv("JSON_LOGS", "true")

    configure_logging()

    handlers = own_handlers()
    assert len(handlers) == 1
    assert isinstance(handlers[0].formatter, structlog.stdlib.ProcessorFormatter)
    assert isinstance(handlers[0].formatter.processors[-1], structlog.processors.JSONRenderer)


def test_reconfiguring_replaces_handlers(tmp_path, monkeypatch):
    configure_logging()
    monkeypatch.setenv("LOG_FILE", str(tmp_path / "pipeline.log"))
    configure_logging(json_logs=True)

    logging.getLogger("bidintake.pipeline.queue").warning("Document stuck")

    assert len(own_handlers()) == 2
    assert "Document stuck" in (tmp_path / "pipeline.log").read_text()
