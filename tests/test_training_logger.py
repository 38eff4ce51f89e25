"""Tests for the JSONL event log and logging setup used by optimizer runs."""
from __future__ import annotations

import json
import logging
import math
import os
from pathlib import Path

import pytest

from signal_evolver.utils.logging_setup import SafeRotatingFileHandler, setup_logging
from signal_evolver.utils.training_logger import TrainingLogger


def test_training_logger_appends_json_lines(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "log.jsonl"
    logger = TrainingLogger(path)

    logger.log("generation_start", {"gen": 0, "pop_size": 4})
    logger.log("genome_evaluated", {"fitness": 1.23, "metrics": {"profit_factor": math.inf}})

    lines = path.read_text(encoding="utf-8").strip().splitlines()
    assert len(lines) == 2

    records = [json.loads(line) for line in lines]
    assert records[0]["event"] == "generation_start"
    assert records[0]["payload"] == {"gen": 0, "pop_size": 4}
    assert "ts" in records[0]
    assert records[1]["payload"]["metrics"]["profit_factor"] == "inf"


def test_training_logger_records_errors(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "errors.jsonl"
    logger = TrainingLogger(path)

    class BoomError(RuntimeError):
        pass

    with caplog.at_level("ERROR"):
        logger.log_error({"gen": 1}, BoomError("failed"))

    record = json.loads(path.read_text(encoding="utf-8").strip())
    assert record["event"] == "error"
    assert record["payload"]["context"] == {"gen": 1}
    assert record["payload"]["error_type"] == "BoomError"
    assert record["payload"]["error_msg"] == "failed"
    assert any("BoomError" in msg for msg in caplog.text.splitlines())


def test_training_logger_write_failures_do_not_raise(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    logger = TrainingLogger(blocker / "events.jsonl")

    with caplog.at_level("WARNING"):
        logger.log("generation_start", {"gen": 0})
        logger.log("generation_end", {"gen": 0})

    warnings = [r for r in caplog.records if "unavailable" in r.getMessage()]
    assert len(warnings) == 1


def test_setup_logging_is_idempotent(tmp_path: Path) -> None:
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    try:
        setup_logging("DEBUG", str(tmp_path))
        setup_logging("DEBUG", str(tmp_path))
        expected = os.path.abspath(os.path.join(str(tmp_path), "optimizer.log"))
        files = [h for h in root.handlers if isinstance(h, SafeRotatingFileHandler) and h.baseFilename == expected]
        assert len(files) == 1
    finally:
        for handler in list(root.handlers):
            if handler not in before:
                root.removeHandler(handler)
                handler.close()
        root.setLevel(level)
