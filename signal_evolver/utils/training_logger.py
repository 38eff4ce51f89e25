# signal_evolver/utils/training_logger.py
from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict

from signal_evolver.utils.artifacts import to_jsonable


class TrainingLogger:
    """Append-only JSONL event log for optimizer runs.

    Writes are best effort: an I/O failure is reported once through ``logging`` and never
    raised into the optimization loop.
    """

    def __init__(self, log_file: str | Path, *, level: int = logging.INFO) -> None:
        self.path = Path(log_file)
        self._logger = logging.getLogger(f"optimizer.{self.path.name}")
        self._logger.setLevel(level)
        self._write_failed = False
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self._report_failure(exc)

    def _report_failure(self, exc: OSError) -> None:
        if not self._write_failed:
            self._logger.warning("Event log %s unavailable: %s", self.path, exc)
        self._write_failed = True

    def _write(self, record: Dict[str, Any]) -> None:
        record.setdefault("ts", time.time())
        try:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(to_jsonable(record), ensure_ascii=False, default=str) + "\n")
        except OSError as exc:
            self._report_failure(exc)

    def log(self, event: str, payload: Dict[str, Any] | None = None) -> None:
        self._write({"event": event, "payload": payload or {}})

    def log_error(self, context: Dict[str, Any], err: BaseException) -> None:
        rec = {
            "event": "error",
            "payload": {
                "context": context,
                "error_type": type(err).__name__,
                "error_msg": str(err),
            },
        }
        self._logger.error("Optimizer error: %s", rec["payload"])
        self._write(rec)
