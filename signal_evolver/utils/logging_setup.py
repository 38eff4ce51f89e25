"""Console + rotating file logging for optimizer runs."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class SafeRotatingFileHandler(RotatingFileHandler):
    """Rotating handler that tolerates missing rollover files."""

    def doRollover(self) -> None:  # type: ignore[override]
        if self.stream:
            try:
                self.stream.close()
            finally:
                self.stream = None

        for i in range(self.backupCount - 1, 0, -1):
            sfn = f"{self.baseFilename}.{i}"
            dfn = f"{self.baseFilename}.{i + 1}"
            try:
                os.replace(sfn, dfn)
            except OSError:
                continue

        try:
            os.replace(self.baseFilename, f"{self.baseFilename}.1")
        except OSError:
            pass

        if not self.delay:
            self.stream = self._open()


def setup_logging(level: Optional[str] = None, log_dir: Optional[str] = None) -> logging.Logger:
    """Configure console + rotating file logging (idempotent).

    Level comes from ``level`` or the LOG_LEVEL environment variable (default INFO).
    The file handler writes ``<log_dir>/optimizer.log`` (default storage/logs).
    """
    log_level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_level = getattr(logging, log_level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    formatter = logging.Formatter(_LOG_FORMAT)

    if not any(type(h) is logging.StreamHandler for h in root_logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    directory = log_dir or os.path.join("storage", "logs")
    file_path = os.path.abspath(os.path.join(directory, "optimizer.log"))
    if not any(isinstance(h, RotatingFileHandler) and h.baseFilename == file_path for h in root_logger.handlers):
        try:
            os.makedirs(directory, exist_ok=True)
            file_handler = SafeRotatingFileHandler(file_path, maxBytes=5 * 1024 * 1024, backupCount=3)
        except OSError as exc:
            root_logger.warning("File logging disabled (%s); console only", exc)
        else:
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

    return root_logger


__all__ = ["setup_logging", "SafeRotatingFileHandler"]
