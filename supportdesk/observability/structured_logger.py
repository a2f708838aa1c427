"""
Structured logging module for observability.
Provides consistent JSON log lines with request IDs, the signed-in user,
timestamps and severity levels.
"""

import json
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import g, has_app_context, has_request_context, request


class StructuredLogger:
    """
    Provides structured logging with consistent formatting.
    Logs are output in JSON format for easy parsing and analysis.
    """

    def __init__(self, name: str, log_level: str = "INFO", log_file: Optional[str] = None):
        self.logger = logging.getLogger(name)
        self.log_file = None
        self.configure(log_level, log_file)

    def configure(self, log_level: str = "INFO", log_file: Optional[str] = None):
        """(Re)apply level and handlers; console always, file only when given."""
        self.logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        self.logger.addHandler(handler)

        self.log_file = log_file
        if log_file:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(JsonFormatter())
            self.logger.addHandler(file_handler)

    def _get_request_id(self) -> str:
        """Get the current request ID, or a fresh one outside a request."""
        if has_app_context() and getattr(g, "request_id", None):
            return g.request_id
        return str(uuid.uuid4())

    def _build_log_entry(self, level: str, message: str, **kwargs) -> Dict[str, Any]:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "message": message,
            "request_id": self._get_request_id(),
        }

        if has_app_context():
            user = getattr(g, "current_user", None)
            if user is not None:
                log_entry["user_id"] = user.user_id

        if kwargs:
            log_entry["context"] = kwargs

        if has_request_context():
            log_entry["request"] = {
                "method": request.method,
                "path": request.path,
                "remote_addr": request.remote_addr,
            }

        return log_entry

    def _emit(self, level: int, level_name: str, message: str, **kwargs):
        if self.logger.isEnabledFor(level):
            self.logger.log(level, json.dumps(self._build_log_entry(level_name, message, **kwargs), default=str))

    def info(self, message: str, **kwargs):
        self._emit(logging.INFO, "INFO", message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._emit(logging.WARNING, "WARNING", message, **kwargs)

    def error(self, message: str, **kwargs):
        self._emit(logging.ERROR, "ERROR", message, **kwargs)

    def debug(self, message: str, **kwargs):
        self._emit(logging.DEBUG, "DEBUG", message, **kwargs)

    def critical(self, message: str, **kwargs):
        self._emit(logging.CRITICAL, "CRITICAL", message, **kwargs)


class JsonFormatter(logging.Formatter):
    """Messages are already JSON; pass them through."""

    def format(self, record):
        return record.getMessage()


# Create global logger instance
app_logger = StructuredLogger(
    "supportdesk",
    log_level=os.environ.get("LOG_LEVEL", "INFO"),
    log_file=os.environ.get("LOG_FILE") or None,
)
