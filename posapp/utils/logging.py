from __future__ import annotations

import logging
import sys
import uuid
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable

from flask import Flask, g, has_request_context, request

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        request_id = None
        if has_request_context():
            request_id = getattr(g, "request_id", None)
        record.request_id = request_id or "-"
        return True


def _has_handler(logger: logging.Logger, handler_types: Iterable[type]) -> bool:
    return any(isinstance(handler, handler_types) for handler in logger.handlers)


def _assign_request_id() -> None:
    g.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]


def _echo_request_id(response):
    request_id = getattr(g, "request_id", None)
    if request_id:
        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
    return response


def configure_logging(app: Flask) -> Path | None:
    """Attach stdout and rotating-file handlers tagged with the request id.

    Returns the log file path, or ``None`` when file logging is off (testing,
    or ``LOG_DIR`` set to an empty value).
    """

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] [req=%(request_id)s] %(name)s: %(message)s"
    )
    request_filter = RequestIdFilter()

    if not _has_handler(root_logger, (logging.StreamHandler,)):
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setLevel(logging.INFO)
        stream_handler.setFormatter(formatter)
        stream_handler.addFilter(request_filter)
        root_logger.addHandler(stream_handler)

    log_path: Path | None = None
    log_dir = app.config.get("LOG_DIR")
    if log_dir and not app.testing:
        logs_dir = Path(log_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)
        log_path = logs_dir / "posapp.log"

        if not any(
            isinstance(handler, RotatingFileHandler)
            and getattr(handler, "baseFilename", "") == str(log_path)
            for handler in root_logger.handlers
        ):
            file_handler = RotatingFileHandler(
                log_path,
                maxBytes=5 * 1024 * 1024,
                backupCount=5,
            )
            file_handler.setLevel(logging.INFO)
            file_handler.setFormatter(formatter)
            file_handler.addFilter(request_filter)
            root_logger.addHandler(file_handler)

    for handler in app.logger.handlers:
        if request_filter not in handler.filters:
            handler.addFilter(request_filter)

    app.before_request(_assign_request_id)
    app.after_request(_echo_request_id)

    app.logger.setLevel(logging.INFO)
    logging.getLogger("werkzeug").setLevel(logging.INFO)
    logging.getLogger("gunicorn.error").setLevel(logging.INFO)
    logging.getLogger("gunicorn.access").setLevel(logging.INFO)

    return log_path
