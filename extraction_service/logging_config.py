"""Log setup for the extraction service.

Cloud Run gets one JSON object per line (python-json-logger) with Cloud Logging
``severity`` and a ``request_id`` label; local runs get a compact text format.
The request id is kept in a context variable, and ``asyncio.to_thread`` copies
the context, so records emitted by the pipeline thread carry the id of the HTTP
request that started the extraction.
"""

from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar, Token

from pythonjsonlogger.json import JsonFormatter

# Cloud Logging severity by minimum Python level; custom levels round down
_SEVERITY_BY_LEVEL = (
    (logging.CRITICAL, "CRITICAL"),
    (logging.ERROR, "ERROR"),
    (logging.WARNING, "WARNING"),
    (logging.INFO, "INFO"),
)

_QUIET_LOGGERS = ("httpx", "httpcore", "urllib3", "google.auth", "PIL")

_JSON_FIELDS = "%(message)s %(name)s %(funcName)s %(lineno)d %(request_id)s"
_TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(request_id)s] %(name)s:%(lineno)d  %(message)s"

_request_id: ContextVar[str | None] = ContextVar("extraction_request_id", default=None)


def bind_request_id(request_id: str) -> Token[str | None]:
    return _request_id.set(request_id)


def reset_request_id(token: Token[str | None]) -> None:
    _request_id.reset(token)


def current_request_id() -> str | None:
    return _request_id.get()


def generate_request_id() -> str:
    """16 hex chars; short enough to grep, unique enough per service."""
    return uuid.uuid4().hex[:16]


def gcp_severity(levelno: int) -> str:
    for threshold, name in _SEVERITY_BY_LEVEL:
        if levelno >= threshold:
            return name
    return "DEBUG"


class RequestContextFilter(logging.Filter):
    """Stamp every record with the request id bound to the current context."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get() or "-"
        return True


class GCPJsonFormatter(JsonFormatter):
    def add_fields(
        self,
        log_record: dict[str, object],
        record: logging.LogRecord,
        message_dict: dict[str, object],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.pop("levelname", None)
        log_record["severity"] = gcp_severity(record.levelno)

        # Cloud Logging indexes labels, so the id goes there rather than the payload
        rid = log_record.pop("request_id", None)
        if rid and rid != "-":
            log_record["logging.googleapis.com/labels"] = {"request_id": rid}


def _formatter(json_output: bool) -> logging.Formatter:
    if json_output:
        return GCPJsonFormatter(fmt=_JSON_FIELDS, rename_fields={"name": "logger"})
    return logging.Formatter(_TEXT_FORMAT, datefmt="%H:%M:%S")


def setup_logging(*, level: str = "INFO", json_output: bool | None = None) -> None:
    """Replace root handlers. ``json_output`` defaults to on when running on Cloud Run."""
    if json_output is None:
        json_output = bool(os.getenv("K_SERVICE"))

    stream = logging.StreamHandler()
    stream.addFilter(RequestContextFilter())
    stream.setFormatter(_formatter(json_output))

    root_level = logging.getLevelName(level.upper())
    if not isinstance(root_level, int):
        root_level = logging.INFO
    logging.basicConfig(level=root_level, handlers=[stream], force=True)

    # OCR runs make a lot of HTTP and image-decoder noise at DEBUG
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(root_level, logging.WARNING))
