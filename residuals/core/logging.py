import logging
import sys
from contextvars import ContextVar, Token
from typing import Optional

from pythonjsonlogger import jsonlogger
from residuals.core.config import Settings

# Request id of the HTTP request being served, if any.
_REQUEST_ID: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def bind_request_id(rid: Optional[str]) -> Token:
    return _REQUEST_ID.set(rid)


def reset_request_id(token: Token) -> None:
    _REQUEST_ID.reset(token)


def current_request_id() -> Optional[str]:
    return _REQUEST_ID.get()


class RequestIdFilter(logging.Filter):
    """Stamp request_id on every record unless the caller passed one in extra."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = _REQUEST_ID.get()
        return True


def configure_logging(settings: Settings) -> None:
    """
    Structured JSON logging to stdout.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # clear handlers if reloaded
    root.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    fmt = jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"levelname": "level", "name": "logger"},
    )
    handler.setFormatter(fmt)
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(level)
    logging.getLogger("uvicorn.error").setLevel(level)
    # httpx logs every request line at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
