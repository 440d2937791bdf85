from __future__ import annotations

import contextvars
import logging
import sys

from .settings import settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | rid=%(request_id)s | %(message)s"
HANDLER_NAME = "session-service"

# set per request by the logging middleware in main.py
request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    """Stamps the current request id on every record, library records included."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def setup_logging() -> None:
    root = logging.getLogger()
    root.setLevel(_level(settings.LOG_LEVEL))
    if not any(h.get_name() == HANDLER_NAME for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.set_name(HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(RequestIdFilter())
        root.addHandler(handler)

    # mongostore logs load/save at debug; tune it apart from the service
    logging.getLogger("mongostore").setLevel(_level(settings.STORE_LOG_LEVEL))
