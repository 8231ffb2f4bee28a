"""Structured JSON logging with request/order context fields."""

import logging
import os
import sys
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from ikhaya.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
order_number_ctx: ContextVar[str] = ContextVar("order_number", default="")


class ContextFilter(logging.Filter):
    """Inject service and correlation identifiers into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.trace_id = trace_id_ctx.get()
        record.order_number = order_number_ctx.get()
        return True


def configure_logging() -> None:
    """Configure root logger once per service process."""

    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    formatter = JsonFormatter(
        "%(asctime)s %(levelname)s %(service_name)s %(trace_id)s %(order_number)s %(message)s"
    )
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    root.addFilter(context_filter)


logger = logging.getLogger("ikhaya")

# Env var names containing any of these are never logged verbatim.
SECRET_MARKERS = ("KEY", "SECRET", "PASSWORD", "PASSPHRASE", "TOKEN", "DSN")


def log_startup_config(service_name: str, keys: list[str]) -> None:
    """Log selected env keys at startup, redacting anything secret-like."""

    config = {"service": service_name}
    for key in keys:
        value = os.getenv(key)
        if value is None:
            config[key] = "<unset>"
        elif any(marker in key for marker in SECRET_MARKERS):
            config[key] = "<redacted>"
        else:
            config[key] = value
    logger.info("startup_config=%s", config)
