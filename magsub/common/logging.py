"""JSON log lines tagged with the payment being worked on.

Webhook deliveries and client actions bind `trace_id`, `payment_id` and
`transaction_key` for their duration, so every line emitted while handling
one delivery can be grepped out of the stream together.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from magsub.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
payment_id_ctx: ContextVar[str] = ContextVar("payment_id", default="")
transaction_key_ctx: ContextVar[str] = ContextVar("transaction_key", default="")

_CONTEXT = {
    "trace_id": trace_id_ctx,
    "payment_id": payment_id_ctx,
    "transaction_key": transaction_key_ctx,
}

# Per-request chatter from the HTTP clients; gateway calls are logged by us.
_QUIET_LOGGERS = ("httpx", "httpcore")


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        for name, var in _CONTEXT.items():
            setattr(record, name, var.get())
        return True


@contextmanager
def log_context(**values: str):
    """Bind context fields for the enclosed block.

    Every field is reset on exit, including ones the block set itself.
    """

    tokens = [(var, var.set(values.get(name) or "")) for name, var in _CONTEXT.items()]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def configure_logging(level: str | None = None) -> None:
    """Route all records through one stdout JSON handler."""

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    handler.setFormatter(
        JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(service_name)s %(trace_id)s %(payment_id)s "
            "%(transaction_key)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "ts"},
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level or settings.log_level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger("magsub")
