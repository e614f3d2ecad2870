"""Logging for the finance API and maintenance scripts.

Records carry the billing context of the action that produced them
(``user_id``, ``card_id``, ``mes``, ``ano``, ``acao``) when passed through
``extra=``; the user falls back to the one bound in ``context``.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from context import get_current_user_id

BILLING_FIELDS = ("user_id", "card_id", "mes", "ano", "acao")

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | uid=%(user_id)s | %(message)s"

_QUIET_LOGGERS = ("psycopg", "uvicorn.access", "httpx")


class BillingContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "user_id", None) is None:
            record.user_id = get_current_user_id(required=False)
        if record.user_id is None:
            record.user_id = "-"
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, billing fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in BILLING_FIELDS:
            value = getattr(record, name, None)
            if value is not None and value != "-":
                data[name] = value
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str, ensure_ascii=False)


def setup_logging(level: str = "INFO", format_type: str = "standard") -> None:
    """Replace the root handlers with one stdout handler (``standard`` or ``json``)."""
    log_level = getattr(logging, str(level).upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    if format_type == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handler.addFilter(BillingContextFilter())

    root = logging.getLogger()
    for old in root.handlers[:]:
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(log_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
