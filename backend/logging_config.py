"""Centralized logging configuration."""

import logging
import re

from config import settings

NOISY_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "httpx",
    "httpcore",
    "urllib3",
    "plaid",
)

# access-sandbox-<uuid>, public-production-<uuid>, link-sandbox-<uuid>
_PLAID_TOKEN = re.compile(
    r"\b((?:access|public|link)-(?:sandbox|development|production)-)([0-9a-fA-F-]{8,})"
)


def redact_tokens(text: str) -> str:
    """Replace the body of any Plaid token in ``text`` with its last four characters."""
    return _PLAID_TOKEN.sub(lambda m: f"{m.group(1)}...{m.group(2)[-4:]}", text)


class PlaidTokenFilter(logging.Filter):
    """Keeps access, public and link tokens out of log output."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            # Bad format args; the handler's handleError reports it on emit
            return True
        redacted = redact_tokens(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging() -> None:
    """Configure logging for the application.

    Sets root logger level from settings.LOG_LEVEL, suppresses noisy
    third-party loggers to WARNING and redacts Plaid tokens on every
    root handler.
    """
    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
        datefmt="%H:%M:%S",
        level=getattr(logging, settings.LOG_LEVEL),
        force=True,
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(PlaidTokenFilter())

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
