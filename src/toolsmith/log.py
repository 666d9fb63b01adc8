"""
Logging setup for Toolsmith.

Every module logs through ``structlog.get_logger(__name__)`` with dotted
event names (``builder.started``, ``executor.install_failed``...). Entry
points call configure_logging() once; library code never configures logging.
"""

import logging
from typing import Any

import structlog

# Fields whose values must never reach a log sink in clear text
REDACTED_KEYS = frozenset({"value", "secret", "secret_value", "api_key", "secrets"})

_logging_configured = False


def redact_sensitive_fields(
    _logger: Any, _method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """structlog processor that masks credential-bearing fields."""
    for key in REDACTED_KEYS & event_dict.keys():
        event_dict[key] = "***"
    return event_dict


def configure_logging(verbose: bool = False) -> None:
    """
    Configure structlog and stdlib logging.

    Safe to call more than once; subsequent calls are no-ops.

    Args:
        verbose: Log at DEBUG instead of WARNING
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        return
    _logging_configured = True

    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(format="%(message)s", level=level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_sensitive_fields,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
