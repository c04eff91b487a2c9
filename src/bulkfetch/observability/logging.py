"""
Structured Logging

structlog configuration for the fetch engine: JSON (or console) output,
ISO timestamps and masking of patient identifiers.
"""

import logging
import sys

import structlog

# Event keys whose values identify a patient
IDENTIFIER_KEYS = frozenset({"patient_id", "mbi", "identifier"})

REDACTED = "[REDACTED]"


def redact_identifiers_processor(logger, method_name, event_dict):
    """
    Mask patient identifiers in log events.

    Identifier-bearing keys are masked outright. Their values are also
    scrubbed from every other string in the event, so an identifier quoted
    in error text does not reach the log.
    """
    identifiers = [
        value
        for key, value in event_dict.items()
        if key in IDENTIFIER_KEYS and isinstance(value, str) and value
    ]

    for key, value in event_dict.items():
        if key in IDENTIFIER_KEYS:
            if value:
                event_dict[key] = REDACTED
        elif isinstance(value, str) and key not in ("level", "logger", "timestamp"):
            for identifier in identifiers:
                value = value.replace(identifier, REDACTED)
            event_dict[key] = value

    return event_dict


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    redact_identifiers: bool = True,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Minimum log level name
        json_output: Render JSON lines instead of console output
        redact_identifiers: Mask patient identifiers in every event
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]
    if redact_identifiers:
        processors.append(redact_identifiers_processor)
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_from_settings(settings=None) -> None:
    """Configure logging from AppSettings."""
    if settings is None:
        from bulkfetch.config import get_settings
        settings = get_settings().app

    configure_logging(
        level=settings.log_level,
        json_output=settings.log_json,
        redact_identifiers=settings.redact_identifiers,
    )
