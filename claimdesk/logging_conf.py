"""
Logging configuration for structured logging with claim context.

Provides structured logging setup, file rotation, and debug/production modes.
Automation and pipeline logs carry claim-specific context when available.
"""

import logging
import logging.handlers
import structlog
import sys
import re
from pathlib import Path
from typing import Optional, Dict, Any
from datetime import datetime, timezone


def setup_logging(
    debug: bool = False,
    log_to_file: bool = True,
    enable_rotation: bool = True,
    enable_masking: bool = True,
    production_mode: bool = False,
    log_dir: Optional[Path] = None
) -> None:
    """
    Configure structured logging for the application.

    Args:
        debug: Enable debug-level logging
        log_to_file: Whether to log to file in addition to console
        enable_rotation: Enable log rotation
        enable_masking: Enable sensitive data masking
        production_mode: Use JSON output and quieter levels
        log_dir: Override for the log directory
    """

    log_level = logging.DEBUG if debug else logging.INFO
    if production_mode and not debug:
        log_level = logging.WARNING

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
    ]

    if enable_masking:
        processors.append(_mask_sensitive_data)

    processors.extend([
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="ISO"),
    ])

    if production_mode:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_to_file:
        _setup_file_logging(log_dir, log_level, enable_rotation, production_mode)


def _default_log_dir() -> Path:
    # Imported lazily so logging can be configured before settings load
    from .settings import settings
    return settings.config_dir / "logs"


def _setup_file_logging(
    log_dir: Optional[Path],
    log_level: int,
    enable_rotation: bool,
    production_mode: bool
) -> None:
    """Set up file logging with optional rotation."""

    log_dir = log_dir or _default_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / "app.log"

    if enable_rotation:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
    else:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')

    file_handler.setLevel(log_level)

    if production_mode:
        file_formatter = logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'
        )
    else:
        file_formatter = logging.Formatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
        )

    file_handler.setFormatter(file_formatter)

    root_logger = logging.getLogger()
    root_logger.addHandler(file_handler)

    if production_mode:
        error_log_file = log_dir / "error.log"

        if enable_rotation:
            error_handler = logging.handlers.RotatingFileHandler(
                error_log_file,
                maxBytes=5 * 1024 * 1024,  # 5MB
                backupCount=3,
                encoding='utf-8'
            )
        else:
            error_handler = logging.FileHandler(error_log_file, encoding='utf-8')

        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(file_formatter)
        root_logger.addHandler(error_handler)


# Claim records are full of policyholder PII, so emails and phones are masked too
SENSITIVE_PATTERNS = [
    (r'api[_-]?key["\s]*[:=]["\s]*([a-zA-Z0-9_-]{20,})', r'api_key=***'),
    (r'bearer\s+([a-zA-Z0-9_.-]{20,})', r'Bearer ***'),
    (r'token["\s]*[:=]["\s]*([a-zA-Z0-9_.-]{20,})', r'token=***'),
    (r'secret["\s]*[:=]["\s]*([a-zA-Z0-9_.-]{20,})', r'secret=***'),
    (r'\b\d{3}-\d{2}-\d{4}\b', r'***-**-****'),
    (r'([a-zA-Z0-9._%+-]+)@([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})', r'***@\2'),
    (r'\+?1?[-.\s]?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b', r'***-***-****'),
]


def mask_string(text: Any) -> Any:
    """Mask sensitive substrings in a single value."""
    if not isinstance(text, str):
        return text

    for pattern, replacement in SENSITIVE_PATTERNS:
        text = re.sub(pattern, replacement, text, flags=re.IGNORECASE)

    return text


def _mask_sensitive_data(logger, method_name, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Processor to mask sensitive data in log messages."""

    def mask_dict(d: Dict[str, Any]) -> Dict[str, Any]:
        masked = {}
        for key, value in d.items():
            if isinstance(value, str):
                masked[key] = mask_string(value)
            elif isinstance(value, dict):
                masked[key] = mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [mask_string(item) for item in value]
            else:
                masked[key] = value
        return masked

    return mask_dict(event_dict)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def bind_claim_context(
    logger: structlog.stdlib.BoundLogger,
    claim_id: str,
    claim_number: Optional[str] = None
) -> structlog.stdlib.BoundLogger:
    """
    Bind claim context to a logger instance.

    Args:
        logger: Logger to bind context to
        claim_id: Claim ID
        claim_number: Human-facing claim number, if known

    Returns:
        Logger with bound claim context
    """
    return logger.bind(claim_id=claim_id, claim_number=claim_number)


def log_performance_metric(operation: str, duration_ms: float, **metadata) -> None:
    """Log a performance metric through the structured logger."""
    get_logger("performance").info(
        "Performance metric",
        operation=operation,
        duration_ms=round(duration_ms, 2),
        timestamp=datetime.now(timezone.utc).isoformat(),
        **metadata
    )


logger = get_logger(__name__)
