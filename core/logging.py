# PATH: core/logging.py
"""
Structured logging for Kiln.

All contextual fields are passed only via extra={"context": {...}}.

JSON entries include:
- timestamp (ISO 8601)
- level
- logger
- message
- context (chain_key, nft_id, tx_hash, etc.)
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# Global context that gets added to all log entries
_global_context: dict[str, Any] = {}


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Output format:
    {
        "timestamp": "2026-01-04T12:00:00.000+00:00",
        "level": "INFO",
        "logger": "kiln.staking",
        "message": "Stake confirmed",
        "context": {
            "chain_key": "POLYGON_AMOY",
            "nft_id": "onchain_42",
            "tx_hash": "0xabc..."
        }
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = {}
        context.update(_global_context)

        if hasattr(record, "context") and record.context:
            context.update(record.context)

        if record.exc_info:
            context["exception"] = self.formatException(record.exc_info)

        if context:
            log_entry["context"] = context

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable formatter for console output.
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        base = f"{timestamp} | {record.levelname:<8} | {record.name} | {record.getMessage()}"

        context = getattr(record, "context", None)
        if context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in list(context.items())[:4])
            if len(context) > 4:
                ctx_str += f", ... (+{len(context) - 4} more)"
            base += f" | {ctx_str}"

        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)

        return base


class ContextAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds context to all log entries.
    """

    def process(
        self, msg: str, kwargs: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        # Merge adapter context with call context
        extra = kwargs.get("extra") or {}
        context = {**self.extra, **extra.get("context", {})}

        kwargs["extra"] = {"context": context}
        return msg, kwargs

    def bind(self, **context: Any) -> "ContextAdapter":
        """Return a child adapter with additional default context."""
        return ContextAdapter(self.logger, {**self.extra, **context})


def set_global_context(**kwargs: Any) -> None:
    """
    Set global context that gets added to all log entries.

    Example:
        set_global_context(service="kiln", version="0.1.0")
    """
    _global_context.update(kwargs)


def get_logger(name: str, **context: Any) -> ContextAdapter:
    """
    Get a logger with optional default context.

    Args:
        name: Logger name (e.g., "kiln.chains.providers")
        **context: Default context for all log entries from this logger

    Returns:
        ContextAdapter with structured logging

    Example:
        logger = get_logger("kiln.burn", wallet="0xabc...")
        logger.info("Burn committed", extra={"context": {"result_rarity": "Platinum"}})
    """
    logger = logging.getLogger(name)
    return ContextAdapter(logger, context)


def setup_logging(
    level: str = "INFO",
    json_output: bool = True,
    log_file: str | None = None,
) -> None:
    """
    Setup logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: Use JSON formatting (recommended for production)
        log_file: Optional file path for logging
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    root_logger.handlers.clear()

    formatter: logging.Formatter = JSONFormatter() if json_output else ConsoleFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def log_transaction(
    logger: ContextAdapter,
    action: str,
    status: str,
    chain_key: str,
    tx_hash: str | None = None,
    **extra: Any,
) -> None:
    """Log a transaction outcome with standard context."""
    short = tx_hash[:10] if tx_hash else "-"
    logger.info(
        f"Tx: {action} | {status} | {short}",
        extra={
            "context": {
                "action": action,
                "status": status,
                "chain_key": chain_key,
                "tx_hash": tx_hash,
                **extra,
            }
        },
    )


def log_error(
    logger: ContextAdapter,
    error_kind: str,
    message: str,
    **extra: Any,
) -> None:
    """Log an error with standard context."""
    logger.error(
        f"[{error_kind}] {message}",
        extra={
            "context": {
                "error_kind": error_kind,
                **extra,
            }
        },
    )
