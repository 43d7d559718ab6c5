"""
KSynchrony - Structured Logging

Every module logs through ``logging.getLogger(__name__)`` under the
``ksynchrony`` hierarchy, so configuring that one logger covers the whole
package. Records are emitted as one JSON object per line:

    {"timestamp": "...", "level": "info", "name": "ksynchrony.core.reconciler",
     "message": "Reconciler started", "event": "reconciler.started",
     "service": "ksynchrony", "network": "testnet", "source": {...}}

Usage:
    from ksynchrony.core.logging_config import setup_logging

    setup_logging(level="DEBUG", network="mainnet", log_file="logs/ksync.jsonl")
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pythonjsonlogger import jsonlogger

LOG_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"
ROTATE_BYTES = 20 * 1024 * 1024
ROTATE_KEEP = 3


class KSynchronyJsonFormatter(jsonlogger.JsonFormatter):
    """Stamps each record with service, network, environment and call site."""

    def __init__(
        self,
        service_name: str = "ksynchrony",
        network: Optional[str] = None,
        environment: str = "production",
    ) -> None:
        super().__init__(fmt=LOG_FORMAT)
        self.service_name = service_name
        self.network = network
        self.environment = environment

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        log_record["level"] = record.levelname.lower()
        log_record["service"] = self.service_name
        log_record["environment"] = self.environment
        if self.network:
            log_record.setdefault("network", self.network)
        log_record["source"] = {
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }


def _level(level: str) -> int:
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level {level!r}")
    return value


def _build_handlers(formatter: logging.Formatter, console: bool, log_file: Optional[str]) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(path, maxBytes=ROTATE_BYTES, backupCount=ROTATE_KEEP)
        )
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logging(
    name: str = "ksynchrony",
    log_file: Optional[str] = None,
    level: str = "INFO",
    environment: str = "production",
    enable_console: bool = True,
    network: Optional[str] = None,
) -> logging.Logger:
    """
    Configure JSON logging for ``name`` and everything beneath it.

    Args:
        name: Logger to configure (the package root covers every module)
        log_file: Optional path; rotated at 20 MB, three backups kept
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        environment: Deployment label copied into each record
        enable_console: Also write to stdout
        network: Network label copied into each record

    Returns:
        The configured logger. Calling again replaces its handlers.
    """
    logger = logging.getLogger(name)
    logger.setLevel(_level(level))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = KSynchronyJsonFormatter(
        service_name=name.split(".")[0],
        network=network,
        environment=environment,
    )
    try:
        handlers = _build_handlers(formatter, enable_console, log_file)
    except OSError as exc:
        handlers = _build_handlers(formatter, enable_console, None)
        for handler in handlers:
            logger.addHandler(handler)
        logger.warning(
            "Log file unavailable, continuing without it: %s",
            exc,
            extra={"event": "logging.file_unavailable", "log_file": log_file},
        )
        return logger

    for handler in handlers:
        logger.addHandler(handler)
    return logger


def get_logger(name: str, level: str = "INFO") -> logging.Logger:
    """Return ``name``'s logger, configuring it on first use only."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    return setup_logging(name=name, level=level)
