"""Server logging for the ledger API.

Every record goes to stdout and to the server log file in one format:

    [2025-11-03 14:02:11] src.services.payment_ledger - INFO - Recorded payment 7 ...

Ledger services log state changes (created, approved, paid) at INFO, refused
operations (invalid transitions, overpayments) at WARNING and persistence
failures at ERROR, so LOG_LEVEL=WARNING keeps only the problems.
"""

import logging
import os
import sys
from pathlib import Path

LOG_FORMAT = "[%(asctime)s] %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Third-party loggers that flood INFO with per-request or per-statement lines
NOISY_LOGGERS = ("sqlalchemy.engine", "uvicorn.access")


def get_log_level(level_name: str | None = None) -> int:
    """Resolve a level name, falling back to LOG_LEVEL and then INFO.

    Unknown names resolve to INFO.
    """
    name = level_name or os.getenv("LOG_LEVEL", "INFO")
    return LOG_LEVEL_MAP.get(name.strip().upper(), logging.INFO)


def setup_server_logging(
    log_file: str = "logs/server.log",
    level: str | None = None,
    sql_echo: bool = False,
) -> None:
    """Point the root logger at stdout and the ledger log file.

    Args:
        log_file: Log file path; missing parent directories are created
        level: Level name; None reads LOG_LEVEL
        sql_echo: Leave SQLAlchemy engine logging alone so echoed SQL shows up

    Calling it again replaces the handlers instead of adding duplicates.
    """
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    log_level = get_log_level(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    for handler in (logging.StreamHandler(sys.stdout), logging.FileHandler(log_path)):
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        if name == "sqlalchemy.engine" and sql_echo:
            continue
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def configure_from_settings(settings) -> None:
    """Apply LOG_FILE, LOG_LEVEL and DATABASE_ECHO from LedgerSettings."""
    setup_server_logging(
        log_file=settings.log_file,
        level=settings.log_level,
        sql_echo=settings.database_echo,
    )


__all__ = ["configure_from_settings", "get_log_level", "setup_server_logging"]
