"""
logger.py
---------
Logging setup for pgrecord.

Two logger families live under the "pgrecord" root:

    pgrecord.<module>   application events (connections, migrations, hooks)
    pgrecord.sql        every statement sent to PostgreSQL

The SQL logger has its own level (``PGRECORD_SQL_LOG_LEVEL``, default
WARNING) so statement tracing can be switched on without turning the rest
of the application to DEBUG. Statement text is logged; bound parameter
values never are.

``configure_logging()`` runs once at import with the values from
``config.CONFIG``; calling it again (e.g. from the CLI's ``--verbose``)
replaces the handlers it installed earlier instead of stacking new ones.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path

from config import CONFIG, get_log_level, get_sql_log_level

ROOT_LOGGER_NAME = "pgrecord"
SQL_LOGGER_NAME = f"{ROOT_LOGGER_NAME}.sql"

_CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s | %(message)s"
_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(module)s:%(lineno)d] %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

_HANDLER_MARK = "_pgrecord_handler"


def _mark(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _HANDLER_MARK, True)
    return handler


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT, _DATE_FORMAT))
    return _mark(handler)


def _file_handler(path: Path) -> logging.Handler | None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
    except OSError as exc:
        logging.getLogger(ROOT_LOGGER_NAME).warning("Cannot open log file '%s': %s", path, exc)
        return None
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, _DATE_FORMAT))
    return _mark(handler)


def configure_logging(
    level: int | None = None,
    log_file: str | Path | None = None,
    sql_level: int | None = None,
) -> logging.Logger:
    """
    (Re)install the pgrecord handlers and levels.

    Args:
        level:     Application level; defaults to ``LOG_LEVEL``.
        log_file:  Extra file destination; defaults to ``LOG_FILE``.
        sql_level: Level of ``pgrecord.sql``; defaults to
                   ``PGRECORD_SQL_LOG_LEVEL``.

    Returns:
        The "pgrecord" root logger.
    """
    level = get_log_level() if level is None else level
    sql_level = get_sql_log_level() if sql_level is None else sql_level
    log_file = CONFIG.migration.log_file if log_file is None else log_file

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in [h for h in root.handlers if getattr(h, _HANDLER_MARK, False)]:
        root.removeHandler(handler)
        handler.close()

    # The SQL logger may be more verbose than the root, so handlers pass
    # everything and each logger filters by its own level.
    root.setLevel(level)
    root.addHandler(_console_handler(logging.DEBUG))
    if log_file:
        handler = _file_handler(Path(log_file))
        if handler is not None:
            root.addHandler(handler)

    logging.getLogger(SQL_LOGGER_NAME).setLevel(sql_level)
    return root


configure_logging()


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger under the "pgrecord" hierarchy.

    Example::

        log = get_logger(__name__)
        log.info("Running migration: %s", name)
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def get_sql_logger() -> logging.Logger:
    """Logger used for statement tracing (``pgrecord.sql``)."""
    return logging.getLogger(SQL_LOGGER_NAME)
