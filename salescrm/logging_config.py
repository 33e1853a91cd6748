"""
Logging configuration for Sales CRM.

Single 'salescrm' logger used across all modules; module loggers created with
logging.getLogger(__name__) are its children and propagate to it.

  Log file : logs/salescrm.log
  Rotation : 5 MB × 3 backups
  Level    : LOG_LEVEL env var (DEBUG / INFO / WARNING / ERROR / CRITICAL)
             defaults to INFO when unset

Usage
-----
    from salescrm.logging_config import configure_logging, log_call

    # Once at startup (idempotent):
    configure_logging()

    # On any function or coroutine function you want traced:
    @log_call
    async def update_contact(contact_id, patch):
        ...

Log format per line
-------------------
    2026-10-19 14:32:01 | INFO     | CALL contacts_list | args=(search='acme')
    2026-10-19 14:32:01 | INFO     | OK   contacts_list | 42ms
    2026-10-19 14:32:01 | ERROR    | FAIL contacts_list | StoreError: timeout | 3ms
"""

import functools
import inspect
import logging
import logging.handlers
import os
import time
from pathlib import Path

_LOG_DIR = Path(__file__).parent.parent / "logs"
_LOG_FILE = _LOG_DIR / "salescrm.log"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_BACKUP_COUNT = 3


def configure_logging() -> logging.Logger:
    """
    Set up the salescrm logger. Idempotent, called on every CLI entry.
    Returns the configured logger.
    """
    _LOG_DIR.mkdir(exist_ok=True)

    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    logger = logging.getLogger("salescrm")

    # Guard: don't add duplicate handlers if already configured
    if logger.handlers:
        return logger

    logger.setLevel(level)

    handler = logging.handlers.RotatingFileHandler(
        _LOG_FILE,
        maxBytes=_MAX_BYTES,
        backupCount=_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(handler)

    return logger


def _arg_string(args, kwargs) -> str:
    parts = [repr(a) for a in args] + [f"{k}={v!r}" for k, v in kwargs.items()]
    return ", ".join(parts) if parts else "—"


def log_call(func):
    """
    Decorator: logs entry, clean exit, and exceptions for any function.
    Coroutine functions get an async wrapper so the timing covers the await.

    - DEBUG on entry   : CALL <name> | args=(...)
    - INFO  on success : OK   <name> | <N>ms
    - ERROR on failure : FAIL <name> | ExcType: message | <N>ms   (then re-raises)
    """
    name = func.__name__

    if inspect.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            logger = logging.getLogger("salescrm")
            start = time.perf_counter()
            logger.debug(f"CALL {name} | args=({_arg_string(args, kwargs)})")
            try:
                result = await func(*args, **kwargs)
                ms = int((time.perf_counter() - start) * 1000)
                logger.info(f"OK   {name} | {ms}ms")
                return result
            except Exception as exc:
                ms = int((time.perf_counter() - start) * 1000)
                logger.error(f"FAIL {name} | {type(exc).__name__}: {exc} | {ms}ms")
                raise

        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger("salescrm")
        start = time.perf_counter()
        logger.debug(f"CALL {name} | args=({_arg_string(args, kwargs)})")
        try:
            result = func(*args, **kwargs)
            ms = int((time.perf_counter() - start) * 1000)
            logger.info(f"OK   {name} | {ms}ms")
            return result
        except Exception as exc:
            ms = int((time.perf_counter() - start) * 1000)
            logger.error(f"FAIL {name} | {type(exc).__name__}: {exc} | {ms}ms")
            raise

    return wrapper
