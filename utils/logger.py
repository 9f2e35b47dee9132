import asyncio
import datetime
import functools
import logging
import os
import uuid
from typing import Optional

# Niveau de log
LOG_LEVELS = {"NONE": 0, "BASIC": 1, "DETAILED": 2}
LOG_LEVEL = LOG_LEVELS["NONE"]  # Activé par configure_session_log()

# ID unique pour chaque session
SESSION_ID = uuid.uuid4().hex[:8]

LOG_FILE_PATH: Optional[str] = None


def configure_session_log(logs_dir: str = "logs", level: str = "DETAILED") -> str:
    """Open a per-session trace file and enable :func:`log_calls`.

    Returns the path of the trace file.
    """

    global LOG_FILE_PATH, LOG_LEVEL

    os.makedirs(logs_dir, exist_ok=True)
    now = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    LOG_FILE_PATH = os.path.join(logs_dir, f"squadron_log_{now}_{SESSION_ID}.txt")
    LOG_LEVEL = LOG_LEVELS[level]

    # Entête du fichier de log
    with open(LOG_FILE_PATH, 'a', encoding='utf-8') as f:
        f.write(f"# Log de session - ID: {SESSION_ID}\n")
        f.write(f"# Niveau de log: {LOG_LEVEL}\n")
        f.write(f"# Début: {now}\n\n")
    return LOG_FILE_PATH


def _write(entry: str) -> None:
    with open(LOG_FILE_PATH, 'a', encoding='utf-8') as f:
        f.write(entry)


def _trace_call(func, args, kwargs) -> str:
    timestamp = datetime.datetime.now().isoformat(timespec='seconds')
    _write(f"[{timestamp}] Appel {func.__qualname__} args={args} kwargs={kwargs}\n")
    return timestamp


def _trace_return(func, timestamp, result, elapsed) -> None:
    if LOG_LEVEL >= 2:
        _write(
            f"[{timestamp}] Retour {func.__qualname__}: {result}\n"
            f"[{timestamp}] Temps d'exécution {func.__qualname__}: {elapsed:.6f} s\n"
        )


def log_calls(func):
    """Décorateur pour logger les appels de fonctions et mesurer leur temps d'exécution.

    Fonctionne aussi pour les coroutines ; n'écrit rien tant que
    :func:`configure_session_log` n'a pas été appelé.
    """
    import time as _time

    if asyncio.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            if LOG_LEVEL == 0 or LOG_FILE_PATH is None:
                return await func(*args, **kwargs)
            timestamp = _trace_call(func, args, kwargs)
            start_time = _time.perf_counter()
            result = await func(*args, **kwargs)
            _trace_return(func, timestamp, result, _time.perf_counter() - start_time)
            return result

        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        if LOG_LEVEL == 0 or LOG_FILE_PATH is None:
            return func(*args, **kwargs)
        timestamp = _trace_call(func, args, kwargs)
        start_time = _time.perf_counter()
        result = func(*args, **kwargs)
        _trace_return(func, timestamp, result, _time.perf_counter() - start_time)
        return result

    return wrapper


_MIGRATION_LOGGER_NAME = "squadron.migration"
_MIGRATION_LOGGER: Optional[logging.Logger] = None


def get_migration_logger() -> logging.Logger:
    """Return a shared logger dedicated to record migration warnings."""

    global _MIGRATION_LOGGER
    if _MIGRATION_LOGGER is not None:
        return _MIGRATION_LOGGER

    logger = logging.getLogger(_MIGRATION_LOGGER_NAME)
    logger.setLevel(logging.WARNING)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(logging.WARNING)
        handler.setFormatter(logging.Formatter("[migration] %(message)s"))
        logger.addHandler(handler)

    logger.propagate = True
    _MIGRATION_LOGGER = logger
    return logger
