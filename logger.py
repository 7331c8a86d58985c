import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(filename)s:%(lineno)d] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(
        name="timetracker",
        level=None,
        log_dir: Optional[Path] = None,
        max_bytes=5 * 1024 * 1024,
        backup_count=5,
        console=True,
) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.propagate = False

    level = level or os.getenv("LOG_LEVEL", "INFO").upper()
    logger.setLevel(level)

    fmt = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    # Console handler, the default for a server process
    console_handler_name = f"{name}:console"
    if console and not any(h.get_name() == console_handler_name for h in logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(fmt)
        console_handler.set_name(console_handler_name)
        logger.addHandler(console_handler)

    # Persistent rotating handler, only when a log directory is configured
    env_dir = os.getenv("LOG_DIR")
    log_dir = log_dir or (Path(env_dir) if env_dir else None)
    persistent_handler_name = f"{name}:persistent"
    if log_dir is not None and not any(h.get_name() == persistent_handler_name for h in logger.handlers):
        log_dir.mkdir(parents=True, exist_ok=True)
        persistent_handler = RotatingFileHandler(
            filename=log_dir / f"{name}.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
            delay=True,
        )
        persistent_handler.setLevel(level)
        persistent_handler.setFormatter(fmt)
        persistent_handler.set_name(persistent_handler_name)
        logger.addHandler(persistent_handler)

    return logger


log = get_logger()
