from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(filename)s:%(lineno)d] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOGGER_NAME = "flexpomo"


def get_logger(
    name: str = LOGGER_NAME,
    level: int = logging.INFO,
    log_dir: Path | None = None,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = False,
) -> logging.Logger:
    """Return the named logger, attaching file/console handlers at most once each.

    Without ``log_dir`` and ``console`` nothing is attached and records propagate
    to the root logger, which is what the host application (or pytest) configures.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    fmt = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.propagate = False

        # Persistent, rotated across runs
        persistent_handler_name = f"{name}:persistent"
        if not any(h.get_name() == persistent_handler_name for h in logger.handlers):
            persistent_handler = RotatingFileHandler(
                filename=log_dir / f"{name}.log",
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            persistent_handler.setLevel(level)
            persistent_handler.setFormatter(fmt)
            persistent_handler.set_name(persistent_handler_name)
            logger.addHandler(persistent_handler)

        # Latest run only, overwritten on each start
        latest_handler_name = f"{name}:latest"
        if not any(h.get_name() == latest_handler_name for h in logger.handlers):
            latest_handler = logging.FileHandler(
                filename=log_dir / "latest.log",
                mode="w",
                encoding="utf-8",
            )
            latest_handler.setLevel(level)
            latest_handler.setFormatter(fmt)
            latest_handler.set_name(latest_handler_name)
            logger.addHandler(latest_handler)

    console_handler_name = f"{name}:console"
    if console and not any(h.get_name() == console_handler_name for h in logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(fmt)
        console_handler.set_name(console_handler_name)
        logger.addHandler(console_handler)

    return logger


def setup_logging(log_dir: Path, level: int = logging.INFO, console: bool = False) -> logging.Logger:
    logger = get_logger(level=level, log_dir=log_dir, console=console)
    logger.info("=== INITIALIZED NEW SESSION ===")
    return logger


log = logging.getLogger(LOGGER_NAME)
