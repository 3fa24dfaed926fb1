from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

LOGGER_NAME = "bitmart_ws"
LOG_FILE = "bitmart_ws.log"
# Handler names carry this prefix so a later call can find and replace them.
_HANDLER_PREFIX = f"{LOGGER_NAME}."


def configure_logging(log_dir: Path | None = None, level: str | None = None) -> logging.Logger:
    """Attach console and optional rotating-file output to the ``bitmart_ws`` logger.

    Handlers installed by the application, including anything on the root
    logger, are left alone. Calling this again swaps out only the handlers a
    previous call added.

    Args:
        log_dir: Directory for ``bitmart_ws.log``; created if missing
        level: Level name; defaults to ``BITMART_WS_LOG_LEVEL`` or INFO

    Returns:
        The configured package logger
    """
    level_name = (level or os.environ.get("BITMART_WS_LOG_LEVEL", "INFO")).upper()
    resolved = logging.getLevelName(level_name)
    if not isinstance(resolved, int):
        resolved = logging.INFO

    package_logger = logging.getLogger(LOGGER_NAME)
    package_logger.setLevel(resolved)

    for handler in package_logger.handlers[:]:
        if (handler.get_name() or "").startswith(_HANDLER_PREFIX):
            package_logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.set_name(f"{_HANDLER_PREFIX}console")
    handlers: list[logging.Handler] = [console_handler]

    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / LOG_FILE,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
        )
        file_handler.set_name(f"{_HANDLER_PREFIX}file")
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(resolved)
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    return package_logger
