"""
Logging Configuration
Structured logging with loguru
Source: https://github.com/Delgan/loguru
Verified: 2026-10-19
"""

import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from tariff_engine.core.config import EngineSettings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[name]}:{function}:{line} - {message}"

# Records logged through the bare loguru logger carry no bound name
logger.configure(extra={"name": "tariff_engine"})


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_logs: bool = False,
) -> list[int]:
    """
    Replace every loguru sink with the engine's stderr sink and an optional
    audit file.

    Args:
        level: Minimum level for both sinks
        log_file: Path of the audit file; parent directories are created
        json_logs: Serialize records as JSON instead of the console format

    Returns:
        Handler ids of the installed sinks
    """
    logger.remove()

    console: dict[str, Any] = (
        {"format": "{message}", "serialize": True}
        if json_logs
        else {"format": CONSOLE_FORMAT, "colorize": True}
    )
    handlers = [logger.add(sys.stderr, level=level, **console)]

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        # Calculation logs back the audit trail; keep them long
        handlers.append(
            logger.add(
                log_file,
                level=level,
                format=FILE_FORMAT,
                serialize=json_logs,
                rotation="100 MB",
                retention="365 days",
                compression="zip",
            )
        )

    get_logger(__name__).debug(f"Logging configured: level={level}, json={json_logs}, file={log_file}")
    return handlers


def setup_logging_from_settings(settings: EngineSettings) -> list[int]:
    return setup_logging(settings.LOG_LEVEL, settings.LOG_FILE, settings.LOG_JSON)


def get_logger(name: str = __name__):  # type: ignore[no-untyped-def]
    """
    Logger bound to a module name.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Tariff resolved")
    """
    return logger.bind(name=name)
