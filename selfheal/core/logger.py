"""Logging setup with Loguru."""

import contextvars
import logging
import sys
from pathlib import Path
from types import FrameType
from typing import Any, Dict, Optional, Union

from loguru import logger

from selfheal.core.config import EngineSettings

# Context variable carrying the id of the recovery-wrapped operation being run
operation_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "operation_id", default=None
)

__all__ = ["operation_id_ctx", "setup_logging", "InterceptHandler"]


def _operation_patcher(record: Dict[str, Any]) -> None:
    """Copy the current operation id into the record's extra fields."""
    op_id = operation_id_ctx.get()
    if op_id:
        record["extra"]["operation_id"] = op_id


class InterceptHandler(logging.Handler):
    """Redirect standard logging records (tenacity, asyncio, playwright) to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: Union[str, int] = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame: Optional[FrameType] = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(
    level: Optional[str] = None,
    json_format: bool = False,
    log_dir: Optional[Union[str, Path]] = None,
    settings: Optional[EngineSettings] = None,
) -> None:
    """
    Setup Loguru logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR); taken from the
            settings' ``log_level`` when None
        json_format: Serialize file output as JSON lines
        log_dir: Directory for rotating file sinks; console only when None
        settings: Engine settings to read ``log_level`` from; loaded from the
            environment when None
    """
    if level is None:
        level = (settings if settings is not None else EngineSettings()).log_level
    logger.remove()
    logger.configure(patcher=_operation_patcher)

    console_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>"
    )
    logger.add(sys.stderr, format=console_format, level=level, colorize=True)

    if log_dir is not None:
        logs_dir = Path(log_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)

        if json_format:
            logger.add(
                logs_dir / "selfheal.jsonl",
                format="{message}",
                level=level,
                rotation="10 MB",
                retention="30 days",
                compression="zip",
                serialize=True,
            )
        else:
            logger.add(
                logs_dir / "selfheal.log",
                format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
                level=level,
                rotation="10 MB",
                retention="30 days",
                compression="zip",
            )

        logger.add(
            logs_dir / "errors_{time:YYYY-MM-DD}.log",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} - {message}",
            level="ERROR",
            rotation="10 MB",
            retention="90 days",
            backtrace=True,
            diagnose=False,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.root.setLevel(getattr(logging, level.upper(), logging.INFO))

    logger.info(f"Logging initialized (level={level}, json={json_format})")
