"""Logging configuration using loguru."""

import sys

from loguru import logger

from streamfeed.config.settings import Settings, get_settings


def setup_logging(settings: Settings | None = None) -> None:
    """Configure logging for the stream client."""
    settings = settings or get_settings()

    # Remove default handler
    logger.remove()

    if settings.log_format == "json":
        console_format = (
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{name}:{function}:{line} | "
            "{message}"
        )
    else:
        console_format = (
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        )

    logger.add(
        sys.stderr,
        format=console_format,
        level=settings.log_level,
        colorize=settings.log_format != "json",
    )

    if settings.log_dir is not None:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            settings.log_dir / "streamfeed.log",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}",
            level=settings.log_level,
            rotation="50 MB",
            retention="7 days",
            compression="gz",
        )

    logger.info(f"Logging configured - level: {settings.log_level}, format: {settings.log_format}")


def get_logger(name: str):
    """Get a logger with a specific name."""
    return logger.bind(name=name)
