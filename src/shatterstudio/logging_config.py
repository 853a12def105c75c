"""
Logging Configuration
Sets up the 'shatterstudio' logger for the command-line tool.
"""
import logging
import sys
from typing import Optional, Union

# Third-party loggers that flood the output at INFO during batch rendering
QUIET_LOGGERS: tuple[str, ...] = ("pyvista", "matplotlib", "PIL")


def resolve_level(level: Union[int, str]) -> int:
    """
    Accept a numeric level or a name such as 'debug' / 'INFO'.

    Raises:
        ValueError: For an unknown level name.
    """
    if isinstance(level, int):
        return level
    levels = logging.getLevelNamesMapping()
    try:
        return levels[level.strip().upper()]
    except KeyError:
        raise ValueError(f"Unknown log level '{level}'.") from None


def setup_logging(level: Union[int, str] = logging.INFO, log_file: Optional[str] = None) -> None:
    """
    Configures the logger of the 'shatterstudio' namespace.

    Args:
        level: Logging level as a number (logging.DEBUG) or a name ("DEBUG").
        log_file: Optional path to save logs to a file.
    """
    level = resolve_level(level)
    logger = logging.getLogger("shatterstudio")
    logger.setLevel(level)

    # Avoid duplicate handlers when the CLI is invoked twice in one process
    if logger.hasHandlers():
        logger.handlers.clear()

    # Format: Time - Module - Level - Message
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    logger.debug(f"Logging initialized at {logging.getLevelName(level)}.")
