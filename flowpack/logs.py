"""Logger setup shared by the build CLI and the launcher."""

import logging
import sys

LOGGER_NAME: str = "flowpack"


def configure_logging(*, verbose: int, quiet: int) -> logging.Logger:
    """Configure the flowpack logger.

    :param verbose: Verbosity count (0+).
    :param quiet: Quietness count (0+).
    :returns: Configured logger.
    """

    level: int = logging.INFO
    if quiet >= 2:
        level = logging.ERROR
    elif quiet >= 1:
        level = logging.WARNING
    elif verbose >= 1:
        level = logging.DEBUG

    logger: logging.Logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    handler: logging.Handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger.handlers.clear()
    logger.addHandler(handler)
    return logger


def get_logger() -> logging.Logger:
    """Return the flowpack logger without touching its configuration."""

    return logging.getLogger(LOGGER_NAME)
