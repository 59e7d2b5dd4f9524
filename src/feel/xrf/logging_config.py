"""Logging setup for the ``feel.xrf`` namespace."""

import logging
import sys
from typing import Optional


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the ``feel.xrf`` logger.

    Parameters
    ----------
    level : int, default logging.INFO
        Level applied to the logger and its handlers.
    log_file : str, optional
        Also write records to this file (overwritten on each call).

    Returns
    -------
    logging.Logger
        The configured package logger.
    """
    logger = logging.getLogger("feel.xrf")
    logger.setLevel(level)

    # Re-running in a notebook must not stack handlers
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.debug("Logging initialized.")
    return logger
