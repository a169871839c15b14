# -*- coding: utf-8 -*-
"""
RU: Настройка логирования пакета (по желанию приложения).
EN: Opt-in logging setup for the package.

The library itself only installs a NullHandler. Applications that want
identity_protector records on stderr call configure_logging() once.
The level comes from the argument, else from IDENTITY_PROTECTOR_LOG_LEVEL,
else INFO. Valid names: DEBUG, INFO, WARNING, ERROR, CRITICAL.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Dict, Final, Optional, Union

ROOT_LOGGER_NAME: Final[str] = "identity_protector"
LOG_LEVEL_ENV: Final[str] = "IDENTITY_PROTECTOR_LOG_LEVEL"
LOG_FORMAT: Final[str] = (
    "[%(asctime)s] %(levelname)-8s [%(name)s.%(funcName)s:%(lineno)d] %(message)s"
)
DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

_LEVELS: Final[Dict[str, int]] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

__all__ = ["configure_logging", "get_logger", "ROOT_LOGGER_NAME", "LOG_LEVEL_ENV"]


def _resolve_level(level: Optional[Union[int, str]]) -> int:
    if isinstance(level, int):
        return level
    name = level if level is not None else os.environ.get(LOG_LEVEL_ENV, "INFO")
    return _LEVELS.get(name.strip().upper(), logging.INFO)


def configure_logging(level: Optional[Union[int, str]] = None) -> logging.Logger:
    """
    Attach a stderr handler to the package logger.

    Idempotent: a second call only updates the level.

    Returns:
        The package root logger.
    """
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    log_level = _resolve_level(level)
    root_logger.setLevel(log_level)

    if any(not isinstance(h, logging.NullHandler) for h in root_logger.handlers):
        return root_logger

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Records stop at the package logger
    root_logger.propagate = False
    return root_logger


def get_logger(module_name: str) -> logging.Logger:
    """
    Logger named under the package namespace.

    Example:
        >>> get_logger("audit").name
        'identity_protector.audit'
    """
    if module_name.startswith(ROOT_LOGGER_NAME):
        full_name = module_name
    elif module_name == "__main__":
        full_name = f"{ROOT_LOGGER_NAME}.main"
    else:
        full_name = f"{ROOT_LOGGER_NAME}.{module_name.lstrip('.')}"
    return logging.getLogger(full_name)
