#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Core utility functions for the GTFS editor.

This module provides helper functions for:
- Logging setup, with level symbols and an optional message prefix.
- Applying the logging section of EditorSettings.
"""

import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from common.config_models import SYMBOLS_DEFAULT, EditorSettings

module_logger = logging.getLogger(__name__)

DETAILED_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s"
SIMPLE_LOG_FORMAT_WITH_PREFIX_PLACEHOLDER = "{log_prefix}%(asctime)s - %(levelname)s - %(symbol)s %(name)s - %(message)s"
SIMPLE_LOG_FORMAT_NO_PREFIX = (
    "%(asctime)s - %(levelname)s - %(symbol)s %(name)s - %(message)s"
)

_LEVEL_SYMBOL_KEYS: Dict[int, str] = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warning",
    logging.ERROR: "error",
    logging.CRITICAL: "critical",
}


class SymbolFormatter(logging.Formatter):
    """
    A custom formatter that adds symbols to log messages based on the log level.
    """

    def __init__(
        self, fmt=None, datefmt=None, style="%", validate=True, symbols=None
    ):
        super().__init__(fmt, datefmt, style, validate)
        self.symbols = symbols or SYMBOLS_DEFAULT

    def format(self, record):
        symbol_key = _LEVEL_SYMBOL_KEYS.get(record.levelno)
        if symbol_key:
            record.symbol = self.symbols.get(
                symbol_key, SYMBOLS_DEFAULT[symbol_key]
            )
        else:
            record.symbol = ""
        return super().format(record)


def build_log_format(
    log_format_str: Optional[str] = None, log_prefix: Optional[str] = None
) -> str:
    """
    Resolve the final log format string from an optional template and prefix.

    A template containing `{log_prefix}` receives the prefix in place; any
    other template gets the prefix prepended.
    """
    actual_prefix = (
        (log_prefix.strip() + " ")
        if log_prefix and log_prefix.strip()
        else ""
    )

    if log_format_str:
        if "{log_prefix}" in log_format_str:
            return log_format_str.format(log_prefix=actual_prefix)
        return actual_prefix + log_format_str
    if actual_prefix:
        return SIMPLE_LOG_FORMAT_WITH_PREFIX_PLACEHOLDER.format(
            log_prefix=actual_prefix
        )
    return SIMPLE_LOG_FORMAT_NO_PREFIX


def setup_logging(
    log_level: int = logging.INFO,
    log_file: Optional[str] = None,
    log_to_console: bool = True,
    log_format_str: Optional[str] = None,
    log_prefix: Optional[str] = None,
    symbols: Optional[Dict[str, str]] = None,
) -> None:
    """
    Configures the root logger for the editor.

    Logs can be directed to a file, the console, or both. Existing root
    handlers are replaced so repeated calls do not duplicate output.

    Args:
        log_level: The logging level to configure. Defaults to logging.INFO.
        log_file: Optional path of a log file, created with its parent
            directories if missing.
        log_to_console: Whether to log to stdout. Defaults to True.
        log_format_str: Optional custom format string.
        log_prefix: Optional string prefixed to every message.
        symbols: Optional level symbol overrides for SymbolFormatter.
    """
    handlers: List[logging.Handler] = []
    if log_file:
        try:
            log_file_path = Path(log_file)
            log_file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file_path, mode="a")
            handlers.append(file_handler)
        except Exception as e:
            print(
                f"Warning: Could not create file handler for log file {log_file}: {e}",
                file=sys.stderr,
            )

    if log_to_console:
        handlers.append(logging.StreamHandler(sys.stdout))

    if not handlers:  # pragma: no cover
        handlers.append(logging.StreamHandler(sys.stdout))
        if log_level > logging.INFO:
            log_level = logging.INFO

    final_format_str = build_log_format(log_format_str, log_prefix)
    formatter = SymbolFormatter(
        fmt=final_format_str,
        datefmt="%Y-%m-%d %H:%M:%S",
        symbols=symbols,
    )

    for handler in handlers:
        handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    for handler in handlers:
        root_logger.addHandler(handler)

    module_logger.debug(
        f"Logging configured. Level: {logging.getLevelName(log_level)}. Format: '{final_format_str}'"
    )


def setup_logging_from_settings(
    settings: EditorSettings,
    log_file: Optional[str] = None,
    log_to_console: bool = True,
) -> None:
    """Apply the level, prefix and symbols held in EditorSettings."""
    setup_logging(
        log_level=logging.getLevelName(settings.log_level),
        log_file=log_file,
        log_to_console=log_to_console,
        log_prefix=settings.log_prefix,
        symbols=settings.symbols,
    )
