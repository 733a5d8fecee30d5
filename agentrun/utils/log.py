"""Package logger and ``log_*`` helpers used across agentrun."""

import logging
import os
import sys
from typing import Any

LOGGER_NAME = "agentrun"


class Colors:
  RESET = "\033[0m"
  DIM = "\033[2m"
  RED = "\033[31m"
  GREEN = "\033[32m"
  YELLOW = "\033[33m"
  CYAN = "\033[36m"
  BRIGHT_BLACK = "\033[90m"


LEVEL_COLORS = {
  logging.DEBUG: Colors.CYAN,
  logging.INFO: Colors.GREEN,
  logging.WARNING: Colors.YELLOW,
  logging.ERROR: Colors.RED,
  logging.CRITICAL: Colors.RED,
}


class ColorFormatter(logging.Formatter):
  """Prefixes each record with a colored level name when writing to a tty."""

  def __init__(self, use_colors: bool = True) -> None:
    super().__init__("%(levelname)s %(message)s")
    self.use_colors = use_colors

  def format(self, record: logging.LogRecord) -> str:
    message = super().format(record)
    if not self.use_colors:
      return message
    color = LEVEL_COLORS.get(record.levelno, Colors.RESET)
    level = record.levelname
    return f"{color}{level}{Colors.RESET} {message[len(level) + 1 :]}"


def _build_logger() -> logging.Logger:
  _logger = logging.getLogger(LOGGER_NAME)
  if not _logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ColorFormatter(use_colors=sys.stderr.isatty()))
    _logger.addHandler(handler)
  _logger.setLevel(logging.WARNING)
  _logger.propagate = True
  return _logger


logger = _build_logger()

# Verbosity for log_debug calls made with log_level > 1
debug_level: int = 1


def set_log_level_to_debug(level: int = 1) -> None:
  global debug_level
  debug_level = level
  logger.setLevel(logging.DEBUG)


def set_log_level_to_info() -> None:
  global debug_level
  debug_level = 1
  logger.setLevel(logging.INFO)


def log_debug(msg: str, *args: Any, log_level: int = 1, **kwargs: Any) -> None:
  if log_level <= debug_level:
    logger.debug(msg, *args, **kwargs)


def log_info(msg: str, *args: Any, **kwargs: Any) -> None:
  logger.info(msg, *args, **kwargs)


def log_warning(msg: str, *args: Any, **kwargs: Any) -> None:
  logger.warning(msg, *args, **kwargs)


def log_error(msg: str, *args: Any, **kwargs: Any) -> None:
  logger.error(msg, *args, **kwargs)


def log_exception(msg: str, *args: Any, **kwargs: Any) -> None:
  logger.exception(msg, *args, **kwargs)


if os.getenv("AGENTRUN_DEBUG", "").lower() in ("true", "1", "yes"):
  set_log_level_to_debug(level=int(os.getenv("AGENTRUN_DEBUG_LEVEL", "1")))
