#!/usr/bin/env python3
"""
Logging setup for reelscribe.

Console output goes through ``tqdm.write`` so log lines do not tear the CLI
progress bar, and is forced to UTF-8 because subtitle text routinely carries
CJK and accented characters. The HTTP stacks behind the providers log every
request at INFO; they are held at WARNING unless the app itself runs at DEBUG.
"""

import io
import logging
import sys
from pathlib import Path
from typing import Optional

from tqdm import tqdm

CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Loggers of the provider SDKs and their transports
DEPENDENCY_LOGGERS = ("urllib3", "requests", "httpx", "httpcore", "openai", "google_genai")


def _utf8_stderr():
    encoding = (getattr(sys.stderr, "encoding", "") or "").lower().replace("-", "")
    if encoding == "utf8" or not hasattr(sys.stderr, "buffer"):
        return sys.stderr
    return io.TextIOWrapper(sys.stderr.buffer, encoding='utf-8', errors='replace', line_buffering=True)


class TqdmConsoleHandler(logging.StreamHandler):
    """Console handler that writes above any active tqdm bar."""

    def __init__(self, stream=None):
        super().__init__(stream if stream is not None else _utf8_stderr())

    def emit(self, record):
        try:
            tqdm.write(self.format(record), file=self.stream)
            self.flush()
        except Exception:
            self.handleError(record)


def quiet_dependencies(level: int = logging.WARNING) -> None:
    for name in DEPENDENCY_LOGGERS:
        logging.getLogger(name).setLevel(level)


def setup_logger(name: str = "reelscribe",
                 log_level: str = "INFO",
                 log_file: Optional[str] = None) -> logging.Logger:
    """Configure the package logger with console and optional file output."""

    level = getattr(logging, str(log_level).upper(), logging.INFO)
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers = []

    console_handler = TqdmConsoleHandler()
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding='utf-8', errors='replace')
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(file_handler)

    quiet_dependencies(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)
    return logger


# Global logger instance shared by every module
logger = setup_logger()
