"""Pluggable loggers used by the pinger."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod


class Logger(ABC):
    """Interface for objects that receive log events from a pinger."""

    @abstractmethod
    def fatal(self, msg, *args):
        """Log a fatal condition (the caller keeps running)."""

    @abstractmethod
    def error(self, msg, *args):
        """Log an error."""

    @abstractmethod
    def warning(self, msg, *args):
        """Log a warning."""

    @abstractmethod
    def info(self, msg, *args):
        """Log an informational message."""

    @abstractmethod
    def debug(self, msg, *args):
        """Log a debug message."""


class StdLogger(Logger):
    """Forwards messages, prefixed with their level name, to a ``logging.Logger``."""

    def __init__(self, logger=None):
        self.logger = logger if logger is not None else logging.getLogger("pingkit")

    def fatal(self, msg, *args):
        self.logger.critical("FATAL: " + msg, *args)

    def error(self, msg, *args):
        self.logger.error("ERROR: " + msg, *args)

    def warning(self, msg, *args):
        self.logger.warning("WARN: " + msg, *args)

    def info(self, msg, *args):
        self.logger.info("INFO: " + msg, *args)

    def debug(self, msg, *args):
        self.logger.debug("DEBUG: " + msg, *args)


class NoopLogger(Logger):
    """Discards every message."""

    def fatal(self, msg, *args):
        pass

    def error(self, msg, *args):
        pass

    def warning(self, msg, *args):
        pass

    def info(self, msg, *args):
        pass

    def debug(self, msg, *args):
        pass