"""
Error Types
===========

Exception hierarchy for ttysrv.

Classification:
    - Startup-fatal: SourceOpenError, LogOpenError, ServerBindError, ConfigError
    - Steady-state fatal: LogWriteError (a broken log file aborts the process)
    - Consumer-local: network write failures are NOT raised past the
      connection handler; they only detach that client.
"""


class TtysrvError(Exception):
    """Base class for all ttysrv errors."""


class ConfigError(TtysrvError):
    """Configuration could not be loaded or validated."""


class SourceOpenError(TtysrvError):
    """The upstream serial device could not be opened."""


class LogOpenError(TtysrvError):
    """The capture log file could not be opened."""


class LogWriteError(TtysrvError):
    """Writing to the capture log file failed."""


class ServerBindError(TtysrvError):
    """The TCP tap server could not bind its listening socket."""
