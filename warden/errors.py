from __future__ import annotations

from typing import Optional


class WardenError(Exception):
    """Base error for warden."""


class ConfigError(WardenError, ValueError):
    """Config validation error."""


class MissingResourceError(WardenError, FileNotFoundError):
    """A file a job depends on does not exist."""


class ExecutionError(WardenError):
    """A foreground shell command finished with a non-zero exit code."""

    def __init__(self, message: str, exit_code: int, output: Optional[str] = None):
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output
