"""Exceptions that stop the daemon at startup."""

from typing import Optional


class DatasetError(Exception):
    """The dataset cannot be used: missing, unparsable, empty or not a list."""


class ConfigError(DatasetError):
    """The configuration file cannot be parsed."""


class SampleValidationError(DatasetError):
    """A single telemetry sample is malformed."""

    def __init__(self, message: str, index: Optional[int] = None, field: Optional[str] = None):
        self.index = index
        self.field = field
        if index is not None:
            message = f"sample {index}: {message}"
        super().__init__(message)
