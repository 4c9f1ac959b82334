"""
Exception types raised by the slim-list pipeline.

Driver errors from asyncpg / sqlite3 are not wrapped; they propagate to the
caller unchanged and are treated as transient storage failures.
"""


class SlimListError(Exception):
    """Base class for pipeline errors."""


class IdentifierResolutionError(SlimListError):
    """A reference value could neither be found nor created."""

    def __init__(self, table: str, value: str):
        self.table = table
        self.value = value
        super().__init__(f"Could not find or create {value!r} in {table}")


class ValidationError(SlimListError):
    """Action arguments failed validation."""


class ReportFormatError(SlimListError):
    """A stored rule-trace report could not be parsed."""


class SlimListBuildError(SlimListError):
    """Aggregated crawl data cannot produce a usable slim list."""
