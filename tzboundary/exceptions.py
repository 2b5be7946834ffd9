"""
Exception types for the timezone boundary builder.

Everything except the two internal retries inside the geometry operations
is fatal and surfaces to the caller.
"""

from __future__ import annotations

from typing import Optional


class TimezoneBuilderError(Exception):
    """Base class for all builder errors."""


class TopologyFailure(TimezoneBuilderError):
    """A geometry operation failed after the whole recovery ladder."""

    def __init__(self, op: str, message: str, debug_files: Optional[list[str]] = None):
        super().__init__(f"{op}: {message}")
        self.op = op
        self.debug_files = debug_files or []


class MissingSourceData(TimezoneBuilderError):
    """A fetched boundary source has not been downloaded."""


class UnresolvedDependency(TimezoneBuilderError):
    """A recipe references a zone that has no result yet."""


class InvalidRecipe(TimezoneBuilderError):
    """A recipe or configuration entry is malformed."""


class UnknownOperation(TimezoneBuilderError):
    """An operation kind has no handler."""


class ValidationFailure(TimezoneBuilderError):
    """Zones overlap outside of their expected overlap areas."""

    def __init__(self, report):
        failed = len(report.diagnostics)
        super().__init__(f"Zone validation unsuccessful ({failed} unexpected overlap(s))")
        self.report = report


class DownloadError(TimezoneBuilderError):
    """A remote data source returned nothing usable."""


class LintError(TimezoneBuilderError):
    """The configuration linter found problems."""

    def __init__(self, problems: list[str]):
        super().__init__(f"{len(problems)} errors found")
        self.problems = problems
