from __future__ import annotations


class ReportError(Exception):
    """Base class for errors that escape the report pipeline."""


class ReportNotFoundError(ReportError):
    """Search/report is absent or not owned by the caller."""


class ReportConflictError(ReportError):
    """A report for the same search is already being produced."""


class ReportPersistenceError(ReportError):
    """The final report write did not commit."""
