"""Exception taxonomy for the analytics layer.

``AccessDenied`` and ``InvalidRequest``/``InvalidRange`` are raised before
any aggregation starts and reach the caller unchanged. Failures inside the
fan-out are wrapped as ``AggregationFailure`` and surfaced to callers as
``ReportUnavailable``; partial reports are never returned.
"""

from typing import Any, List, Optional


class AnalyticsError(Exception):
    """Base class for all analytics errors."""


class AccessDenied(AnalyticsError):
    """Caller's role or membership does not permit the requested report."""

    def __init__(self, message: str, report: Optional[str] = None,
                 project_id: Optional[int] = None):
        self.report = report
        self.project_id = project_id
        super().__init__(message)


class InvalidRequest(AnalyticsError):
    """A report parameter failed validation."""

    def __init__(self, message: str, field_name: Optional[str] = None,
                 value: Any = None, errors: Optional[List[str]] = None):
        self.field_name = field_name
        self.value = value
        self.errors = errors or []
        super().__init__(message)


class InvalidRange(InvalidRequest):
    """Date range is non-positive, unparseable or not one of the allowed values."""

    def __init__(self, message: str, value: Any = None):
        super().__init__(message, field_name="date_range", value=value)


class AggregationFailure(AnalyticsError):
    """A single sub-aggregator failed; carries the component name and cause."""

    def __init__(self, component: str, cause: BaseException):
        self.component = component
        self.cause = cause
        super().__init__(f"{component} failed: {cause!r}")


class ReportUnavailable(AnalyticsError):
    """Assembler-level failure surfaced to callers in place of a partial report."""

    def __init__(self, report: str, cause: Optional[BaseException] = None):
        self.report = report
        self.cause = cause
        message = f"Report '{report}' is unavailable"
        if isinstance(cause, AggregationFailure):
            message += f" ({cause.component} failed)"
        elif cause is not None:
            message += f" ({type(cause).__name__})"
        super().__init__(message)

    @property
    def component(self) -> Optional[str]:
        """Name of the failing sub-component, when known."""
        if isinstance(self.cause, AggregationFailure):
            return self.cause.component
        return None
