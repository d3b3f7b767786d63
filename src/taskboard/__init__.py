"""Taskboard analytics - role-scoped reporting over projects, tasks and time entries."""

__version__ = "0.1.0"

from .domain import Role
from .errors import AccessDenied, AnalyticsError, InvalidRange, InvalidRequest, ReportUnavailable
from .services import AnalyticsService

__all__ = [
    "Role",
    "AnalyticsError",
    "AccessDenied",
    "InvalidRange",
    "InvalidRequest",
    "ReportUnavailable",
    "AnalyticsService",
    "__version__",
]
