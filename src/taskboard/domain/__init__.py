"""Domain records and enumerations for taskboard analytics."""

from .roles import Role, TEAM_ROLES
from .entities import (
    ActivityEvent,
    ActivityKind,
    CLOSED_PROJECT_STATUSES,
    Comment,
    HIGH_PRIORITIES,
    OPEN_PROJECT_STATUSES,
    Priority,
    Project,
    ProjectMembership,
    ProjectStatus,
    Task,
    TaskStatus,
    TimeEntry,
    User,
)

__all__ = [
    "Role",
    "TEAM_ROLES",
    "ActivityEvent",
    "ActivityKind",
    "CLOSED_PROJECT_STATUSES",
    "Comment",
    "HIGH_PRIORITIES",
    "OPEN_PROJECT_STATUSES",
    "Priority",
    "Project",
    "ProjectMembership",
    "ProjectStatus",
    "Task",
    "TaskStatus",
    "TimeEntry",
    "User",
]
