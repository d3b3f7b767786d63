"""Read-only projections of the records the analytics layer consumes.

The records are owned by the persistence layer; this module only mirrors
their shape. All timestamps are normalized to timezone-aware UTC.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from ..utils.datetime import ensure_aware
from .roles import Role


class ProjectStatus(Enum):
    """Project lifecycle states."""
    PLANNING = "planning"
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskStatus(Enum):
    """Task workflow states."""
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    DONE = "done"


class Priority(Enum):
    """Priority levels shared by projects and tasks."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ActivityKind(Enum):
    """Kinds of synthesized activity events."""
    PROJECT_CREATED = "project_created"
    TASK_CREATED = "task_created"
    TASK_UPDATED = "task_updated"
    COMMENT_ADDED = "comment_added"


CLOSED_PROJECT_STATUSES = frozenset({ProjectStatus.COMPLETED, ProjectStatus.CANCELLED})
OPEN_PROJECT_STATUSES = frozenset({ProjectStatus.PLANNING, ProjectStatus.ACTIVE})
HIGH_PRIORITIES = frozenset({Priority.HIGH, Priority.CRITICAL})


def _normalize_datetimes(record, *names):
    for name in names:
        object.__setattr__(record, name, ensure_aware(getattr(record, name)))


@dataclass(frozen=True)
class User:
    id: int
    first_name: str
    last_name: str
    email: str = ""
    role: Role = Role.DEVELOPER
    is_active: bool = True
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        _normalize_datetimes(self, "last_login", "created_at")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Project:
    id: int
    name: str
    status: ProjectStatus = ProjectStatus.PLANNING
    priority: Priority = Priority.MEDIUM
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    def __post_init__(self):
        _normalize_datetimes(self, "created_at", "start_date", "end_date")

    def is_overdue(self, now: datetime) -> bool:
        """Past its end date and neither completed nor cancelled."""
        return (
            self.end_date is not None
            and self.end_date < now
            and self.status not in CLOSED_PROJECT_STATUSES
        )

    def is_past_end_date(self, now: datetime) -> bool:
        return self.end_date is not None and self.end_date < now


@dataclass(frozen=True)
class ProjectMembership:
    project_id: int
    user_id: int
    role: str = "developer"


@dataclass(frozen=True)
class Task:
    id: int
    project_id: int
    title: str
    status: TaskStatus = TaskStatus.TODO
    priority: Priority = Priority.MEDIUM
    assigned_to: Optional[int] = None
    created_by: Optional[int] = None
    due_date: Optional[datetime] = None
    actual_hours: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        _normalize_datetimes(self, "due_date", "created_at", "updated_at")

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE

    def is_overdue(self, now: datetime) -> bool:
        """Past its due date and not done."""
        return self.due_date is not None and self.due_date < now and not self.is_done


@dataclass(frozen=True)
class Comment:
    id: int
    task_id: int
    author_id: Optional[int]
    content: str = ""
    created_at: Optional[datetime] = None

    def __post_init__(self):
        _normalize_datetimes(self, "created_at")


@dataclass(frozen=True)
class TimeEntry:
    id: int
    task_id: int
    user_id: int
    hours_spent: float
    work_date: datetime
    billable: bool = False
    # Joined from the owning task by the persistence layer
    project_id: Optional[int] = None

    def __post_init__(self):
        if self.hours_spent < 0:
            raise ValueError(f"Time entry {self.id} has negative hours_spent")
        _normalize_datetimes(self, "work_date")


@dataclass(frozen=True)
class ActivityEvent:
    """One entry of the recent-activity feed, synthesized from record timestamps."""
    kind: ActivityKind
    entity_id: Optional[int]
    entity_type: str
    entity_name: str
    occurred_at: datetime
    user_id: Optional[int] = None
    user_name: str = "Unknown"
    project_id: Optional[int] = None
    project_name: str = "Unknown Project"

    def __post_init__(self):
        _normalize_datetimes(self, "occurred_at")

    def to_dict(self):
        return {
            'type': self.kind.value,
            'entity_id': self.entity_id,
            'entity_type': self.entity_type,
            'entity_name': self.entity_name,
            'user_name': self.user_name,
            'project_name': self.project_name,
            'occurred_at': self.occurred_at.isoformat(),
        }
