"""Typed query predicates passed to the persistence interface.

Each query is a frozen dataclass of named optional constraints. ``None``
means "no constraint"; an empty ``project_ids`` set matches nothing, so an
empty access scope can never widen into an unfiltered query.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import AbstractSet, FrozenSet, Iterable, Optional

from ..domain import (
    Priority,
    Project,
    ProjectStatus,
    Role,
    Task,
    TaskStatus,
    TimeEntry,
    User,
)


def _frozen(values: Optional[Iterable]) -> Optional[FrozenSet]:
    return None if values is None else frozenset(values)


def _within(value, allowed: Optional[AbstractSet]) -> bool:
    return allowed is None or value in allowed


def _on_or_after(value: Optional[datetime], cutoff: Optional[datetime]) -> bool:
    if cutoff is None:
        return True
    return value is not None and value >= cutoff


@dataclass(frozen=True)
class ProjectQuery:
    project_ids: Optional[FrozenSet[int]] = None
    status_in: Optional[FrozenSet[ProjectStatus]] = None
    created_after: Optional[datetime] = None
    newest_first: bool = False
    limit: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "project_ids", _frozen(self.project_ids))
        object.__setattr__(self, "status_in", _frozen(self.status_in))

    def matches(self, project: Project) -> bool:
        return (
            _within(project.id, self.project_ids)
            and _within(project.status, self.status_in)
            and _on_or_after(project.created_at, self.created_after)
        )


@dataclass(frozen=True)
class TaskQuery:
    project_ids: Optional[FrozenSet[int]] = None
    status_in: Optional[FrozenSet[TaskStatus]] = None
    priority_in: Optional[FrozenSet[Priority]] = None
    assigned_to_in: Optional[FrozenSet[int]] = None
    created_after: Optional[datetime] = None
    updated_after: Optional[datetime] = None
    has_actual_hours: Optional[bool] = None

    def __post_init__(self):
        for name in ("project_ids", "status_in", "priority_in", "assigned_to_in"):
            object.__setattr__(self, name, _frozen(getattr(self, name)))

    def matches(self, task: Task) -> bool:
        if self.has_actual_hours is not None:
            if (task.actual_hours is not None) != self.has_actual_hours:
                return False
        return (
            _within(task.project_id, self.project_ids)
            and _within(task.status, self.status_in)
            and _within(task.priority, self.priority_in)
            and _within(task.assigned_to, self.assigned_to_in)
            and _on_or_after(task.created_at, self.created_after)
            and _on_or_after(task.updated_at, self.updated_after)
        )


@dataclass(frozen=True)
class TimeEntryQuery:
    """Time entries are scoped through the project of the task they were logged on."""
    project_ids: Optional[FrozenSet[int]] = None
    user_id: Optional[int] = None
    worked_after: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, "project_ids", _frozen(self.project_ids))

    def matches(self, entry: TimeEntry) -> bool:
        if self.user_id is not None and entry.user_id != self.user_id:
            return False
        return (
            _within(entry.project_id, self.project_ids)
            and _on_or_after(entry.work_date, self.worked_after)
        )


@dataclass(frozen=True)
class UserQuery:
    active_only: bool = True
    roles: Optional[FrozenSet[Role]] = None
    member_of: Optional[FrozenSet[int]] = None
    user_ids: Optional[FrozenSet[int]] = None

    def __post_init__(self):
        for name in ("roles", "member_of", "user_ids"):
            object.__setattr__(self, name, _frozen(getattr(self, name)))

    def matches(self, user: User, user_project_ids: AbstractSet[int] = frozenset()) -> bool:
        if self.active_only and not user.is_active:
            return False
        if self.member_of is not None and not (self.member_of & user_project_ids):
            return False
        return _within(user.role, self.roles) and _within(user.id, self.user_ids)


@dataclass(frozen=True)
class ActivityQuery:
    project_ids: Optional[FrozenSet[int]] = None
    occurred_after: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, "project_ids", _frozen(self.project_ids))

    def matches(self, project_id: Optional[int], occurred_at: datetime) -> bool:
        return (
            _within(project_id, self.project_ids)
            and _on_or_after(occurred_at, self.occurred_after)
        )
