"""In-process repository over plain lists of domain records.

Datasets can be loaded from a JSON or YAML file with one top-level list per
record type (``users``, ``projects``, ``memberships``, ``tasks``,
``comments``, ``time_entries``). Activity events are synthesized from the
creation and update timestamps of projects, tasks and comments.
"""

import dataclasses
import json
import logging
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import yaml

from ..domain import (
    ActivityEvent,
    ActivityKind,
    Comment,
    Priority,
    Project,
    ProjectMembership,
    ProjectStatus,
    Role,
    Task,
    TaskStatus,
    TimeEntry,
    User,
)
from ..utils.datetime import min_utc, parse_datetime
from .query import ActivityQuery, ProjectQuery, TaskQuery, TimeEntryQuery, UserQuery
from .repository import AnalyticsRepository

logger = logging.getLogger(__name__)


class DatasetError(ValueError):
    """Raised when a dataset file cannot be turned into domain records."""

    def __init__(self, message: str, section: Optional[str] = None, index: Optional[int] = None):
        self.section = section
        self.index = index
        location = f"{section}[{index}]: " if section is not None and index is not None else ""
        super().__init__(f"{location}{message}")


class InMemoryRepository(AnalyticsRepository):
    """Repository backed by in-memory lists; safe to share between coroutines."""

    def __init__(self,
                 users: Iterable[User] = (),
                 projects: Iterable[Project] = (),
                 memberships: Iterable[ProjectMembership] = (),
                 tasks: Iterable[Task] = (),
                 comments: Iterable[Comment] = (),
                 time_entries: Iterable[TimeEntry] = ()):
        self.users: Dict[int, User] = {user.id: user for user in users}
        self.projects: Dict[int, Project] = {project.id: project for project in projects}
        self.memberships: List[ProjectMembership] = list(memberships)
        self.tasks: Dict[int, Task] = {task.id: task for task in tasks}
        self.comments: List[Comment] = list(comments)

        self._projects_by_user: Dict[int, set] = defaultdict(set)
        for membership in self.memberships:
            self._projects_by_user[membership.user_id].add(membership.project_id)

        self.time_entries: List[TimeEntry] = [self._join_project(entry) for entry in time_entries]

    def _join_project(self, entry: TimeEntry) -> TimeEntry:
        if entry.project_id is not None:
            return entry
        task = self.tasks.get(entry.task_id)
        if task is None:
            return entry
        return dataclasses.replace(entry, project_id=task.project_id)

    # -- AnalyticsRepository ------------------------------------------------

    async def list_projects(self, query: ProjectQuery) -> List[Project]:
        projects = [p for p in self.projects.values() if query.matches(p)]
        if query.newest_first:
            projects.sort(key=lambda p: p.created_at or min_utc(), reverse=True)
        if query.limit is not None:
            projects = projects[:query.limit]
        return projects

    async def get_project(self, project_id: int) -> Optional[Project]:
        return self.projects.get(project_id)

    async def list_project_memberships(self, user_id: int) -> List[ProjectMembership]:
        return [m for m in self.memberships if m.user_id == user_id]

    async def list_tasks(self, query: TaskQuery) -> List[Task]:
        return [task for task in self.tasks.values() if query.matches(task)]

    async def list_time_entries(self, query: TimeEntryQuery) -> List[TimeEntry]:
        return [entry for entry in self.time_entries if query.matches(entry)]

    async def list_users(self, query: UserQuery) -> List[User]:
        return [
            user for user in self.users.values()
            if query.matches(user, self._projects_by_user.get(user.id, set()))
        ]

    async def list_recent_activity(self, kind: ActivityKind, query: ActivityQuery,
                                   limit: int) -> List[ActivityEvent]:
        if kind == ActivityKind.PROJECT_CREATED:
            events = self._project_events()
        elif kind == ActivityKind.TASK_CREATED:
            events = self._task_events(updated=False)
        elif kind == ActivityKind.TASK_UPDATED:
            events = self._task_events(updated=True)
        elif kind == ActivityKind.COMMENT_ADDED:
            events = self._comment_events()
        else:
            raise ValueError(f"Unsupported activity kind: {kind}")

        events = [e for e in events if query.matches(e.project_id, e.occurred_at)]
        events.sort(key=lambda e: e.occurred_at, reverse=True)
        return events[:max(0, limit)]

    # -- Activity synthesis -------------------------------------------------

    def _user_name(self, user_id: Optional[int]) -> str:
        user = self.users.get(user_id) if user_id is not None else None
        return user.full_name if user else "Unknown"

    def _project_name(self, project_id: Optional[int]) -> str:
        project = self.projects.get(project_id) if project_id is not None else None
        return project.name if project else "Unknown Project"

    def _project_events(self) -> List[ActivityEvent]:
        return [
            ActivityEvent(
                kind=ActivityKind.PROJECT_CREATED,
                entity_id=project.id,
                entity_type="project",
                entity_name=project.name,
                occurred_at=project.created_at,
                user_id=project.created_by,
                user_name=self._user_name(project.created_by),
                project_id=project.id,
                project_name=project.name,
            )
            for project in self.projects.values()
            if project.created_at is not None
        ]

    def _task_events(self, updated: bool) -> List[ActivityEvent]:
        events = []
        for task in self.tasks.values():
            if updated:
                # A task only counts as updated when the timestamps diverge
                if task.updated_at is None or task.updated_at == task.created_at:
                    continue
                occurred_at = task.updated_at
                kind = ActivityKind.TASK_UPDATED
            else:
                if task.created_at is None:
                    continue
                occurred_at = task.created_at
                kind = ActivityKind.TASK_CREATED
            events.append(ActivityEvent(
                kind=kind,
                entity_id=task.id,
                entity_type="task",
                entity_name=task.title,
                occurred_at=occurred_at,
                user_id=task.created_by,
                user_name=self._user_name(task.created_by),
                project_id=task.project_id,
                project_name=self._project_name(task.project_id),
            ))
        return events

    def _comment_events(self) -> List[ActivityEvent]:
        events = []
        for comment in self.comments:
            task = self.tasks.get(comment.task_id)
            if task is None or comment.created_at is None:
                continue
            events.append(ActivityEvent(
                kind=ActivityKind.COMMENT_ADDED,
                entity_id=task.id,
                entity_type="comment",
                entity_name=f"Comment on: {task.title}",
                occurred_at=comment.created_at,
                user_id=comment.author_id,
                user_name=self._user_name(comment.author_id),
                project_id=task.project_id,
                project_name=self._project_name(task.project_id),
            ))
        return events


# -- Dataset loading ---------------------------------------------------------

_TRUE_VALUES = {"true", "yes", "y", "on", "1"}
_FALSE_VALUES = {"false", "no", "n", "off", "0"}


def _flag(value: Any, default: bool) -> bool:
    """Read a boolean written as a bool, a number or a yes/no string."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"expected a boolean, got {value!r}")


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def _record(section: str, index: int, factory, row: Dict[str, Any]):
    try:
        return factory(row)
    except (KeyError, TypeError, ValueError) as e:
        raise DatasetError(str(e), section=section, index=index) from e


def _user_from_dict(row: Dict[str, Any]) -> User:
    return User(
        id=int(row["id"]),
        first_name=row.get("first_name", ""),
        last_name=row.get("last_name", ""),
        email=row.get("email", ""),
        role=Role.parse(row.get("role", "developer")),
        is_active=_flag(row.get("is_active"), default=True),
        last_login=parse_datetime(row.get("last_login")),
        created_at=parse_datetime(row.get("created_at")),
    )


def _project_from_dict(row: Dict[str, Any]) -> Project:
    return Project(
        id=int(row["id"]),
        name=row["name"],
        status=ProjectStatus(row.get("status", "planning")),
        priority=Priority(row.get("priority", "medium")),
        created_by=_optional_int(row.get("created_by")),
        created_at=parse_datetime(row.get("created_at")),
        start_date=parse_datetime(row.get("start_date")),
        end_date=parse_datetime(row.get("end_date")),
    )


def _membership_from_dict(row: Dict[str, Any]) -> ProjectMembership:
    return ProjectMembership(
        project_id=int(row["project_id"]),
        user_id=int(row["user_id"]),
        role=row.get("role", "developer"),
    )


def _task_from_dict(row: Dict[str, Any]) -> Task:
    actual_hours = row.get("actual_hours")
    created_at = parse_datetime(row.get("created_at"))
    return Task(
        id=int(row["id"]),
        project_id=int(row["project_id"]),
        title=row.get("title", ""),
        status=TaskStatus(row.get("status", "todo")),
        priority=Priority(row.get("priority", "medium")),
        assigned_to=_optional_int(row.get("assigned_to")),
        created_by=_optional_int(row.get("created_by")),
        due_date=parse_datetime(row.get("due_date")),
        actual_hours=float(actual_hours) if actual_hours is not None else None,
        created_at=created_at,
        updated_at=parse_datetime(row.get("updated_at")) or created_at,
    )


def _comment_from_dict(row: Dict[str, Any]) -> Comment:
    return Comment(
        id=int(row["id"]),
        task_id=int(row["task_id"]),
        author_id=_optional_int(row.get("author_id")),
        content=row.get("content", ""),
        created_at=parse_datetime(row.get("created_at")),
    )


def _time_entry_from_dict(row: Dict[str, Any]) -> TimeEntry:
    return TimeEntry(
        id=int(row["id"]),
        task_id=int(row["task_id"]),
        user_id=int(row["user_id"]),
        hours_spent=float(row["hours_spent"]),
        work_date=parse_datetime(row["work_date"]),
        billable=_flag(row.get("billable"), default=False),
        project_id=_optional_int(row.get("project_id")),
    )


_SECTIONS = {
    "users": _user_from_dict,
    "projects": _project_from_dict,
    "memberships": _membership_from_dict,
    "tasks": _task_from_dict,
    "comments": _comment_from_dict,
    "time_entries": _time_entry_from_dict,
}


def repository_from_dict(data: Dict[str, Any]) -> InMemoryRepository:
    """Build a repository from a mapping of section name to list of rows."""
    if not isinstance(data, dict):
        raise DatasetError("dataset must be a mapping of record lists")

    records = {}
    for section, factory in _SECTIONS.items():
        rows = data.get(section) or []
        records[section] = [_record(section, i, factory, row) for i, row in enumerate(rows)]

    ignored = sorted(set(data) - set(_SECTIONS))
    if ignored:
        logger.warning(f"Ignoring unknown dataset sections: {', '.join(ignored)}")

    logger.debug(
        "Loaded dataset: " + ", ".join(f"{len(rows)} {name}" for name, rows in records.items())
    )
    return InMemoryRepository(**records)


def load_dataset(path: Union[str, Path]) -> InMemoryRepository:
    """Load a JSON or YAML dataset file into an in-memory repository."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise DatasetError(f"cannot parse {path}: {e}") from e
    return repository_from_dict(data or {})
