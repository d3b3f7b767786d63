"""Persistence interface consumed by the analytics layer.

Implementations own the records; the analytics layer only reads through
these methods. Every method is a coroutine so that a database-backed
implementation can suspend on I/O.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..domain import (
    ActivityEvent,
    ActivityKind,
    Project,
    ProjectMembership,
    Task,
    TimeEntry,
    User,
)
from .query import ActivityQuery, ProjectQuery, TaskQuery, TimeEntryQuery, UserQuery


class AnalyticsRepository(ABC):
    """Abstract read-only data access for analytics."""

    @abstractmethod
    async def list_projects(self, query: ProjectQuery) -> List[Project]:
        """Projects matching the query (newest first when requested)."""
        pass

    @abstractmethod
    async def get_project(self, project_id: int) -> Optional[Project]:
        pass

    @abstractmethod
    async def list_project_memberships(self, user_id: int) -> List[ProjectMembership]:
        """Memberships held by a user."""
        pass

    @abstractmethod
    async def list_tasks(self, query: TaskQuery) -> List[Task]:
        pass

    @abstractmethod
    async def list_time_entries(self, query: TimeEntryQuery) -> List[TimeEntry]:
        pass

    @abstractmethod
    async def list_users(self, query: UserQuery) -> List[User]:
        pass

    @abstractmethod
    async def list_recent_activity(self, kind: ActivityKind, query: ActivityQuery,
                                   limit: int) -> List[ActivityEvent]:
        """At most ``limit`` events of one kind, newest first."""
        pass
