"""Metric aggregators for the analytics dashboard.

Each aggregator takes an ``(AccessScope, DateFilter)`` pair and returns a
typed summary. Aggregators hold no mutable state and never write, so the
report assembler can run them concurrently against the same repository.

Formulas:
- completion rate: ``round(done / total * 100)``, 0 for an empty set
- average completion time: mean ``actual_hours`` of done tasks that have
  hours, rounded to the nearest hour, 0 when none qualify
- billable percentage: ``round(billable / total * 100)``, 0 without hours
- average hours per day: ``total_hours / days_in_range``, 2 decimals
"""

import logging
import math
from collections import Counter, defaultdict
from dataclasses import dataclass, field, asdict
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

from ..config import ConfigModel, get_config
from ..domain import (
    HIGH_PRIORITIES,
    OPEN_PROJECT_STATUSES,
    ProjectStatus,
    Role,
    Task,
    TaskStatus,
    TimeEntry,
)
from ..storage import AnalyticsRepository, ProjectQuery, TaskQuery, TimeEntryQuery, UserQuery
from ..utils.datetime import to_iso_string
from .date_filter import DateFilter
from .scope import AccessScope

logger = logging.getLogger(__name__)


def round_half_up(value: float, digits: int = 0) -> float:
    """Round halves away from zero for non-negative values (3.5 -> 4, 2.5 -> 3)."""
    factor = 10 ** digits
    rounded = math.floor(value * factor + 0.5) / factor
    return int(rounded) if digits == 0 else rounded


def completion_rate(completed: int, total: int) -> int:
    """Percentage of completed items, 0 for an empty set."""
    if total <= 0:
        return 0
    return min(100, max(0, round_half_up(completed / total * 100)))


def average_completion_time(tasks: Iterable[Task]) -> int:
    """Mean actual hours over done tasks that recorded hours."""
    hours = [t.actual_hours for t in tasks if t.is_done and t.actual_hours is not None]
    if not hours:
        return 0
    return round_half_up(sum(hours) / len(hours))


def percentage(part: float, whole: float) -> int:
    if whole <= 0:
        return 0
    return round_half_up(part / whole * 100)


# -- Summaries ----------------------------------------------------------------

@dataclass
class ProjectSummary:
    """Project counts within scope and date range"""
    total: int = 0
    active: int = 0
    completed: int = 0
    overdue: int = 0
    on_track: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _empty_status_counts() -> Dict[str, int]:
    return {status.value: 0 for status in TaskStatus}


@dataclass
class TaskSummary:
    """Task counts and rates within scope and date range"""
    total: int = 0
    by_status: Dict[str, int] = field(default_factory=_empty_status_counts)
    overdue: int = 0
    high_priority: int = 0
    completion_rate: int = 0
    average_completion_time: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'by_status': dict(self.by_status),
            'overdue': self.overdue,
            'high_priority': self.high_priority,
            'completion_rate': self.completion_rate,
            'average_completion_time': self.average_completion_time,
        }


@dataclass
class PersonalStats:
    """Statistics for one restricted caller, never for other users"""
    assigned_tasks: int = 0
    completed_tasks: int = 0
    active_projects: int = 0
    completion_rate: int = 0
    average_task_time: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TeamUserStats:
    """User counts visible to an admin or manager"""
    total: int = 0
    active: int = 0
    role_distribution: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'active': self.active,
            'role_distribution': dict(self.role_distribution),
        }


UserSummary = Union[PersonalStats, TeamUserStats]


@dataclass
class TimeSummary:
    """Logged time within scope and date range"""
    total_hours: float = 0.0
    billable_hours: float = 0.0
    billable_percentage: int = 0
    total_entries: int = 0
    avg_hours_per_day: float = 0.0
    recent_entries: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_hours': self.total_hours,
            'billable_hours': self.billable_hours,
            'billable_percentage': self.billable_percentage,
            'total_entries': self.total_entries,
            'avg_hours_per_day': self.avg_hours_per_day,
            'recent_entries': list(self.recent_entries),
        }


@dataclass
class DistributionBucket:
    name: str
    value: int

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'value': self.value}


@dataclass
class TaskDistribution:
    """Chart-oriented task groupings"""
    by_status: List[DistributionBucket] = field(default_factory=list)
    by_priority: List[DistributionBucket] = field(default_factory=list)
    by_project: List[DistributionBucket] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'by_status': [b.to_dict() for b in self.by_status],
            'by_priority': [b.to_dict() for b in self.by_priority],
            'by_project': [b.to_dict() for b in self.by_project],
        }


@dataclass
class ProjectProgressItem:
    id: int
    name: str
    status: ProjectStatus
    progress: int
    total_tasks: int
    completed_tasks: int
    overdue_tasks: int
    is_overdue: bool
    end_date: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'status': self.status.value,
            'progress': self.progress,
            'total_tasks': self.total_tasks,
            'completed_tasks': self.completed_tasks,
            'overdue_tasks': self.overdue_tasks,
            'is_overdue': self.is_overdue,
            'end_date': to_iso_string(self.end_date),
        }


@dataclass
class TimeBucket:
    """Hours grouped under one key (project, user or work date)"""
    key: Any
    label: str
    total_hours: float = 0.0
    billable_hours: float = 0.0
    entry_count: int = 0

    def to_dict(self, key_name: str, label_name: Optional[str] = None) -> Dict[str, Any]:
        data = {key_name: self.key}
        if label_name:
            data[label_name] = self.label
        data.update({
            'total_hours': self.total_hours,
            'billable_hours': self.billable_hours,
            'entry_count': self.entry_count,
        })
        return data


@dataclass
class TimeDistribution:
    by_project: List[TimeBucket] = field(default_factory=list)
    by_user: List[TimeBucket] = field(default_factory=list)
    by_date: List[TimeBucket] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'by_project': [b.to_dict('project_id', 'project_name') for b in self.by_project],
            'by_user': [b.to_dict('user_id', 'user_name') for b in self.by_user],
            'by_date': [b.to_dict('date') for b in self.by_date],
        }


# -- Aggregators --------------------------------------------------------------

class MetricAggregator:
    """Base class: one repository, one config, one ``compute`` coroutine."""

    name = "metric"

    def __init__(self, repository: AnalyticsRepository, config: Optional[ConfigModel] = None):
        self.repository = repository
        self.config = config or get_config()

    async def compute(self, scope: AccessScope, date_filter: DateFilter):
        raise NotImplementedError


class ProjectMetrics(MetricAggregator):
    name = "project_metrics"

    async def compute(self, scope: AccessScope, date_filter: DateFilter) -> ProjectSummary:
        if scope.is_empty:
            return ProjectSummary()

        projects = await self.repository.list_projects(
            ProjectQuery(project_ids=scope.project_ids, created_after=date_filter.cutoff)
        )
        now = date_filter.now
        active = sum(1 for p in projects if p.status == ProjectStatus.ACTIVE)
        overdue = sum(1 for p in projects if p.is_overdue(now))

        return ProjectSummary(
            total=len(projects),
            active=active,
            completed=sum(1 for p in projects if p.status == ProjectStatus.COMPLETED),
            overdue=overdue,
            on_track=max(0, active - overdue),
        )


def summarize_tasks(tasks: List[Task], now) -> TaskSummary:
    """Task summary over an already-filtered task list."""
    by_status = _empty_status_counts()
    for task in tasks:
        by_status[task.status.value] += 1

    total = len(tasks)
    return TaskSummary(
        total=total,
        by_status=by_status,
        overdue=sum(1 for t in tasks if t.is_overdue(now)),
        high_priority=sum(1 for t in tasks if t.priority in HIGH_PRIORITIES),
        completion_rate=completion_rate(by_status[TaskStatus.DONE.value], total),
        average_completion_time=average_completion_time(tasks),
    )


class TaskMetrics(MetricAggregator):
    name = "task_metrics"

    async def compute(self, scope: AccessScope, date_filter: DateFilter) -> TaskSummary:
        if scope.is_empty:
            return TaskSummary()

        tasks = await self.repository.list_tasks(
            TaskQuery(project_ids=scope.project_ids, created_after=date_filter.cutoff)
        )
        return summarize_tasks(tasks, date_filter.now)


class UserMetrics(MetricAggregator):
    """Personal statistics for restricted roles, team statistics otherwise."""

    name = "user_metrics"

    async def compute(self, scope: AccessScope, date_filter: DateFilter) -> UserSummary:
        if scope.role.is_privileged:
            return await self.team_stats(scope, date_filter)
        return await self.personal_stats(scope, date_filter)

    async def personal_stats(self, scope: AccessScope, date_filter: DateFilter) -> PersonalStats:
        if scope.is_empty:
            return PersonalStats()

        tasks = await self.repository.list_tasks(TaskQuery(
            project_ids=scope.project_ids,
            assigned_to_in={scope.caller_id},
            created_after=date_filter.cutoff,
        ))
        completed = sum(1 for t in tasks if t.is_done)
        return PersonalStats(
            assigned_tasks=len(tasks),
            completed_tasks=completed,
            active_projects=len({t.project_id for t in tasks}),
            completion_rate=completion_rate(completed, len(tasks)),
            average_task_time=average_completion_time(tasks),
        )

    async def team_stats(self, scope: AccessScope, date_filter: DateFilter) -> TeamUserStats:
        if scope.role == Role.ADMIN and scope.requested_project_id is None:
            query = UserQuery(active_only=True)
        else:
            if scope.is_empty:
                return TeamUserStats()
            query = UserQuery(active_only=True, member_of=scope.project_ids)

        users = await self.repository.list_users(query)
        window_start = date_filter.now - timedelta(days=self.config.active_user_window_days)
        active = [u for u in users if u.last_login is not None and u.last_login > window_start]

        counts = Counter(u.role for u in users)
        role_distribution = {role.value: counts[role] for role in Role if counts[role]}

        return TeamUserStats(total=len(users), active=len(active),
                             role_distribution=role_distribution)


def _entry_to_dict(entry: TimeEntry) -> Dict[str, Any]:
    return {
        'id': entry.id,
        'task_id': entry.task_id,
        'project_id': entry.project_id,
        'user_id': entry.user_id,
        'hours_spent': entry.hours_spent,
        'billable': entry.billable,
        'work_date': to_iso_string(entry.work_date),
    }


def time_entry_query(scope: AccessScope, date_filter: DateFilter) -> TimeEntryQuery:
    """Restricted roles only ever see their own time entries."""
    return TimeEntryQuery(
        project_ids=scope.project_ids,
        worked_after=date_filter.cutoff,
        user_id=None if scope.role.is_privileged else scope.caller_id,
    )


class TimeMetrics(MetricAggregator):
    name = "time_metrics"

    async def compute(self, scope: AccessScope, date_filter: DateFilter) -> TimeSummary:
        if scope.is_empty:
            return TimeSummary()

        entries = await self.repository.list_time_entries(time_entry_query(scope, date_filter))

        total_hours = sum(e.hours_spent for e in entries)
        billable_hours = sum(e.hours_spent for e in entries if e.billable)
        days = date_filter.days_in_range
        avg_per_day = total_hours / days if days > 0 else 0

        recent = sorted(entries, key=lambda e: e.work_date, reverse=True)
        return TimeSummary(
            total_hours=round_half_up(total_hours, 2),
            billable_hours=round_half_up(billable_hours, 2),
            billable_percentage=percentage(billable_hours, total_hours),
            total_entries=len(entries),
            avg_hours_per_day=round_half_up(avg_per_day, 2),
            recent_entries=[_entry_to_dict(e) for e in recent[:self.config.recent_time_entries]],
        )


def _buckets(values: Iterable[str]) -> List[DistributionBucket]:
    # Counter keeps first-seen order, which is the query order
    return [DistributionBucket(name=name, value=count) for name, count in Counter(values).items()]


class TaskDistributionMetrics(MetricAggregator):
    """Status, priority and top-project groupings over every task in scope."""

    name = "task_distribution"

    async def compute(self, scope: AccessScope, date_filter: DateFilter) -> TaskDistribution:
        if scope.is_empty:
            return TaskDistribution()

        tasks = await self.repository.list_tasks(TaskQuery(project_ids=scope.project_ids))
        projects = await self.repository.list_projects(ProjectQuery(project_ids=scope.project_ids))
        names = {p.id: p.name for p in projects}

        by_project = _buckets(names.get(t.project_id, "Unknown Project") for t in tasks)
        # sorted() is stable, so ties keep query order
        by_project = sorted(by_project, key=lambda b: b.value, reverse=True)

        return TaskDistribution(
            by_status=_buckets(t.status.value for t in tasks),
            by_priority=_buckets(t.priority.value for t in tasks),
            by_project=by_project[:self.config.distribution_top_projects],
        )


class ProjectProgressMetrics(MetricAggregator):
    """Progress of the most recently created planning/active projects."""

    name = "project_progress"

    async def compute(self, scope: AccessScope, date_filter: DateFilter) -> List[ProjectProgressItem]:
        if scope.is_empty:
            return []

        projects = await self.repository.list_projects(ProjectQuery(
            project_ids=scope.project_ids,
            status_in=OPEN_PROJECT_STATUSES,
            newest_first=True,
            limit=self.config.project_progress_limit,
        ))
        if not projects:
            return []

        tasks = await self.repository.list_tasks(TaskQuery(project_ids={p.id for p in projects}))
        tasks_by_project: Dict[int, List[Task]] = defaultdict(list)
        for task in tasks:
            tasks_by_project[task.project_id].append(task)

        now = date_filter.now
        items = []
        for project in projects:
            project_tasks = tasks_by_project.get(project.id, [])
            completed = sum(1 for t in project_tasks if t.is_done)
            items.append(ProjectProgressItem(
                id=project.id,
                name=project.name,
                status=project.status,
                progress=completion_rate(completed, len(project_tasks)),
                total_tasks=len(project_tasks),
                completed_tasks=completed,
                overdue_tasks=sum(1 for t in project_tasks if t.is_overdue(now)),
                is_overdue=project.is_past_end_date(now),
                end_date=project.end_date,
            ))
        return items


class TimeDistributionMetrics(MetricAggregator):
    """Logged hours grouped by project, by user and by work date."""

    name = "time_distribution"

    async def compute(self, scope: AccessScope, date_filter: DateFilter) -> TimeDistribution:
        if scope.is_empty:
            return TimeDistribution()

        entries = await self.repository.list_time_entries(time_entry_query(scope, date_filter))
        if not entries:
            return TimeDistribution()

        projects = await self.repository.list_projects(
            ProjectQuery(project_ids={e.project_id for e in entries if e.project_id is not None})
        )
        users = await self.repository.list_users(
            UserQuery(active_only=False, user_ids={e.user_id for e in entries})
        )
        project_names = {p.id: p.name for p in projects}
        user_names = {u.id: u.full_name for u in users}

        by_project = group_time_entries(entries, lambda e: e.project_id,
                                 lambda key: project_names.get(key, "Unknown Project"))
        by_user = group_time_entries(entries, lambda e: e.user_id,
                              lambda key: user_names.get(key, "Unknown"))
        by_date = group_time_entries(entries, lambda e: e.work_date.date().isoformat(), str)

        return TimeDistribution(
            by_project=sorted(by_project, key=lambda b: b.total_hours, reverse=True),
            by_user=sorted(by_user, key=lambda b: b.total_hours, reverse=True),
            by_date=sorted(by_date, key=lambda b: b.key, reverse=True)[:self.config.time_distribution_days],
        )


def group_time_entries(entries: Iterable[TimeEntry], key_func, label_func) -> List[TimeBucket]:
    """Sum hours per key, keeping first-seen key order."""
    buckets: Dict[Any, TimeBucket] = {}
    for entry in entries:
        key = key_func(entry)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = buckets[key] = TimeBucket(key=key, label=label_func(key))
        bucket.total_hours += entry.hours_spent
        if entry.billable:
            bucket.billable_hours += entry.hours_spent
        bucket.entry_count += 1

    for bucket in buckets.values():
        bucket.total_hours = round_half_up(bucket.total_hours, 2)
        bucket.billable_hours = round_half_up(bucket.billable_hours, 2)
    return list(buckets.values())
