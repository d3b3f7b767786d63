"""Team-level analytics: per-member performance, team productivity and
system-wide figures. Access to these is gated by the report assembler."""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List

from ..domain import ActivityKind, Role, TaskStatus, TEAM_ROLES
from ..storage import ActivityQuery, ProjectQuery, TaskQuery, UserQuery
from ..utils.tasks import gather_or_cancel
from .date_filter import DateFilter
from .metrics import (
    MetricAggregator,
    TimeBucket,
    average_completion_time,
    completion_rate,
    group_time_entries,
    percentage,
    round_half_up,
    time_entry_query,
)
from .scope import AccessScope
from .trends import DailyCount, daily_counts

logger = logging.getLogger(__name__)

ACTIVITY_SAMPLE_LIMIT = 100


@dataclass
class MemberPerformance:
    id: int
    name: str
    email: str
    role: Role
    assigned_tasks: int
    completed_tasks: int
    overdue_tasks: int
    completion_rate: int
    average_completion_time: int
    active_projects: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role.value,
            'assigned_tasks': self.assigned_tasks,
            'completed_tasks': self.completed_tasks,
            'overdue_tasks': self.overdue_tasks,
            'completion_rate': self.completion_rate,
            'average_completion_time': self.average_completion_time,
            'active_projects': self.active_projects,
        }


class TeamPerformanceMetrics(MetricAggregator):
    """Per-member task performance for active developers, testers and designers."""

    name = "team_performance"

    async def compute(self, scope: AccessScope, date_filter: DateFilter) -> List[MemberPerformance]:
        if scope.is_empty:
            return []

        members = await self.repository.list_users(UserQuery(active_only=True, roles=TEAM_ROLES))
        if not members:
            return []

        tasks = await self.repository.list_tasks(TaskQuery(
            project_ids=scope.project_ids,
            assigned_to_in={m.id for m in members},
            created_after=date_filter.cutoff,
        ))

        now = date_filter.now
        performance = []
        for member in members:
            member_tasks = [t for t in tasks if t.assigned_to == member.id]
            if not member_tasks:
                continue
            completed = sum(1 for t in member_tasks if t.is_done)
            performance.append(MemberPerformance(
                id=member.id,
                name=member.full_name,
                email=member.email,
                role=member.role,
                assigned_tasks=len(member_tasks),
                completed_tasks=completed,
                overdue_tasks=sum(1 for t in member_tasks if t.is_overdue(now)),
                completion_rate=completion_rate(completed, len(member_tasks)),
                average_completion_time=average_completion_time(member_tasks),
                active_projects=len({t.project_id for t in member_tasks}),
            ))

        performance.sort(key=lambda m: (m.completed_tasks, m.assigned_tasks), reverse=True)
        return performance


@dataclass
class TeamTimeAnalytics:
    top_performers: List[TimeBucket] = field(default_factory=list)
    total_team_hours: float = 0.0
    avg_hours_per_user: float = 0.0
    utilization_rate: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'top_performers': [b.to_dict('user_id', 'user_name') for b in self.top_performers],
            'total_team_hours': self.total_team_hours,
            'avg_hours_per_user': self.avg_hours_per_user,
            'utilization_rate': self.utilization_rate,
        }


@dataclass
class TeamTaskAnalytics:
    completion_rate: int = 0
    avg_tasks_per_user: float = 0.0
    overdue_tasks: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'completion_rate': self.completion_rate,
            'avg_tasks_per_user': self.avg_tasks_per_user,
            'overdue_tasks': self.overdue_tasks,
        }


@dataclass
class TeamActivityAnalytics:
    total_activities: int = 0
    most_active_users: List[Dict[str, Any]] = field(default_factory=list)
    last_week: int = 0
    trend: str = "down"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_activities': self.total_activities,
            'most_active_users': list(self.most_active_users),
            'activity_trend': {
                'total': self.total_activities,
                'last_week': self.last_week,
                'trend': self.trend,
            },
        }


@dataclass
class TeamProductivity:
    time_analytics: TeamTimeAnalytics
    task_analytics: TeamTaskAnalytics
    activity_analytics: TeamActivityAnalytics

    def to_dict(self) -> Dict[str, Any]:
        return {
            'time_analytics': self.time_analytics.to_dict(),
            'task_analytics': self.task_analytics.to_dict(),
            'activity_analytics': self.activity_analytics.to_dict(),
        }


def utilization_rate(total_hours: float, users: int, hours_per_day: float, work_days: int) -> int:
    """Logged hours as a percentage of the team's expected working hours."""
    return percentage(total_hours, users * hours_per_day * work_days)


class TeamProductivityMetrics(MetricAggregator):
    """Time, task and activity analytics for the team in scope."""

    name = "team_productivity"

    async def compute(self, scope: AccessScope, date_filter: DateFilter) -> TeamProductivity:
        if scope.is_empty:
            return TeamProductivity(TeamTimeAnalytics(), TeamTaskAnalytics(), TeamActivityAnalytics())

        time_analytics, task_analytics, activity_analytics = await gather_or_cancel(
            self._time_analytics(scope, date_filter),
            self._task_analytics(scope, date_filter),
            self._activity_analytics(scope, date_filter),
        )
        return TeamProductivity(time_analytics, task_analytics, activity_analytics)

    async def _time_analytics(self, scope: AccessScope, date_filter: DateFilter) -> TeamTimeAnalytics:
        entries = await self.repository.list_time_entries(time_entry_query(scope, date_filter))
        if not entries:
            return TeamTimeAnalytics()

        users = await self.repository.list_users(
            UserQuery(active_only=False, user_ids={e.user_id for e in entries})
        )
        names = {u.id: u.full_name for u in users}
        by_user = group_time_entries(entries, lambda e: e.user_id, lambda key: names.get(key, "Unknown"))
        by_user.sort(key=lambda b: b.total_hours, reverse=True)

        total = sum(e.hours_spent for e in entries)
        return TeamTimeAnalytics(
            top_performers=by_user[:5],
            total_team_hours=round_half_up(total, 2),
            avg_hours_per_user=round_half_up(total / len(by_user), 2),
            utilization_rate=utilization_rate(
                total, len(by_user),
                self.config.standard_work_hours, self.config.work_days_in_period,
            ),
        )

    async def _task_analytics(self, scope: AccessScope, date_filter: DateFilter) -> TeamTaskAnalytics:
        tasks = await self.repository.list_tasks(
            TaskQuery(project_ids=scope.project_ids, created_after=date_filter.cutoff)
        )
        completed = sum(1 for t in tasks if t.is_done)
        assigned = [t for t in tasks if t.assigned_to is not None]
        assignees = {t.assigned_to for t in assigned}
        return TeamTaskAnalytics(
            completion_rate=completion_rate(completed, len(tasks)),
            avg_tasks_per_user=round_half_up(len(assigned) / len(assignees), 2) if assignees else 0.0,
            overdue_tasks=sum(1 for t in tasks if t.is_overdue(date_filter.now)),
        )

    async def _activity_analytics(self, scope: AccessScope,
                                  date_filter: DateFilter) -> TeamActivityAnalytics:
        query = ActivityQuery(project_ids=scope.project_ids, occurred_after=date_filter.cutoff)
        streams = await gather_or_cancel(*(
            self.repository.list_recent_activity(kind, query, ACTIVITY_SAMPLE_LIMIT)
            for kind in ActivityKind
        ))
        events = sorted((e for stream in streams for e in stream),
                        key=lambda e: e.occurred_at, reverse=True)[:ACTIVITY_SAMPLE_LIMIT]

        counts = Counter(e.user_id for e in events if e.user_id is not None)
        names = {e.user_id: e.user_name for e in events}
        most_active = [
            {'user_id': user_id, 'user_name': names[user_id], 'activities': count}
            for user_id, count in counts.most_common(5)
        ]

        week_ago = date_filter.now - timedelta(days=7)
        last_week = sum(1 for e in events if e.occurred_at >= week_ago)
        return TeamActivityAnalytics(
            total_activities=len(events),
            most_active_users=most_active,
            last_week=last_week,
            trend="up" if last_week > len(events) - last_week else "down",
        )


@dataclass
class TopPerformer:
    id: int
    name: str
    email: str
    role: Role
    tasks_completed: int
    projects_involved: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role.value,
            'tasks_completed': self.tasks_completed,
            'projects_involved': self.projects_involved,
        }


@dataclass
class SystemAnalytics:
    user_distribution: Dict[str, int] = field(default_factory=dict)
    project_creation: List[DailyCount] = field(default_factory=list)
    task_completion: List[DailyCount] = field(default_factory=list)
    top_performers: List[TopPerformer] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_distribution': [
                {'role': role, 'count': count} for role, count in self.user_distribution.items()
            ],
            'trends': {
                'project_creation': [d.to_dict() for d in self.project_creation],
                'task_completion': [d.to_dict() for d in self.task_completion],
            },
            'top_performers': [p.to_dict() for p in self.top_performers],
        }


class SystemAnalyticsMetrics(MetricAggregator):
    """Installation-wide figures; ignores project scope by construction."""

    name = "system_analytics"

    async def compute(self, scope: AccessScope, date_filter: DateFilter) -> SystemAnalytics:
        users, projects, completed_tasks = await gather_or_cancel(
            self.repository.list_users(UserQuery(active_only=True)),
            self.repository.list_projects(ProjectQuery(created_after=date_filter.cutoff)),
            self.repository.list_tasks(TaskQuery(
                status_in={TaskStatus.DONE}, updated_after=date_filter.cutoff,
            )),
        )

        role_counts = Counter(u.role for u in users)
        memberships = await gather_or_cancel(
            *(self.repository.list_project_memberships(u.id) for u in users)
        )
        completed_by_user = Counter(t.assigned_to for t in completed_tasks if t.assigned_to is not None)

        performers = [
            TopPerformer(
                id=user.id,
                name=user.full_name,
                email=user.email,
                role=user.role,
                tasks_completed=completed_by_user[user.id],
                projects_involved=len({m.project_id for m in user_memberships}),
            )
            for user, user_memberships in zip(users, memberships)
        ]
        performers.sort(key=lambda p: (p.tasks_completed, p.projects_involved), reverse=True)

        max_days = self.config.time_distribution_days
        return SystemAnalytics(
            user_distribution={role.value: role_counts[role] for role in Role if role_counts[role]},
            project_creation=daily_counts((p.created_at for p in projects), max_days),
            task_completion=daily_counts((t.updated_at for t in completed_tasks), max_days),
            top_performers=performers[:self.config.top_performers_limit],
        )
