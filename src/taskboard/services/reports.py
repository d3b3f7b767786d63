"""Report assembly: validate, resolve scope, fan out, join, shape.

Every report request follows the same linear stages:

1. Validate the request and apply role gates. ``InvalidRequest``,
   ``InvalidRange`` and ``AccessDenied`` are raised here, before any
   aggregation work, and reach the caller unchanged.
2. Resolve the access scope and the date filter once.
3. Fan out to the independent aggregators as asyncio tasks and join them.
   The first failure (or the request timeout) cancels whatever is still
   running and surfaces as ``ReportUnavailable``; partial reports are never
   returned.
4. Shape the results into the report type of the operation.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator

from ..config import ConfigModel, get_config
from ..domain import ActivityEvent, Role
from ..errors import (
    AccessDenied,
    AggregationFailure,
    InvalidRange,
    InvalidRequest,
    ReportUnavailable,
)
from ..storage import AnalyticsRepository
from ..utils.datetime import now_utc, to_iso_string
from .activity import ActivityFeedComposer
from .date_filter import DEFAULT_RANGE_DAYS, DateFilter, build_filter, parse_range
from .export import ExportFormat, ExportManager
from .metrics import (
    PersonalStats,
    ProjectMetrics,
    ProjectProgressItem,
    ProjectProgressMetrics,
    ProjectSummary,
    TaskDistribution,
    TaskDistributionMetrics,
    TaskMetrics,
    TaskSummary,
    TimeDistribution,
    TimeDistributionMetrics,
    TimeMetrics,
    TimeSummary,
    UserMetrics,
    UserSummary,
)
from .scope import AccessScope, AccessScopeResolver
from .team import (
    MemberPerformance,
    SystemAnalytics,
    SystemAnalyticsMetrics,
    TeamPerformanceMetrics,
    TeamProductivity,
    TeamProductivityMetrics,
)
from .trends import CompletionTrendBuilder, TimeAllocation, TimeAllocationMetrics, TrendPoint

logger = logging.getLogger(__name__)

MANAGEMENT_ROLES = frozenset({Role.ADMIN, Role.MANAGER})
ADMIN_ROLES = frozenset({Role.ADMIN})


# -- Requests -----------------------------------------------------------------

class ReportRequest(BaseModel):
    """Validated parameters shared by every report operation."""

    model_config = ConfigDict(frozen=True)

    caller_id: int = Field(..., ge=1)
    caller_role: Role
    date_range: int = DEFAULT_RANGE_DAYS
    project_id: Optional[int] = Field(None, ge=1)
    format: ExportFormat = ExportFormat.JSON

    @field_validator('caller_role', mode='before')
    @classmethod
    def parse_role(cls, value):
        return Role.parse(value)

    @field_validator('date_range', mode='before')
    @classmethod
    def parse_date_range(cls, value, info: ValidationInfo):
        context = info.context or {}
        try:
            return parse_range(value,
                               allowed=context.get('allowed_ranges'),
                               default=context.get('default_range', DEFAULT_RANGE_DAYS))
        except InvalidRange as e:
            raise ValueError(str(e)) from e

    @field_validator('format', mode='before')
    @classmethod
    def parse_format(cls, value):
        if value is None:
            return ExportFormat.JSON
        if isinstance(value, str):
            return value.strip().lower()
        return value


def _error_message(error: Dict[str, Any]) -> str:
    cause = (error.get('ctx') or {}).get('error')
    return str(cause) if cause is not None else error['msg']


def build_request(caller_id: Any, caller_role: Any, date_range: Any = None,
                  project_id: Any = None, format: Any = None,
                  config: Optional[ConfigModel] = None) -> ReportRequest:
    """Validate raw report parameters.

    Raises:
        InvalidRange: if the date range is invalid
        InvalidRequest: for any other invalid parameter
    """
    config = config or get_config()
    data = {
        'caller_id': caller_id,
        'caller_role': caller_role,
        'date_range': date_range,
        'project_id': project_id,
        'format': format,
    }
    context = {
        'allowed_ranges': config.allowed_date_ranges,
        'default_range': config.default_date_range,
    }
    try:
        return ReportRequest.model_validate(data, context=context)
    except ValidationError as e:
        errors = e.errors()
        for error in errors:
            if error['loc'] and error['loc'][0] == 'date_range':
                raise InvalidRange(_error_message(error), value=date_range) from e

        messages = [f"{'.'.join(str(part) for part in error['loc'])}: {_error_message(error)}"
                    for error in errors]
        first = errors[0]['loc'][0] if errors and errors[0]['loc'] else None
        raise InvalidRequest(
            f"Invalid report request: {'; '.join(messages)}",
            field_name=first,
            value=data.get(first) if first else None,
            errors=messages,
        ) from e


# -- Reports ------------------------------------------------------------------

@dataclass
class OverviewReport:
    """Dashboard overview: summaries, charts and the recent activity feed"""
    projects: ProjectSummary
    tasks: TaskSummary
    users: UserSummary
    time_tracking: TimeSummary
    task_distribution: TaskDistribution
    project_progress: List[ProjectProgressItem]
    time_distribution: TimeDistribution
    recent_activities: List[ActivityEvent]
    date_range: int
    generated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            'overview': {
                'projects': self.projects.to_dict(),
                'tasks': self.tasks.to_dict(),
                'users': self.users.to_dict(),
                'time_tracking': self.time_tracking.to_dict(),
            },
            'charts': {
                'task_distribution': self.task_distribution.to_dict(),
                'project_progress': [p.to_dict() for p in self.project_progress],
                'time_distribution': self.time_distribution.to_dict(),
            },
            'recent_activities': [a.to_dict() for a in self.recent_activities],
            'date_range': self.date_range,
            'generated_at': to_iso_string(self.generated_at),
        }


@dataclass
class TeamPerformanceReport:
    members: List[MemberPerformance]
    date_range: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'team_performance': [m.to_dict() for m in self.members],
            'date_range': self.date_range,
        }


@dataclass
class ProductivityReport:
    completion_trends: List[TrendPoint]
    time_allocation: List[TimeAllocation]
    date_range: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'completion_trends': [p.to_dict() for p in self.completion_trends],
            'time_allocation': [a.to_dict() for a in self.time_allocation],
            'date_range': self.date_range,
        }


@dataclass
class ProjectStatisticsReport:
    project_id: int
    project: ProjectSummary
    tasks: TaskSummary
    distribution: TaskDistribution
    date_range: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'project_id': self.project_id,
            'project': self.project.to_dict(),
            'tasks': self.tasks.to_dict(),
            'distribution': self.distribution.to_dict(),
            'date_range': self.date_range,
        }


@dataclass
class UserDashboardReport:
    statistics: PersonalStats
    recent_activities: List[ActivityEvent]
    task_distribution: TaskDistribution
    date_range: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'statistics': self.statistics.to_dict(),
            'recent_activities': [a.to_dict() for a in self.recent_activities],
            'task_distribution': self.task_distribution.to_dict(),
            'date_range': self.date_range,
        }


@dataclass
class SystemAnalyticsReport:
    analytics: SystemAnalytics
    date_range: int

    def to_dict(self) -> Dict[str, Any]:
        data = self.analytics.to_dict()
        data['date_range'] = self.date_range
        return data


@dataclass
class TimeAnalyticsReport:
    time_tracking: TimeSummary
    date_range: int

    def to_dict(self) -> Dict[str, Any]:
        return {'time_tracking': self.time_tracking.to_dict(), 'date_range': self.date_range}


@dataclass
class TimeDistributionReport:
    distribution: TimeDistribution
    date_range: int

    def to_dict(self) -> Dict[str, Any]:
        return {'time_distribution': self.distribution.to_dict(), 'date_range': self.date_range}


@dataclass
class TeamProductivityReport:
    productivity: TeamProductivity
    date_range: int

    def to_dict(self) -> Dict[str, Any]:
        data = self.productivity.to_dict()
        data['date_range'] = self.date_range
        return data


@dataclass
class AnalyticsSummaryReport:
    """Overview, team productivity and time tracking from a single fan-out"""
    overview: OverviewReport
    time_tracking: TimeSummary
    generated_at: datetime
    date_range: int
    productivity: Optional[TeamProductivity] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'overview': self.overview.to_dict(),
            'productivity': self.productivity.to_dict() if self.productivity else None,
            'time_tracking': self.time_tracking.to_dict(),
            'generated_at': to_iso_string(self.generated_at),
            'date_range': self.date_range,
        }


# -- Fan-out / join -------------------------------------------------------------

async def run_components(report: str, jobs: Dict[str, Awaitable],
                         timeout: Optional[float] = None) -> Dict[str, Any]:
    """Run named jobs concurrently and return their results by name.

    Waits until every job has finished, one has raised, or the timeout has
    elapsed. Unfinished jobs are cancelled and drained before returning or
    raising, including when the caller itself is cancelled.

    Raises:
        ReportUnavailable: chaining an ``AggregationFailure`` for the first
            failed job in submission order, or for the jobs still pending at
            the timeout
    """
    if not jobs:
        return {}

    tasks = {name: asyncio.ensure_future(job) for name, job in jobs.items()}
    try:
        done, pending = await asyncio.wait(
            tasks.values(), timeout=timeout, return_when=asyncio.FIRST_EXCEPTION
        )

        # Retrieve every finished job's exception, then report the first one
        failures = []
        for name, task in tasks.items():
            if task not in done:
                continue
            if task.cancelled():
                error: Optional[BaseException] = asyncio.CancelledError()
            else:
                error = task.exception()
            if error is not None:
                failures.append((name, error))

        if failures:
            name, error = failures[0]
            for other, other_error in failures[1:]:
                logger.debug(f"Report '{report}' also failed in {other}: {other_error!r}")
            logger.error(f"Report '{report}' failed in {name}: {error!r}")
            raise ReportUnavailable(report, AggregationFailure(name, error)) from error

        if pending:
            names = [name for name, task in tasks.items() if task in pending]
            failure = AggregationFailure(
                ", ".join(names),
                asyncio.TimeoutError(f"timed out after {timeout}s"),
            )
            logger.error(f"Report '{report}' timed out waiting for {', '.join(names)}")
            raise ReportUnavailable(report, failure) from failure

        return {name: task.result() for name, task in tasks.items()}
    finally:
        unfinished = [task for task in tasks.values() if not task.done()]
        for task in unfinished:
            task.cancel()
        if unfinished:
            await asyncio.gather(*unfinished, return_exceptions=True)
            logger.debug(f"Cancelled {len(unfinished)} unfinished job(s) of report '{report}'")


# -- Service ------------------------------------------------------------------

class AnalyticsService:
    """One async operation per report type over a single repository."""

    def __init__(self, repository: AnalyticsRepository, config: Optional[ConfigModel] = None,
                 now_func: Optional[Callable[[], datetime]] = None):
        self.repository = repository
        self.config = config or get_config()
        self.now_func = now_func or now_utc

        self.scope_resolver = AccessScopeResolver(repository)
        self.project_metrics = ProjectMetrics(repository, self.config)
        self.task_metrics = TaskMetrics(repository, self.config)
        self.user_metrics = UserMetrics(repository, self.config)
        self.time_metrics = TimeMetrics(repository, self.config)
        self.task_distribution = TaskDistributionMetrics(repository, self.config)
        self.project_progress = ProjectProgressMetrics(repository, self.config)
        self.time_distribution_metrics = TimeDistributionMetrics(repository, self.config)
        self.completion_trend = CompletionTrendBuilder(repository, self.config)
        self.time_allocation = TimeAllocationMetrics(repository, self.config)
        self.activity_feed = ActivityFeedComposer(repository, self.config)
        self.team_performance_metrics = TeamPerformanceMetrics(repository, self.config)
        self.team_productivity_metrics = TeamProductivityMetrics(repository, self.config)
        self.system_metrics = SystemAnalyticsMetrics(repository, self.config)
        self.exporter = ExportManager(delimiter=self.config.csv_delimiter)

    def request(self, caller_id: Any, caller_role: Any, date_range: Any = None,
                project_id: Any = None, format: Any = None) -> ReportRequest:
        """Validate raw parameters against this service's configuration."""
        return build_request(caller_id, caller_role, date_range, project_id, format,
                             config=self.config)

    # -- Stages -------------------------------------------------------------

    def _require_role(self, request: ReportRequest, report: str, allowed: FrozenSet[Role]) -> None:
        if request.caller_role in allowed:
            return
        logger.warning(
            f"User {request.caller_id} ({request.caller_role.value}) denied access to '{report}'"
        )
        roles = ", ".join(sorted(role.value for role in allowed))
        raise AccessDenied(f"Access denied: '{report}' requires role {roles}", report=report)

    async def _prepare(self, report: str, request: ReportRequest,
                       project_id: Optional[int] = None) -> Tuple[AccessScope, DateFilter]:
        date_filter = build_filter(request.date_range, now=self.now_func())
        try:
            scope = await self.scope_resolver.resolve(
                request.caller_id, request.caller_role, project_id
            )
        except Exception as e:
            logger.error(f"Report '{report}' failed resolving access scope: {e!r}")
            raise ReportUnavailable(report, AggregationFailure("access_scope", e)) from e
        return scope, date_filter

    async def _run(self, report: str, jobs: Dict[str, Awaitable]) -> Dict[str, Any]:
        logger.debug(f"Assembling '{report}' from {len(jobs)} component(s)")
        return await run_components(report, jobs, timeout=self.config.report_timeout_seconds)

    def _overview_jobs(self, scope: AccessScope, date_filter: DateFilter) -> Dict[str, Awaitable]:
        jobs = {
            aggregator.name: aggregator.compute(scope, date_filter)
            for aggregator in (
                self.project_metrics,
                self.task_metrics,
                self.user_metrics,
                self.time_metrics,
                self.task_distribution,
                self.project_progress,
                self.time_distribution_metrics,
            )
        }
        jobs[self.activity_feed.name] = self.activity_feed.recent_activities(scope)
        return jobs

    def _shape_overview(self, results: Dict[str, Any], date_filter: DateFilter) -> OverviewReport:
        return OverviewReport(
            projects=results[self.project_metrics.name],
            tasks=results[self.task_metrics.name],
            users=results[self.user_metrics.name],
            time_tracking=results[self.time_metrics.name],
            task_distribution=results[self.task_distribution.name],
            project_progress=results[self.project_progress.name],
            time_distribution=results[self.time_distribution_metrics.name],
            recent_activities=results[self.activity_feed.name],
            date_range=date_filter.range_days,
            generated_at=date_filter.now,
        )

    # -- Operations ---------------------------------------------------------

    async def overview(self, request: ReportRequest) -> OverviewReport:
        scope, date_filter = await self._prepare("overview", request, request.project_id)
        results = await self._run("overview", self._overview_jobs(scope, date_filter))
        return self._shape_overview(results, date_filter)

    async def team_performance(self, request: ReportRequest) -> TeamPerformanceReport:
        self._require_role(request, "team_performance", MANAGEMENT_ROLES)
        scope, date_filter = await self._prepare("team_performance", request, request.project_id)
        aggregator = self.team_performance_metrics
        results = await self._run("team_performance", {
            aggregator.name: aggregator.compute(scope, date_filter),
        })
        return TeamPerformanceReport(members=results[aggregator.name],
                                     date_range=date_filter.range_days)

    async def productivity_analytics(self, request: ReportRequest) -> ProductivityReport:
        scope, date_filter = await self._prepare("productivity", request, request.project_id)
        results = await self._run("productivity", {
            self.completion_trend.name: self.completion_trend.compute(scope, date_filter),
            self.time_allocation.name: self.time_allocation.compute(scope, date_filter),
        })
        return ProductivityReport(
            completion_trends=results[self.completion_trend.name],
            time_allocation=results[self.time_allocation.name],
            date_range=date_filter.range_days,
        )

    async def project_statistics(self, request: ReportRequest) -> ProjectStatisticsReport:
        report = "project_statistics"
        if request.project_id is None:
            raise InvalidRequest("A project id is required for project statistics",
                                 field_name="project_id")

        scope, date_filter = await self._prepare(report, request, request.project_id)
        if scope.is_empty:
            logger.warning(
                f"User {request.caller_id} ({request.caller_role.value}) denied access "
                f"to project {request.project_id}"
            )
            raise AccessDenied("Access denied to this project", report=report,
                               project_id=request.project_id)

        try:
            project = await self.repository.get_project(request.project_id)
        except Exception as e:
            logger.error(f"Report '{report}' failed loading project {request.project_id}: {e!r}")
            raise ReportUnavailable(report, AggregationFailure("project_lookup", e)) from e
        if project is None:
            raise InvalidRequest(f"Project {request.project_id} not found",
                                 field_name="project_id", value=request.project_id)

        results = await self._run(report, {
            self.project_metrics.name: self.project_metrics.compute(scope, date_filter),
            self.task_metrics.name: self.task_metrics.compute(scope, date_filter),
            self.task_distribution.name: self.task_distribution.compute(scope, date_filter),
        })
        return ProjectStatisticsReport(
            project_id=request.project_id,
            project=results[self.project_metrics.name],
            tasks=results[self.task_metrics.name],
            distribution=results[self.task_distribution.name],
            date_range=date_filter.range_days,
        )

    async def user_dashboard(self, request: ReportRequest) -> UserDashboardReport:
        """Personal statistics for the caller regardless of role."""
        scope, date_filter = await self._prepare("user_dashboard", request)
        results = await self._run("user_dashboard", {
            "personal_stats": self.user_metrics.personal_stats(scope, date_filter),
            self.activity_feed.name: self.activity_feed.recent_activities(
                scope, self.config.user_dashboard_activity_limit
            ),
            self.task_distribution.name: self.task_distribution.compute(scope, date_filter),
        })
        return UserDashboardReport(
            statistics=results["personal_stats"],
            recent_activities=results[self.activity_feed.name],
            task_distribution=results[self.task_distribution.name],
            date_range=date_filter.range_days,
        )

    async def system_analytics(self, request: ReportRequest) -> SystemAnalyticsReport:
        self._require_role(request, "system_analytics", ADMIN_ROLES)
        scope, date_filter = await self._prepare("system_analytics", request)
        aggregator = self.system_metrics
        results = await self._run("system_analytics", {
            aggregator.name: aggregator.compute(scope, date_filter),
        })
        return SystemAnalyticsReport(analytics=results[aggregator.name],
                                     date_range=date_filter.range_days)

    async def time_analytics(self, request: ReportRequest) -> TimeAnalyticsReport:
        scope, date_filter = await self._prepare("time_analytics", request, request.project_id)
        results = await self._run("time_analytics", {
            self.time_metrics.name: self.time_metrics.compute(scope, date_filter),
        })
        return TimeAnalyticsReport(time_tracking=results[self.time_metrics.name],
                                   date_range=date_filter.range_days)

    async def time_distribution(self, request: ReportRequest) -> TimeDistributionReport:
        scope, date_filter = await self._prepare("time_distribution", request, request.project_id)
        aggregator = self.time_distribution_metrics
        results = await self._run("time_distribution", {
            aggregator.name: aggregator.compute(scope, date_filter),
        })
        return TimeDistributionReport(distribution=results[aggregator.name],
                                      date_range=date_filter.range_days)

    async def team_productivity(self, request: ReportRequest) -> TeamProductivityReport:
        self._require_role(request, "team_productivity", MANAGEMENT_ROLES)
        scope, date_filter = await self._prepare("team_productivity", request, request.project_id)
        aggregator = self.team_productivity_metrics
        results = await self._run("team_productivity", {
            aggregator.name: aggregator.compute(scope, date_filter),
        })
        return TeamProductivityReport(productivity=results[aggregator.name],
                                      date_range=date_filter.range_days)

    async def analytics_summary(self, request: ReportRequest) -> AnalyticsSummaryReport:
        """Overview plus team productivity for managers and admins."""
        scope, date_filter = await self._prepare("analytics_summary", request, request.project_id)
        jobs = self._overview_jobs(scope, date_filter)
        include_team = request.caller_role in MANAGEMENT_ROLES
        if include_team:
            aggregator = self.team_productivity_metrics
            jobs[aggregator.name] = aggregator.compute(scope, date_filter)

        results = await self._run("analytics_summary", jobs)
        overview = self._shape_overview(results, date_filter)
        return AnalyticsSummaryReport(
            overview=overview,
            time_tracking=overview.time_tracking,
            generated_at=date_filter.now,
            date_range=date_filter.range_days,
            productivity=results[self.team_productivity_metrics.name] if include_team else None,
        )

    async def export(self, request: ReportRequest) -> bytes:
        """Overview report rendered in the requested format."""
        report = await self.overview(request)
        return self.exporter.format(report, request.format, caller_id=request.caller_id,
                                    exported_at=self.now_func())
