"""Tests for report assembly: requests, role gates, fan-out failures and shapes."""

import asyncio
import gc
import json

import pytest

from taskboard.config import ConfigModel
from taskboard.domain import ActivityKind, Role
from taskboard.errors import (
    AccessDenied,
    AggregationFailure,
    InvalidRange,
    InvalidRequest,
    ReportUnavailable,
)
from taskboard.services import AnalyticsService
from taskboard.services.export import ExportFormat
from taskboard.services.reports import build_request, run_components
from taskboard.storage import InMemoryRepository, repository_from_dict


class FailingActivityRepository(InMemoryRepository):
    """Activity queries fail; every other query is served normally."""

    async def list_recent_activity(self, kind, query, limit):
        raise RuntimeError("activity store offline")


class FailingMembershipRepository(InMemoryRepository):
    async def list_project_memberships(self, user_id):
        raise ConnectionError("membership lookup failed")


class SlowRepository(InMemoryRepository):
    """Activity queries hang until cancelled; records every cancellation."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.cancelled = 0

    async def list_recent_activity(self, kind, query, limit):
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        return []


class PartlyFailingActivityRepository(InMemoryRepository):
    """Project events fail at once; the other activity streams hang.

    ``still_running`` counts streams that have started and not yet finished.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.still_running = 0

    async def list_recent_activity(self, kind, query, limit):
        if kind == ActivityKind.PROJECT_CREATED:
            raise RuntimeError("project events unavailable")
        self.still_running += 1
        try:
            await asyncio.sleep(30)
        finally:
            self.still_running -= 1
        return []


def build(repository_class, rows):
    base = repository_from_dict(rows)
    return repository_class(
        users=base.users.values(),
        projects=base.projects.values(),
        memberships=base.memberships,
        tasks=base.tasks.values(),
        comments=base.comments,
        time_entries=base.time_entries,
    )


class TestBuildRequest:
    def test_defaults(self, config):
        request = build_request(1, "admin", config=config)
        assert request.caller_role == Role.ADMIN
        assert request.date_range == 30
        assert request.project_id is None
        assert request.format == ExportFormat.JSON

    def test_string_values_are_parsed(self, config):
        request = build_request("3", "Developer", "7", "11", "CSV", config=config)
        assert request.caller_id == 3
        assert request.caller_role == Role.DEVELOPER
        assert request.date_range == 7
        assert request.project_id == 11
        assert request.format == ExportFormat.CSV

    @pytest.mark.parametrize("date_range", [0, -7, "abc", "45", 45, 7.5])
    def test_invalid_range(self, config, date_range):
        with pytest.raises(InvalidRange) as exc_info:
            build_request(1, "admin", date_range, config=config)
        assert exc_info.value.value == date_range

    def test_allowed_ranges_come_from_config(self):
        config = ConfigModel(allowed_date_ranges=[7, 45], default_date_range=45)
        assert build_request(1, "admin", config=config).date_range == 45
        assert build_request(1, "admin", "45", config=config).date_range == 45
        with pytest.raises(InvalidRange):
            build_request(1, "admin", 30, config=config)

    @pytest.mark.parametrize("kwargs,field_name", [
        ({"caller_id": 0, "caller_role": "admin"}, "caller_id"),
        ({"caller_id": 1, "caller_role": "ceo"}, "caller_role"),
        ({"caller_id": 1, "caller_role": "admin", "project_id": 0}, "project_id"),
        ({"caller_id": 1, "caller_role": "admin", "format": "xml"}, "format"),
    ])
    def test_invalid_request(self, config, kwargs, field_name):
        with pytest.raises(InvalidRequest) as exc_info:
            build_request(config=config, **kwargs)
        assert not isinstance(exc_info.value, InvalidRange)
        assert exc_info.value.field_name == field_name
        assert exc_info.value.errors


class TestOverview:
    async def test_admin_overview(self, service):
        report = await service.overview(service.request(1, "admin"))
        data = report.to_dict()

        assert data['date_range'] == 30
        assert data['overview']['projects'] == {
            'total': 3, 'active': 2, 'completed': 0, 'overdue': 1, 'on_track': 1,
        }
        assert data['overview']['tasks']['completion_rate'] == 40
        assert data['overview']['users']['total'] == 5
        assert data['overview']['time_tracking']['total_hours'] == 12.5
        assert len(data['charts']['project_progress']) == 3
        assert len(data['recent_activities']) == 10

    async def test_developer_overview_is_personal(self, service):
        report = await service.overview(service.request(3, "developer"))
        assert report.users.to_dict()['assigned_tasks'] == 3
        assert report.time_tracking.total_hours == 10.0
        assert {a.project_name for a in report.recent_activities} <= {"Apollo", "Borealis"}

    async def test_developer_without_memberships_gets_zeros(self, service):
        report = await service.overview(service.request(6, "developer"))
        assert report.projects.total == 0
        assert report.tasks.total == 0
        assert report.tasks.completion_rate == 0
        assert report.recent_activities == []

    async def test_project_narrowing(self, service):
        report = await service.overview(service.request(2, "manager", project_id=11))
        assert report.projects.total == 1
        assert report.tasks.total == 2


class TestRoleGates:
    async def test_developer_denied_team_performance(self, service):
        with pytest.raises(AccessDenied) as exc_info:
            await service.team_performance(service.request(6, "developer"))
        assert exc_info.value.report == "team_performance"

    async def test_gate_fires_before_scope_resolution(self, rows, config, now):
        repository = build(FailingMembershipRepository, rows)
        service = AnalyticsService(repository, config, now_func=lambda: now)
        with pytest.raises(AccessDenied):
            await service.team_performance(service.request(3, "developer"))

    @pytest.mark.parametrize("role", ["developer", "tester", "designer"])
    async def test_team_productivity_requires_management(self, service, role):
        with pytest.raises(AccessDenied):
            await service.team_productivity(service.request(3, role))

    @pytest.mark.parametrize("role", ["manager", "developer"])
    async def test_system_analytics_is_admin_only(self, service, role):
        with pytest.raises(AccessDenied):
            await service.system_analytics(service.request(2, role))

    async def test_manager_gets_team_performance(self, service):
        report = await service.team_performance(service.request(2, "manager"))
        assert [m['id'] for m in report.to_dict()['team_performance']] == [3, 4]


class TestProjectStatistics:
    async def test_non_member_developer_is_denied(self, service):
        with pytest.raises(AccessDenied) as exc_info:
            await service.project_statistics(service.request(3, "developer", project_id=12))
        assert exc_info.value.project_id == 12

    async def test_member_developer(self, service):
        report = await service.project_statistics(service.request(3, "developer", project_id=10))
        data = report.to_dict()
        assert data['project_id'] == 10
        assert data['project']['overdue'] == 1
        assert data['project']['on_track'] == 0
        assert data['tasks']['total'] == 3
        assert data['tasks']['completion_rate'] == 67
        assert [b['name'] for b in data['distribution']['by_project']] == ['Apollo']

    async def test_project_id_required(self, service):
        with pytest.raises(InvalidRequest):
            await service.project_statistics(service.request(1, "admin"))

    async def test_unknown_project(self, service):
        with pytest.raises(InvalidRequest) as exc_info:
            await service.project_statistics(service.request(1, "admin", project_id=999))
        assert exc_info.value.field_name == "project_id"


class TestOtherReports:
    async def test_productivity(self, service):
        report = await service.productivity_analytics(service.request(1, "admin", 7))
        data = report.to_dict()
        assert len(data['completion_trends']) == 8
        assert data['time_allocation'] == []

    async def test_user_dashboard(self, service):
        report = await service.user_dashboard(service.request(3, "developer"))
        data = report.to_dict()
        assert data['statistics']['completed_tasks'] == 2
        assert len(data['recent_activities']) <= 15
        assert {b['name'] for b in data['task_distribution']['by_project']} == {'Apollo', 'Borealis'}

    async def test_user_dashboard_activity_limit(self, service):
        report = await service.user_dashboard(service.request(1, "admin"))
        assert len(report.recent_activities) == 15

    async def test_system_analytics(self, service):
        report = await service.system_analytics(service.request(1, "admin"))
        data = report.to_dict()
        assert data['date_range'] == 30
        assert data['top_performers'][0]['id'] == 3

    async def test_time_reports(self, service):
        time_report = await service.time_analytics(service.request(4, "tester"))
        assert time_report.time_tracking.total_hours == 2.5

        distribution = await service.time_distribution(service.request(4, "tester"))
        assert [u.key for u in distribution.distribution.by_user] == [4]

    async def test_team_productivity(self, service):
        report = await service.team_productivity(service.request(1, "admin"))
        data = report.to_dict()
        assert data['time_analytics']['utilization_rate'] == 4
        assert data['date_range'] == 30

    async def test_summary_for_manager(self, service):
        report = await service.analytics_summary(service.request(2, "manager"))
        data = report.to_dict()
        assert data['productivity']['task_analytics']['completion_rate'] == 40
        assert data['time_tracking'] == data['overview']['overview']['time_tracking']

    async def test_summary_omits_team_for_restricted_roles(self, service):
        report = await service.analytics_summary(service.request(3, "developer"))
        assert report.productivity is None
        assert report.to_dict()['productivity'] is None


class TestFailures:
    async def test_aggregator_failure_surfaces_as_report_unavailable(self, rows, config, now):
        service = AnalyticsService(build(FailingActivityRepository, rows), config,
                                   now_func=lambda: now)
        with pytest.raises(ReportUnavailable) as exc_info:
            await service.overview(service.request(1, "admin"))

        error = exc_info.value
        assert error.report == "overview"
        assert error.component == "recent_activities"
        assert isinstance(error.cause, AggregationFailure)
        assert isinstance(error.cause.cause, RuntimeError)

    async def test_scope_failure_surfaces_as_report_unavailable(self, rows, config, now):
        service = AnalyticsService(build(FailingMembershipRepository, rows), config,
                                   now_func=lambda: now)
        with pytest.raises(ReportUnavailable) as exc_info:
            await service.overview(service.request(3, "developer"))
        assert exc_info.value.component == "access_scope"

    async def test_timeout_cancels_pending_work(self, rows, now):
        config = ConfigModel(report_timeout_seconds=0.05)
        repository = build(SlowRepository, rows)
        service = AnalyticsService(repository, config, now_func=lambda: now)

        with pytest.raises(ReportUnavailable) as exc_info:
            await service.overview(service.request(1, "admin"))

        failure = exc_info.value.cause
        assert failure.component == "recent_activities"
        assert isinstance(failure.cause, asyncio.TimeoutError)
        assert repository.cancelled == 4

    async def test_first_failure_cancels_running_jobs(self):
        cancelled = []

        async def slow():
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                cancelled.append("slow")
                raise

        async def broken():
            await asyncio.sleep(0)
            raise ValueError("boom")

        with pytest.raises(ReportUnavailable) as exc_info:
            await run_components("demo", {"slow": slow(), "broken": broken()}, timeout=5)

        assert exc_info.value.component == "broken"
        assert cancelled == ["slow"]

    @pytest.mark.parametrize("report,component", [
        ("overview", "recent_activities"),
        ("team_productivity", "team_productivity"),
    ])
    async def test_failed_stream_stops_sibling_streams(self, rows, config, now, report, component):
        repository = build(PartlyFailingActivityRepository, rows)
        service = AnalyticsService(repository, config, now_func=lambda: now)

        with pytest.raises(ReportUnavailable) as exc_info:
            await getattr(service, report)(service.request(1, "admin"))

        assert exc_info.value.component == component
        assert isinstance(exc_info.value.cause.cause, RuntimeError)
        assert repository.still_running == 0

    async def test_every_failure_is_retrieved(self):
        loop = asyncio.get_running_loop()
        unhandled = []
        loop.set_exception_handler(lambda loop, context: unhandled.append(context))

        async def broken(message):
            raise ValueError(message)

        try:
            await run_components("demo", {"first": broken("one"), "second": broken("two")})
        except ReportUnavailable as e:
            component = e.component
        gc.collect()

        assert component == "first"
        assert not [c for c in unhandled if "never retrieved" in c.get("message", "")]

    async def test_caller_cancellation_propagates(self, rows, config, now):
        repository = build(SlowRepository, rows)
        service = AnalyticsService(repository, config, now_func=lambda: now)

        task = asyncio.ensure_future(service.overview(service.request(1, "admin")))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert repository.cancelled == 4

    async def test_run_components_results(self):
        async def value(x):
            return x

        assert await run_components("demo", {"a": value(1), "b": value(2)}) == {"a": 1, "b": 2}
        assert await run_components("demo", {}) == {}


class TestExport:
    async def test_json_export_has_metadata(self, service, now):
        content = await service.export(service.request(1, "admin", format="json"))
        data = json.loads(content)
        assert data['export_metadata'] == {
            'exported_at': now.isoformat(),
            'exported_by': 1,
            'format': 'json',
            'date_range': 30,
        }
        assert data['overview']['projects']['total'] == 3

    async def test_csv_export(self, service):
        content = await service.export(service.request(1, "admin", format="csv"))
        lines = content.decode("utf-8").split("\n")
        assert lines[0] == "Dashboard Overview"
        assert "Completion Rate (%),40" in lines
