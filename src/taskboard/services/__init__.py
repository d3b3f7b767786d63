"""Analytics services: scope resolution, aggregators and report assembly."""

from .scope import AccessScope, AccessScopeResolver
from .date_filter import DateFilter, build_filter, parse_range
from .metrics import (
    MetricAggregator,
    ProjectMetrics,
    TaskMetrics,
    UserMetrics,
    TimeMetrics,
    TaskDistributionMetrics,
    ProjectProgressMetrics,
    TimeDistributionMetrics,
)
from .trends import CompletionTrendBuilder, TimeAllocationMetrics, build_completion_trend
from .activity import ActivityFeedComposer, merge_activity
from .team import TeamPerformanceMetrics, TeamProductivityMetrics, SystemAnalyticsMetrics
from .export import ExportManager, ExportFormat
from .reports import AnalyticsService, ReportRequest, build_request, run_components

__all__ = [
    "AccessScope",
    "AccessScopeResolver",
    "DateFilter",
    "build_filter",
    "parse_range",
    "MetricAggregator",
    "ProjectMetrics",
    "TaskMetrics",
    "UserMetrics",
    "TimeMetrics",
    "TaskDistributionMetrics",
    "ProjectProgressMetrics",
    "TimeDistributionMetrics",
    "CompletionTrendBuilder",
    "TimeAllocationMetrics",
    "build_completion_trend",
    "ActivityFeedComposer",
    "merge_activity",
    "TeamPerformanceMetrics",
    "TeamProductivityMetrics",
    "SystemAnalyticsMetrics",
    "ExportManager",
    "ExportFormat",
    "AnalyticsService",
    "ReportRequest",
    "build_request",
    "run_components",
]
