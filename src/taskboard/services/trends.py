"""Time series for productivity charts.

The completion trend has one point per UTC calendar day from
``now - range_days`` to ``now`` inclusive, oldest first, so a range of N
days always yields N + 1 points. Days without activity are zero points.
"""

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from ..domain import Task
from ..errors import InvalidRange
from ..storage import TaskQuery
from ..utils.datetime import utc_date
from .date_filter import DateFilter
from .metrics import MetricAggregator, completion_rate, round_half_up
from .scope import AccessScope

logger = logging.getLogger(__name__)


@dataclass
class TrendPoint:
    date: date
    completed: int
    total: int
    completion_rate: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date.isoformat(),
            'completed': self.completed,
            'total': self.total,
            'completion_rate': self.completion_rate,
        }


@dataclass
class TimeAllocation:
    """Hours spent on completed tasks of one priority"""
    priority: str
    total_hours: int
    task_count: int
    average_hours: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'priority': self.priority,
            'total_hours': self.total_hours,
            'task_count': self.task_count,
            'average_hours': self.average_hours,
        }


@dataclass
class DailyCount:
    date: date
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {'date': self.date.isoformat(), 'count': self.count}


def build_completion_trend(tasks: Iterable[Task], range_days: int, now: datetime) -> List[TrendPoint]:
    """Bucket tasks by the calendar day of their last update."""
    if range_days < 0:
        raise InvalidRange(f"Trend range cannot be negative, got {range_days}", value=range_days)

    totals: Dict[date, int] = defaultdict(int)
    completed: Dict[date, int] = defaultdict(int)
    for task in tasks:
        if task.updated_at is None:
            continue
        day = utc_date(task.updated_at)
        totals[day] += 1
        if task.is_done:
            completed[day] += 1

    today = utc_date(now)
    points = []
    for offset in range(range_days, -1, -1):
        day = today - timedelta(days=offset)
        points.append(TrendPoint(
            date=day,
            completed=completed[day],
            total=totals[day],
            completion_rate=completion_rate(completed[day], totals[day]),
        ))
    return points


def build_time_allocation(tasks: Iterable[Task]) -> List[TimeAllocation]:
    """Group done tasks with recorded hours by priority, largest total first."""
    hours: Dict[str, float] = defaultdict(float)
    counts: Dict[str, int] = defaultdict(int)
    for task in tasks:
        if not task.is_done or task.actual_hours is None:
            continue
        hours[task.priority.value] += task.actual_hours
        counts[task.priority.value] += 1

    allocation = [
        TimeAllocation(
            priority=priority,
            total_hours=round_half_up(total),
            task_count=counts[priority],
            average_hours=round_half_up(total / counts[priority]),
        )
        for priority, total in hours.items()
    ]
    allocation.sort(key=lambda a: a.total_hours, reverse=True)
    return allocation


def daily_counts(timestamps: Iterable[Optional[datetime]], max_days: int = 30) -> List[DailyCount]:
    """Count timestamps per calendar day, newest day first, days with data only."""
    counts = Counter(utc_date(ts) for ts in timestamps if ts is not None)
    days = sorted(counts, reverse=True)[:max_days]
    return [DailyCount(date=day, count=counts[day]) for day in days]


class CompletionTrendBuilder(MetricAggregator):
    """Completed-vs-total series over tasks created within the range."""

    name = "completion_trend"

    async def compute(self, scope: AccessScope, date_filter: DateFilter) -> List[TrendPoint]:
        tasks: List[Task] = []
        if not scope.is_empty:
            tasks = await self.repository.list_tasks(
                TaskQuery(project_ids=scope.project_ids, created_after=date_filter.cutoff)
            )
        return build_completion_trend(tasks, date_filter.range_days, date_filter.now)


class TimeAllocationMetrics(MetricAggregator):
    name = "time_allocation"

    async def compute(self, scope: AccessScope, date_filter: DateFilter) -> List[TimeAllocation]:
        if scope.is_empty:
            return []
        tasks = await self.repository.list_tasks(TaskQuery(
            project_ids=scope.project_ids,
            created_after=date_filter.cutoff,
            has_actual_hours=True,
        ))
        return build_time_allocation(tasks)
