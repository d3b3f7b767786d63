"""Pytest configuration and shared fixtures."""

import sys
import asyncio
import inspect
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure src directory is in Python path for all tests
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from taskboard.config import Config, ConfigModel  # noqa: E402
from taskboard.services import AnalyticsService  # noqa: E402
from taskboard.storage import repository_from_dict  # noqa: E402


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):
    """Execute async tests without external plugins."""
    testfunction = pyfuncitem.obj
    if inspect.iscoroutinefunction(testfunction):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            sig = inspect.signature(testfunction)
            call_kwargs = {name: pyfuncitem.funcargs[name] for name in sig.parameters}
            loop.run_until_complete(testfunction(**call_kwargs))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def iso(days_ago: float) -> str:
    return (NOW - timedelta(days=days_ago)).isoformat()


def sample_rows():
    """A small organisation: four projects, six users, six tasks.

    Relative to NOW with a 30 day range:
    - projects 10 (active, past end date), 11 (active), 13 (planning) fall in
      range; 12 (completed) was created 40 days ago
    - tasks 100-104 fall in range; 105 was created 45 days ago
    - developer 3 is a member of 10 and 11, tester 4 of 10 and 12
    - user 5 is inactive, developer 6 has no memberships
    """
    return {
        "users": [
            {"id": 1, "first_name": "Alice", "last_name": "Admin", "email": "alice@example.com",
             "role": "admin", "last_login": iso(1)},
            {"id": 2, "first_name": "Mark", "last_name": "Manager", "email": "mark@example.com",
             "role": "manager", "last_login": iso(3)},
            {"id": 3, "first_name": "Dana", "last_name": "Dev", "email": "dana@example.com",
             "role": "developer", "last_login": iso(2)},
            {"id": 4, "first_name": "Tom", "last_name": "Tester", "email": "tom@example.com",
             "role": "tester", "last_login": iso(20)},
            {"id": 5, "first_name": "Dee", "last_name": "Designer", "email": "dee@example.com",
             "role": "designer", "is_active": False},
            {"id": 6, "first_name": "Nora", "last_name": "Nobody", "email": "nora@example.com",
             "role": "developer"},
        ],
        "projects": [
            {"id": 10, "name": "Apollo", "status": "active", "priority": "high", "created_by": 2,
             "created_at": iso(20), "end_date": iso(2)},
            {"id": 11, "name": "Borealis", "status": "active", "created_by": 2,
             "created_at": iso(10), "end_date": iso(-30)},
            {"id": 12, "name": "Cygnus", "status": "completed", "created_by": 2,
             "created_at": iso(40), "end_date": iso(5)},
            {"id": 13, "name": "Draco", "status": "planning", "created_by": 2,
             "created_at": iso(5)},
        ],
        "memberships": [
            {"project_id": 10, "user_id": 3},
            {"project_id": 11, "user_id": 3},
            {"project_id": 10, "user_id": 4, "role": "tester"},
            {"project_id": 12, "user_id": 4, "role": "tester"},
            {"project_id": 13, "user_id": 2, "role": "manager"},
        ],
        "tasks": [
            {"id": 100, "project_id": 10, "title": "Design schema", "status": "done",
             "priority": "high", "assigned_to": 3, "created_by": 2, "actual_hours": 4,
             "created_at": iso(15), "updated_at": iso(3)},
            {"id": 101, "project_id": 10, "title": "Build API", "status": "done",
             "priority": "medium", "assigned_to": 3, "created_by": 2, "actual_hours": 6,
             "created_at": iso(14), "updated_at": iso(3)},
            {"id": 102, "project_id": 10, "title": "Write tests", "status": "in_progress",
             "priority": "critical", "assigned_to": 4, "created_by": 2, "due_date": iso(1),
             "created_at": iso(12), "updated_at": iso(1)},
            {"id": 103, "project_id": 11, "title": 'Landing page, "v2"', "status": "todo",
             "priority": "low", "assigned_to": 3, "created_by": 2, "due_date": iso(-5),
             "created_at": iso(8), "updated_at": iso(8)},
            {"id": 104, "project_id": 11, "title": "Deploy", "status": "in_review",
             "priority": "high", "assigned_to": 4, "created_by": 2, "due_date": iso(2),
             "created_at": iso(6), "updated_at": iso(2)},
            {"id": 105, "project_id": 12, "title": "Archive", "status": "done",
             "priority": "medium", "assigned_to": 4, "created_by": 2, "actual_hours": 2,
             "created_at": iso(45), "updated_at": iso(35)},
        ],
        "comments": [
            {"id": 200, "task_id": 100, "author_id": 4, "content": "Looks good,\nship it",
             "created_at": iso(2)},
            {"id": 201, "task_id": 104, "author_id": 2, "content": "Blocked on review",
             "created_at": iso(1)},
        ],
        "time_entries": [
            {"id": 300, "task_id": 100, "user_id": 3, "hours_spent": 4.0, "billable": True,
             "work_date": iso(3)},
            {"id": 301, "task_id": 101, "user_id": 3, "hours_spent": 6.0, "work_date": iso(3)},
            {"id": 302, "task_id": 102, "user_id": 4, "hours_spent": 2.5, "billable": True,
             "work_date": iso(1)},
            {"id": 303, "task_id": 105, "user_id": 4, "hours_spent": 3.0, "billable": True,
             "work_date": iso(40)},
        ],
    }


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Never read the developer's own configuration file."""
    monkeypatch.setenv("TASKBOARD_CONFIG", str(tmp_path / "missing-config.yaml"))
    Config._instance = None
    yield
    Config._instance = None


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def config():
    return ConfigModel(data_dir=str(Path(__file__).parent))


@pytest.fixture
def rows():
    return sample_rows()


@pytest.fixture
def repository(rows):
    return repository_from_dict(rows)


@pytest.fixture
def service(repository, config):
    return AnalyticsService(repository, config, now_func=lambda: NOW)
