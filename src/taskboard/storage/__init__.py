"""Persistence interface and the in-memory implementation."""

from .query import ActivityQuery, ProjectQuery, TaskQuery, TimeEntryQuery, UserQuery
from .repository import AnalyticsRepository
from .memory import DatasetError, InMemoryRepository, load_dataset, repository_from_dict

__all__ = [
    "ActivityQuery",
    "ProjectQuery",
    "TaskQuery",
    "TimeEntryQuery",
    "UserQuery",
    "AnalyticsRepository",
    "DatasetError",
    "InMemoryRepository",
    "load_dataset",
    "repository_from_dict",
]
