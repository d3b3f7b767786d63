"""Recent activity feed composed from independently sorted event streams."""

import logging
from typing import Iterable, List, Optional

from ..config import ConfigModel, get_config
from ..domain import ActivityEvent, ActivityKind
from ..storage import ActivityQuery, AnalyticsRepository
from ..utils.tasks import gather_or_cancel
from .scope import AccessScope

logger = logging.getLogger(__name__)


def merge_activity(streams: Iterable[Iterable[ActivityEvent]], limit: int) -> List[ActivityEvent]:
    """Concatenate streams, re-sort newest first and keep ``limit`` events.

    Ties at the truncation boundary may be dropped in either order.
    """
    merged = [event for stream in streams for event in stream]
    merged.sort(key=lambda event: event.occurred_at, reverse=True)
    return merged[:max(0, limit)]


class ActivityFeedComposer:
    """Best-effort recency feed over projects, tasks and comments in scope."""

    name = "recent_activities"

    def __init__(self, repository: AnalyticsRepository, config: Optional[ConfigModel] = None):
        self.repository = repository
        self.config = config or get_config()

    def _caps(self, limit: int):
        # Each stream is capped below the feed limit to bound the work per request
        return {
            ActivityKind.PROJECT_CREATED: min(limit, self.config.feed_project_cap),
            ActivityKind.TASK_CREATED: min(limit, self.config.feed_task_cap),
            ActivityKind.TASK_UPDATED: min(limit, self.config.feed_task_cap),
            ActivityKind.COMMENT_ADDED: min(limit, self.config.feed_comment_cap),
        }

    async def recent_activities(self, scope: AccessScope,
                                limit: Optional[int] = None) -> List[ActivityEvent]:
        if limit is None:
            limit = self.config.activity_limit
        if scope.is_empty or limit <= 0:
            return []

        query = ActivityQuery(project_ids=scope.project_ids)
        caps = self._caps(limit)
        streams = await gather_or_cancel(*(
            self.repository.list_recent_activity(kind, query, cap)
            for kind, cap in caps.items()
        ))
        feed = merge_activity(streams, limit)
        logger.debug(f"Composed activity feed with {len(feed)} of {sum(map(len, streams))} events")
        return feed
