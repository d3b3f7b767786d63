"""Access scope resolution: which projects may a caller see?"""

import logging
from dataclasses import dataclass
from typing import FrozenSet, Optional

from ..domain import Role
from ..storage import AnalyticsRepository, ProjectQuery

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessScope:
    """Project ids visible to one caller for one report request."""
    caller_id: int
    role: Role
    project_ids: FrozenSet[int]
    requested_project_id: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return not self.project_ids

    def __contains__(self, project_id) -> bool:
        return project_id in self.project_ids


class AccessScopeResolver:
    """Resolve the set of visible project ids from role and membership.

    Admins and managers see every project, or exactly the requested one
    without an ownership check. Every other role sees the projects it holds
    a membership in, intersected with the requested project. An empty
    result is not an error: callers decide whether it means access-denied
    or all-zero metrics.
    """

    def __init__(self, repository: AnalyticsRepository):
        self.repository = repository

    async def resolve(self, caller_id: int, role: Role,
                      requested_project_id: Optional[int] = None) -> AccessScope:
        if role in (Role.ADMIN, Role.MANAGER):
            if requested_project_id is not None:
                project_ids = frozenset({requested_project_id})
            else:
                projects = await self.repository.list_projects(ProjectQuery())
                project_ids = frozenset(p.id for p in projects)
        elif role in (Role.DEVELOPER, Role.TESTER, Role.DESIGNER):
            memberships = await self.repository.list_project_memberships(caller_id)
            project_ids = frozenset(m.project_id for m in memberships if m.user_id == caller_id)
            if requested_project_id is not None:
                project_ids = project_ids & {requested_project_id}
        else:
            raise ValueError(f"Unhandled role: {role}")

        logger.debug(
            f"Resolved scope for user {caller_id} ({role.value}): {len(project_ids)} project(s)"
        )
        return AccessScope(
            caller_id=caller_id,
            role=role,
            project_ids=project_ids,
            requested_project_id=requested_project_id,
        )
