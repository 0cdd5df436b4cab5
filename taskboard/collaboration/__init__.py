"""Teams, tasks and the users who work on them.

This module provides:
- User accounts and bearer tokens
- Teams with leader/member roles
- Tasks with membership-checked assignment and deletion rules
- Per-user dashboard rollups
"""

from taskboard.collaboration.users import (
    User,
    UserStore,
)
from taskboard.collaboration.auth import (
    AuthToken,
    TokenStore,
)
from taskboard.collaboration.teams import (
    Team,
    TeamMember,
    TeamMembership,
    TeamRole,
    TeamStore,
)
from taskboard.collaboration.tasks import (
    UNSET,
    Task,
    TaskStats,
    TaskStatus,
    TaskStore,
    TaskUpdate,
)
from taskboard.collaboration.dashboard import (
    Dashboard,
    DashboardSummary,
)

__all__ = [
    # Users
    "User",
    "UserStore",
    # Auth
    "AuthToken",
    "TokenStore",
    # Teams
    "Team",
    "TeamMember",
    "TeamMembership",
    "TeamRole",
    "TeamStore",
    # Tasks
    "UNSET",
    "Task",
    "TaskStats",
    "TaskStatus",
    "TaskStore",
    "TaskUpdate",
    # Dashboard
    "Dashboard",
    "DashboardSummary",
]
