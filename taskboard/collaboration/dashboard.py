"""Per-user dashboard rollups.

The summary is built from independent reads with no surrounding
transaction. Counts may be momentarily inconsistent with each other under
concurrent writes; the dashboard is advisory and this is accepted.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Optional

import structlog

from taskboard.collaboration.tasks import TASK_SELECT, Task, TaskStats, fetch_task_stats, row_to_task
from taskboard.collaboration.teams import Team, TeamStore

if TYPE_CHECKING:
    from taskboard.persistence.database import Database

log = structlog.get_logger()

RECENT_TASK_LIMIT = 5


@dataclass
class DashboardSummary:
    """What a user sees on their dashboard."""

    teams: list[Team] = field(default_factory=list)
    task_stats: TaskStats = field(default_factory=TaskStats)
    recent_tasks: list[Task] = field(default_factory=list)

    @property
    def team_count(self) -> int:
        return len(self.teams)

    def to_dict(self) -> dict:
        return {
            "teams": {
                "count": self.team_count,
                "list": [
                    {
                        "id": team.id,
                        "name": team.name,
                        "role": team.role.value if team.role else None,
                        "member_count": team.member_count,
                    }
                    for team in self.teams
                ],
            },
            "tasks": {
                **self.task_stats.to_dict(total_key="total_assigned_tasks"),
                "recent": [
                    {
                        "id": task.id,
                        "title": task.title,
                        "status": task.status.value,
                        "due_date": task.due_date.isoformat() if task.due_date else None,
                        "team_name": task.team_name,
                    }
                    for task in self.recent_tasks
                ],
            },
        }


class Dashboard:
    """Read-only aggregation over teams and tasks."""

    def __init__(self, database: Optional["Database"] = None):
        from taskboard.persistence.database import Database

        self.db = database or Database()
        self.teams = TeamStore(self.db)

    async def get_summary(self, user_id: int, today: Optional[date] = None) -> DashboardSummary:
        """Build the dashboard for a user.

        Args:
            user_id: The viewing user
            today: Reference date for the overdue count (defaults to today)

        Returns:
            DashboardSummary with team list, assigned-task stats and the
            most recently updated assigned tasks
        """
        await self.db.initialize()

        teams = await self.teams.list_user_teams(user_id)

        async with self.db.connect() as conn:
            stats = await fetch_task_stats(conn, "assigned_to", user_id, today)

        async with self.db.connect() as conn:
            cursor = await conn.execute(
                TASK_SELECT
                + " WHERE t.assigned_to = ? ORDER BY t.updated_at DESC, t.id DESC LIMIT ?",
                (user_id, RECENT_TASK_LIMIT),
            )
            rows = await cursor.fetchall()

        log.debug("dashboard_built", user_id=user_id, teams=len(teams), tasks=stats.total)
        return DashboardSummary(
            teams=teams,
            task_stats=stats,
            recent_tasks=[row_to_task(row) for row in rows],
        )
