"""Team management and membership rules.

This module owns the team side of the authorization core:
- Team creation (creator becomes the sole leader)
- Leader-only edits and cascading deletion
- Joining and leaving, including the leader-leave rule
- Membership lookups shared with the task rules

Every operation takes the acting user's id explicitly; nothing is cached
between calls.
"""

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

import aiosqlite
import structlog

from taskboard.core.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

if TYPE_CHECKING:
    from taskboard.persistence.database import Database

log = structlog.get_logger()


class TeamRole(str, Enum):
    """Roles within a team.

    LEADER: Edits and deletes the team, deletes any task
    MEMBER: Creates and updates tasks, deletes own tasks
    """

    LEADER = "leader"
    MEMBER = "member"

    @property
    def can_manage_team(self) -> bool:
        """Only leaders can edit or delete the team."""
        return self == TeamRole.LEADER

    @property
    def can_delete_any_task(self) -> bool:
        """Leaders can delete tasks they did not create."""
        return self == TeamRole.LEADER


@dataclass
class TeamMembership:
    """A user's membership in a team."""

    id: int
    team_id: int
    user_id: int
    role: TeamRole
    joined_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "user_id": self.user_id,
            "role": self.role.value,
            "joined_at": self.joined_at.isoformat(),
        }


@dataclass
class TeamMember:
    """A member as listed in team details."""

    user_id: int
    name: str
    email: str
    role: TeamRole
    joined_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.user_id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "joined_at": self.joined_at.isoformat(),
        }


@dataclass
class Team:
    """A team and, depending on how it was loaded, some derived fields.

    Attributes:
        id: Team identifier
        name: Team name
        description: Team description (empty string when absent)
        created_by: User ID of the creator
        created_at: Creation timestamp
        created_by_name: Creator's display name, when joined in
        member_count: Number of memberships, when counted
        role: The viewing user's role, for per-user listings
        members: Member list, for detail views
    """

    id: int
    name: str
    description: str
    created_by: Optional[int]
    created_at: datetime = field(default_factory=datetime.now)
    created_by_name: Optional[str] = None
    member_count: Optional[int] = None
    role: Optional[TeamRole] = None
    members: Optional[list[TeamMember]] = None

    def to_dict(self) -> dict:
        result = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
        }
        if self.created_by_name is not None:
            result["created_by_name"] = self.created_by_name
        if self.member_count is not None:
            result["member_count"] = self.member_count
        if self.role is not None:
            result["role"] = self.role.value
        if self.members is not None:
            result["members"] = [m.to_dict() for m in self.members]
        return result


async def fetch_membership(
    conn: aiosqlite.Connection,
    team_id: int,
    user_id: int,
) -> Optional[TeamMembership]:
    """Load a membership row on an open connection."""
    cursor = await conn.execute(
        "SELECT * FROM team_members WHERE team_id = ? AND user_id = ?",
        (team_id, user_id),
    )
    row = await cursor.fetchone()
    if not row:
        return None
    return TeamMembership(
        id=row["id"],
        team_id=row["team_id"],
        user_id=row["user_id"],
        role=TeamRole(row["role"]),
        joined_at=datetime.fromisoformat(row["joined_at"]),
    )


async def require_membership(
    conn: aiosqlite.Connection,
    team_id: int,
    user_id: int,
    message: str = "Access denied - not a team member",
) -> TeamMembership:
    """Load a membership or raise PermissionDeniedError."""
    membership = await fetch_membership(conn, team_id, user_id)
    if membership is None:
        raise PermissionDeniedError(message)
    return membership


def _clean_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Team name is required")
    return name


class TeamStore:
    """Team persistence with membership and role rules."""

    def __init__(self, database: Optional["Database"] = None):
        """Initialize the team store.

        Args:
            database: Database instance (creates default if not provided)
        """
        from taskboard.persistence.database import Database

        self.db = database or Database()

    # ========== Reads ==========

    async def list_teams(self) -> list[Team]:
        """List every team with creator name and member count, newest first."""
        await self.db.initialize()

        async with self.db.connect() as conn:
            cursor = await conn.execute(
                """
                SELECT t.*, u.name AS created_by_name,
                       COUNT(tm.user_id) AS member_count
                FROM teams t
                LEFT JOIN users u ON t.created_by = u.id
                LEFT JOIN team_members tm ON t.id = tm.team_id
                GROUP BY t.id
                ORDER BY t.created_at DESC, t.id DESC
                """
            )
            rows = await cursor.fetchall()

        return [self._row_to_team(row) for row in rows]

    async def list_user_teams(self, user_id: int) -> list[Team]:
        """List the teams a user belongs to, with the user's role in each."""
        await self.db.initialize()

        async with self.db.connect() as conn:
            cursor = await conn.execute(
                """
                SELECT t.*, tm.role AS role, u.name AS created_by_name,
                       COUNT(DISTINCT tm2.user_id) AS member_count
                FROM teams t
                JOIN team_members tm ON t.id = tm.team_id
                LEFT JOIN users u ON t.created_by = u.id
                LEFT JOIN team_members tm2 ON t.id = tm2.team_id
                WHERE tm.user_id = ?
                GROUP BY t.id, tm.role
                ORDER BY t.created_at DESC, t.id DESC
                """,
                (user_id,),
            )
            rows = await cursor.fetchall()

        return [self._row_to_team(row) for row in rows]

    async def get_team(self, team_id: int) -> Optional[Team]:
        """Get a team by ID, or None if absent."""
        await self.db.initialize()

        async with self.db.connect() as conn:
            cursor = await conn.execute(
                """
                SELECT t.*, u.name AS created_by_name
                FROM teams t
                LEFT JOIN users u ON t.created_by = u.id
                WHERE t.id = ?
                """,
                (team_id,),
            )
            row = await cursor.fetchone()

        return self._row_to_team(row) if row else None

    async def get_team_detail(self, user_id: int, team_id: int) -> Team:
        """Get a team with its members. Only members may look.

        Raises:
            NotFoundError: If the team does not exist
            PermissionDeniedError: If the user is not a member
        """
        team = await self.get_team(team_id)
        if team is None:
            raise NotFoundError("Team not found")

        async with self.db.connect() as conn:
            await require_membership(conn, team_id, user_id)
            cursor = await conn.execute(
                """
                SELECT u.id, u.name, u.email, tm.role, tm.joined_at
                FROM team_members tm
                JOIN users u ON tm.user_id = u.id
                WHERE tm.team_id = ?
                ORDER BY tm.joined_at ASC, tm.id ASC
                """,
                (team_id,),
            )
            rows = await cursor.fetchall()

        team.members = [
            TeamMember(
                user_id=row["id"],
                name=row["name"],
                email=row["email"],
                role=TeamRole(row["role"]),
                joined_at=datetime.fromisoformat(row["joined_at"]),
            )
            for row in rows
        ]
        team.member_count = len(team.members)
        return team

    async def get_membership(self, team_id: int, user_id: int) -> Optional[TeamMembership]:
        """Get a user's membership in a team, or None."""
        await self.db.initialize()

        async with self.db.connect() as conn:
            return await fetch_membership(conn, team_id, user_id)

    async def count_members(self, team_id: int) -> int:
        await self.db.initialize()

        async with self.db.connect() as conn:
            cursor = await conn.execute(
                "SELECT COUNT(*) FROM team_members WHERE team_id = ?",
                (team_id,),
            )
            row = await cursor.fetchone()
        return row[0]

    # ========== Mutations ==========

    async def create_team(
        self,
        user_id: int,
        name: str,
        description: Optional[str] = "",
    ) -> Team:
        """Create a team with the creator as its sole leader.

        The team row and the leader membership are written in one
        transaction, so a team never exists without its leader.

        Raises:
            ValidationError: If the name is empty
        """
        await self.db.initialize()

        name = _clean_name(name)
        created_at = datetime.now()

        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO teams (name, description, created_by, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (name, description or "", user_id, created_at.isoformat()),
            )
            team_id = cursor.lastrowid

            await conn.execute(
                """
                INSERT INTO team_members (team_id, user_id, role, joined_at)
                VALUES (?, ?, ?, ?)
                """,
                (team_id, user_id, TeamRole.LEADER.value, created_at.isoformat()),
            )

        log.info("team_created", team_id=team_id, name=name, created_by=user_id)
        return Team(
            id=team_id,
            name=name,
            description=description or "",
            created_by=user_id,
            created_at=created_at,
            member_count=1,
            role=TeamRole.LEADER,
        )

    async def update_team(
        self,
        user_id: int,
        team_id: int,
        name: str,
        description: Optional[str] = "",
    ) -> Team:
        """Rename a team and replace its description (leader only).

        Raises:
            NotFoundError: If the team does not exist
            PermissionDeniedError: If the user is not a leader of the team
            ValidationError: If the name is empty
        """
        await self.db.initialize()

        async with self.db.transaction() as conn:
            await self._require_leader(conn, team_id, user_id, "Only team leaders can edit teams")
            name = _clean_name(name)
            await conn.execute(
                "UPDATE teams SET name = ?, description = ? WHERE id = ?",
                (name, description or "", team_id),
            )

        log.info("team_updated", team_id=team_id, updated_by=user_id)
        team = await self.get_team(team_id)
        if team is None:
            raise NotFoundError("Team not found")
        return team

    async def delete_team(self, user_id: int, team_id: int) -> None:
        """Delete a team with all of its tasks and memberships (leader only).

        Raises:
            NotFoundError: If the team does not exist
            PermissionDeniedError: If the user is not a leader of the team
        """
        await self.db.initialize()

        async with self.db.transaction() as conn:
            await self._require_leader(conn, team_id, user_id, "Only team leaders can delete teams")
            tasks = await conn.execute("DELETE FROM tasks WHERE team_id = ?", (team_id,))
            members = await conn.execute("DELETE FROM team_members WHERE team_id = ?", (team_id,))
            await conn.execute("DELETE FROM teams WHERE id = ?", (team_id,))

        log.info(
            "team_deleted",
            team_id=team_id,
            deleted_by=user_id,
            tasks_removed=tasks.rowcount,
            members_removed=members.rowcount,
        )

    async def join_team(self, user_id: int, team_id: int) -> TeamMembership:
        """Join a team as a member.

        Joining a team that has no members left makes the user its leader.

        Raises:
            NotFoundError: If the team does not exist
            ConflictError: If the user is already a member
        """
        await self.db.initialize()
        joined_at = datetime.now()

        try:
            async with self.db.transaction() as conn:
                await self._require_team(conn, team_id)
                if await fetch_membership(conn, team_id, user_id) is not None:
                    raise ConflictError("You are already a member of this team")
                cursor = await conn.execute(
                    "SELECT COUNT(*) FROM team_members WHERE team_id = ?", (team_id,)
                )
                role = TeamRole.MEMBER if (await cursor.fetchone())[0] else TeamRole.LEADER
                cursor = await conn.execute(
                    """
                    INSERT INTO team_members (team_id, user_id, role, joined_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (team_id, user_id, role.value, joined_at.isoformat()),
                )
                membership_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            # Lost a race with a concurrent join by the same user
            raise ConflictError("You are already a member of this team", original=e) from e

        log.info("member_joined", team_id=team_id, user_id=user_id, role=role.value)
        return TeamMembership(
            id=membership_id,
            team_id=team_id,
            user_id=user_id,
            role=role,
            joined_at=joined_at,
        )

    async def leave_team(self, user_id: int, team_id: int) -> None:
        """Leave a team.

        A leader may only leave once no other members remain.

        Raises:
            PermissionDeniedError: If the user is not a member
            ConflictError: If the user leads a team that still has members
        """
        await self.db.initialize()

        async with self.db.transaction() as conn:
            membership = await require_membership(conn, team_id, user_id)

            if membership.role == TeamRole.LEADER:
                cursor = await conn.execute(
                    "SELECT COUNT(*) FROM team_members WHERE team_id = ? AND user_id != ?",
                    (team_id, user_id),
                )
                others = (await cursor.fetchone())[0]
                if others > 0:
                    raise ConflictError(
                        "Team leaders cannot leave while other members exist. "
                        "Transfer leadership first."
                    )

            await conn.execute(
                "DELETE FROM team_members WHERE team_id = ? AND user_id = ?",
                (team_id, user_id),
            )

        log.info("member_left", team_id=team_id, user_id=user_id, role=membership.role.value)

    # ========== Helpers ==========

    async def _require_team(self, conn: aiosqlite.Connection, team_id: int) -> None:
        cursor = await conn.execute("SELECT id FROM teams WHERE id = ?", (team_id,))
        if await cursor.fetchone() is None:
            raise NotFoundError("Team not found")

    async def _require_leader(
        self,
        conn: aiosqlite.Connection,
        team_id: int,
        user_id: int,
        message: str,
    ) -> TeamMembership:
        await self._require_team(conn, team_id)
        membership = await fetch_membership(conn, team_id, user_id)
        if membership is None or not membership.role.can_manage_team:
            log.warning("leader_required", team_id=team_id, user_id=user_id)
            raise PermissionDeniedError(message)
        return membership

    def _row_to_team(self, row) -> Team:
        keys = row.keys()
        return Team(
            id=row["id"],
            name=row["name"],
            description=row["description"] or "",
            created_by=row["created_by"],
            created_at=datetime.fromisoformat(row["created_at"]),
            created_by_name=row["created_by_name"] if "created_by_name" in keys else None,
            member_count=row["member_count"] if "member_count" in keys else None,
            role=TeamRole(row["role"]) if "role" in keys else None,
        )
