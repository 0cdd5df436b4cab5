"""Team tasks and the rules for changing them.

This module owns the task side of the authorization core:
- Only members of a task's team can create, update or delete it
- Assignees must be members of the task's team when assigned
- Only the creator or a team leader can delete a task
- Partial updates go through ``TaskUpdate``, never raw SQL fragments
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional, Union

import aiosqlite
import structlog

from taskboard.collaboration.teams import fetch_membership, require_membership
from taskboard.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from taskboard.persistence.database import MAX_ROW_ID

if TYPE_CHECKING:
    from taskboard.persistence.database import Database

log = structlog.get_logger()


class TaskStatus(str, Enum):
    """Lifecycle of a task."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


INVALID_STATUS_MESSAGE = "Invalid status. Must be: pending, in_progress, or completed"
NON_MEMBER_ASSIGNEE_MESSAGE = "Cannot assign task to non-team member"


class _Unset:
    """Marker for a field that is absent from a partial update."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


def parse_status(value: Any) -> TaskStatus:
    """Convert a raw status into TaskStatus.

    Raises:
        ValidationError: If the value is not one of the three statuses
    """
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(value)
    except ValueError:
        raise ValidationError(INVALID_STATUS_MESSAGE) from None


def parse_due_date(value: Any) -> Optional[date]:
    """Convert a raw due date. Empty values mean "no due date"."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError:
            pass
    raise ValidationError("Invalid due date. Use YYYY-MM-DD")


def parse_user_ref(value: Any) -> Optional[int]:
    """Convert a raw user reference. Empty values mean "nobody"."""
    if isinstance(value, bool):
        raise ValidationError("Invalid user id")
    if value is None or value == "" or value == 0:
        return None
    try:
        user_id = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Invalid user id") from None
    if not 1 <= user_id <= MAX_ROW_ID:
        raise ValidationError("Invalid user id")
    return user_id


@dataclass
class TaskUpdate:
    """A partial update to a task.

    Each field is either ``UNSET`` (leave unchanged) or the new value.
    For ``assigned_to`` and ``due_date`` a value of None clears the field.
    """

    title: Union[str, _Unset] = UNSET
    description: Union[str, _Unset] = UNSET
    status: Union[TaskStatus, _Unset] = UNSET
    assigned_to: Union[int, None, _Unset] = UNSET
    due_date: Union[date, None, _Unset] = UNSET

    FIELDS = ("title", "description", "status", "assigned_to", "due_date")

    def __post_init__(self):
        if self.title is not UNSET:
            self.title = (self.title or "").strip()
            if not self.title:
                raise ValidationError("Task title cannot be empty")

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TaskUpdate":
        """Build an update from request data, keeping only known fields.

        Raises:
            ValidationError: If a present field has an invalid value
        """
        fields: dict[str, Any] = {}
        if "title" in payload:
            fields["title"] = payload["title"]
        if "description" in payload:
            fields["description"] = payload["description"] or ""
        if "status" in payload:
            fields["status"] = parse_status(payload["status"])
        if "assigned_to" in payload:
            fields["assigned_to"] = parse_user_ref(payload["assigned_to"])
        if "due_date" in payload:
            fields["due_date"] = parse_due_date(payload["due_date"])
        return cls(**fields)

    def changes(self) -> dict[str, Any]:
        """Present fields mapped to their storage values."""
        result = {}
        for name in self.FIELDS:
            value = getattr(self, name)
            if value is UNSET:
                continue
            if isinstance(value, TaskStatus):
                value = value.value
            elif isinstance(value, date):
                value = value.isoformat()
            result[name] = value
        return result

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, name) is UNSET for name in self.FIELDS)


@dataclass
class Task:
    """A task in a team.

    Attributes:
        id: Task identifier
        title: Short title
        description: Free text (empty string when absent)
        status: Current status
        team_id: Owning team
        created_by: User who created the task
        assigned_to: Assignee user ID, if any
        due_date: Optional due date
        created_at: Creation timestamp
        updated_at: Last modification timestamp
    """

    id: int
    title: str
    team_id: int
    created_by: int
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    assigned_to: Optional[int] = None
    due_date: Optional[date] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    assigned_to_name: Optional[str] = None
    assigned_to_email: Optional[str] = None
    created_by_name: Optional[str] = None
    team_name: Optional[str] = None

    def is_overdue(self, today: Optional[date] = None) -> bool:
        """Due strictly before today and not completed."""
        today = today or date.today()
        return (
            self.due_date is not None
            and self.due_date < today
            and self.status != TaskStatus.COMPLETED
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "team_id": self.team_id,
            "team_name": self.team_name,
            "created_by": self.created_by,
            "created_by_name": self.created_by_name,
            "assigned_to": self.assigned_to,
            "assigned_to_name": self.assigned_to_name,
            "assigned_to_email": self.assigned_to_email,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "is_overdue": self.is_overdue(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class TaskStats:
    """Task counts by status plus overdue count."""

    total: int = 0
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    overdue: int = 0

    def to_dict(self, total_key: str = "total_tasks") -> dict:
        return {
            total_key: self.total,
            "pending_tasks": self.pending,
            "in_progress_tasks": self.in_progress,
            "completed_tasks": self.completed,
            "overdue_tasks": self.overdue,
        }


TASK_SELECT = """
    SELECT t.*,
           assigned_user.name AS assigned_to_name,
           assigned_user.email AS assigned_to_email,
           created_user.name AS created_by_name,
           team.name AS team_name
    FROM tasks t
    LEFT JOIN users assigned_user ON t.assigned_to = assigned_user.id
    LEFT JOIN users created_user ON t.created_by = created_user.id
    LEFT JOIN teams team ON t.team_id = team.id
"""

STATS_COLUMNS = ("team_id", "assigned_to")


async def fetch_task_stats(
    conn: aiosqlite.Connection,
    column: str,
    value: int,
    today: Optional[date] = None,
) -> TaskStats:
    """Count tasks by status for one team or one assignee."""
    if column not in STATS_COLUMNS:
        raise ValueError(f"Cannot aggregate tasks by {column!r}")
    today = today or date.today()

    cursor = await conn.execute(
        f"""
        SELECT
            COUNT(*) AS total,
            COUNT(CASE WHEN status = 'pending' THEN 1 END) AS pending,
            COUNT(CASE WHEN status = 'in_progress' THEN 1 END) AS in_progress,
            COUNT(CASE WHEN status = 'completed' THEN 1 END) AS completed,
            COUNT(CASE WHEN due_date < ? AND status != 'completed' THEN 1 END) AS overdue
        FROM tasks
        WHERE {column} = ?
        """,
        (today.isoformat(), value),
    )
    row = await cursor.fetchone()
    return TaskStats(
        total=row["total"],
        pending=row["pending"],
        in_progress=row["in_progress"],
        completed=row["completed"],
        overdue=row["overdue"],
    )


def row_to_task(row) -> Task:
    """Convert a row selected with TASK_SELECT (or ``tasks.*``) to a Task."""
    keys = row.keys()
    return Task(
        id=row["id"],
        title=row["title"],
        description=row["description"] or "",
        status=TaskStatus(row["status"]),
        team_id=row["team_id"],
        created_by=row["created_by"],
        assigned_to=row["assigned_to"],
        due_date=date.fromisoformat(row["due_date"]) if row["due_date"] else None,
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        assigned_to_name=row["assigned_to_name"] if "assigned_to_name" in keys else None,
        assigned_to_email=row["assigned_to_email"] if "assigned_to_email" in keys else None,
        created_by_name=row["created_by_name"] if "created_by_name" in keys else None,
        team_name=row["team_name"] if "team_name" in keys else None,
    )


class TaskStore:
    """Task persistence with membership and ownership rules."""

    def __init__(self, database: Optional["Database"] = None):
        """Initialize the task store.

        Args:
            database: Database instance (creates default if not provided)
        """
        from taskboard.persistence.database import Database

        self.db = database or Database()

    # ========== Reads ==========

    async def get_task(self, task_id: int) -> Optional[Task]:
        """Get a task by ID, or None if absent."""
        await self.db.initialize()

        async with self.db.connect() as conn:
            cursor = await conn.execute(TASK_SELECT + " WHERE t.id = ?", (task_id,))
            row = await cursor.fetchone()

        return row_to_task(row) if row else None

    async def list_team_tasks(
        self,
        user_id: int,
        team_id: int,
        status: Optional[str] = None,
    ) -> list[Task]:
        """List a team's tasks, newest first. Members only.

        Raises:
            PermissionDeniedError: If the user is not a member
            ValidationError: If the status filter is not a valid status
        """
        await self.db.initialize()

        query = TASK_SELECT + " WHERE t.team_id = ?"
        params: list = [team_id]

        async with self.db.connect() as conn:
            await require_membership(conn, team_id, user_id)
            if status:
                query += " AND t.status = ?"
                params.append(parse_status(status).value)
            query += " ORDER BY t.created_at DESC, t.id DESC"
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()

        return [row_to_task(row) for row in rows]

    async def list_assigned_tasks(
        self,
        user_id: int,
        status: Optional[str] = None,
    ) -> list[Task]:
        """List tasks assigned to a user, newest first."""
        await self.db.initialize()

        query = TASK_SELECT + " WHERE t.assigned_to = ?"
        params: list = [user_id]
        if status:
            query += " AND t.status = ?"
            params.append(parse_status(status).value)
        query += " ORDER BY t.created_at DESC, t.id DESC"

        async with self.db.connect() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()

        return [row_to_task(row) for row in rows]

    async def list_recent_tasks(self, limit: int = 5) -> list[Task]:
        """Newest tasks across all teams. For operator diagnostics, not the API."""
        await self.db.initialize()

        async with self.db.connect() as conn:
            cursor = await conn.execute(
                TASK_SELECT + " ORDER BY t.created_at DESC, t.id DESC LIMIT ?",
                (limit,),
            )
            rows = await cursor.fetchall()

        return [row_to_task(row) for row in rows]

    async def count_tasks(self) -> int:
        await self.db.initialize()

        async with self.db.connect() as conn:
            cursor = await conn.execute("SELECT COUNT(*) FROM tasks")
            row = await cursor.fetchone()
        return row[0]

    async def get_team_stats(
        self,
        user_id: int,
        team_id: int,
        today: Optional[date] = None,
    ) -> TaskStats:
        """Task counts for a team. Members only.

        Raises:
            PermissionDeniedError: If the user is not a member
        """
        await self.db.initialize()

        async with self.db.connect() as conn:
            await require_membership(conn, team_id, user_id)
            return await fetch_task_stats(conn, "team_id", team_id, today)

    # ========== Mutations ==========

    async def create_task(
        self,
        user_id: int,
        title: Optional[str],
        team_id: Optional[int],
        description: Optional[str] = "",
        assigned_to: Any = None,
        due_date: Any = None,
    ) -> Task:
        """Create a task in a team the user belongs to.

        Raises:
            ValidationError: If team or title is missing, or the assignee
                is not a member of the team
            PermissionDeniedError: If the user is not a member of the team
        """
        await self.db.initialize()

        if not team_id:
            raise ValidationError("Title and team_id are required")

        now = datetime.now()

        async with self.db.transaction() as conn:
            await require_membership(
                conn, team_id, user_id, "You must be a team member to create tasks"
            )

            title = (title or "").strip()
            if not title:
                raise ValidationError("Title and team_id are required")
            assignee = parse_user_ref(assigned_to)
            due = parse_due_date(due_date)

            if assignee is not None:
                await self._require_assignable(conn, team_id, assignee)

            cursor = await conn.execute(
                """
                INSERT INTO tasks (
                    title, description, status, assigned_to, team_id,
                    created_by, due_date, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    title,
                    description or "",
                    TaskStatus.PENDING.value,
                    assignee,
                    team_id,
                    user_id,
                    due.isoformat() if due else None,
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
            task_id = cursor.lastrowid

        log.info(
            "task_created",
            task_id=task_id,
            team_id=team_id,
            created_by=user_id,
            assigned_to=assignee,
        )
        task = await self.get_task(task_id)
        if task is None:
            raise NotFoundError("Task not found")
        return task

    async def update_task(
        self,
        user_id: int,
        task_id: int,
        updates: Union[TaskUpdate, Mapping[str, Any]],
    ) -> Task:
        """Apply a partial update to a task.

        ``updates`` is either a TaskUpdate or raw request data; raw data is
        validated only after the membership check.

        Raises:
            NotFoundError: If the task does not exist
            PermissionDeniedError: If the user is not a member of the task's team
            ValidationError: If no recognised field is present, a value is
                invalid, or the new assignee is not a team member
        """
        await self.db.initialize()

        async with self.db.transaction() as conn:
            task = await self._load_task(conn, task_id)
            await require_membership(
                conn, task.team_id, user_id, "You must be a team member to update tasks"
            )

            changes = updates if isinstance(updates, TaskUpdate) else TaskUpdate.from_payload(updates)
            if changes.is_empty:
                raise ValidationError("No valid fields to update")

            if changes.assigned_to is not UNSET and changes.assigned_to is not None:
                await self._require_assignable(conn, task.team_id, changes.assigned_to)

            values = changes.changes()
            values["updated_at"] = datetime.now().isoformat()
            assignments = ", ".join(f"{column} = ?" for column in values)
            await conn.execute(
                f"UPDATE tasks SET {assignments} WHERE id = ?",
                (*values.values(), task_id),
            )

        log.info(
            "task_updated",
            task_id=task_id,
            updated_by=user_id,
            fields=sorted(k for k in values if k != "updated_at"),
        )
        updated = await self.get_task(task_id)
        if updated is None:
            raise NotFoundError("Task not found")
        return updated

    async def delete_task(self, user_id: int, task_id: int) -> None:
        """Delete a task. Only its creator or a team leader may.

        Raises:
            NotFoundError: If the task does not exist
            PermissionDeniedError: If the user is not a member, or is
                neither the creator nor a leader
        """
        await self.db.initialize()

        async with self.db.transaction() as conn:
            task = await self._load_task(conn, task_id)
            membership = await require_membership(
                conn, task.team_id, user_id, "You must be a team member to delete tasks"
            )
            if task.created_by != user_id and not membership.role.can_delete_any_task:
                log.warning("task_delete_denied", task_id=task_id, user_id=user_id)
                raise PermissionDeniedError("Only task creator or team leader can delete tasks")

            await conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))

        log.info("task_deleted", task_id=task_id, deleted_by=user_id)

    # ========== Helpers ==========

    async def _load_task(self, conn: aiosqlite.Connection, task_id: int) -> Task:
        cursor = await conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,))
        row = await cursor.fetchone()
        if not row:
            raise NotFoundError("Task not found")
        return row_to_task(row)

    async def _require_assignable(
        self,
        conn: aiosqlite.Connection,
        team_id: int,
        assignee_id: int,
    ) -> None:
        if await fetch_membership(conn, team_id, assignee_id) is None:
            raise ValidationError(NON_MEMBER_ASSIGNEE_MESSAGE)
