"""SQLite database setup for Taskboard."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import aiosqlite
import structlog

log = structlog.get_logger()

# Current schema version for migration tracking
# Version 2: Added auth_tokens table for bearer sessions
SCHEMA_VERSION = 2

# Largest value SQLite stores in an INTEGER column
MAX_ROW_ID = 2**63 - 1

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT UNIQUE NOT NULL,
        name TEXT NOT NULL,
        password_hash TEXT NOT NULL,
        password_salt TEXT NOT NULL,
        created_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS teams (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        created_by INTEGER,
        created_at TIMESTAMP NOT NULL,
        FOREIGN KEY (created_by) REFERENCES users(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS team_members (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        team_id INTEGER NOT NULL,
        user_id INTEGER NOT NULL,
        role TEXT NOT NULL DEFAULT 'member' CHECK (role IN ('leader', 'member')),
        joined_at TIMESTAMP NOT NULL,
        FOREIGN KEY (team_id) REFERENCES teams(id),
        FOREIGN KEY (user_id) REFERENCES users(id),
        UNIQUE(team_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'in_progress', 'completed')),
        assigned_to INTEGER,
        team_id INTEGER NOT NULL,
        created_by INTEGER NOT NULL,
        due_date DATE,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL,
        FOREIGN KEY (team_id) REFERENCES teams(id),
        FOREIGN KEY (assigned_to) REFERENCES users(id),
        FOREIGN KEY (created_by) REFERENCES users(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS auth_tokens (
        token_hash TEXT PRIMARY KEY,
        user_id INTEGER NOT NULL,
        created_at TIMESTAMP NOT NULL,
        expires_at TIMESTAMP NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_members_team ON team_members(team_id)",
    "CREATE INDEX IF NOT EXISTS idx_members_user ON team_members(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_team ON tasks(team_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_assignee ON tasks(assigned_to)",
    "CREATE INDEX IF NOT EXISTS idx_tokens_user ON auth_tokens(user_id)",
]


class Database:
    """Manages SQLite database connections, schema and transactions."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize database manager.

        Args:
            db_path: Path to the database file. Defaults to ~/.taskboard/taskboard.db
        """
        if db_path is None:
            db_path = Path.home() / ".taskboard" / "taskboard.db"

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False

    async def _get_schema_version(self, db: aiosqlite.Connection) -> int:
        """Get current schema version from database."""
        async with db.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
            return row[0] if row else 0

    async def initialize(self):
        """Create database schema if it doesn't exist."""
        if self._initialized:
            return

        async with self.connect() as db:
            previous = await self._get_schema_version(db)
            for statement in SCHEMA:
                await db.execute(statement)
            await db.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

        self._initialized = True
        log.info(
            "database_initialized",
            path=str(self.db_path),
            schema_version=SCHEMA_VERSION,
            previous_version=previous,
        )

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        """Open a connection in autocommit mode with foreign keys enforced.

        The connection is closed on every exit path.
        """
        conn = await aiosqlite.connect(self.db_path, isolation_level=None)
        try:
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        finally:
            await conn.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run a unit of work in a single write transaction.

        ``BEGIN IMMEDIATE`` takes the write lock up front, so a
        check-then-write sequence cannot interleave with another writer.
        Any exception rolls the transaction back and is re-raised.
        """
        async with self.connect() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.execute("ROLLBACK")
                log.debug("transaction_rolled_back", path=str(self.db_path))
                raise
            else:
                await conn.execute("COMMIT")
