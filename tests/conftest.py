"""Shared test fixtures."""

import tempfile
from pathlib import Path
from types import SimpleNamespace

import pytest
import pytest_asyncio


@pytest.fixture
def temp_dir():
    """Temporary directory for tests."""
    with tempfile.TemporaryDirectory() as d:
        yield Path(d)


@pytest.fixture
def db(temp_dir):
    """Test database."""
    from taskboard.persistence.database import Database

    return Database(temp_dir / "test.db")


@pytest.fixture
def user_store(db):
    from taskboard.collaboration.users import UserStore

    return UserStore(db)


@pytest.fixture
def token_store(db):
    from taskboard.collaboration.auth import TokenStore

    return TokenStore(db, ttl_hours=1)


@pytest.fixture
def team_store(db):
    from taskboard.collaboration.teams import TeamStore

    return TeamStore(db)


@pytest.fixture
def task_store(db):
    from taskboard.collaboration.tasks import TaskStore

    return TaskStore(db)


@pytest_asyncio.fixture
async def users(user_store):
    """Three registered users: alice, bob and carol."""
    alice = await user_store.create_user("Alice", "alice@example.com", "password123")
    bob = await user_store.create_user("Bob", "bob@example.com", "password123")
    carol = await user_store.create_user("Carol", "carol@example.com", "password123")
    return SimpleNamespace(alice=alice, bob=bob, carol=carol)


@pytest_asyncio.fixture
async def alpha(team_store, users):
    """Team "Alpha" led by alice with bob as a member. carol is an outsider."""
    team = await team_store.create_team(users.alice.id, "Alpha", "First team")
    await team_store.join_team(users.bob.id, team.id)
    return team


@pytest.fixture
def config(temp_dir):
    """Test configuration."""
    from taskboard.config import TaskboardConfig

    return TaskboardConfig(data_dir=temp_dir, db_path=temp_dir / "web.db")
