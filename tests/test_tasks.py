"""Tests for task rules and partial updates."""

import asyncio
from datetime import date

import pytest
import pytest_asyncio

from taskboard.collaboration.tasks import (
    UNSET,
    Task,
    TaskStats,
    TaskStatus,
    TaskUpdate,
    parse_due_date,
    parse_status,
    parse_user_ref,
)
from taskboard.core.errors import NotFoundError, PermissionDeniedError, ValidationError


# ============================================
# Parsing Helpers
# ============================================


class TestParsing:
    """Tests for raw value conversion."""

    def test_parse_status_valid(self):
        assert parse_status("in_progress") == TaskStatus.IN_PROGRESS
        assert parse_status(TaskStatus.COMPLETED) == TaskStatus.COMPLETED

    @pytest.mark.parametrize("value", ["archived", "Pending", "", None])
    def test_parse_status_invalid(self, value):
        with pytest.raises(ValidationError, match="Invalid status"):
            parse_status(value)

    def test_parse_due_date(self):
        assert parse_due_date("2026-03-01") == date(2026, 3, 1)
        assert parse_due_date("2026-03-01T10:00:00Z") == date(2026, 3, 1)
        assert parse_due_date(date(2026, 3, 1)) == date(2026, 3, 1)
        assert parse_due_date("") is None
        assert parse_due_date(None) is None

    def test_parse_due_date_invalid(self):
        with pytest.raises(ValidationError):
            parse_due_date("next tuesday")
        with pytest.raises(ValidationError):
            parse_due_date("2026-03-01garbage")
        with pytest.raises(ValidationError):
            parse_due_date("2026-02-30")

    def test_parse_user_ref(self):
        assert parse_user_ref(4) == 4
        assert parse_user_ref("4") == 4
        assert parse_user_ref("") is None
        assert parse_user_ref(None) is None

    def test_parse_user_ref_invalid(self):
        with pytest.raises(ValidationError):
            parse_user_ref("bob")
        with pytest.raises(ValidationError):
            parse_user_ref(True)

    @pytest.mark.parametrize("value", [-1, 2**63, "99999999999999999999"])
    def test_parse_user_ref_out_of_range(self, value):
        with pytest.raises(ValidationError, match="Invalid user id"):
            parse_user_ref(value)


# ============================================
# TaskUpdate Tests
# ============================================


class TestTaskUpdate:
    """Tests for the typed partial update."""

    def test_defaults_are_unset(self):
        update = TaskUpdate()
        assert update.is_empty
        assert update.changes() == {}
        assert update.title is UNSET

    def test_from_payload_keeps_known_fields(self):
        update = TaskUpdate.from_payload({"status": "completed", "priority": "high"})
        assert update.status == TaskStatus.COMPLETED
        assert update.changes() == {"status": "completed"}

    def test_unknown_fields_only_is_empty(self):
        assert TaskUpdate.from_payload({"priority": "high"}).is_empty

    def test_explicit_null_clears(self):
        update = TaskUpdate.from_payload({"assigned_to": None, "due_date": None})
        assert not update.is_empty
        assert update.changes() == {"assigned_to": None, "due_date": None}

    def test_description_null_becomes_empty(self):
        update = TaskUpdate.from_payload({"description": None})
        assert update.changes() == {"description": ""}

    def test_empty_title_rejected(self):
        with pytest.raises(ValidationError):
            TaskUpdate.from_payload({"title": "  "})

    def test_direct_construction_validates_title(self):
        with pytest.raises(ValidationError, match="cannot be empty"):
            TaskUpdate(title="")
        assert TaskUpdate(title="  Ship it ").title == "Ship it"

    def test_dates_and_statuses_serialized(self):
        update = TaskUpdate(status=TaskStatus.IN_PROGRESS, due_date=date(2026, 1, 2))
        assert update.changes() == {"status": "in_progress", "due_date": "2026-01-02"}


class TestTaskDataclass:
    """Tests for Task helpers."""

    def test_is_overdue(self):
        task = Task(id=1, title="t", team_id=1, created_by=1, due_date=date(2026, 1, 1))
        assert task.is_overdue(today=date(2026, 1, 2))
        assert not task.is_overdue(today=date(2026, 1, 1))

    def test_to_dict_reports_overdue(self):
        task = Task(id=1, title="t", team_id=1, created_by=1, due_date=date(2000, 1, 1))
        assert task.to_dict()["is_overdue"] is True
        assert Task(id=2, title="t", team_id=1, created_by=1).to_dict()["is_overdue"] is False

    def test_completed_is_never_overdue(self):
        task = Task(
            id=1, title="t", team_id=1, created_by=1,
            status=TaskStatus.COMPLETED, due_date=date(2020, 1, 1),
        )
        assert not task.is_overdue(today=date(2026, 1, 1))

    def test_stats_to_dict_total_key(self):
        stats = TaskStats(total=3, pending=1, in_progress=1, completed=1, overdue=0)
        assert stats.to_dict()["total_tasks"] == 3
        assert stats.to_dict(total_key="total_assigned_tasks")["total_assigned_tasks"] == 3


# ============================================
# create_task
# ============================================


class TestCreateTask:
    """Tests for create_task."""

    async def test_member_creates_pending_task(self, task_store, alpha, users):
        task = await task_store.create_task(
            users.bob.id, "Draft roadmap", alpha.id,
            description="Draft", assigned_to=users.alice.id, due_date="2026-12-01",
        )
        assert task.status == TaskStatus.PENDING
        assert task.created_by == users.bob.id
        assert task.assigned_to == users.alice.id
        assert task.assigned_to_name == "Alice"
        assert task.created_by_name == "Bob"
        assert task.team_name == "Alpha"
        assert task.due_date == date(2026, 12, 1)

    async def test_non_member_cannot_create(self, task_store, alpha, users):
        with pytest.raises(PermissionDeniedError):
            await task_store.create_task(users.carol.id, "Sneaky", alpha.id)

    async def test_membership_checked_before_title(self, task_store, alpha, users):
        with pytest.raises(PermissionDeniedError):
            await task_store.create_task(users.carol.id, "", alpha.id)

    async def test_title_required(self, task_store, alpha, users):
        with pytest.raises(ValidationError):
            await task_store.create_task(users.bob.id, "", alpha.id)

    async def test_team_required(self, task_store, users):
        with pytest.raises(ValidationError):
            await task_store.create_task(users.bob.id, "Orphan", None)

    async def test_assignee_must_be_member(self, task_store, alpha, users):
        with pytest.raises(ValidationError, match="non-team member"):
            await task_store.create_task(
                users.alice.id, "Outsourced", alpha.id, assigned_to=users.carol.id
            )
        assert await task_store.list_team_tasks(users.alice.id, alpha.id) == []

    async def test_empty_assignee_is_unassigned(self, task_store, alpha, users):
        task = await task_store.create_task(users.alice.id, "Open", alpha.id, assigned_to="")
        assert task.assigned_to is None


# ============================================
# update_task
# ============================================


class TestUpdateTask:
    """Tests for update_task."""

    @pytest_asyncio.fixture
    async def task(self, task_store, alpha, users):
        return await task_store.create_task(
            users.alice.id, "Draft roadmap", alpha.id,
            description="Draft", assigned_to=users.bob.id, due_date="2026-12-01",
        )

    async def test_status_update_advances_updated_at(self, task_store, task, users):
        await asyncio.sleep(0.01)
        updated = await task_store.update_task(users.bob.id, task.id, {"status": "completed"})
        assert updated.status == TaskStatus.COMPLETED
        assert updated.updated_at > task.updated_at
        assert updated.created_at == task.created_at

    async def test_absent_fields_untouched(self, task_store, task, users):
        updated = await task_store.update_task(users.bob.id, task.id, {"title": "Final roadmap"})
        assert updated.title == "Final roadmap"
        assert updated.description == "Draft"
        assert updated.assigned_to == users.bob.id
        assert updated.due_date == date(2026, 12, 1)

    async def test_null_clears_assignee_and_due_date(self, task_store, task, users):
        updated = await task_store.update_task(
            users.alice.id, task.id, {"assigned_to": None, "due_date": ""}
        )
        assert updated.assigned_to is None
        assert updated.due_date is None

    async def test_accepts_task_update_instance(self, task_store, task, users):
        updated = await task_store.update_task(
            users.alice.id, task.id, TaskUpdate(status=TaskStatus.IN_PROGRESS)
        )
        assert updated.status == TaskStatus.IN_PROGRESS

    async def test_empty_update_rejected(self, task_store, task, users):
        with pytest.raises(ValidationError, match="No valid fields to update"):
            await task_store.update_task(users.bob.id, task.id, {})

    async def test_invalid_status_rejected(self, task_store, task, users):
        with pytest.raises(ValidationError, match="Invalid status"):
            await task_store.update_task(users.bob.id, task.id, {"status": "archived"})
        assert (await task_store.get_task(task.id)).status == TaskStatus.PENDING

    async def test_reassign_to_non_member_rejected(self, task_store, task, users):
        with pytest.raises(ValidationError, match="non-team member"):
            await task_store.update_task(users.alice.id, task.id, {"assigned_to": users.carol.id})
        assert (await task_store.get_task(task.id)).assigned_to == users.bob.id

    async def test_non_member_gets_permission_error_first(self, task_store, task, users):
        with pytest.raises(PermissionDeniedError):
            await task_store.update_task(users.carol.id, task.id, {"status": "archived"})

    async def test_missing_task(self, task_store, users, alpha):
        with pytest.raises(NotFoundError):
            await task_store.update_task(users.alice.id, 999, {"status": "completed"})


# ============================================
# delete_task
# ============================================


class TestDeleteTask:
    """Tests for delete_task."""

    async def test_creator_member_can_delete(self, task_store, alpha, users):
        task = await task_store.create_task(users.bob.id, "Mine", alpha.id)
        await task_store.delete_task(users.bob.id, task.id)
        assert await task_store.get_task(task.id) is None

    async def test_leader_can_delete_others_task(self, task_store, alpha, users):
        task = await task_store.create_task(users.bob.id, "Bob's", alpha.id)
        await task_store.delete_task(users.alice.id, task.id)
        assert await task_store.get_task(task.id) is None

    async def test_non_creator_member_cannot_delete(self, task_store, team_store, alpha, users):
        await team_store.join_team(users.carol.id, alpha.id)
        task = await task_store.create_task(users.bob.id, "Bob's", alpha.id)
        with pytest.raises(PermissionDeniedError, match="creator or team leader"):
            await task_store.delete_task(users.carol.id, task.id)
        assert await task_store.get_task(task.id) is not None

    async def test_outsider_cannot_delete(self, task_store, alpha, users):
        task = await task_store.create_task(users.alice.id, "Alpha only", alpha.id)
        with pytest.raises(PermissionDeniedError):
            await task_store.delete_task(users.carol.id, task.id)

    async def test_missing_task(self, task_store, users):
        with pytest.raises(NotFoundError):
            await task_store.delete_task(users.alice.id, 999)


# ============================================
# Listing and Stats
# ============================================


class TestTaskReads:
    """Tests for task listings and team stats."""

    async def test_list_team_tasks_with_status_filter(self, task_store, alpha, users):
        first = await task_store.create_task(users.alice.id, "First", alpha.id)
        await task_store.create_task(users.alice.id, "Second", alpha.id)
        await task_store.update_task(users.alice.id, first.id, {"status": "completed"})

        all_tasks = await task_store.list_team_tasks(users.bob.id, alpha.id)
        done = await task_store.list_team_tasks(users.bob.id, alpha.id, status="completed")

        assert [t.title for t in all_tasks] == ["Second", "First"]
        assert [t.title for t in done] == ["First"]

    async def test_list_team_tasks_requires_membership(self, task_store, alpha, users):
        with pytest.raises(PermissionDeniedError):
            await task_store.list_team_tasks(users.carol.id, alpha.id)

    async def test_list_team_tasks_bad_status(self, task_store, alpha, users):
        with pytest.raises(ValidationError):
            await task_store.list_team_tasks(users.bob.id, alpha.id, status="archived")

    async def test_list_assigned_tasks(self, task_store, team_store, alpha, users):
        beta = await team_store.create_team(users.bob.id, "Beta")
        await task_store.create_task(users.alice.id, "Alpha work", alpha.id, assigned_to=users.bob.id)
        await task_store.create_task(users.bob.id, "Beta work", beta.id, assigned_to=users.bob.id)
        await task_store.create_task(users.alice.id, "Alice work", alpha.id, assigned_to=users.alice.id)

        tasks = await task_store.list_assigned_tasks(users.bob.id)
        assert {(t.title, t.team_name) for t in tasks} == {
            ("Alpha work", "Alpha"),
            ("Beta work", "Beta"),
        }

    async def test_team_stats(self, task_store, alpha, users):
        today = date(2026, 6, 15)
        await task_store.create_task(users.alice.id, "Late", alpha.id, due_date="2026-06-14")
        await task_store.create_task(users.alice.id, "Due today", alpha.id, due_date="2026-06-15")
        done = await task_store.create_task(users.alice.id, "Late but done", alpha.id, due_date="2026-01-01")
        await task_store.update_task(users.alice.id, done.id, {"status": "completed"})
        doing = await task_store.create_task(users.alice.id, "Doing", alpha.id)
        await task_store.update_task(users.alice.id, doing.id, {"status": "in_progress"})

        stats = await task_store.get_team_stats(users.bob.id, alpha.id, today=today)

        assert stats.total == 4
        assert stats.pending == 2
        assert stats.in_progress == 1
        assert stats.completed == 1
        assert stats.overdue == 1

    async def test_team_stats_requires_membership(self, task_store, alpha, users):
        with pytest.raises(PermissionDeniedError):
            await task_store.get_team_stats(users.carol.id, alpha.id)

    async def test_recent_tasks_and_count(self, task_store, alpha, users):
        for i in range(3):
            await task_store.create_task(users.alice.id, f"Task {i}", alpha.id)
        recent = await task_store.list_recent_tasks(limit=2)
        assert [t.title for t in recent] == ["Task 2", "Task 1"]
        assert await task_store.count_tasks() == 3
