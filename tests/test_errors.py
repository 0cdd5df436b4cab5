"""Tests for error classification."""

import sqlite3

import pytest

from taskboard.core.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    TaskboardError,
    UnexpectedError,
    ValidationError,
    classify_error,
)


@pytest.mark.parametrize(
    "error_class,status",
    [
        (ValidationError, 400),
        (AuthenticationError, 401),
        (PermissionDeniedError, 403),
        (NotFoundError, 404),
        (ConflictError, 409),
        (UnexpectedError, 500),
    ],
)
def test_status_codes(error_class, status):
    error = error_class("boom")
    assert isinstance(error, TaskboardError)
    assert error.status_code == status
    assert error.to_dict() == {"success": False, "message": "boom"}


def test_permission_error_does_not_shadow_builtin():
    assert not issubclass(PermissionDeniedError, PermissionError)


def test_classified_errors_pass_through():
    error = NotFoundError("Team not found")
    assert classify_error(error) is error


def test_unique_violation_is_conflict():
    original = sqlite3.IntegrityError("UNIQUE constraint failed: users.email")
    error = classify_error(original)
    assert isinstance(error, ConflictError)
    assert error.original_exception is original


def test_foreign_key_violation_is_validation():
    error = classify_error(sqlite3.IntegrityError("FOREIGN KEY constraint failed"))
    assert isinstance(error, ValidationError)


def test_anything_else_is_unexpected():
    error = classify_error(RuntimeError("disk on fire"), context="GET /api/teams")
    assert isinstance(error, UnexpectedError)
    assert error.status_code == 500
    assert error.message == "disk on fire"
