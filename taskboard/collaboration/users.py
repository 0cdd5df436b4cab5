"""User accounts for Taskboard.

This module provides user account management:
- Registration with unique, case-insensitive email
- Password hashing and verification
- Profile lookup and update
"""

import hashlib
import re
import secrets
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Optional

import structlog

from taskboard.core.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from taskboard.persistence.database import Database

log = structlog.get_logger()

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def hash_password(password: str, salt: Optional[str] = None) -> tuple[str, str]:
    """Hash a password with salt.

    Args:
        password: Plain text password
        salt: Optional salt (generated if not provided)

    Returns:
        Tuple of (hashed_password, salt)
    """
    if salt is None:
        salt = secrets.token_hex(16)
    hashed = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), 100000)
    return hashed.hex(), salt


def verify_password(password: str, hashed: str, salt: str) -> bool:
    """Verify a password against its hash."""
    computed, _ = hash_password(password, salt)
    return secrets.compare_digest(computed, hashed)


def normalize_email(email: Optional[str]) -> str:
    """Lower-case and validate an email address.

    Raises:
        ValidationError: If the address is missing or malformed
    """
    email = (email or "").strip().lower()
    if not email:
        raise ValidationError("Email is required")
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Please provide a valid email address")
    return email


@dataclass
class User:
    """A user account.

    Attributes:
        id: Unique user identifier
        email: Login email, stored lower-cased
        name: Display name
        password_hash: Hashed password
        password_salt: Salt for password hashing
        created_at: Account creation time
    """

    id: int
    email: str
    name: str
    password_hash: str = ""
    password_salt: str = ""
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization (never includes credentials)."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "created_at": self.created_at.isoformat(),
        }

    def check_password(self, password: str) -> bool:
        if not self.password_hash or not self.password_salt:
            return False
        return verify_password(password, self.password_hash, self.password_salt)


class UserStore:
    """Persistent storage for user accounts."""

    def __init__(self, database: Optional["Database"] = None, min_password_length: int = 6):
        """Initialize the user store.

        Args:
            database: Database instance (creates default if not provided)
            min_password_length: Shortest accepted password on registration
        """
        from taskboard.persistence.database import Database

        self.db = database or Database()
        self.min_password_length = min_password_length

    async def create_user(self, name: str, email: str, password: str) -> User:
        """Create a new user account.

        Args:
            name: Display name
            email: Login email (case-insensitive, unique)
            password: Plain text password

        Returns:
            Created User object

        Raises:
            ValidationError: If a field is missing or malformed
            ConflictError: If the email is already registered
        """
        await self.db.initialize()

        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required")
        email = normalize_email(email)
        if not password:
            raise ValidationError("Password is required")
        if len(password) < self.min_password_length:
            raise ValidationError(
                f"Password must be at least {self.min_password_length} characters long"
            )

        password_hash, password_salt = hash_password(password)
        created_at = datetime.now()

        try:
            async with self.db.transaction() as conn:
                cursor = await conn.execute(
                    """
                    INSERT INTO users (email, name, password_hash, password_salt, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (email, name, password_hash, password_salt, created_at.isoformat()),
                )
                user_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise ConflictError("User with this email already exists", original=e) from e

        log.info("user_created", user_id=user_id, email=email)
        return User(
            id=user_id,
            email=email,
            name=name,
            password_hash=password_hash,
            password_salt=password_salt,
            created_at=created_at,
        )

    async def get_user(self, user_id: int) -> Optional[User]:
        """Get a user by ID, or None if absent."""
        await self.db.initialize()

        async with self.db.connect() as conn:
            cursor = await conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            row = await cursor.fetchone()

        return self._row_to_user(row) if row else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Get a user by email, or None if absent."""
        await self.db.initialize()

        async with self.db.connect() as conn:
            cursor = await conn.execute(
                "SELECT * FROM users WHERE email = ?",
                ((email or "").strip().lower(),),
            )
            row = await cursor.fetchone()

        return self._row_to_user(row) if row else None

    async def authenticate(self, email: str, password: str) -> User:
        """Authenticate a user by email and password.

        Raises:
            ValidationError: If either credential is missing
            AuthenticationError: If the credentials do not match
        """
        if not email or not password:
            raise ValidationError("Email and password are required")

        user = await self.get_user_by_email(email)
        if not user or not user.check_password(password):
            log.warning("login_failed", email=email.strip().lower())
            raise AuthenticationError("Invalid email or password")

        log.info("login_success", user_id=user.id)
        return user

    async def update_profile(
        self,
        user_id: int,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> User:
        """Update profile fields that were provided.

        Raises:
            ValidationError: If a provided field is empty or malformed
            NotFoundError: If the user does not exist
            ConflictError: If the new email belongs to another account
        """
        await self.db.initialize()

        updates = []
        params: list = []

        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("Name cannot be empty")
            updates.append("name = ?")
            params.append(name)

        if email is not None:
            updates.append("email = ?")
            params.append(normalize_email(email))

        if not updates:
            raise ValidationError("No valid fields to update")

        params.append(user_id)

        try:
            async with self.db.transaction() as conn:
                cursor = await conn.execute(
                    f"UPDATE users SET {', '.join(updates)} WHERE id = ?",
                    params,
                )
                if cursor.rowcount == 0:
                    raise NotFoundError("User not found")
        except sqlite3.IntegrityError as e:
            raise ConflictError("Email is already in use", original=e) from e

        log.info("user_updated", user_id=user_id)
        user = await self.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def _row_to_user(self, row) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            password_hash=row["password_hash"] or "",
            password_salt=row["password_salt"] or "",
            created_at=datetime.fromisoformat(row["created_at"]),
        )
