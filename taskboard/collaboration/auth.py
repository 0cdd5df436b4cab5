"""Bearer tokens for the Taskboard API.

Tokens are opaque random strings handed to the client once. Only their
SHA-256 hash is stored, together with the owning user and an expiry.
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional

import structlog

from taskboard.core.errors import AuthenticationError

if TYPE_CHECKING:
    from taskboard.persistence.database import Database

log = structlog.get_logger()

TOKEN_PREFIX = "tb_"


def generate_token() -> str:
    """Generate a new bearer token (32 bytes of entropy)."""
    return f"{TOKEN_PREFIX}{secrets.token_urlsafe(32)}"


def hash_token(token: str) -> str:
    """Hash a token for storage.

    SHA-256 is enough here: tokens are already high-entropy.
    """
    return hashlib.sha256(token.encode()).hexdigest()


@dataclass
class AuthToken:
    """An issued bearer token. ``token`` is only set right after issuing."""

    user_id: int
    token_hash: str
    created_at: datetime
    expires_at: datetime
    token: Optional[str] = None

    @property
    def is_expired(self) -> bool:
        return datetime.now() >= self.expires_at


class TokenStore:
    """Issues, resolves and revokes bearer tokens."""

    def __init__(self, database: Optional["Database"] = None, ttl_hours: int = 24 * 7):
        from taskboard.persistence.database import Database

        self.db = database or Database()
        self.ttl = timedelta(hours=ttl_hours)

    async def issue(self, user_id: int) -> AuthToken:
        """Issue a fresh token for a user.

        Args:
            user_id: Owner of the token

        Returns:
            AuthToken with the plain ``token`` populated
        """
        await self.db.initialize()

        token = generate_token()
        created_at = datetime.now()
        auth_token = AuthToken(
            user_id=user_id,
            token_hash=hash_token(token),
            created_at=created_at,
            expires_at=created_at + self.ttl,
            token=token,
        )

        async with self.db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO auth_tokens (token_hash, user_id, created_at, expires_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    auth_token.token_hash,
                    user_id,
                    auth_token.created_at.isoformat(),
                    auth_token.expires_at.isoformat(),
                ),
            )

        log.info("token_issued", user_id=user_id)
        return auth_token

    async def resolve(self, token: Optional[str]) -> int:
        """Resolve a bearer token to its user id.

        Raises:
            AuthenticationError: If the token is missing, unknown or expired
        """
        if not token:
            raise AuthenticationError("Access token required")

        await self.db.initialize()

        async with self.db.connect() as conn:
            cursor = await conn.execute(
                """
                SELECT t.user_id, t.created_at, t.expires_at
                FROM auth_tokens t
                JOIN users u ON u.id = t.user_id
                WHERE t.token_hash = ?
                """,
                (hash_token(token),),
            )
            row = await cursor.fetchone()

        if not row:
            log.warning("token_not_found", token_prefix=token[:8])
            raise AuthenticationError("Invalid token")

        auth_token = AuthToken(
            user_id=row["user_id"],
            token_hash=hash_token(token),
            created_at=datetime.fromisoformat(row["created_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
        )
        if auth_token.is_expired:
            log.warning("token_expired", user_id=auth_token.user_id)
            raise AuthenticationError("Token expired")

        return auth_token.user_id

    async def revoke(self, token: str) -> bool:
        """Revoke a token. Returns True if it existed."""
        await self.db.initialize()

        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM auth_tokens WHERE token_hash = ?",
                (hash_token(token),),
            )
            revoked = cursor.rowcount > 0

        if revoked:
            log.info("token_revoked")
        return revoked

    async def cleanup_expired(self) -> int:
        """Delete expired tokens and return how many were removed."""
        await self.db.initialize()

        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM auth_tokens WHERE expires_at <= ?",
                (datetime.now().isoformat(),),
            )
            removed = cursor.rowcount

        if removed:
            log.info("expired_tokens_removed", count=removed)
        return removed
