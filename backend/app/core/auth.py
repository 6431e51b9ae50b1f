"""User provisioning and bearer sessions.

Accounts are created with the starting credit grant already on the row, so the
grant happens exactly once and never as a ledger entry.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from ..db.models import DbSession, DbUser
from .config import settings
from .database import Database

logger = logging.getLogger(__name__)


@dataclass
class User:
    """Represents an authenticated user profile."""

    id: str
    email: str
    name: str
    provider: str  # "local" or "oauth"
    credits: int = 0
    password_hash: str | None = None
    oauth_sub: str | None = None
    created_at: str | None = None


class UserStore:
    def __init__(self, db: Database | None = None) -> None:
        self.db = db or Database()

    def register_local_user(self, email: str, password: str, name: str) -> User:
        email = email.strip().lower()
        if not email:
            raise ValueError("Email is required")
        _validate_email(email)
        if not password:
            raise ValueError("Password is required")
        _validate_password_strength(password)
        if self.get_user_by_email(email):
            raise ValueError("User already exists")

        user = User(
            id=secrets.token_hex(8),
            email=email,
            name=name.strip() or email.split("@")[0],
            provider="local",
            credits=settings.starting_credits,
            password_hash=_hash_password(password),
            created_at=_utc_iso(),
        )
        try:
            with self.db.session() as session:
                session.add(_db_user_from(user))
        except IntegrityError as exc:
            raise ValueError("User already exists") from exc

        logger.info("User registered", extra={"data": {"user_id": user.id, "credits": user.credits}})
        return user

    def upsert_oauth_user(self, email: str, name: str, sub: str) -> tuple[User, bool]:
        """Create or refresh an identity-provider account.

        Returns ``(user, created)``. Only creation grants starting credits; a
        repeat sign-in updates profile fields and leaves the balance alone.
        """
        email = email.strip().lower()
        _validate_email(email)
        display_name = name.strip() or email.split("@")[0]
        try:
            with self.db.session() as session:
                existing = session.scalar(select(DbUser).where(DbUser.email == email).limit(1))
                if existing:
                    existing.name = display_name
                    existing.oauth_sub = sub
                    session.flush()
                    return _user_from_db(existing), False

                user = User(
                    id=secrets.token_hex(8),
                    email=email,
                    name=display_name,
                    provider="oauth",
                    credits=settings.starting_credits,
                    oauth_sub=sub,
                    created_at=_utc_iso(),
                )
                session.add(_db_user_from(user))
        except IntegrityError:
            # Lost a race with a concurrent first sign-in for the same email.
            existing_user = self.get_user_by_email(email)
            if existing_user is None:
                raise
            return existing_user, False

        logger.info("OAuth user provisioned", extra={"data": {"user_id": user.id, "credits": user.credits}})
        return user, True

    def authenticate_local(self, email: str, password: str) -> Optional[User]:
        user = self.get_user_by_email(email)

        # Always run a verification so response timing does not reveal unknown emails.
        target_hash = user.password_hash if (user and user.password_hash) else _DUMMY_HASH
        is_valid = _verify_password(password, target_hash)

        if user and user.password_hash and is_valid:
            return user
        return None

    def get_user(self, user_id: str) -> Optional[User]:
        with self.db.session() as session:
            user = session.get(DbUser, user_id)
            return _user_from_db(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        email = email.strip().lower()
        with self.db.session() as session:
            user = session.scalar(select(DbUser).where(DbUser.email == email).limit(1))
            return _user_from_db(user) if user else None


class SessionStore:
    """Persistent bearer tokens; only a hash of each token is stored."""

    SESSION_TTL_SECONDS = 60 * 60 * 24 * 30  # 30 days

    def __init__(self, db: Database | None = None) -> None:
        self.db = db or Database()

    def issue_session(self, user: User, user_agent: str | None = None) -> str:
        token = secrets.token_urlsafe(32)
        now = int(time.time())
        with self.db.session() as session:
            session.add(
                DbSession(
                    token_hash=_hash_token(token),
                    user_id=user.id,
                    created_at=now,
                    expires_at=now + self.SESSION_TTL_SECONDS,
                    user_agent=user_agent,
                )
            )
        return token

    def authenticate(self, token: str) -> Optional[User]:
        if not token:
            return None
        now = int(time.time())
        with self.db.session() as session:
            stmt = (
                select(DbUser)
                .join(DbSession, DbSession.user_id == DbUser.id)
                .where(DbSession.token_hash == _hash_token(token), DbSession.expires_at > now)
                .limit(1)
            )
            user = session.scalar(stmt)
            return _user_from_db(user) if user else None

    def revoke(self, token: str) -> None:
        with self.db.session() as session:
            session.execute(delete(DbSession).where(DbSession.token_hash == _hash_token(token)))


def _user_from_db(user: DbUser) -> User:
    return User(
        id=user.id,
        email=user.email or "",
        name=user.name or user.email or "User",
        provider=user.provider or "local",
        credits=int(user.credits or 0),
        password_hash=user.password_hash,
        oauth_sub=user.oauth_sub,
        created_at=user.created_at,
    )


def _db_user_from(user: User) -> DbUser:
    return DbUser(
        id=user.id,
        email=user.email,
        name=user.name,
        provider=user.provider,
        password_hash=user.password_hash,
        oauth_sub=user.oauth_sub,
        created_at=user.created_at,
        credits=user.credits,
    )


def _hash_password(password: str, salt: str | None = None) -> str:
    salt_bytes = bytes.fromhex(salt) if salt else secrets.token_bytes(16)
    params = {
        "n": 2 ** 14,
        "r": 8,
        "p": 1,
        "dklen": 64,
    }
    digest = hashlib.scrypt(password.encode("utf-8"), salt=salt_bytes, **params)
    return "scrypt${n}${r}${p}${salt}${digest}".format(
        salt=salt_bytes.hex(),
        digest=digest.hex(),
        **params,
    )


_DUMMY_HASH = _hash_password("dummy_password")


def _hash_token(token: str) -> str:
    return hashlib.sha256(f"session:{token}".encode("utf-8")).hexdigest()


def _verify_password(password: str, encoded: str) -> bool:
    if not encoded.startswith("scrypt$"):
        return False
    try:
        _, n, r, p, salt_hex, stored = encoded.split("$", 5)
        expected = bytes.fromhex(stored)
        derived = hashlib.scrypt(
            password.encode("utf-8"),
            salt=bytes.fromhex(salt_hex),
            n=int(n),
            r=int(r),
            p=int(p),
            dklen=len(expected),
        )
    except ValueError as exc:
        logger.warning("Scrypt verification failed", extra={"data": {"error": str(exc)}})
        return False
    return hmac.compare_digest(derived, expected)


def _validate_password_strength(password: str) -> None:
    """Enforce a minimum password policy for interactive accounts."""
    if len(password) < 12:
        raise ValueError("Password must be at least 12 characters long")
    has_letter = any(ch.isalpha() for ch in password)
    has_digit = any(ch.isdigit() for ch in password)
    if not (has_letter and has_digit):
        raise ValueError("Password must include both letters and numbers")


def _validate_email(email: str) -> None:
    pattern = r"^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$"
    if not re.match(pattern, email):
        raise ValueError("Invalid email format")


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
