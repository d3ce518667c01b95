"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_member are the mappers.
Service and dependency code never touches SQL directly.

Lifecycle: one UserStore is constructed explicitly in the application
lifespan, stored on app.state, and closed at shutdown. There is no
module-level engine or connection.

Write rules:
  save() writes every mutable column in a single UPDATE statement, so a
  token and its expiry always land (or clear) together. The paired-field
  check and username/email normalization run on every write; full-document
  validation runs unless the caller passes skip_validation=True, which the
  auth flows do for pure token/password bookkeeping saves.

  Concurrent saves for the same user are last-write-wins. Two simultaneous
  refreshes can both succeed, and only the later refresh token survives.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import AVAILABLE_USER_ROLES, DEFAULT_AVATAR_URL, Avatar, ProjectMember, User
from core.errors import ConflictError, NotFoundError, UserValidationError

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("username", String(255), nullable=False, unique=True, index=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("full_name", String(255)),
    Column("avatar_url", String(512), nullable=False, server_default=DEFAULT_AVATAR_URL),
    Column("avatar_local_path", String(512), nullable=False, server_default=""),
    Column("hashed_password", Text, nullable=False),
    Column("is_email_verified", Boolean, nullable=False, server_default="0"),
    Column("refresh_token", String(64)),  # SHA-256 hex of the active refresh token
    Column("email_verification_token", String(64), index=True),
    Column("email_verification_expiry", String(40)),
    Column("forgot_password_token", String(64), index=True),
    Column("forgot_password_expiry", String(40)),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

_project_members = Table(
    "project_members",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(32), nullable=False),
    Column("project_id", String(64), nullable=False),
    Column("role", String(30), nullable=False, server_default="member"),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
    UniqueConstraint("user_id", "project_id", name="uq_project_members_user_project"),
)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_PAIRED_FIELDS = (
    ("email_verification_token", "email_verification_expiry"),
    ("forgot_password_token", "forgot_password_expiry"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind writers."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _normalize(user: User) -> None:
    user.username = (user.username or "").strip().lower()
    user.email = (user.email or "").strip().lower()
    if user.full_name is not None:
        user.full_name = user.full_name.strip()


def _check_pairs(user: User) -> None:
    for token_field, expiry_field in _PAIRED_FIELDS:
        if (getattr(user, token_field) is None) != (getattr(user, expiry_field) is None):
            raise ValueError(f"{token_field} and {expiry_field} must be set or cleared together")


def _validate(user: User) -> None:
    """Full-document validation rules. Skipped on bookkeeping saves."""
    errors: list[dict] = []
    if len(user.username) < 3:
        errors.append({"username": "Username must be at least 3 characters long"})
    if not _EMAIL_RE.match(user.email):
        errors.append({"email": "Email is invalid"})
    if not user.hashed_password:
        errors.append({"password": "Password is required"})
    if errors:
        raise UserValidationError("User record failed validation", errors=errors)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and ProjectMember records.

    Usage:
        store = UserStore("sqlite:///campgate.db")
        user = store.create_user(User(username="alice", email="a@x.com", hashed_password=hash_password("pw")))
        store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a new user and return it with id and timestamps assigned.

        Raises ConflictError if the email or username is already taken. The
        pre-check gives the common case a clean error; the IntegrityError
        translation covers two concurrent registrations racing past it.
        """
        _normalize(user)
        _check_pairs(user)
        _validate(user)
        if self.get_by_email_or_username(user.email, user.username) is not None:
            raise ConflictError("User with email or username already exists")

        now = _now_iso()
        user.id = uuid.uuid4().hex
        user.created_at = now
        user.updated_at = now
        try:
            with self.engine.connect() as conn:
                conn.execute(_users.insert().values(id=user.id, **_user_columns(user), created_at=now))
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError("User with email or username already exists") from exc
        return user

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        return self._fetch_user(_users.c.id == user_id)

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (normalized to lowercase). Returns None if not found."""
        return self._fetch_user(_users.c.email == email.strip().lower())

    def get_by_email_or_username(self, email: str, username: str) -> User | None:
        """Return any user holding either identifier, or None."""
        return self._fetch_user(
            or_(_users.c.email == email.strip().lower(), _users.c.username == username.strip().lower())
        )

    def get_by_email_verification_token(self, hashed_token: str) -> User | None:
        """Look up a user by stored verification digest. Expiry is the caller's check."""
        return self._fetch_user(_users.c.email_verification_token == hashed_token)

    def get_by_forgot_password_token(self, hashed_token: str) -> User | None:
        """Look up a user by stored password-reset digest. Expiry is the caller's check."""
        return self._fetch_user(_users.c.forgot_password_token == hashed_token)

    def save(self, user: User, skip_validation: bool = False) -> User:
        """Persist every mutable field of user in one UPDATE.

        Raises NotFoundError if the row no longer exists, ValueError if a
        token/expiry pair is half set, and UserValidationError if full
        validation runs and fails.
        """
        _normalize(user)
        _check_pairs(user)
        if not skip_validation:
            _validate(user)
        user.updated_at = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_users.update().where(_users.c.id == user.id).values(**_user_columns(user)))
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError("User with email or username already exists") from exc
        if result.rowcount == 0:
            raise NotFoundError("User does not exist")
        return user

    def _fetch_user(self, clause) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(_users).where(clause)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Project membership
    # ------------------------------------------------------------------

    def add_project_member(self, member: ProjectMember) -> ProjectMember:
        """Insert a membership tuple. Raises ConflictError on a duplicate (user, project)."""
        if member.role not in AVAILABLE_USER_ROLES:
            raise ValueError(f"Unknown role: {member.role!r}")
        now = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _project_members.insert().values(
                        user_id=member.user_id,
                        project_id=member.project_id,
                        role=member.role,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError("User is already a member of this project") from exc
        member.id = result.inserted_primary_key[0]
        member.created_at = now
        member.updated_at = now
        return member

    def get_project_member(self, project_id: str, user_id: str) -> ProjectMember | None:
        """Return the membership of user_id in project_id, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_project_members).where(
                    (_project_members.c.project_id == project_id) & (_project_members.c.user_id == user_id)
                )
            ).fetchone()
        return _row_to_member(row) if row is not None else None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _user_columns(user: User) -> dict:
    return {
        "username": user.username,
        "email": user.email,
        "full_name": user.full_name,
        "avatar_url": user.avatar.url,
        "avatar_local_path": user.avatar.local_path,
        "hashed_password": user.hashed_password,
        "is_email_verified": bool(user.is_email_verified),
        "refresh_token": user.refresh_token,
        "email_verification_token": user.email_verification_token,
        "email_verification_expiry": _to_iso(user.email_verification_expiry),
        "forgot_password_token": user.forgot_password_token,
        "forgot_password_expiry": _to_iso(user.forgot_password_expiry),
        "updated_at": user.updated_at,
    }


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        full_name=row.full_name,
        avatar=Avatar(url=row.avatar_url, local_path=row.avatar_local_path),
        hashed_password=row.hashed_password,
        is_email_verified=bool(row.is_email_verified),
        refresh_token=row.refresh_token,
        email_verification_token=row.email_verification_token,
        email_verification_expiry=_from_iso(row.email_verification_expiry),
        forgot_password_token=row.forgot_password_token,
        forgot_password_expiry=_from_iso(row.forgot_password_expiry),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_member(row) -> ProjectMember:
    return ProjectMember(
        id=row.id,
        user_id=row.user_id,
        project_id=row.project_id,
        role=row.role,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
