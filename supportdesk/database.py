"""SQLite-backed identity provider, profile directory and message store."""
from __future__ import annotations

import json
import re
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from passlib.context import CryptContext

from .errors import IdentityCreationError
from .models import Identity, Message, Profile, Role

PASSWORD_MIN_LENGTH = 6

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "supportdesk.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _generate_id() -> str:
    return str(uuid.uuid4())


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def _verify_password(password: str, hashed: str) -> bool:
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


class Database:
    """Simple wrapper around SQLite standing in for the hosted backend.

    The identity, profile and message sections are independent of each other:
    no foreign key ties a profile to its identity, mirroring an identity
    provider and a data store that live in separate systems.
    """

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS identities (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    attributes TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS profiles (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL,
                    role TEXT NOT NULL CHECK (role IN ('admin', 'manager', 'team', 'customer')),
                    manager_id TEXT REFERENCES profiles(id),
                    created_by TEXT REFERENCES profiles(id),
                    created_at TEXT NOT NULL,
                    CHECK ((role = 'team') = (manager_id IS NOT NULL))
                );

                CREATE TABLE IF NOT EXISTS messages (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    sender_id TEXT NOT NULL REFERENCES profiles(id),
                    recipient_id TEXT NOT NULL REFERENCES profiles(id),
                    content TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_profiles_role ON profiles(role);
                CREATE INDEX IF NOT EXISTS idx_profiles_manager_id ON profiles(manager_id);
                CREATE INDEX IF NOT EXISTS idx_messages_pair ON messages(sender_id, recipient_id);
                CREATE INDEX IF NOT EXISTS idx_messages_recipient ON messages(recipient_id);
                """
            )

    # ------------------------------------------------------------------
    # Identity provider
    # ------------------------------------------------------------------
    def create_identity(
        self,
        email: str,
        password: str,
        attributes: Optional[Mapping[str, object]] = None,
    ) -> Identity:
        """Create a login identity. Raises :class:`IdentityCreationError`."""

        normalized_email = _normalize_email(email or "")
        if not _EMAIL_PATTERN.match(normalized_email):
            raise IdentityCreationError("Unable to validate email address: invalid format")
        if not password or len(password) < PASSWORD_MIN_LENGTH:
            raise IdentityCreationError(
                f"Password should be at least {PASSWORD_MIN_LENGTH} characters."
            )

        identity_id = _generate_id()
        created_at = _current_timestamp()
        attribute_data = dict(attributes or {})

        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO identities (id, email, password_hash, attributes, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        identity_id,
                        normalized_email,
                        _hash_password(password),
                        json.dumps(attribute_data),
                        _serialize_datetime(created_at),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise IdentityCreationError(
                "A user with this email address has already been registered"
            ) from exc
        except sqlite3.DatabaseError as exc:
            raise IdentityCreationError(f"Identity store failure: {exc}") from exc

        return Identity(
            id=identity_id,
            email=normalized_email,
            created_at=created_at,
            attributes=attribute_data,
        )

    def get_identity(self, identity_id: str) -> Optional[Identity]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM identities WHERE id = ?",
                (identity_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_identity(row)

    def get_identity_by_email(self, email: str) -> Optional[Identity]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM identities WHERE email = ?",
                (_normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_identity(row)

    def delete_identity(self, identity_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM identities WHERE id = ?", (identity_id,))
            return cursor.rowcount > 0

    def authenticate(self, email: str, password: str) -> Optional[Identity]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM identities WHERE email = ?",
                (_normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        if not _verify_password(password, str(row["password_hash"])):
            return None
        return self._row_to_identity(row)

    # ------------------------------------------------------------------
    # Profile directory
    # ------------------------------------------------------------------
    def insert_profile(
        self,
        profile_id: str,
        *,
        name: str,
        email: str,
        role: Role,
        manager_id: Optional[str],
        created_by: Optional[str],
    ) -> Profile:
        created_at = _current_timestamp()
        with self._connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO profiles (id, name, email, role, manager_id, created_by, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        profile_id,
                        name,
                        _normalize_email(email),
                        role.value,
                        manager_id,
                        created_by,
                        _serialize_datetime(created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError(f"Profile could not be stored: {exc}") from exc

        return Profile(
            id=profile_id,
            name=name,
            email=_normalize_email(email),
            role=role,
            manager_id=manager_id,
            created_by=created_by,
            created_at=created_at,
        )

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM profiles WHERE id = ?",
                (profile_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_profile(row)

    def list_profiles(self, roles: Optional[Iterable[Role]] = None) -> List[Profile]:
        query = "SELECT * FROM profiles"
        params: List[object] = []
        if roles is not None:
            role_values = [Role(role).value for role in roles]
            if not role_values:
                return []
            placeholders = ", ".join("?" for _ in role_values)
            query += f" WHERE role IN ({placeholders})"
            params.extend(role_values)
        query += " ORDER BY name, id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_profile(row) for row in rows]

    def list_team_members(self, manager_id: str) -> List[Profile]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM profiles WHERE role = ? AND manager_id = ? ORDER BY name, id",
                (Role.TEAM.value, manager_id),
            ).fetchall()
        return [self._row_to_profile(row) for row in rows]

    def get_profiles(self, profile_ids: Iterable[str]) -> List[Profile]:
        ids = list(dict.fromkeys(profile_ids))
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM profiles WHERE id IN ({placeholders}) ORDER BY name, id",
                ids,
            ).fetchall()
        return [self._row_to_profile(row) for row in rows]

    # ------------------------------------------------------------------
    # Message store
    # ------------------------------------------------------------------
    def insert_message(self, sender_id: str, recipient_id: str, content: str) -> Message:
        message_id = _generate_id()
        created_at = _current_timestamp()
        with self._connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO messages (id, sender_id, recipient_id, content, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        message_id,
                        sender_id,
                        recipient_id,
                        content,
                        _serialize_datetime(created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError(f"Message could not be stored: {exc}") from exc

        return Message(
            id=message_id,
            sender_id=sender_id,
            recipient_id=recipient_id,
            content=content,
            created_at=created_at,
        )

    def has_message(self, *, sender_id: str, recipient_id: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM messages WHERE sender_id = ? AND recipient_id = ? LIMIT 1",
                (sender_id, recipient_id),
            ).fetchone()
        return row is not None

    def list_conversation(self, user_id: str, other_id: str) -> List[Message]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM messages
                 WHERE (sender_id = ? AND recipient_id = ?)
                    OR (sender_id = ? AND recipient_id = ?)
                 ORDER BY created_at DESC, seq DESC
                """,
                (user_id, other_id, other_id, user_id),
            ).fetchall()
        return [self._row_to_message(row) for row in rows]

    def list_inbox(self, recipient_id: str) -> List[Message]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM messages WHERE recipient_id = ? ORDER BY created_at DESC, seq DESC",
                (recipient_id,),
            ).fetchall()
        return [self._row_to_message(row) for row in rows]

    def list_sender_ids(self, recipient_id: str) -> List[str]:
        """Return the distinct ids of everyone who has messaged ``recipient_id``."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT sender_id FROM messages
                 WHERE recipient_id = ? AND sender_id != ?
                 GROUP BY sender_id
                 ORDER BY MIN(seq)
                """,
                (recipient_id, recipient_id),
            ).fetchall()
        return [str(row["sender_id"]) for row in rows]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_identity(self, row: sqlite3.Row) -> Identity:
        try:
            attributes: Dict[str, object] = json.loads(row["attributes"] or "{}")
        except ValueError:
            attributes = {}
        return Identity(
            id=str(row["id"]),
            email=str(row["email"]),
            created_at=_parse_datetime(str(row["created_at"])),
            attributes=attributes,
        )

    def _row_to_profile(self, row: sqlite3.Row) -> Profile:
        return Profile(
            id=str(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            role=Role(str(row["role"])),
            manager_id=row["manager_id"],
            created_by=row["created_by"],
            created_at=_parse_datetime(str(row["created_at"])),
        )

    def _row_to_message(self, row: sqlite3.Row) -> Message:
        return Message(
            id=str(row["id"]),
            sender_id=str(row["sender_id"]),
            recipient_id=str(row["recipient_id"]),
            content=str(row["content"]),
            created_at=_parse_datetime(str(row["created_at"])),
        )


__all__ = ["Database", "PASSWORD_MIN_LENGTH", "resolve_database_path"]
