"""SQLite-backed persistence for accounts, reset keys and settings options."""
from __future__ import annotations

import json
import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

from passlib.context import CryptContext

from .models import Account


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "usernotify.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


_key_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def _hash_activation_key(key: str) -> str:
    return _key_context.hash(key)


def _verify_activation_key(key: str, hashed: str) -> bool:
    try:
        return _key_context.verify(key, hashed)
    except ValueError:
        return False


class Database:
    """Simple wrapper around SQLite for persisting accounts and options."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    login TEXT NOT NULL UNIQUE,
                    email TEXT NOT NULL UNIQUE,
                    first_name TEXT NOT NULL DEFAULT '',
                    locale TEXT NOT NULL DEFAULT '',
                    activation_key TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS options (
                    name TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

    # ------------------------------------------------------------------
    # Account management
    # ------------------------------------------------------------------
    def create_user(
        self,
        login: str,
        email: str,
        *,
        first_name: str = "",
        locale: str = "",
    ) -> Account:
        """Create a new account and return it."""

        normalized_login = login.strip()
        if not normalized_login:
            raise ValueError("Login must not be empty")
        normalized_email = email.strip().lower()
        if not normalized_email:
            raise ValueError("Email must not be empty")

        created_at = _current_timestamp()
        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (login, email, first_name, locale, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        normalized_login,
                        normalized_email,
                        first_name.strip(),
                        locale.strip(),
                        _serialize_datetime(created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("A user with that login or email already exists") from exc

            user_id = cursor.lastrowid

        return Account(
            id=user_id,
            login=normalized_login,
            email=normalized_email,
            first_name=first_name.strip(),
            locale=locale.strip(),
            created_at=created_at,
        )

    def get_user(self, user_id: int) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_account(row)

    def get_user_by_login(self, login: str) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE login = ?",
                (login.strip(),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_account(row)

    def list_users(self) -> List[Account]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [self._row_to_account(row) for row in rows]

    # ------------------------------------------------------------------
    # Password reset keys
    # ------------------------------------------------------------------
    def store_activation_key(self, login: str, key: str) -> str:
        """Persist ``<timestamp>:<hash>`` of ``key`` for the account and return it."""

        hashed = f"{int(time.time())}:{_hash_activation_key(key)}"
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE users SET activation_key = ? WHERE login = ?",
                (hashed, login),
            )
            if cursor.rowcount == 0:
                raise ValueError(f"User '{login}' not found")
        return hashed

    def verify_activation_key(self, login: str, key: str) -> bool:
        """Return ``True`` if ``key`` matches the stored reset key for ``login``."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT activation_key FROM users WHERE login = ?",
                (login,),
            ).fetchone()

        if row is None:
            return False

        stored = str(row["activation_key"] or "")
        if ":" not in stored:
            return False
        _, hashed = stored.split(":", 1)
        return _verify_activation_key(key, hashed)

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------
    def get_option(self, name: str, default: Any = None) -> Any:
        """Return the decoded value stored under ``name``."""

        with self._connect() as conn:
            row = conn.execute("SELECT value FROM options WHERE name = ?", (name,)).fetchone()
        if row is None:
            return default
        return json.loads(row["value"])

    def update_option(self, name: str, value: Any) -> None:
        encoded = json.dumps(value, sort_keys=True)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO options (name, value) VALUES (?, ?)
                ON CONFLICT(name) DO UPDATE SET value = excluded.value
                """,
                (name, encoded),
            )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_account(self, row: sqlite3.Row) -> Account:
        return Account(
            id=int(row["id"]),
            login=str(row["login"]),
            email=str(row["email"]),
            first_name=str(row["first_name"] or ""),
            locale=str(row["locale"] or ""),
            created_at=_parse_datetime(str(row["created_at"])),
        )


__all__ = ["Database", "resolve_database_path"]
