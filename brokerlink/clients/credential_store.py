"""SQLite-backed persistence for per-person credentials and health."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import closing, contextmanager
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator, Optional, Sequence

from pydantic import SecretStr

from brokerlink.models.credentials import (
    Credential,
    NewCredential,
    PersonHealth,
    TokenKind,
)

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from brokerlink.services.credential_cipher import CredentialCipher

logger = logging.getLogger(__name__)


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class CredentialStore:
    """Credential rows keyed by (person_name, kind, is_active).

    Token values are encrypted before they reach SQLite. A partial unique
    index guarantees at most one active row per person and kind.
    """

    def __init__(self, db_path: str, cipher: CredentialCipher) -> None:
        self._db_path = Path(db_path)
        self._cipher = cipher
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection whose statements commit together or not at all."""
        with closing(self._connect()) as conn:
            with conn:
                yield conn

    def _ensure_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS credentials (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    person_name TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    token_encrypted TEXT NOT NULL,
                    api_server TEXT,
                    expires_at TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    error_count INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    last_used TEXT,
                    last_successful_use TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS ux_credentials_active
                ON credentials (person_name, kind) WHERE is_active = 1
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS persons (
                    person_name TEXT PRIMARY KEY,
                    has_valid_token INTEGER NOT NULL DEFAULT 0,
                    last_token_refresh TEXT,
                    last_token_error TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    # Reads

    def find_active(self, person_name: str, kind: TokenKind) -> Optional[Credential]:
        """Return the active credential of ``kind`` for a person, if any.

        Access rows without an ``api_server`` are never returned.
        """
        query = "SELECT * FROM credentials WHERE person_name = ? AND kind = ? AND is_active = 1"
        if kind is TokenKind.ACCESS:
            query += " AND api_server IS NOT NULL AND api_server != ''"
        query += " ORDER BY id DESC LIMIT 1"
        with closing(self._connect()) as conn:
            row = conn.execute(query, (person_name, kind.value)).fetchone()
        if not row:
            return None
        return self._row_to_credential(row)

    def count_active(self, person_name: str, kind: TokenKind) -> int:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM credentials "
                "WHERE person_name = ? AND kind = ? AND is_active = 1",
                (person_name, kind.value),
            ).fetchone()
        return int(row["n"])

    def get_person(self, person_name: str) -> Optional[PersonHealth]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT * FROM persons WHERE person_name = ?", (person_name,)
            ).fetchone()
        if not row:
            return None
        return self._row_to_person(row)

    def list_persons(self) -> list[PersonHealth]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT * FROM persons ORDER BY created_at, person_name"
            ).fetchall()
        return [self._row_to_person(row) for row in rows]

    # Writes

    def rotate(
        self,
        person_name: str,
        credentials: Sequence[NewCredential],
        *,
        now: datetime,
        purge_existing: bool = False,
    ) -> None:
        """Replace a person's active credentials with ``credentials`` atomically.

        Old rows are retired (or deleted when ``purge_existing``) in the same
        transaction that inserts the new ones, so a failure at any point
        leaves the previous pair untouched.
        """
        kinds = sorted(credential.kind.value for credential in credentials)
        if kinds != [TokenKind.ACCESS.value, TokenKind.REFRESH.value]:
            raise ValueError("Rotation requires exactly one access and one refresh credential.")
        for credential in credentials:
            if credential.kind is TokenKind.ACCESS and not credential.api_server:
                raise ValueError("Access credential requires an api_server.")

        encrypted = [
            (credential, self._cipher.encrypt(credential.token_value.get_secret_value()))
            for credential in credentials
        ]

        with self._transaction() as conn:
            if purge_existing:
                conn.execute("DELETE FROM credentials WHERE person_name = ?", (person_name,))
            else:
                conn.execute(
                    "UPDATE credentials SET is_active = 0, updated_at = ? "
                    "WHERE person_name = ? AND is_active = 1",
                    (now.isoformat(), person_name),
                )
            for credential, token_encrypted in encrypted:
                self._insert_credential(conn, person_name, credential, token_encrypted, now)
            conn.execute(
                """
                INSERT INTO persons (
                    person_name, has_valid_token, last_token_refresh,
                    last_token_error, is_active, created_at, updated_at
                )
                VALUES (?, 1, ?, NULL, 1, ?, ?)
                ON CONFLICT(person_name) DO UPDATE SET
                    has_valid_token = 1,
                    last_token_refresh = excluded.last_token_refresh,
                    last_token_error = NULL,
                    is_active = CASE WHEN ? THEN 1 ELSE persons.is_active END,
                    updated_at = excluded.updated_at
                """,
                (person_name, now.isoformat(), now.isoformat(), now.isoformat(), purge_existing),
            )

    def _insert_credential(
        self,
        conn: sqlite3.Connection,
        person_name: str,
        credential: NewCredential,
        token_encrypted: str,
        now: datetime,
    ) -> None:
        conn.execute(
            """
            INSERT INTO credentials (
                person_name, kind, token_encrypted, api_server, expires_at,
                is_active, error_count, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, 1, 0, ?, ?)
            """,
            (
                person_name,
                credential.kind.value,
                token_encrypted,
                credential.api_server,
                credential.expires_at.isoformat(),
                now.isoformat(),
                now.isoformat(),
            ),
        )

    def mark_used(self, credential_id: int, *, now: datetime) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE credentials SET last_used = ?, updated_at = ? WHERE id = ?",
                (now.isoformat(), now.isoformat(), credential_id),
            )

    def retire(self, person_name: str, kind: TokenKind, *, now: datetime) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE credentials SET is_active = 0, updated_at = ? "
                "WHERE person_name = ? AND kind = ? AND is_active = 1",
                (now.isoformat(), person_name, kind.value),
            )

    def record_error(self, person_name: str, message: str, *, now: datetime) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE credentials
                SET error_count = error_count + 1, last_error = ?, last_used = ?, updated_at = ?
                WHERE person_name = ? AND kind = ? AND is_active = 1
                """,
                (message, now.isoformat(), now.isoformat(), person_name, TokenKind.REFRESH.value),
            )
            conn.execute(
                "UPDATE persons SET has_valid_token = 0, last_token_error = ?, updated_at = ? "
                "WHERE person_name = ?",
                (message, now.isoformat(), person_name),
            )

    def record_success(self, person_name: str, *, now: datetime) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE credentials
                SET last_successful_use = ?, error_count = 0, last_error = NULL, updated_at = ?
                WHERE person_name = ? AND kind = ? AND is_active = 1
                """,
                (now.isoformat(), now.isoformat(), person_name, TokenKind.REFRESH.value),
            )
            conn.execute(
                "UPDATE persons SET has_valid_token = 1, last_token_error = NULL, updated_at = ? "
                "WHERE person_name = ?",
                (now.isoformat(), person_name),
            )

    def deactivate_person(self, person_name: str, *, now: datetime) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE credentials SET is_active = 0, updated_at = ? WHERE person_name = ?",
                (now.isoformat(), person_name),
            )
            conn.execute(
                "UPDATE persons SET has_valid_token = 0, is_active = 0, updated_at = ? "
                "WHERE person_name = ?",
                (now.isoformat(), person_name),
            )

    def reencrypt_all(self, *, now: datetime) -> int:
        """Re-encrypt every active row under the cipher's current secret."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT id, token_encrypted FROM credentials WHERE is_active = 1"
            ).fetchall()
            for row in rows:
                conn.execute(
                    "UPDATE credentials SET token_encrypted = ?, updated_at = ? WHERE id = ?",
                    (self._cipher.rotate(row["token_encrypted"]), now.isoformat(), row["id"]),
                )
        logger.info("Re-encrypted %d active credentials", len(rows))
        return len(rows)

    # Row mapping

    def _row_to_credential(self, row: sqlite3.Row) -> Credential:
        data: dict[str, Any] = dict(row)
        return Credential(
            id=data["id"],
            person_name=data["person_name"],
            kind=TokenKind(data["kind"]),
            token_value=SecretStr(self._cipher.decrypt(data["token_encrypted"])),
            api_server=data["api_server"],
            expires_at=_from_iso(data["expires_at"]),
            is_active=bool(data["is_active"]),
            error_count=data["error_count"],
            last_error=data["last_error"],
            last_used=_from_iso(data["last_used"]),
            last_successful_use=_from_iso(data["last_successful_use"]),
            created_at=_from_iso(data["created_at"]),
            updated_at=_from_iso(data["updated_at"]),
        )

    @staticmethod
    def _row_to_person(row: sqlite3.Row) -> PersonHealth:
        return PersonHealth(
            person_name=row["person_name"],
            has_valid_token=bool(row["has_valid_token"]),
            last_token_refresh=_from_iso(row["last_token_refresh"]),
            last_token_error=row["last_token_error"],
            is_active=bool(row["is_active"]),
            created_at=_from_iso(row["created_at"]),
            updated_at=_from_iso(row["updated_at"]),
        )


__all__ = ["CredentialStore"]
