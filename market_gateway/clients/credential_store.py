"""SQLite-backed storage for OAuth clients, delegated tokens and auth sessions."""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterator, Optional

from market_gateway.models.oauth import AuthSession, DelegatedToken, OAuthClient

if TYPE_CHECKING:
    from market_gateway.services.token_cipher import TokenCipher

logger = logging.getLogger(__name__)

SESSION_TTL_SECONDS = 600

_SCHEMA = """
CREATE TABLE IF NOT EXISTS oauth_clients (
    client_id TEXT PRIMARY KEY,
    client_secret TEXT,
    client_id_issued_at INTEGER,
    client_secret_expires_at INTEGER,
    redirect_uris TEXT NOT NULL,
    client_name TEXT,
    grant_types TEXT NOT NULL DEFAULT 'authorization_code,refresh_token',
    response_types TEXT NOT NULL DEFAULT 'code',
    token_endpoint_auth_method TEXT NOT NULL DEFAULT 'client_secret_post',
    scope TEXT,
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS oauth_tokens (
    client_id TEXT PRIMARY KEY,
    access_token TEXT NOT NULL UNIQUE,
    refresh_token TEXT,
    expires_at INTEGER NOT NULL,
    scopes TEXT NOT NULL DEFAULT '',
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS oauth_auth_sessions (
    state TEXT PRIMARY KEY,
    client_id TEXT NOT NULL,
    redirect_uri TEXT NOT NULL,
    client_state TEXT,
    code_challenge TEXT NOT NULL,
    scopes TEXT NOT NULL DEFAULT '',
    created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_oauth_auth_sessions_created
    ON oauth_auth_sessions(created_at);
"""


class CredentialStore:
    """Durable OAuth delegation state.

    Every public method runs in its own transaction; methods that issue more
    than one statement (``upsert_token``, ``pop_session``) are atomic.
    Refresh tokens are encrypted at rest when a cipher is supplied; one that no
    longer decrypts is read back as ``None``.
    """

    def __init__(
        self,
        db_path: str,
        *,
        cipher: TokenCipher | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._cipher = cipher
        self._clock = clock
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False, timeout=5.0)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(_SCHEMA)
        finally:
            conn.close()

    # Clients

    def insert_client(self, client: OAuthClient) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO oauth_clients (
                    client_id, client_secret, client_id_issued_at,
                    client_secret_expires_at, redirect_uris, client_name,
                    grant_types, response_types, token_endpoint_auth_method,
                    scope, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    client.client_id,
                    client.client_secret,
                    client.client_id_issued_at,
                    client.client_secret_expires_at,
                    json.dumps(client.redirect_uris),
                    client.client_name,
                    ",".join(client.grant_types),
                    ",".join(client.response_types),
                    client.token_endpoint_auth_method,
                    client.scope,
                    self._clock(),
                ),
            )

    def get_client(self, client_id: str) -> Optional[OAuthClient]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM oauth_clients WHERE client_id = ?", (client_id,)
            ).fetchone()
        if not row:
            return None
        return OAuthClient(
            client_id=row["client_id"],
            client_secret=row["client_secret"],
            client_id_issued_at=row["client_id_issued_at"],
            client_secret_expires_at=row["client_secret_expires_at"],
            redirect_uris=json.loads(row["redirect_uris"]),
            client_name=row["client_name"],
            grant_types=[g for g in row["grant_types"].split(",") if g],
            response_types=[r for r in row["response_types"].split(",") if r],
            token_endpoint_auth_method=row["token_endpoint_auth_method"],
            scope=row["scope"],
        )

    # Delegated tokens

    def upsert_token(self, token: DelegatedToken) -> None:
        """Replace whatever token ``token.client_id`` held with ``token``."""
        refresh_token = token.refresh_token
        if refresh_token and self._cipher:
            refresh_token = self._cipher.encrypt(refresh_token)
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM oauth_tokens WHERE client_id = ? OR access_token = ?",
                (token.client_id, token.access_token),
            )
            conn.execute(
                """
                INSERT INTO oauth_tokens (
                    client_id, access_token, refresh_token, expires_at, scopes, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    token.client_id,
                    token.access_token,
                    refresh_token,
                    token.expires_at,
                    " ".join(token.scopes),
                    self._clock(),
                ),
            )

    def _row_to_token(self, row: sqlite3.Row) -> DelegatedToken:
        refresh_token = row["refresh_token"]
        if refresh_token and self._cipher:
            refresh_token = self._cipher.decrypt_or_none(refresh_token)
        return DelegatedToken(
            client_id=row["client_id"],
            access_token=row["access_token"],
            refresh_token=refresh_token,
            expires_at=row["expires_at"],
            scopes=row["scopes"].split(),
        )

    def get_token_by_access_token(self, access_token: str) -> Optional[DelegatedToken]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM oauth_tokens WHERE access_token = ?", (access_token,)
            ).fetchone()
        return self._row_to_token(row) if row else None

    def get_token_by_client_id(self, client_id: str) -> Optional[DelegatedToken]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM oauth_tokens WHERE client_id = ?", (client_id,)
            ).fetchone()
        return self._row_to_token(row) if row else None

    def delete_token_by_access_token(self, access_token: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM oauth_tokens WHERE access_token = ?", (access_token,)
            )
        return cursor.rowcount > 0

    def count_tokens(self, client_id: str) -> int:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM oauth_tokens WHERE client_id = ?", (client_id,)
            ).fetchone()
        return int(row[0])

    # Authorization sessions

    def insert_session(self, session: AuthSession) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO oauth_auth_sessions (
                    state, client_id, redirect_uri, client_state,
                    code_challenge, scopes, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.state,
                    session.client_id,
                    session.redirect_uri,
                    session.client_state,
                    session.code_challenge,
                    " ".join(session.scopes),
                    session.created_at,
                ),
            )

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> AuthSession:
        return AuthSession(
            state=row["state"],
            client_id=row["client_id"],
            redirect_uri=row["redirect_uri"],
            client_state=row["client_state"],
            code_challenge=row["code_challenge"],
            scopes=row["scopes"].split(),
            created_at=row["created_at"],
        )

    def get_session(self, state: str) -> Optional[AuthSession]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM oauth_auth_sessions WHERE state = ?", (state,)
            ).fetchone()
        return self._row_to_session(row) if row else None

    def delete_session(self, state: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM oauth_auth_sessions WHERE state = ?", (state,))

    def pop_session(self, state: str) -> Optional[AuthSession]:
        """Fetch and delete the session for ``state`` in one transaction."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM oauth_auth_sessions WHERE state = ?", (state,)
            ).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM oauth_auth_sessions WHERE state = ?", (state,))
        return self._row_to_session(row)

    def sweep_expired_sessions(self, ttl_seconds: int = SESSION_TTL_SECONDS) -> int:
        """Delete sessions created more than ``ttl_seconds`` ago."""
        cutoff = self._clock() - ttl_seconds
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM oauth_auth_sessions WHERE created_at < ?", (cutoff,)
            )
        if cursor.rowcount:
            logger.info("Swept %d expired authorization sessions", cursor.rowcount)
        return cursor.rowcount


__all__ = ["CredentialStore", "SESSION_TTL_SECONDS"]
