"""
client/session.py -- Durable, per-domain credential sessions for the Townzy client.

Three pieces:
  LocalStorage    -- SQLite-backed key/value file. Every operation runs under
                     one re-entrant lock; write_many() replaces all keys under
                     a prefix in a single transaction (all-or-nothing).
  SessionStore    -- one principal domain's session: token, optional refresh
                     token, display identity and expiry. Keys are namespaced
                     "<domain>." so a customer session and a merchant session
                     never touch each other's keys.
  SessionManager  -- owns the storage and lazily creates each domain's store
                     exactly once. Pass it to whatever needs a session; there
                     is no module-level session state.

Expiry is derived from the token's own exp claim with
auth.tokens.peek_expiry(), which does NOT verify the signature. It is only
used to stop sending a credential the server is going to reject anyway. A
token without an exp claim is treated as never expiring.

refresh_token is stored when a response carries one but nothing uses it:
the server has no refresh flow.

Usage:
    sessions = SessionManager(Path("~/.townzy/session.db").expanduser())
    sessions.customer.store(login_response_json)
    if sessions.customer.is_valid():
        headers = {"Authorization": f"Bearer {sessions.customer.token}"}
    sessions.close()
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from auth.tokens import peek_expiry

logger = logging.getLogger("townzy.client.session")

DEFAULT_SESSION_FILE = Path.home() / ".townzy" / "session.db"

# domain -> key under which the login response carries the principal's identity
DOMAINS: dict[str, str] = {
    "customer": "user",
    "merchant": "merchant",
}

_DDL = """
CREATE TABLE IF NOT EXISTS session_kv (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL
);
"""


class LocalStorage:
    """Thread-safe key/value storage in a single SQLite file."""

    def __init__(self, path: Path | str) -> None:
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            row = self._conn.execute("SELECT value FROM session_kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row is not None else None

    def read_prefix(self, prefix: str) -> dict[str, str]:
        """Return every key under prefix, with the prefix stripped."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT key, value FROM session_kv WHERE substr(key, 1, ?) = ?",
                (len(prefix), prefix),
            ).fetchall()
        return {key[len(prefix) :]: value for key, value in rows}

    def write_many(self, prefix: str, values: dict[str, str]) -> None:
        """Replace every key under prefix with values, in one transaction.

        Either all of values is visible afterwards or none of it is; the
        previous contents of the prefix are gone only if the write succeeded.
        """
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM session_kv WHERE substr(key, 1, ?) = ?", (len(prefix), prefix))
            self._conn.executemany(
                "INSERT INTO session_kv (key, value) VALUES (?, ?)",
                [(prefix + key, value) for key, value in values.items()],
            )

    def delete_prefix(self, prefix: str) -> int:
        """Delete every key under prefix. Returns number of rows removed."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "DELETE FROM session_kv WHERE substr(key, 1, ?) = ?", (len(prefix), prefix)
            )
        return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class SessionStore:
    """Credential session for one principal domain ("customer" or "merchant")."""

    def __init__(self, domain: str, storage: LocalStorage, identity_key: str) -> None:
        self.domain = domain
        self.identity_key = identity_key
        self._storage = storage
        self._prefix = f"{domain}."
        self._lock = threading.RLock()
        self._loaded = False
        self._token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.identity: dict[str, Any] = {}
        self.expires_at: Optional[datetime] = None

    def load(self) -> None:
        """Rehydrate memory from storage. Runs once; later calls are no-ops."""
        with self._lock:
            if self._loaded:
                return
            data = self._storage.read_prefix(self._prefix)
            self._token = json.loads(data["token"]) if "token" in data else None
            self.refresh_token = json.loads(data["refresh_token"]) if "refresh_token" in data else None
            self.identity = json.loads(data["identity"]) if "identity" in data else {}
            expires_at = json.loads(data["expires_at"]) if "expires_at" in data else None
            self.expires_at = datetime.fromisoformat(expires_at) if expires_at else None
            self._loaded = True

    def store(self, issuance: dict[str, Any]) -> bool:
        """Persist a register/login response. Returns False when it carries no token.

        token, expiry, identity and the optional refresh token are written in
        one transaction; memory is only updated after the write succeeded.
        """
        token = issuance.get("token")
        if not isinstance(token, str) or not token:
            return False
        identity = issuance.get(self.identity_key)
        if not isinstance(identity, dict):
            identity = {}
        refresh_token = issuance.get("refresh_token")
        expires_at = peek_expiry(token)

        values = {
            "token": json.dumps(token),
            "identity": json.dumps(identity),
            "expires_at": json.dumps(expires_at.isoformat() if expires_at else None),
        }
        if isinstance(refresh_token, str) and refresh_token:
            values["refresh_token"] = json.dumps(refresh_token)

        with self._lock:
            self._storage.write_many(self._prefix, values)
            self._token = token
            self.identity = identity
            self.expires_at = expires_at
            self.refresh_token = refresh_token if "refresh_token" in values else None
            self._loaded = True
        logger.debug("Stored %s session (expires %s)", self.domain, expires_at)
        return True

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """True when a token is held and it has no expiry or the expiry is still ahead."""
        with self._lock:
            if not self._token:
                return False
            if self.expires_at is None:
                return True
            return (now or datetime.now(timezone.utc)) < self.expires_at

    @property
    def token(self) -> Optional[str]:
        """The held token, or None when there is none or it has expired."""
        return self._token if self.is_valid() else None

    def clear(self) -> None:
        """Forget the session, in storage and in memory."""
        with self._lock:
            self._storage.delete_prefix(self._prefix)
            self._token = None
            self.refresh_token = None
            self.identity = {}
            self.expires_at = None
            self._loaded = True


class SessionManager:
    """Owns the session file and one lazily created SessionStore per domain."""

    def __init__(self, path: Path | str = DEFAULT_SESSION_FILE) -> None:
        self._storage = LocalStorage(path)
        self._lock = threading.Lock()
        self._stores: dict[str, SessionStore] = {}

    def get(self, domain: str) -> SessionStore:
        if domain not in DOMAINS:
            raise ValueError(f"Unknown session domain: {domain!r}")
        with self._lock:
            store = self._stores.get(domain)
            if store is None:
                store = SessionStore(domain, self._storage, DOMAINS[domain])
                store.load()
                self._stores[domain] = store
        return store

    @property
    def customer(self) -> SessionStore:
        return self.get("customer")

    @property
    def merchant(self) -> SessionStore:
        return self.get("merchant")

    def close(self) -> None:
        with self._lock:
            self._stores.clear()
            self._storage.close()
