"""
storage/store.py -- Encrypted key-value persistence for session credentials.

Pattern: Repository over SQLAlchemy Core (same shape as the other stores in
this codebase). SecureStore exposes four point operations -- write, read,
delete, delete_all -- and nothing else; typed serialization lives one level
up in storage/credentials.py.

Encryption at rest:
  Every value is a Fernet token (AES-128-CBC + HMAC-SHA256). The key comes
  from Settings.credential_key when configured. Otherwise a key is generated
  once and kept in a 0600 key file beside the database, so tokens on disk are
  useless without the key file.

Failure policy:
  read() never raises. A backend error is logged and reported as "absent";
  a value that no longer decrypts (key rotated, row tampered with) is deleted
  and reported as "absent". write() and delete() raise StorageException --
  a token that silently failed to persist would break the session invariant.

Atomicity: each call is its own transaction. There is no cross-key
transaction and callers must not assume one.

Usage:
    store = SecureStore("sqlite:///:memory:", key=Fernet.generate_key())
    store.write("auth_token", "abc")
    store.read("auth_token")      # "abc"
    store.delete_all()
    store.close()
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, delete, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from core.exceptions import StorageException

logger = logging.getLogger("automatedlife.storage")

_DEFAULT_DB_PATH = Path.home() / ".automatedlife" / "credentials.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_entries = Table(
    "secure_entries",
    _metadata,
    Column("key", String(100), primary_key=True),
    Column("value", Text, nullable=False),  # Fernet token, urlsafe base64
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so reads do not block behind a token write."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_memory_url(db_url: str) -> bool:
    return db_url in ("sqlite://", "sqlite:///:memory:")


def load_or_create_key(key_path: Path) -> bytes:
    """Return the Fernet key stored at key_path, generating it on first use."""
    if key_path.exists():
        return key_path.read_bytes().strip()
    key_path.parent.mkdir(parents=True, exist_ok=True)
    key = Fernet.generate_key()
    key_path.write_bytes(key)
    os.chmod(key_path, 0o600)
    logger.info("Generated new credential key at %s", key_path)
    return key


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SecureStore:
    """Encrypted, durable string store keyed by short names."""

    def __init__(self, db_url: str = "", key: bytes | str | None = None) -> None:
        if not db_url:
            _DEFAULT_DB_PATH.parent.mkdir(parents=True, exist_ok=True)
            db_url = f"sqlite:///{_DEFAULT_DB_PATH}"
        if key is None:
            if _is_memory_url(db_url):
                # Nothing outlives the process, so a throwaway key is enough.
                key = Fernet.generate_key()
            else:
                key = load_or_create_key(self._key_path_for(db_url))
        self._cipher = Fernet(key.encode() if isinstance(key, str) else key)

        connect_args: dict = {}
        engine_kwargs: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        if _is_memory_url(db_url):
            # One shared connection so every thread sees the same in-memory DB.
            engine_kwargs["poolclass"] = StaticPool
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if db_url.startswith("sqlite") and not _is_memory_url(db_url):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    @staticmethod
    def _key_path_for(db_url: str) -> Path:
        db_file = Path(db_url.split(":///", 1)[-1])
        return db_file.with_name(db_file.name + ".key")

    # ------------------------------------------------------------------
    # Point operations
    # ------------------------------------------------------------------

    def write(self, key: str, value: str) -> None:
        """Encrypt and store value under key, replacing any existing entry.

        Raises StorageException if the backend rejects the write.
        """
        token = self._cipher.encrypt(value.encode("utf-8")).decode("ascii")
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(_entries).where(_entries.c.key == key))
                conn.execute(_entries.insert().values(key=key, value=token, updated_at=_now_iso()))
        except SQLAlchemyError as exc:
            raise StorageException(f"Could not write '{key}' to secure storage", original_error=exc) from exc

    def read(self, key: str) -> str | None:
        """Return the decrypted value for key, or None when absent or unreadable."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(select(_entries.c.value).where(_entries.c.key == key)).fetchone()
        except SQLAlchemyError as exc:
            logger.warning("Secure storage read failed for %s: %s", key, exc)
            return None
        if row is None:
            return None
        try:
            return self._cipher.decrypt(row[0].encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError):
            logger.warning("Discarding undecryptable secure storage entry %s", key)
            self._discard(key)
            return None

    def delete(self, key: str) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(_entries).where(_entries.c.key == key))
        except SQLAlchemyError as exc:
            raise StorageException(f"Could not delete '{key}' from secure storage", original_error=exc) from exc

    def delete_all(self) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(_entries))
        except SQLAlchemyError as exc:
            raise StorageException("Could not clear secure storage", original_error=exc) from exc

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def keys(self) -> list[str]:
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(select(_entries.c.key).order_by(_entries.c.key)).fetchall()
        except SQLAlchemyError as exc:
            logger.warning("Secure storage key listing failed: %s", exc)
            return []
        return [row[0] for row in rows]

    def read_all(self) -> dict[str, str]:
        """Return every readable entry, decrypted. For debugging screens only."""
        result: dict[str, str] = {}
        for key in self.keys():
            value = self.read(key)
            if value is not None:
                result[key] = value
        return result

    def contains(self, key: str) -> bool:
        return self.read(key) is not None

    def close(self) -> None:
        self.engine.dispose()

    def _discard(self, key: str) -> None:
        try:
            self.delete(key)
        except StorageException as exc:
            logger.warning("Could not discard secure storage entry %s: %s", key, exc)
