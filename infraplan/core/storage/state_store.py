# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""SQLite-based state store with lease locks."""

import hashlib
import json
import os
import socket
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Union
from uuid import uuid4

from pydantic import ValidationError
from infraplan.core.exceptions import LockTimeoutError, StaleLockError, StateCorruptError
from infraplan.core.models.lock import Lock, LockInfo
from infraplan.core.models.resource import TOMBSTONE, ResourceState, StateDocument, _Tombstone
from infraplan.core.observability import get_logger, create_execution_event

logger = get_logger(__name__)

SUPPORTED_FORMAT_VERSION = 1

_STATE_SCHEMA = """
CREATE TABLE IF NOT EXISTS states (
    key         TEXT PRIMARY KEY,
    serial      INTEGER NOT NULL DEFAULT 0,
    lineage     TEXT NOT NULL,
    checksum    TEXT NOT NULL,
    payload     TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS state_locks (
    key         TEXT PRIMARY KEY,
    lock_id     TEXT NOT NULL,
    holder      TEXT NOT NULL,
    operation   TEXT,
    acquired_at TEXT NOT NULL,
    expires_at  TEXT NOT NULL
);
"""

StateUpdate = Union[ResourceState, _Tombstone]


def _utcnow() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def _dt_to_iso(dt: datetime) -> str:
    """Convert datetime to ISO-8601 string for SQLite storage.

    :param dt: Datetime to convert.
    :returns: ISO string.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat(timespec="microseconds")


def _checksum(payload: str) -> str:
    """SHA-256 of a serialized state payload."""
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def default_holder() -> str:
    """Identity of this process as a lock holder."""
    return f"{socket.gethostname()}:{os.getpid()}:{threading.get_ident()}"


class StateStore:
    """SQLite-backed store of versioned state documents.

    One checksummed JSON document per key. Writers must hold the key's
    lease lock; every commit is a single transaction, and WAL journaling
    keeps the previously committed document intact if the process dies
    mid-commit. Readers never take the lock and may observe a document
    while an apply is in progress.
    """

    def __init__(
        self,
        db_path: Path | str = "data/infraplan.db",
        lock_ttl: float = 300.0,
        poll_interval: float = 0.1,
    ) -> None:
        """Initialize the state store.

        :param db_path: Path to SQLite database file.
        :param lock_ttl: Lease duration in seconds, extended on every commit.
        :param poll_interval: Seconds between lock acquisition attempts.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.lock_ttl = lock_ttl
        self.poll_interval = poll_interval
        self._mutex = threading.RLock()

        self._conn = sqlite3.connect(
            str(self.db_path),
            isolation_level="DEFERRED",
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=FULL")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.executescript(_STATE_SCHEMA)

        logger.info(f"Initialized state storage at {self.db_path}")

    def close(self) -> None:
        """Close the database connection."""
        with self._mutex:
            self._conn.close()

    def ping(self) -> bool:
        """True if the database answers a trivial query."""
        try:
            with self._mutex:
                self._conn.execute("SELECT 1").fetchone()
        except sqlite3.Error as e:
            logger.warning(f"State storage at {self.db_path} is unavailable: {e}")
            return False
        return True

    def _read_document(self, key: str) -> StateDocument:
        """Read and validate the document for a key (caller holds the mutex)."""
        row = self._conn.execute("SELECT * FROM states WHERE key = ?", (key,)).fetchone()
        if row is None:
            return StateDocument(key=key)

        payload = row["payload"]
        if _checksum(payload) != row["checksum"]:
            raise StateCorruptError(key, "checksum mismatch")
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise StateCorruptError(key, f"invalid JSON: {e}") from e
        try:
            document = StateDocument.model_validate(data)
        except ValidationError as e:
            raise StateCorruptError(key, f"schema validation failed: {e}") from e
        if document.key != key or document.serial != row["serial"]:
            raise StateCorruptError(key, "document header does not match its record")
        if document.format_version > SUPPORTED_FORMAT_VERSION:
            logger.warning(
                f"State {key} uses format version {document.format_version}; "
                f"unknown fields will be preserved"
            )
        return document

    def load_document(self, key: str) -> StateDocument:
        """Load the full state document for a key.

        :param key: State key.
        :returns: Document (empty, serial 0, if the key has never been committed).
        :raises StateCorruptError: If the payload fails validation.
        """
        with self._mutex:
            return self._read_document(key)

    def load(self, key: str) -> Dict[str, ResourceState]:
        """Load the resources stored under a key.

        :param key: State key.
        :returns: Identity to ResourceState mapping.
        :raises StateCorruptError: If the payload fails validation.
        """
        return dict(self.load_document(key).resources)

    def keys(self) -> List[str]:
        """All keys with committed state, sorted."""
        with self._mutex:
            rows = self._conn.execute("SELECT key FROM states ORDER BY key").fetchall()
        return [r["key"] for r in rows]

    def _try_acquire(self, key: str, holder: str, operation: Optional[str]) -> Optional[Lock]:
        """One acquisition attempt; returns None if another holder is active."""
        now = _utcnow()
        expires_at = now + timedelta(seconds=self.lock_ttl)
        lock_id = str(uuid4())
        with self._mutex, self._conn:
            self._conn.execute("BEGIN IMMEDIATE")
            self._conn.execute(
                "DELETE FROM state_locks WHERE key = ? AND expires_at <= ?",
                (key, _dt_to_iso(now)),
            )
            cur = self._conn.execute(
                """INSERT OR IGNORE INTO state_locks
                   (key, lock_id, holder, operation, acquired_at, expires_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                """,
                (key, lock_id, holder, operation, _dt_to_iso(now), _dt_to_iso(expires_at)),
            )
            if cur.rowcount == 0:
                return None
            row = self._conn.execute("SELECT serial FROM states WHERE key = ?", (key,)).fetchone()
        return Lock(
            key=key,
            lock_id=lock_id,
            holder=holder,
            acquired_at=now,
            expires_at=expires_at,
            serial=row["serial"] if row else 0,
        )

    def acquire_lock(
        self,
        key: str,
        timeout: float = 30.0,
        holder: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> Lock:
        """Acquire the lease lock for a key, waiting up to ``timeout``.

        Expired leases are reclaimed.

        :param key: State key.
        :param timeout: Maximum seconds to wait.
        :param holder: Holder identity recorded with the lock.
        :param operation: Operation name recorded with the lock.
        :returns: Lock capturing the current state serial.
        :raises LockTimeoutError: If another holder stays active past the timeout.
        """
        holder = holder or default_holder()
        deadline = time.monotonic() + timeout
        while True:
            lock = self._try_acquire(key, holder, operation)
            if lock is not None:
                logger.event(
                    create_execution_event(
                        "lock_acquire",
                        stack_id=key,
                        serial=lock.serial,
                    )
                )
                return lock
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                info = self.lock_info(key)
                raise LockTimeoutError(key, info.holder if info else None, timeout)
            time.sleep(min(self.poll_interval, remaining))

    def release(self, lock: Lock) -> None:
        """Release a lock. Safe to call more than once.

        :param lock: Lock returned by acquire_lock.
        """
        if lock.released:
            return
        with self._mutex, self._conn:
            self._conn.execute(
                "DELETE FROM state_locks WHERE key = ? AND lock_id = ?",
                (lock.key, lock.lock_id),
            )
        lock.released = True
        logger.event(create_execution_event("lock_release", stack_id=lock.key, serial=lock.serial))

    @contextmanager
    def locked(
        self,
        key: str,
        timeout: float = 30.0,
        operation: Optional[str] = None,
    ) -> Iterator[Lock]:
        """Hold the lock for a key for the duration of a ``with`` block.

        :param key: State key.
        :param timeout: Maximum seconds to wait for the lock.
        :param operation: Operation name recorded with the lock.
        :yields: The acquired lock; released on every exit path.
        """
        lock = self.acquire_lock(key, timeout=timeout, operation=operation)
        try:
            yield lock
        finally:
            self.release(lock)

    def lock_info(self, key: str) -> Optional[LockInfo]:
        """Current lock metadata for a key, if locked."""
        with self._mutex:
            row = self._conn.execute("SELECT * FROM state_locks WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return LockInfo(
            key=row["key"],
            lock_id=row["lock_id"],
            holder=row["holder"],
            operation=row["operation"],
            acquired_at=datetime.fromisoformat(row["acquired_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
        )

    def force_unlock(self, key: str) -> bool:
        """Remove the lock for a key regardless of holder.

        Operator recovery for a holder that died without releasing.

        :param key: State key.
        :returns: True if a lock was removed.
        """
        with self._mutex, self._conn:
            cur = self._conn.execute("DELETE FROM state_locks WHERE key = ?", (key,))
        if cur.rowcount:
            logger.warning(f"Force-unlocked state {key}")
            return True
        return False

    def commit(
        self,
        key: str,
        lock: Lock,
        updates: Mapping[str, StateUpdate],
    ) -> StateDocument:
        """Atomically apply updates and bump the global serial.

        :param key: State key.
        :param lock: Lock held for the key.
        :param updates: Identity to new ResourceState, or TOMBSTONE to remove.
        :returns: The committed document.
        :raises StaleLockError: If the lock was lost, expired, or the state
            serial moved since this holder last observed it.
        :raises StateCorruptError: If the stored document fails validation.
        """
        if lock.key != key:
            raise StaleLockError(key, lock.lock_id, f"lock is for {lock.key}")
        if lock.released:
            raise StaleLockError(key, lock.lock_id, "lock was released")

        now = _utcnow()
        expires_at = now + timedelta(seconds=self.lock_ttl)
        with self._mutex:
            with self._conn:
                self._conn.execute("BEGIN IMMEDIATE")
                row = self._conn.execute(
                    "SELECT lock_id, expires_at FROM state_locks WHERE key = ?", (key,)
                ).fetchone()
                if row is None or row["lock_id"] != lock.lock_id:
                    raise StaleLockError(key, lock.lock_id, "lock is no longer held")
                if datetime.fromisoformat(row["expires_at"]) <= now:
                    raise StaleLockError(key, lock.lock_id, "lease expired")

                document = self._read_document(key)
                if document.serial != lock.serial:
                    raise StaleLockError(
                        key,
                        lock.lock_id,
                        f"state serial is {document.serial}, lock observed {lock.serial}",
                    )

                resources = dict(document.resources)
                for identity, update in updates.items():
                    if update is TOMBSTONE:
                        resources.pop(identity, None)
                    else:
                        resources[identity] = update
                document = document.model_copy(
                    update={
                        "resources": resources,
                        "serial": document.serial + 1,
                        "lineage": document.lineage or str(uuid4()),
                        "updated_at": now,
                    }
                )

                payload = json.dumps(document.model_dump(mode="json"), sort_keys=True, default=str)
                self._conn.execute(
                    """INSERT INTO states (key, serial, lineage, checksum, payload, updated_at)
                       VALUES (:key, :serial, :lineage, :checksum, :payload, :updated_at)
                       ON CONFLICT(key) DO UPDATE SET
                           serial     = excluded.serial,
                           lineage    = excluded.lineage,
                           checksum   = excluded.checksum,
                           payload    = excluded.payload,
                           updated_at = excluded.updated_at
                    """,
                    {
                        "key": key,
                        "serial": document.serial,
                        "lineage": document.lineage,
                        "checksum": _checksum(payload),
                        "payload": payload,
                        "updated_at": _dt_to_iso(now),
                    },
                )
                self._conn.execute(
                    "UPDATE state_locks SET expires_at = ? WHERE key = ? AND lock_id = ?",
                    (_dt_to_iso(expires_at), key, lock.lock_id),
                )
            # Workers of one wave share the lock; advance it once committed, under the mutex.
            lock.serial = document.serial
            lock.expires_at = expires_at

        logger.event(
            create_execution_event(
                "state_commit",
                stack_id=key,
                serial=document.serial,
                actions_total=len(updates),
            )
        )
        return document
