"""
auth/grants.py -- Key-value storage for sessions and bearer tokens.

A "grant" is any server-side record that turns an opaque client-held secret
into a principal id: a Session or a BearerToken. Both stores (sessions.py and
tokens.py) share the backends defined here.

Keys:
  Raw session ids / tokens are never stored. The key is
  HMAC-SHA256(SECRET_KEY, raw), which is deterministic (O(1) lookup) and
  useless to anyone who reads the store without also knowing SECRET_KEY.
  bcrypt's slowness is unnecessary here -- the raw values carry 256 bits of
  entropy.

Backends:
  MemoryGrantBackend -- N shards, each a dict guarded by its own Lock. Keys on
      different shards never contend; mutations of one key are serialized by
      its shard lock, so a revoke is visible to every later read.
  SqlGrantBackend -- one SQLAlchemy Core table per grant kind. Create is a
      single INSERT, revoke a single DELETE; the database provides per-row
      atomicity and cross-process visibility.

Backends store whatever they are given, expired or not. Expiry policy lives in
the stores.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

import dataclasses
import hashlib
import hmac
import threading
from abc import ABC, abstractmethod
from typing import Generic, TypeVar, Union

from sqlalchemy import Column, Float, Integer, MetaData, String, Table
from sqlalchemy.engine import Engine

from auth.models import BearerToken, Session
from auth.store import store_errors

R = TypeVar("R", bound=Union[Session, BearerToken])

_UPDATABLE_FIELDS = {"expires_at", "last_used"}


def digest_key(secret_key: str, raw: str) -> str:
    """Return HMAC-SHA256(secret_key, raw) as a hex string."""
    return hmac.new(secret_key.encode(), raw.encode(), hashlib.sha256).hexdigest()


class GrantBackend(ABC, Generic[R]):
    """Storage contract shared by the session store and the token issuer."""

    @abstractmethod
    def insert(self, record: R) -> None: ...

    @abstractmethod
    def get(self, key_hash: str) -> R | None: ...

    @abstractmethod
    def update(self, key_hash: str, **fields) -> bool:
        """Update expires_at and/or last_used. Returns False if the key is gone."""

    @abstractmethod
    def delete(self, key_hash: str) -> bool: ...

    @abstractmethod
    def delete_handle(self, principal_id: int, handle: str) -> bool:
        """Delete a record by public handle, only if principal_id owns it."""

    @abstractmethod
    def delete_for_principal(self, principal_id: int) -> int: ...

    @abstractmethod
    def list_for_principal(self, principal_id: int) -> list[R]: ...

    @abstractmethod
    def purge_expired(self, now: float) -> int: ...

    def close(self) -> None:
        pass


def _check_fields(fields: dict) -> None:
    unknown = set(fields) - _UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown grant fields: {unknown!r}")


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class _Shard:
    __slots__ = ("lock", "records")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.records: dict = {}


class MemoryGrantBackend(GrantBackend[R]):
    """Sharded in-process mapping. Suitable for a single worker process.

    Records are copied on the way in and out, so callers can never mutate
    stored state without holding the shard lock.
    """

    def __init__(self, shards: int = 16) -> None:
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self._shards = [_Shard() for _ in range(shards)]

    def _shard(self, key_hash: str) -> _Shard:
        return self._shards[int(key_hash[:8], 16) % len(self._shards)]

    def insert(self, record: R) -> None:
        shard = self._shard(record.key_hash)
        with shard.lock:
            shard.records[record.key_hash] = dataclasses.replace(record)

    def get(self, key_hash: str) -> R | None:
        shard = self._shard(key_hash)
        with shard.lock:
            record = shard.records.get(key_hash)
            return dataclasses.replace(record) if record is not None else None

    def update(self, key_hash: str, **fields) -> bool:
        _check_fields(fields)
        shard = self._shard(key_hash)
        with shard.lock:
            record = shard.records.get(key_hash)
            if record is None:
                return False
            shard.records[key_hash] = dataclasses.replace(record, **fields)
            return True

    def delete(self, key_hash: str) -> bool:
        shard = self._shard(key_hash)
        with shard.lock:
            return shard.records.pop(key_hash, None) is not None

    def delete_handle(self, principal_id: int, handle: str) -> bool:
        for shard in self._shards:
            with shard.lock:
                for key_hash, record in shard.records.items():
                    if record.handle == handle and record.principal_id == principal_id:
                        del shard.records[key_hash]
                        return True
        return False

    def delete_for_principal(self, principal_id: int) -> int:
        removed = 0
        for shard in self._shards:
            with shard.lock:
                doomed = [k for k, r in shard.records.items() if r.principal_id == principal_id]
                for key_hash in doomed:
                    del shard.records[key_hash]
                removed += len(doomed)
        return removed

    def list_for_principal(self, principal_id: int) -> list[R]:
        found: list[R] = []
        for shard in self._shards:
            with shard.lock:
                found.extend(dataclasses.replace(r) for r in shard.records.values() if r.principal_id == principal_id)
        found.sort(key=lambda r: r.created_at, reverse=True)
        return found

    def purge_expired(self, now: float) -> int:
        removed = 0
        for shard in self._shards:
            with shard.lock:
                doomed = [k for k, r in shard.records.items() if r.expires_at is not None and r.expires_at <= now]
                for key_hash in doomed:
                    del shard.records[key_hash]
                removed += len(doomed)
        return removed

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.records)
        return total


# ---------------------------------------------------------------------------
# SQL backend
# ---------------------------------------------------------------------------


def _grant_table(name: str, metadata: MetaData) -> Table:
    return Table(
        name,
        metadata,
        Column("key_hash", String(64), primary_key=True),  # HMAC-SHA256 hex
        Column("handle", String(32), nullable=False, unique=True),
        Column("principal_id", Integer, nullable=False, index=True),
        Column("created_at", Float, nullable=False),
        Column("expires_at", Float),  # NULL = no expiry
        Column("label", String(255)),
        Column("last_used", Float),
    )


class SqlGrantBackend(GrantBackend[R]):
    """Grant storage in a SQLAlchemy Core table.

    Usage:
        backend = SqlGrantBackend(engine, "sessions", Session)
    """

    def __init__(self, engine: Engine, table_name: str, record_cls: type[R]) -> None:
        self.engine = engine
        self._record_cls = record_cls
        metadata = MetaData()
        self._table = _grant_table(table_name, metadata)
        with store_errors():
            metadata.create_all(engine)

    def _to_record(self, row) -> R:
        return self._record_cls(
            key_hash=row.key_hash,
            handle=row.handle,
            principal_id=row.principal_id,
            created_at=row.created_at,
            expires_at=row.expires_at,
            label=row.label,
            last_used=row.last_used,
        )

    def insert(self, record: R) -> None:
        with store_errors(), self.engine.connect() as conn:
            conn.execute(self._table.insert().values(**dataclasses.asdict(record)))
            conn.commit()

    def get(self, key_hash: str) -> R | None:
        t = self._table
        with store_errors(), self.engine.connect() as conn:
            row = conn.execute(t.select().where(t.c.key_hash == key_hash)).fetchone()
        return self._to_record(row) if row is not None else None

    def update(self, key_hash: str, **fields) -> bool:
        _check_fields(fields)
        t = self._table
        with store_errors(), self.engine.connect() as conn:
            result = conn.execute(t.update().where(t.c.key_hash == key_hash).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete(self, key_hash: str) -> bool:
        t = self._table
        with store_errors(), self.engine.connect() as conn:
            result = conn.execute(t.delete().where(t.c.key_hash == key_hash))
            conn.commit()
        return result.rowcount > 0

    def delete_handle(self, principal_id: int, handle: str) -> bool:
        # Both conditions must match -- knowing a handle is not enough to revoke it.
        t = self._table
        with store_errors(), self.engine.connect() as conn:
            result = conn.execute(t.delete().where((t.c.handle == handle) & (t.c.principal_id == principal_id)))
            conn.commit()
        return result.rowcount > 0

    def delete_for_principal(self, principal_id: int) -> int:
        t = self._table
        with store_errors(), self.engine.connect() as conn:
            result = conn.execute(t.delete().where(t.c.principal_id == principal_id))
            conn.commit()
        return result.rowcount

    def list_for_principal(self, principal_id: int) -> list[R]:
        t = self._table
        with store_errors(), self.engine.connect() as conn:
            rows = conn.execute(
                t.select().where(t.c.principal_id == principal_id).order_by(t.c.created_at.desc())
            ).fetchall()
        return [self._to_record(r) for r in rows]

    def purge_expired(self, now: float) -> int:
        t = self._table
        with store_errors(), self.engine.connect() as conn:
            result = conn.execute(t.delete().where(t.c.expires_at.is_not(None) & (t.c.expires_at <= now)))
            conn.commit()
        return result.rowcount
