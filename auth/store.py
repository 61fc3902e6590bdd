"""
auth/store.py -- SQLAlchemy Core persistence layer for principals.

Pattern: Repository + Data Mapper.
PrincipalStore is the repository; _row_to_principal is the mapper. Route,
dependency and kernel code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(login) is enforced by the schema; create_principal() turns the
  IntegrityError into LoginTaken so callers never import SQLAlchemy.

  UNIQUE(oauth_provider, oauth_subject) is enforced in code rather than SQL
  because SQLite treats two NULL values as distinct in UNIQUE constraints.

Outages:
  Any OperationalError / DBAPIError is re-raised as StoreUnavailable. The
  gate and the API layer treat that as a 503, never as "unauthenticated".

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError

from auth.errors import LoginTaken, StoreUnavailable
from auth.models import Principal

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_principals = Table(
    "principals",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("login", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),  # NULL for delegated-only principals
    Column("role", String(30), nullable=False, server_default="user"),
    Column("oauth_provider", String(64)),
    Column("oauth_subject", Text),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_UPDATABLE_FIELDS = {"role", "is_active", "hashed_password"}


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL lets readers proceed without blocking during writes. Set per-connection
    because SQLite PRAGMAs are not inherited by new pooled connections.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an Engine with the SQLite tweaks the stores rely on."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
        event.listen(engine, "connect", _set_wal_mode)
    return engine


@contextmanager
def store_errors() -> Iterator[None]:
    """Translate driver-level failures into StoreUnavailable.

    IntegrityError is left alone -- it is a data conflict, not an outage, and
    callers that expect it catch it before this boundary.
    """
    try:
        yield
    except IntegrityError:
        raise
    except DBAPIError as exc:
        raise StoreUnavailable(str(exc.orig)) from exc


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PrincipalStore:
    """Repository for Principal records.

    Usage:
        store = PrincipalStore("sqlite:///authgate.db")
        pid = store.create_principal(Principal(login="jwo", hashed_password=hasher.hash("12345")))
        principal = store.get_by_login("jwo")
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///authgate.db", engine: Engine | None = None) -> None:
        self.engine: Engine = engine if engine is not None else make_engine(db_url)
        with store_errors():
            _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_principals(self) -> bool:
        with store_errors(), self.engine.connect() as conn:
            count = conn.execute(select(func.count()).select_from(_principals)).scalar()
        return (count or 0) > 0

    def create_principal(self, principal: Principal) -> int:
        """Insert a new principal and return its assigned id.

        Raises LoginTaken if the login already exists (including the case
        where a concurrent request inserted it first).
        """
        try:
            with store_errors(), self.engine.connect() as conn:
                result = conn.execute(
                    _principals.insert().values(
                        login=principal.login,
                        hashed_password=principal.hashed_password,
                        role=principal.role,
                        oauth_provider=principal.oauth_provider,
                        oauth_subject=principal.oauth_subject,
                        created_at=_now_iso(),
                        is_active=1 if principal.is_active else 0,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise LoginTaken(principal.login) from exc
        return result.inserted_primary_key[0]

    def get_by_login(self, login: str) -> Principal | None:
        """Look up a principal by exact login (case-sensitive)."""
        with store_errors(), self.engine.connect() as conn:
            row = conn.execute(_principals.select().where(_principals.c.login == login)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def get_by_id(self, principal_id: int) -> Principal | None:
        with store_errors(), self.engine.connect() as conn:
            row = conn.execute(_principals.select().where(_principals.c.id == principal_id)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def get_by_oauth(self, provider: str, subject: str) -> Principal | None:
        """Look up the principal linked to a delegated authority's subject id."""
        with store_errors(), self.engine.connect() as conn:
            row = conn.execute(
                _principals.select().where(
                    (_principals.c.oauth_provider == provider) & (_principals.c.oauth_subject == subject)
                )
            ).fetchone()
        return _row_to_principal(row) if row is not None else None

    def link_oauth(self, principal_id: int, provider: str, subject: str) -> None:
        """Associate a delegated identity with an existing principal.

        Raises LoginTaken if another principal already holds the same
        (provider, subject) pair.
        """
        existing = self.get_by_oauth(provider, subject)
        if existing is not None and existing.id != principal_id:
            raise LoginTaken(f"{provider}:{subject}")
        with store_errors(), self.engine.connect() as conn:
            conn.execute(
                _principals.update()
                .where(_principals.c.id == principal_id)
                .values(oauth_provider=provider, oauth_subject=subject)
            )
            conn.commit()

    def list_principals(self) -> list[Principal]:
        with store_errors(), self.engine.connect() as conn:
            rows = conn.execute(_principals.select().order_by(_principals.c.login)).fetchall()
        return [_row_to_principal(r) for r in rows]

    def update_principal(self, principal_id: int, **fields) -> bool:
        """Update mutable fields on an existing principal.

        Accepted fields: role, is_active, hashed_password. Unknown fields raise
        ValueError. Returns True if a row was updated.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown principal fields: {unknown!r}")
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        with store_errors(), self.engine.connect() as conn:
            result = conn.execute(_principals.update().where(_principals.c.id == principal_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def count_active_admins(self) -> int:
        with store_errors(), self.engine.connect() as conn:
            count = conn.execute(
                select(func.count())
                .select_from(_principals)
                .where((_principals.c.role == "admin") & (_principals.c.is_active == 1))
            ).scalar()
        return count or 0

    def update_last_login(self, principal_id: int) -> None:
        with store_errors(), self.engine.connect() as conn:
            conn.execute(_principals.update().where(_principals.c.id == principal_id).values(last_login=_now_iso()))
            conn.commit()

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with store_errors(), self.engine.connect() as conn:
                conn.execute(select(1))
        except StoreUnavailable:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_principal(row) -> Principal:
    return Principal(
        id=row.id,
        login=row.login,
        hashed_password=row.hashed_password,
        role=row.role,
        oauth_provider=row.oauth_provider,
        oauth_subject=row.oauth_subject,
        created_at=row.created_at,
        last_login=row.last_login,
        is_active=bool(row.is_active),
    )
