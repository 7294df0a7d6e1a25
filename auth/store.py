"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts, orgs, codes and rules.

Pattern: Repository + Data Mapper + Unit of Work.
AuthStore is the repository; the _row_to_* functions are the mappers.
Service code never touches SQL directly.

Unit of work:
  `with store.transaction() as tx:` opens one database transaction and yields
  an AuthStore bound to that connection. Every call on `tx` runs inside the
  transaction. Leaving the block normally commits; leaving it through any
  exception rolls back (engine.begin() guarantees this on every exit path).
  Calling transaction() on a bound store raises AlreadyInTransactionError --
  nesting is a programming error, not something to paper over.

  Calls on an unbound store each run in their own short transaction.

Concurrency:
  No in-process locks. get_phone_code(for_update=True) issues SELECT ... FOR
  UPDATE on engines that support it, and mark_phone_code_used() only flips
  rows that are still unused, so exactly one concurrent verifier wins.
  upsert_phone_code(unless_live_at=...) folds the "still live?" check into the
  ON CONFLICT clause, so exactly one concurrent issuer wins.

Errors:
  Store methods let SQLAlchemy exceptions propagate. Services classify them
  once, either by catching IntegrityError for uniqueness races or by running
  the call under wrap_storage_errors(), which re-raises as StorageError.

Security:
  All queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    event,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import Organization, Purpose, User, VerificationCode
from core.errors import AlreadyInTransactionError, StorageError

logger = logging.getLogger("orgauth.store")

_DEFAULT_DB_URL = "sqlite:///orgauth.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_phone_codes = Table(
    "phone_codes",
    _metadata,
    Column("phone", String(32), primary_key=True),
    Column("typ", String(32), primary_key=True),  # Purpose value
    Column("code", String(16), nullable=False),
    Column("used", Boolean, nullable=False, default=False),
    Column("expires_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

_orgs = Table(
    "orgs",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    # No FK: users.org_id already points the other way, and the owner is
    # back-filled in the same transaction that creates the user.
    Column("owner_id", String(36)),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("username", String(255), nullable=False),
    Column("phone", String(32), nullable=False),
    Column("org_id", String(36), ForeignKey("orgs.id"), nullable=False),
    Column("password_hash", String(64), nullable=False),
    Column("password_salt", String(64), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("deleted_at", DateTime(timezone=True)),  # soft delete marker
    # Constraint names double as the marker the registrar looks for when a
    # concurrent registration loses the uniqueness race.
    UniqueConstraint("username", name="uq_users_username"),
    UniqueConstraint("phone", name="uq_users_phone"),
)

_access_rules = Table(
    "access_rules",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(64), nullable=False, unique=True),
)

_user_access_rules = Table(
    "user_access_rules",
    _metadata,
    Column("user_id", String(36), ForeignKey("users.id"), primary_key=True),
    Column("rule_id", Integer, ForeignKey("access_rules.id"), primary_key=True),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign-key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_store_engine(db_url: str = _DEFAULT_DB_URL) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on the way in; every stored timestamp is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _dialect_insert(conn: Connection, table: Table):
    """Return an INSERT construct that supports ON CONFLICT for this engine."""
    name = conn.dialect.name
    if name == "postgresql":
        return pg_insert(table)
    if name == "sqlite":
        return sqlite_insert(table)
    raise StorageError(f"Unsupported database dialect for upserts: {name}")


@contextmanager
def wrap_storage_errors(action: str) -> Iterator[None]:
    """Re-raise any SQLAlchemy failure inside the block as StorageError.

    Classified ServiceErrors pass through untouched, so this can wrap a whole
    unit of work including its commit.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Storage failure while trying to %s: %s", action, exc)
        raise StorageError(f"Failed to {action}.") from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for verification codes, users, organizations and access rules.

    Usage:
        store = AuthStore("sqlite:///orgauth.db")
        with store.transaction() as tx:
            org = tx.create_org("alice's team")
            user = tx.create_user(org.id, "alice", "13800000000", hash_, salt)
            tx.update_org_owner(org.id, user.id)
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, *, engine: Engine | None = None) -> None:
        self.engine: Engine = engine if engine is not None else create_store_engine(db_url)
        self._conn: Connection | None = None
        _metadata.create_all(self.engine)

    @classmethod
    def _bound_to(cls, engine: Engine, conn: Connection) -> AuthStore:
        bound = cls.__new__(cls)
        bound.engine = engine
        bound._conn = conn
        return bound

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._conn is not None

    @contextmanager
    def transaction(self) -> Iterator[AuthStore]:
        """Run a block of store calls as one atomic unit.

        Commit on normal exit, rollback on any exception. Raises
        AlreadyInTransactionError when called on a store that is already
        bound to an open transaction.
        """
        if self._conn is not None:
            raise AlreadyInTransactionError()
        with self.engine.begin() as conn:
            yield AuthStore._bound_to(self.engine, conn)

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        if self._conn is not None:
            yield self._conn
        else:
            with self.engine.begin() as conn:
                yield conn

    def ping(self) -> None:
        """Round-trip a trivial query. Raises on connection failure."""
        with self._connect() as conn:
            conn.execute(text("SELECT 1"))

    # ------------------------------------------------------------------
    # Verification codes
    # ------------------------------------------------------------------

    def get_phone_code(self, phone: str, purpose: Purpose, for_update: bool = False) -> VerificationCode | None:
        """Return the code row for (phone, purpose), or None if none was ever issued.

        for_update=True locks the row until the surrounding transaction ends
        (ignored by SQLite, which serializes writers anyway).
        """
        stmt = _phone_codes.select().where((_phone_codes.c.phone == phone) & (_phone_codes.c.typ == purpose.value))
        if for_update:
            stmt = stmt.with_for_update()
        with self._connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_code(row) if row is not None else None

    def upsert_phone_code(
        self,
        phone: str,
        purpose: Purpose,
        code: str,
        expires_at: datetime,
        *,
        unless_live_at: datetime | None = None,
    ) -> bool:
        """Insert or overwrite the single code row for (phone, purpose) and reset used=False.

        With unless_live_at, an existing row is only overwritten if it has
        expired by that instant; the check and the write are one statement,
        so of two concurrent issuers exactly one gets True. Returns whether a
        row was written.
        """
        now = _now()
        values = {
            "phone": phone,
            "typ": purpose.value,
            "code": code,
            "used": False,
            "expires_at": _as_utc(expires_at),
            "updated_at": now,
        }
        where = None
        if unless_live_at is not None:
            where = _phone_codes.c.expires_at <= _as_utc(unless_live_at)
        with self._connect() as conn:
            stmt = _dialect_insert(conn, _phone_codes).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[_phone_codes.c.phone, _phone_codes.c.typ],
                set_={"code": code, "used": False, "expires_at": values["expires_at"], "updated_at": now},
                where=where,
            )
            result = conn.execute(stmt)
        return result.rowcount > 0

    def mark_phone_code_used(self, phone: str, purpose: Purpose) -> bool:
        """Flip used to True. Returns False if the row is missing or was already used."""
        with self._connect() as conn:
            result = conn.execute(
                _phone_codes.update()
                .where(
                    (_phone_codes.c.phone == phone)
                    & (_phone_codes.c.typ == purpose.value)
                    & (_phone_codes.c.used.is_(False))
                )
                .values(used=True, updated_at=_now())
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def username_exists(self, username: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.username == username).limit(1)).fetchone()
        return row is not None

    def phone_exists(self, phone: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.phone == phone).limit(1)).fetchone()
        return row is not None

    def create_user(self, org_id: str, username: str, phone: str, password_hash: str, password_salt: str) -> User:
        """Insert a user and return it.

        Raises sqlalchemy.exc.IntegrityError if the username or phone is
        already registered -- the registrar classifies that race.
        """
        now = _now()
        user = User(
            id=_new_id(),
            username=username,
            phone=phone,
            org_id=org_id,
            password_hash=password_hash,
            password_salt=password_salt,
            created_at=now,
            updated_at=now,
        )
        with self._connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user.id,
                    username=user.username,
                    phone=user.phone,
                    org_id=user.org_id,
                    password_hash=user.password_hash,
                    password_salt=user.password_salt,
                    created_at=now,
                    updated_at=now,
                )
            )
        return user

    def get_user(self, username_or_phone: str) -> User | None:
        """Look up a user whose username OR phone equals the identifier.

        Username matches win if, improbably, one user's username is another
        user's phone number.
        """
        with self._connect() as conn:
            rows = conn.execute(
                _users.select().where(or_(_users.c.username == username_or_phone, _users.c.phone == username_or_phone))
            ).fetchall()
        if not rows:
            return None
        rows.sort(key=lambda r: r.username != username_or_phone)
        return _row_to_user(rows[0])

    def get_user_by_id(self, user_id: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_username(self, username: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_password_by_phone(self, phone: str, password_hash: str, password_salt: str) -> bool:
        """Overwrite the credential material of the user with this phone. Returns False if none matched."""
        with self._connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.phone == phone)
                .values(password_hash=password_hash, password_salt=password_salt, updated_at=_now())
            )
        return result.rowcount > 0

    def soft_delete_user(self, user_id: str) -> bool:
        """Stamp deleted_at. Returns False if the user does not exist or is already deleted."""
        with self._connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.deleted_at.is_(None)))
                .values(deleted_at=_now(), updated_at=_now())
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Organizations
    # ------------------------------------------------------------------

    def create_org(self, name: str) -> Organization:
        """Insert an ownerless organization and return it."""
        org = Organization(id=_new_id(), name=name, owner_id=None, created_at=_now())
        with self._connect() as conn:
            conn.execute(_orgs.insert().values(id=org.id, name=org.name, owner_id=None, created_at=org.created_at))
        return org

    def update_org_owner(self, org_id: str, owner_id: str) -> bool:
        with self._connect() as conn:
            result = conn.execute(_orgs.update().where(_orgs.c.id == org_id).values(owner_id=owner_id))
        return result.rowcount > 0

    def get_org(self, org_id: str) -> Organization | None:
        with self._connect() as conn:
            row = conn.execute(_orgs.select().where(_orgs.c.id == org_id)).fetchone()
        return _row_to_org(row) if row is not None else None

    def count_orgs(self) -> int:
        with self._connect() as conn:
            return conn.execute(select(func.count()).select_from(_orgs)).scalar() or 0

    # ------------------------------------------------------------------
    # Access rules
    # ------------------------------------------------------------------

    def seed_access_rules(self, names: Iterable[str]) -> None:
        """Insert catalog rule names that are not yet present. Idempotent."""
        rows = [{"name": name} for name in names]
        if not rows:
            return
        with self._connect() as conn:
            stmt = _dialect_insert(conn, _access_rules).values(rows).on_conflict_do_nothing(
                index_elements=[_access_rules.c.name]
            )
            conn.execute(stmt)

    def get_access_rule_id(self, name: str) -> int | None:
        with self._connect() as conn:
            row = conn.execute(select(_access_rules.c.id).where(_access_rules.c.name == name)).fetchone()
        return row.id if row is not None else None

    def add_user_access_rule(self, user_id: str, rule_id: int) -> bool:
        """Associate a rule with a user. Returns False if the association already existed."""
        with self._connect() as conn:
            stmt = (
                _dialect_insert(conn, _user_access_rules)
                .values(user_id=user_id, rule_id=rule_id)
                .on_conflict_do_nothing(index_elements=[_user_access_rules.c.user_id, _user_access_rules.c.rule_id])
            )
            result = conn.execute(stmt)
        return result.rowcount > 0

    def get_user_access_rule_names(self, user_id: str) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                select(_access_rules.c.name)
                .select_from(_user_access_rules.join(_access_rules, _user_access_rules.c.rule_id == _access_rules.c.id))
                .where(_user_access_rules.c.user_id == user_id)
            ).fetchall()
        return [r.name for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def connect_with_retry(
    db_url: str,
    retries: int = 10,
    backoff_seconds: float = 3.0,
    sleep: Callable[[float], None] = time.sleep,
) -> AuthStore:
    """Build an AuthStore, retrying the first connection a bounded number of times.

    Used once at process startup, when the database container may still be
    coming up. Raises StorageError after `retries` failed attempts.
    """
    engine = create_store_engine(db_url)
    attempt = 0
    while True:
        attempt += 1
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            break
        except SQLAlchemyError as exc:
            logger.warning("Database not reachable (attempt %d/%d): %s", attempt, retries, exc)
            if attempt >= retries:
                engine.dispose()
                raise StorageError("Failed to connect to database.") from exc
            sleep(backoff_seconds)
    logger.info("Database connection established after %d attempt(s)", attempt)
    return AuthStore(engine=engine)


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_code(row) -> VerificationCode:
    return VerificationCode(
        phone=row.phone,
        purpose=Purpose(row.typ),
        code=row.code,
        expires_at=_as_utc(row.expires_at),
        used=bool(row.used),
        updated_at=_as_utc(row.updated_at),
    )


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        phone=row.phone,
        org_id=row.org_id,
        password_hash=row.password_hash,
        password_salt=row.password_salt,
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
        deleted_at=_as_utc(row.deleted_at),
    )


def _row_to_org(row) -> Organization:
    return Organization(
        id=row.id,
        name=row.name,
        owner_id=row.owner_id,
        created_at=_as_utc(row.created_at),
    )
