"""
Thin data-access layer around the `records` table.

Writes run in one short-lived Session per call; the change notifier fires
only after the transaction has committed.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Tuple, Type, TypeVar

import structlog
from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.sql.elements import ColumnElement

from ..core.record import Record, RecordRef, lookup_kind
from ..errors import NotFoundError, PersistenceError
from ..events import ChangeNotifier
from ..events import notifier as default_notifier
from ..tenancy import TenantContext
from .models import RecordRow, now_utc

if TYPE_CHECKING:
    from ..core.record import T_Record

T = TypeVar("T", bound=Record)
logger = structlog.get_logger()

# record fields that map 1:1 onto RecordRow columns
_COLUMN_FIELDS = {"id": "id", "tenant": "tenant", "current_at": "current_at",
                  "is_current": "is_current", "created_at": "created_ts",
                  "updated_at": "updated_ts"}

# current markers; only VersionSelector.set_current writes them
MARKER_FIELDS = ("current_at", "is_current")


def field_filter(key: str, value: Any) -> ColumnElement:
    """Equality on an own field, whether it lives in a column or in `data`."""
    if key in _COLUMN_FIELDS:
        return getattr(RecordRow, _COLUMN_FIELDS[key]) == value
    element = RecordRow.data[key]
    if value is None:
        return element.as_string().is_(None)
    if isinstance(value, bool):
        return element.as_boolean() == value
    if isinstance(value, int):
        return element.as_integer() == value
    if isinstance(value, float):
        return element.as_float() == value
    return element.as_string() == str(value)


class RecordStore:
    """Thin data‑access layer around the `records` table."""

    def __init__(
        self,
        engine: Engine,
        notifier: ChangeNotifier | None = None,
        tenants: TenantContext | None = None,
    ):
        self.engine = engine
        self.notifier = notifier if notifier is not None else default_notifier
        self.tenants = tenants if tenants is not None else TenantContext()
        self._sessions = sessionmaker(bind=engine, future=True, expire_on_commit=False)

    def _new_session(self) -> Session:
        return self._sessions()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Session whose work commits on clean exit and rolls back otherwise."""
        with self._new_session() as s:
            with s.begin():
                yield s

    # ---- reads ---------------------------------------------------------
    def load(self, cls: Type[T] | str, rec_id: uuid.UUID) -> T:
        record_cls = lookup_kind(cls) if isinstance(cls, str) else cls
        with self._new_session() as s:
            row = s.get(RecordRow, (record_cls.__kind__, rec_id))
            if row is None:
                raise NotFoundError(
                    f"{record_cls.__kind__} {rec_id} not found",
                    kind=record_cls.__kind__,
                    id=rec_id,
                )
            return self._to_record(record_cls, row)  # type: ignore[return-value]

    def load_ref(self, ref: RecordRef) -> Record:
        return self.load(ref.resolve_type(), ref.id)

    def exists(self, ref: RecordRef) -> bool:
        with self._new_session() as s:
            return s.get(RecordRow, (ref.kind, ref.id)) is not None

    def query(self, cls: Type[T], *criteria: ColumnElement, **equals: Any) -> List[T]:
        """Records of `cls` matching all criteria, oldest first.

        Scoped to the active tenant when one is entered.
        """
        q = select(RecordRow).where(RecordRow.kind == cls.__kind__, *criteria)
        q = q.where(*(field_filter(k, v) for k, v in equals.items()))
        if self.tenants.current is not None:
            q = q.where(RecordRow.tenant == self.tenants.current)
        q = q.order_by(RecordRow.created_ts, RecordRow.id)
        with self._new_session() as s:
            return [self._to_record(cls, row) for row in s.scalars(q)]

    # ---- writes ---------------------------------------------------------
    def save(self, record: "T_Record") -> "T_Record":
        """Insert or update `record`, then notify subscribers post-commit."""
        self.check_tenant(record)
        try:
            with self.transaction() as s:
                created, now = self.write(s, record)
        except IntegrityError as exc:
            raise PersistenceError(f"store rejected {record.ref}: {exc.orig}") from exc
        except OperationalError as exc:
            raise PersistenceError(f"store failed on {record.ref}: {exc.orig}") from exc
        self.stamp(record, created, now)
        logger.debug("record.saved", record=str(record.ref), created=created)
        self.notifier.notify(record, created=created)
        return record

    def delete(self, record: Record) -> None:
        self.check_tenant(record)
        with self.transaction() as s:
            row = s.get(RecordRow, (record.__kind__, record.id))
            if row is None:
                raise NotFoundError(
                    f"{record.ref} not found", kind=record.__kind__, id=record.id
                )
            s.delete(row)

    def check_tenant(self, record: Record) -> None:
        """Refuse writes into a tenant other than the active one."""
        active = self.tenants.current
        if active is None or record.tenant is None or record.tenant == active:
            return
        raise PersistenceError(
            f"cannot write {record.ref} of tenant {record.tenant!r} "
            f"while tenant {active!r} is active"
        )

    def write(
        self, session: Session, record: Record, *, markers: bool = False
    ) -> Tuple[bool, datetime]:
        """Stage `record` on `session`; returns (is new row, write time).

        Marker columns are written only when `markers` is set. Otherwise a
        new row starts unmarked, an existing row keeps its marker, and the
        stored marker is copied back onto `record`.
        """
        now = now_utc()
        row = session.get(RecordRow, (record.__kind__, record.id))
        created = row is None
        if created:
            if record.tenant is None:
                record.tenant = self.tenants.current
            row = RecordRow(kind=record.__kind__, id=record.id, created_ts=now)
            session.add(row)
        row.tenant = record.tenant
        row.data = record.stored_fields()
        row.properties = record.properties.list()
        if markers:
            row.current_at = getattr(record, "current_at", None)
            row.is_current = getattr(record, "is_current", 0)
        elif created:
            row.current_at, row.is_current = None, 0
        for name in MARKER_FIELDS:
            if name in type(record).model_fields:
                setattr(record, name, getattr(row, name))
        row.updated_ts = now
        session.flush()  # surface constraint violations inside the transaction
        return created, now

    @staticmethod
    def stamp(record: Record, created: bool, now: datetime) -> None:
        """Copy write timestamps onto `record` once its transaction committed."""
        if created:
            record.created_at = now
        record.updated_at = now

    # ---- mapping --------------------------------------------------------
    @staticmethod
    def _to_record(cls: Type[T], row: RecordRow) -> T:
        data: Dict[str, Any] = dict(row.data or {})
        data.update(
            id=row.id,
            tenant=row.tenant,
            properties=row.properties or {},
            created_at=row.created_ts,
            updated_at=row.updated_ts,
        )
        if "current_at" in cls.model_fields:
            data["current_at"] = row.current_at
        if "is_current" in cls.model_fields:
            data["is_current"] = row.is_current
        return cls.model_validate(data)
