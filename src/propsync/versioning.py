"""
Current-record selection for version groups.

A version group is every record of one kind (and tenant) whose condition
fields hold equal values. Exactly one member of a group carries the current
marker. How the marker is stored is a property of the record type:

* `TimestampStrategy`: nullable `current_at`, non-null means current.
* `FlagStrategy`: integer `is_current` restricted to 0/1.

`VersionSelector.set_current` clears the others and marks the chosen record
inside a single store transaction; on Postgres the group's rows are locked
first so concurrent calls on the same group serialize.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Type

import structlog
from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.sql.elements import ColumnElement

from .errors import ConcurrencyError, ConfigurationError, PersistenceError
from .persistence.models import RecordRow, now_utc
from .persistence.store import field_filter

if TYPE_CHECKING:
    from .core.record import Record, T_Record
    from .persistence.store import RecordStore

logger = structlog.get_logger()


class VersionStrategy:
    """How a record type stores its current marker."""

    field: str = ""

    def marked(self) -> ColumnElement:
        raise NotImplementedError

    def cleared(self) -> Dict[str, Any]:
        raise NotImplementedError

    def mark(self, record: "Record") -> None:
        raise NotImplementedError

    def is_marked(self, record: "Record") -> bool:
        raise NotImplementedError


class TimestampStrategy(VersionStrategy):
    field = "current_at"

    def marked(self) -> ColumnElement:
        return RecordRow.current_at.is_not(None)

    def cleared(self) -> Dict[str, Any]:
        return {"current_at": None}

    def mark(self, record: "Record") -> None:
        record.current_at = now_utc()  # type: ignore[attr-defined]

    def is_marked(self, record: "Record") -> bool:
        return getattr(record, "current_at", None) is not None


class FlagStrategy(VersionStrategy):
    field = "is_current"

    def marked(self) -> ColumnElement:
        return RecordRow.is_current == 1

    def cleared(self) -> Dict[str, Any]:
        return {"is_current": 0}

    def mark(self, record: "Record") -> None:
        record.is_current = 1  # type: ignore[attr-defined]

    def is_marked(self, record: "Record") -> bool:
        return getattr(record, "is_current", 0) == 1


def _restore(record: "Record", values: Dict[str, Any]) -> None:
    for name, value in values.items():
        setattr(record, name, value)


def strategy_of(cls: Type["Record"]) -> VersionStrategy:
    strategy = getattr(cls, "version_strategy", None)
    if not isinstance(strategy, VersionStrategy):
        raise ConfigurationError(
            f"{cls.__name__} is not versioned; mix in TimestampVersioned or FlagVersioned"
        )
    return strategy


class VersionSelector:
    def __init__(self, store: "RecordStore"):
        self.store = store

    # ---- reads ---------------------------------------------------------
    def is_current(
        self, cls: Type["Record"], conditions: Mapping[str, Any] | None = None
    ) -> ColumnElement:
        """Filter predicate selecting the current member of matching groups."""
        strategy = strategy_of(cls)
        criteria = [RecordRow.kind == cls.__kind__, strategy.marked()]
        criteria += [field_filter(k, v) for k, v in (conditions or {}).items()]
        return and_(*criteria)

    def current(
        self, cls: Type["T_Record"], conditions: Mapping[str, Any] | None = None
    ) -> Optional["T_Record"]:
        found = self.store.query(cls, self.is_current(cls, conditions))
        if len(found) > 1:
            logger.warning(
                "version.multiple_current",
                kind=cls.__kind__,
                conditions=dict(conditions or {}),
                count=len(found),
            )
            found.sort(key=lambda r: r.updated_at, reverse=True)
        return found[0] if found else None

    # ---- writes ---------------------------------------------------------
    def group_values(
        self, record: "Record", conditions: Sequence[str] | None = None
    ) -> Dict[str, Any]:
        """Condition values read off `record`'s own fields."""
        names = conditions if conditions is not None else type(record).version_conditions  # type: ignore[attr-defined]
        own = record.model_dump(mode="json")
        missing = [name for name in names if name not in own]
        if missing:
            raise ConfigurationError(
                f"{type(record).__name__} has no field(s) {missing} to group versions by"
            )
        return {name: own[name] for name in names}

    def set_current(
        self, record: "T_Record", conditions: Sequence[str] | None = None
    ) -> "T_Record":
        """Make `record` the only current member of its group and persist it."""
        cls = type(record)
        strategy = strategy_of(cls)
        values = self.group_values(record, conditions)
        log = logger.bind(record=str(record.ref), group=values)
        self.store.check_tenant(record)
        tenant = record.tenant if record.tenant is not None else self.store.tenants.current

        group: List[ColumnElement] = [RecordRow.kind == cls.__kind__]
        group += [field_filter(k, v) for k, v in values.items()]
        group.append(
            RecordRow.tenant.is_(None) if tenant is None else RecordRow.tenant == tenant
        )
        before = {name: getattr(record, name) for name in (strategy.field, "tenant")}

        try:
            with self.store.transaction() as s:
                marked = s.scalars(
                    select(RecordRow)
                    .where(*group, strategy.marked())
                    .order_by(RecordRow.updated_ts.desc(), RecordRow.id)
                    .with_for_update()
                ).all()

                if len(marked) > 1:
                    # left behind by an earlier race; the group clear below repairs it
                    log.warning(
                        "version.self_heal", kept=str(record.id), marked=len(marked)
                    )

                # always clear the whole group: the UPDATE locks every member and
                # re-checks rows a concurrent set_current marked meanwhile
                s.execute(
                    update(RecordRow)
                    .where(*group, RecordRow.id != record.id)
                    .values(**strategy.cleared())
                    .execution_options(synchronize_session=False)
                )
                s.expire_all()

                strategy.mark(record)
                created, now = self.store.write(s, record, markers=True)
        except (OperationalError, StaleDataError) as exc:
            _restore(record, before)
            raise ConcurrencyError(
                f"could not make {record.ref} current: {exc}"
            ) from exc
        except IntegrityError as exc:
            _restore(record, before)
            raise PersistenceError(f"store rejected {record.ref}: {exc.orig}") from exc

        self.store.stamp(record, created, now)
        log.info("version.set_current", created=created, cleared=len(marked))
        self.store.notifier.notify(record, created=created)
        return record
