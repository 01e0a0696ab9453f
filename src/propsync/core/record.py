"""
Record kernel – *pure Pydantic* (no SQLAlchemy or DBOS imports).

* Every concrete subclass is registered under a snake_case *kind* at
  class-creation time, so a `(kind, id)` pair is enough to load it back.
* Own fields are declared on the subclass; schema-less attributes live in
  `properties`.
* `save()` goes through the injected RecordStore, which notifies the sync
  engine after commit.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar, Dict, Type, TypeVar

from pydantic import BaseModel, Field

from ..errors import ConfigurationError
from .properties import PropertiesBase

if TYPE_CHECKING:
    from ..persistence.store import RecordStore

T_Record = TypeVar("T_Record", bound="Record")
ModelMeta = BaseModel.__class__

# columns the store keeps outside the `data` JSON blob
STORED_COLUMNS = frozenset(
    {"id", "tenant", "properties", "created_at", "updated_at", "current_at", "is_current"}
)

_kinds: Dict[str, Type["Record"]] = {}


# helpers
def _snake(name: str) -> str:
    """CamelCase ➜ snake_case."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def lookup_kind(kind: str) -> Type["Record"]:
    try:
        return _kinds[kind]
    except KeyError:
        raise ConfigurationError(f"no record type registered as {kind!r}") from None


class RecordRef(BaseModel):
    """Polymorphic pointer to a record: its kind tag plus its id."""

    kind: str
    id: uuid.UUID
    model_config = {"frozen": True}

    @classmethod
    def of(cls, target: "Record | RecordRef") -> "RecordRef":
        if isinstance(target, RecordRef):
            return target
        return cls(kind=target.__kind__, id=target.id)

    def resolve_type(self) -> Type["Record"]:
        return lookup_kind(self.kind)

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"


# metaclass that registers kinds
class RecordMeta(ModelMeta):
    """Attach `__kind__` and register concrete classes at class-creation time."""

    def __new__(mcls, name: str, bases, ns, **kw):
        cls = super().__new__(mcls, name, bases, ns, **kw)  # create class first
        if ns.get("__abstract__", False):  # skip Record and the versioned mixins
            return cls

        kind = ns.get("__kind__") or _snake(name)
        existing = _kinds.get(kind)
        if existing is not None and existing.__qualname__ != cls.__qualname__:
            raise ConfigurationError(
                f"record kind {kind!r} already used by {existing.__qualname__}"
            )
        cls.__kind__ = kind  # type: ignore[attr-defined]
        _kinds[kind] = cls  # type: ignore[assignment]
        return cls


# Record base
class Record(BaseModel, metaclass=RecordMeta):
    """Base class for anything that owns props or takes part in syncing."""

    __abstract__ = True
    __kind__: ClassVar[str] = ""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    tenant: str | None = None
    properties: PropertiesBase = Field(default_factory=PropertiesBase)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    _store: ClassVar["RecordStore | None"] = None  # injected by init_propsync()
    # saving a record of this type triggers SyncCoordinator.on_subject_changed
    notify_subscribers: ClassVar[bool] = False
    model_config = {"extra": "allow", "arbitrary_types_allowed": True}

    @property
    def ref(self) -> RecordRef:
        return RecordRef.of(self)

    @property
    def is_new(self) -> bool:
        return self.created_at is None

    def own_fields(self) -> Dict[str, Any]:
        """Declared (and extra) fields, JSON-encoded, without the props bag."""
        return self.model_dump(mode="json", exclude={"properties"})

    def stored_fields(self) -> Dict[str, Any]:
        """What the store keeps in the `data` column."""
        return self.model_dump(mode="json", exclude=set(STORED_COLUMNS))

    def attributes(self) -> Dict[str, Any]:
        """Props merged with own fields; own fields win on a key collision."""
        return {**self.properties.list(), **self.own_fields()}

    # persistence
    def save(self: T_Record) -> T_Record:
        return self._ensure_store().save(self)

    @classmethod
    def hydrate(cls: Type[T_Record], rec_id: uuid.UUID) -> T_Record:
        return cls._ensure_store().load(cls, rec_id)

    # internal util
    @classmethod
    def _ensure_store(cls) -> "RecordStore":
        if cls._store is None:
            raise RuntimeError("Call init_propsync(engine) before using Record")
        return cls._store
