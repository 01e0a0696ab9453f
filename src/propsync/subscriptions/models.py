"""
Value types for subscriptions: what a reference wants from its subject.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from ..core.record import RecordRef
from ..persistence.models import SubscriptionRow


class KeySelection(BaseModel):
    """Copy these attribute keys, in this order."""

    kind: Literal["keys"] = "keys"
    keys: Tuple[str, ...] = Field(min_length=1)
    model_config = {"frozen": True}

    @field_validator("keys")
    @classmethod
    def _dedupe(cls, keys: Tuple[str, ...]) -> Tuple[str, ...]:
        return tuple(dict.fromkeys(keys))


class FormatterSelection(BaseModel):
    """Let a named formatter shape the snapshot, minus `except_keys`."""

    kind: Literal["formatter"] = "formatter"
    formatter: str = Field(min_length=1)
    except_keys: Tuple[str, ...] = ()
    model_config = {"frozen": True}

    @field_validator("except_keys")
    @classmethod
    def _normalize(cls, keys: Tuple[str, ...]) -> Tuple[str, ...]:
        return tuple(sorted(set(keys)))


Selection = Annotated[Union[KeySelection, FormatterSelection], Field(discriminator="kind")]
_selection = TypeAdapter(Selection)


def as_selection(value: Any) -> Union[KeySelection, FormatterSelection]:
    """Coerce the shorthand forms: a list of keys, a formatter name, or a dict."""
    if isinstance(value, (KeySelection, FormatterSelection)):
        return value
    if isinstance(value, str):
        return FormatterSelection(formatter=value)
    if isinstance(value, (list, tuple)):
        return KeySelection(keys=tuple(value))
    return _selection.validate_python(value)


class Subscription(BaseModel):
    """Reference record listens to subject record for a selection of attributes."""

    id: uuid.UUID
    seq: int
    reference: RecordRef
    subject: RecordRef
    role: str
    selection: Selection
    snapshot: Optional[Dict[str, Any]] = None
    synced_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: SubscriptionRow) -> "Subscription":
        return cls(
            id=row.id,
            seq=row.seq,
            reference=RecordRef(kind=row.reference_kind, id=row.reference_id),
            subject=RecordRef(kind=row.subject_kind, id=row.subject_id),
            role=row.role,
            selection=row.selection,
            snapshot=row.snapshot,
            synced_at=row.synced_at,
            created_at=row.created_ts,
            updated_at=row.updated_ts,
        )
