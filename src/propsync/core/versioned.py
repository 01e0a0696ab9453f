"""
Record bases for version groups.

Subclasses name the fields that define a group in `version_conditions`.
A new record becomes the group's current member as soon as it is saved;
set `auto_current = False` to manage the marker by hand.
"""

from __future__ import annotations

from datetime import datetime
from typing import ClassVar, Tuple

from pydantic import Field

from ..versioning import FlagStrategy, TimestampStrategy, VersionSelector, VersionStrategy
from .record import Record, T_Record


class VersionedRecord(Record):
    __abstract__ = True

    version_conditions: ClassVar[Tuple[str, ...]] = ()
    version_strategy: ClassVar[VersionStrategy]
    auto_current: ClassVar[bool] = True

    @property
    def marked_current(self) -> bool:
        return self.version_strategy.is_marked(self)

    def save(self: T_Record) -> T_Record:
        store = self._ensure_store()
        if self.auto_current and self.is_new:  # type: ignore[attr-defined]
            return VersionSelector(store).set_current(self)
        return store.save(self)

    def make_current(self: T_Record) -> T_Record:
        return VersionSelector(self._ensure_store()).set_current(self)


class TimestampVersioned(VersionedRecord):
    """Current member has a non-null `current_at`."""

    __abstract__ = True
    version_strategy: ClassVar[VersionStrategy] = TimestampStrategy()

    current_at: datetime | None = None


class FlagVersioned(VersionedRecord):
    """Current member has `is_current == 1`."""

    __abstract__ = True
    version_strategy: ClassVar[VersionStrategy] = FlagStrategy()

    is_current: int = Field(default=0, ge=0, le=1)
