"""
Two tables: `records` holds every Record, `subscriptions` the sync obligations.
"""

import uuid
import datetime as dt

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# JSONB on Postgres, plain JSON elsewhere; Python None is stored as SQL NULL
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


def now_utc() -> dt.datetime:  # compact timezone‑aware timestamp
    return dt.datetime.now(tz=dt.timezone.utc)


class RecordRow(Base):
    """One row per record; own fields in `data`, props in `properties`."""

    __tablename__ = "records"

    kind = Column(String, primary_key=True)
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant = Column(String, nullable=True, index=True)
    data = Column(JSONType, nullable=False, default=dict)
    properties = Column(JSONType, nullable=False, default=dict)
    # current markers; which one is used depends on the record type
    current_at = Column(DateTime(timezone=True), nullable=True)
    is_current = Column(Integer, nullable=False, default=0)
    created_ts = Column(DateTime(timezone=True), default=now_utc, nullable=False)
    updated_ts = Column(DateTime(timezone=True), default=now_utc, nullable=False)

    __table_args__ = (
        CheckConstraint("is_current IN (0, 1)", name="ck_records_is_current_flag"),
        Index("ix_records_kind_tenant", "kind", "tenant"),
    )


class SubscriptionRow(Base):
    """Reference record listens to subject record for a selection of attributes."""

    __tablename__ = "subscriptions"

    # integer key doubles as the stable creation order
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(Uuid, nullable=False, unique=True, default=uuid.uuid4)
    reference_kind = Column(String, nullable=False)
    reference_id = Column(Uuid, nullable=False)
    subject_kind = Column(String, nullable=False)
    subject_id = Column(Uuid, nullable=False)
    role = Column(String, nullable=False)
    selection = Column(JSONType, nullable=False)
    snapshot = Column(JSONType, nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=True)
    created_ts = Column(DateTime(timezone=True), default=now_utc, nullable=False)
    updated_ts = Column(DateTime(timezone=True), default=now_utc, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "reference_kind",
            "reference_id",
            "subject_kind",
            "subject_id",
            "role",
            name="uq_subscriptions_pairing",
        ),
        Index("ix_subscriptions_subject", "subject_kind", "subject_id"),
        Index("ix_subscriptions_reference", "reference_kind", "reference_id"),
    )
