"""
Durable registry of who listens to whom.

Rows are keyed by (reference, subject, role); `listen` upserts, reading
never creates rows, and nothing here deletes a row except `forget`.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional, Union

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.record import Record, RecordRef
from ..errors import NotFoundError, PersistenceError
from ..formatters import FormatterRegistry
from ..formatters import formatters as default_formatters
from ..persistence.models import SubscriptionRow, now_utc
from ..persistence.store import RecordStore
from .models import FormatterSelection, KeySelection, Subscription, as_selection

logger = structlog.get_logger()

Target = Union[Record, RecordRef]


def _pairing(reference: RecordRef, subject: RecordRef, role: str) -> list:
    return [
        SubscriptionRow.reference_kind == reference.kind,
        SubscriptionRow.reference_id == reference.id,
        SubscriptionRow.subject_kind == subject.kind,
        SubscriptionRow.subject_id == subject.id,
        SubscriptionRow.role == role,
    ]


class SubscriptionRegistry:
    def __init__(self, store: RecordStore, formatters: Optional[FormatterRegistry] = None):
        self.store = store
        self.formatters = formatters if formatters is not None else default_formatters

    def listen(
        self,
        reference: Target,
        subject: Target,
        selection: Any,
        role: Optional[str] = None,
    ) -> Subscription:
        """Create or update the subscription of `reference` to `subject`.

        A changed selection replaces the stored one and drops the cached
        snapshot so the next sync starts from scratch.
        """
        ref, subj = RecordRef.of(reference), RecordRef.of(subject)
        sel = as_selection(selection)
        if isinstance(sel, FormatterSelection):
            self.formatters.resolve(sel.formatter)  # raises ConfigurationError
        role = role or subj.kind

        try:
            return self._upsert(ref, subj, sel, role)
        except IntegrityError:
            # a concurrent listen inserted the same pairing first
            try:
                return self._upsert(ref, subj, sel, role)
            except IntegrityError as exc:
                raise PersistenceError(f"could not register {ref} -> {subj}: {exc.orig}") from exc

    def _upsert(
        self,
        ref: RecordRef,
        subj: RecordRef,
        sel: Union[KeySelection, FormatterSelection],
        role: str,
    ) -> Subscription:
        stored = sel.model_dump(mode="json")
        log = logger.bind(reference=str(ref), subject=str(subj), role=role)
        with self.store.transaction() as s:
            row = s.scalars(
                select(SubscriptionRow).where(*_pairing(ref, subj, role)).with_for_update()
            ).one_or_none()
            if row is None:
                now = now_utc()
                row = SubscriptionRow(
                    id=uuid.uuid4(),
                    reference_kind=ref.kind,
                    reference_id=ref.id,
                    subject_kind=subj.kind,
                    subject_id=subj.id,
                    role=role,
                    selection=stored,
                    created_ts=now,
                    updated_ts=now,
                )
                s.add(row)
                log.info("subscription.created")
            elif row.selection != stored:
                row.selection = stored
                row.snapshot = None
                row.synced_at = None
                row.updated_ts = now_utc()
                log.info("subscription.selection_replaced")
            s.flush()
            return Subscription.from_row(row)

    def get(self, subscription_id: uuid.UUID) -> Subscription:
        with self.store.transaction() as s:
            return Subscription.from_row(self._row(s, subscription_id))

    def subscriptions_for(self, subject: Target) -> List[Subscription]:
        """Every subscription on `subject`, in creation order."""
        subj = RecordRef.of(subject)
        q = (
            select(SubscriptionRow)
            .where(
                SubscriptionRow.subject_kind == subj.kind,
                SubscriptionRow.subject_id == subj.id,
            )
            .order_by(SubscriptionRow.seq)
        )
        with self.store.transaction() as s:
            return [Subscription.from_row(row) for row in s.scalars(q)]

    def listeners_of(self, reference: Target) -> List[Subscription]:
        """Every subscription held by `reference`, in creation order."""
        ref = RecordRef.of(reference)
        q = (
            select(SubscriptionRow)
            .where(
                SubscriptionRow.reference_kind == ref.kind,
                SubscriptionRow.reference_id == ref.id,
            )
            .order_by(SubscriptionRow.seq)
        )
        with self.store.transaction() as s:
            return [Subscription.from_row(row) for row in s.scalars(q)]

    def record_snapshot(
        self, subscription_id: uuid.UUID, snapshot: Dict[str, Any]
    ) -> Subscription:
        """Store the last computed snapshot and when it was computed."""
        with self.store.transaction() as s:
            row = self._row(s, subscription_id)
            row.snapshot = snapshot
            row.synced_at = now_utc()
            s.flush()
            return Subscription.from_row(row)

    def forget(self, reference: Target, subject: Target, role: Optional[str] = None) -> bool:
        ref, subj = RecordRef.of(reference), RecordRef.of(subject)
        role = role or subj.kind
        with self.store.transaction() as s:
            result = s.execute(delete(SubscriptionRow).where(*_pairing(ref, subj, role)))
        if result.rowcount:
            logger.info("subscription.forgotten", reference=str(ref), subject=str(subj), role=role)
        return bool(result.rowcount)

    @staticmethod
    def _row(s: Session, subscription_id: uuid.UUID) -> SubscriptionRow:
        row = s.scalars(
            select(SubscriptionRow).where(SubscriptionRow.id == subscription_id)
        ).one_or_none()
        if row is None:
            raise NotFoundError(f"subscription {subscription_id} not found", id=subscription_id)
        return row
