"""
Propagation of subject changes onto the references that listen to them.

For one subject change every subscription is attempted exactly once, in
creation order. A failing subscription is recorded in the report and the
loop moves on; there is no retry here.
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from ..core.record import Record, RecordRef
from ..errors import ConfigurationError, NotFoundError, PersistenceError, SyncFailed
from ..persistence.store import RecordStore
from ..subscriptions.models import Subscription
from ..subscriptions.registry import SubscriptionRegistry
from .snapshot import SnapshotBuilder
from .tasks import SyncTask, TaskRunner

logger = structlog.get_logger()

CrossTenantPredicate = Callable[[Subscription], bool]
SyncMode = Literal["inline", "queued"]

# subjects being synced further up the current call chain
_chain: ContextVar[Tuple[RecordRef, ...]] = ContextVar("propsync_sync_chain", default=())

_ISOLATED = (NotFoundError, PersistenceError, ConfigurationError)


class SyncState(str, Enum):
    PENDING = "pending"
    DISPATCHED = "dispatched"
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"
    COMPLETE = "complete"


class SyncResult(BaseModel):
    subscription_id: uuid.UUID
    reference: RecordRef
    state: SyncState
    snapshot: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None
    error: Optional[Exception] = Field(default=None, exclude=True)
    model_config = {"arbitrary_types_allowed": True}


class SyncReport(BaseModel):
    subject: RecordRef
    state: SyncState = SyncState.PENDING
    results: List[SyncResult] = Field(default_factory=list)

    @property
    def applied(self) -> List[SyncResult]:
        return [r for r in self.results if r.state is SyncState.APPLIED]

    @property
    def failed(self) -> List[SyncResult]:
        return [r for r in self.results if r.state is SyncState.FAILED]

    @property
    def skipped(self) -> List[SyncResult]:
        return [r for r in self.results if r.state is SyncState.SKIPPED]


class SyncCoordinator:
    def __init__(
        self,
        store: RecordStore,
        registry: SubscriptionRegistry,
        builder: Optional[SnapshotBuilder] = None,
        *,
        allow_cross_tenant: Optional[CrossTenantPredicate] = None,
        runner: Optional[TaskRunner] = None,
        mode: SyncMode = "inline",
    ):
        if mode == "queued" and runner is None:
            raise ConfigurationError("queued sync mode needs a task runner")
        self.store = store
        self.registry = registry
        self.builder = builder if builder is not None else SnapshotBuilder(registry.formatters)
        self.allow_cross_tenant = allow_cross_tenant or (lambda subscription: False)
        self.runner = runner
        self.mode = mode
        if runner is not None:
            runner.bind(self.run_task)

    # ---- entry points --------------------------------------------------
    def handle_saved(self, record: Record) -> Optional[SyncReport]:
        """ChangeNotifier handler; only subscription-bearing types propagate."""
        if not type(record).notify_subscribers:
            return None
        return self.dispatch(record)

    def dispatch(self, subject: Record) -> Optional[SyncReport]:
        """Sync now, or hand the change to the task runner in queued mode."""
        if self.mode == "inline":
            return self.on_subject_changed(subject)

        chain = _chain.get()
        if subject.ref in chain:
            logger.info("sync.cycle_skipped", subject=str(subject.ref))
            return None
        task = SyncTask.for_subject(subject, self.store.tenants.current, chain)
        logger.info("sync.enqueued", subject=str(subject.ref), tenant=task.tenant)
        self.runner.enqueue(task)  # type: ignore[union-attr]
        return None

    def run_task(self, task: SyncTask) -> Optional[SyncReport]:
        """Queued handler: restore tenant and chain, reload, sync."""
        log = logger.bind(subject=str(task.subject), tenant=task.tenant)
        with self.store.tenants.scope(task.tenant):
            try:
                subject = self.store.load_ref(task.subject)
            except NotFoundError:
                log.warning("sync.subject_gone")
                return None
            token = _chain.set(task.chain)
            try:
                report = self.on_subject_changed(subject)
            finally:
                _chain.reset(token)
        if any(isinstance(r.error, PersistenceError) for r in report.failed):
            raise SyncFailed(report)
        return report

    def on_subject_changed(
        self,
        subject: Record,
        allow_cross_tenant: Optional[CrossTenantPredicate] = None,
    ) -> SyncReport:
        report = SyncReport(subject=subject.ref)
        log = logger.bind(subject=str(subject.ref))

        chain = _chain.get()
        if subject.ref in chain:
            # A -> B -> A: the subject is already being synced upstream
            log.info("sync.cycle_skipped", chain=[str(r) for r in chain])
            report.state = SyncState.COMPLETE
            return report

        allow = allow_cross_tenant or self.allow_cross_tenant
        token = _chain.set(chain + (subject.ref,))
        try:
            subscriptions = self.registry.subscriptions_for(subject)
            report.state = SyncState.DISPATCHED
            for subscription in subscriptions:
                report.results.append(self._apply(subject, subscription, allow))
        finally:
            _chain.reset(token)

        report.state = SyncState.COMPLETE
        log.info(
            "sync.complete",
            applied=len(report.applied),
            failed=len(report.failed),
            skipped=len(report.skipped),
        )
        return report

    # ---- per subscription ------------------------------------------------
    def _apply(
        self, subject: Record, subscription: Subscription, allow: CrossTenantPredicate
    ) -> SyncResult:
        log = logger.bind(
            subject=str(subject.ref),
            subscription_id=str(subscription.id),
            reference=str(subscription.reference),
        )

        def result(state: SyncState, **kw: Any) -> SyncResult:
            return SyncResult(
                subscription_id=subscription.id,
                reference=subscription.reference,
                state=state,
                **kw,
            )

        try:
            reference = self.store.load_ref(subscription.reference)
            if reference.tenant != subject.tenant and not allow(subscription):
                log.info("sync.cross_tenant_skipped", tenant=reference.tenant)
                return result(SyncState.SKIPPED, reason="cross-tenant sync disabled")

            with self.store.tenants.scope(reference.tenant):
                # the full snapshot exists before the reference is touched
                snapshot = self.builder.build(subject, subscription.selection)
                existing = reference.properties.get(subscription.role)
                merged = {**existing, **snapshot} if isinstance(existing, dict) else dict(snapshot)
                reference.properties.merge({subscription.role: merged})
                self.store.save(reference)
                self.registry.record_snapshot(subscription.id, snapshot)
        except _ISOLATED as exc:
            log.warning("sync.subscription_failed", error=str(exc), error_type=type(exc).__name__)
            return result(SyncState.FAILED, reason=str(exc), error=exc)
        except SQLAlchemyError as exc:
            error = PersistenceError(f"store failed syncing {subscription.reference}: {exc}")
            error.__cause__ = exc
            log.warning("sync.subscription_failed", error=str(exc), error_type=type(exc).__name__)
            return result(SyncState.FAILED, reason=str(error), error=error)
        except Exception as exc:
            log.exception("sync.subscription_error", error=str(exc))
            return result(SyncState.FAILED, reason=repr(exc), error=exc)

        log.debug("sync.subscription_applied", keys=sorted(snapshot))
        return result(SyncState.APPLIED, snapshot=snapshot)
