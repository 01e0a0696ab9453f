"""
Single entry-point that wires SQLAlchemy (and optionally DBOS) into propsync.
Call once, e.g. in application start-up.
"""

from __future__ import annotations

from typing import NamedTuple, Optional

from sqlalchemy.engine import Engine

from .config import Settings
from .core.record import Record
from .events import ChangeNotifier
from .events import notifier as default_notifier
from .formatters import FormatterRegistry
from .formatters import formatters as default_formatters
from .log import configure_logging
from .persistence.models import Base
from .persistence.store import RecordStore
from .subscriptions.registry import SubscriptionRegistry
from .sync.coordinator import CrossTenantPredicate, SyncCoordinator
from .sync.snapshot import SnapshotBuilder
from .sync.tasks import TaskRunner
from .tenancy import TenantContext
from .versioning import VersionSelector


class Wiring(NamedTuple):
    store: RecordStore
    registry: SubscriptionRegistry
    coordinator: SyncCoordinator
    selector: VersionSelector
    settings: Settings


def _subclasses(cls: type):
    for sub in cls.__subclasses__():
        yield sub
        yield from _subclasses(sub)


def init_propsync(
    engine: Engine,
    settings: Optional[Settings] = None,
    *,
    notifier: Optional[ChangeNotifier] = None,
    formatters: Optional[FormatterRegistry] = None,
    tenants: Optional[TenantContext] = None,
    runner: Optional[TaskRunner] = None,
    allow_cross_tenant: Optional[CrossTenantPredicate] = None,
    configure_logs: bool = True,
) -> Wiring:
    """
    Create the tables, build store / registry / coordinator, subscribe the
    coordinator to record saves and inject the store into **all** Record
    subclasses.
    """
    settings = settings or Settings.from_env()
    if configure_logs:
        configure_logging(settings.log_level, settings.log_format)

    Base.metadata.create_all(engine)  # ← this line creates the tables
    notifier = notifier if notifier is not None else default_notifier
    formatters = formatters if formatters is not None else default_formatters

    store = RecordStore(engine, notifier, tenants)
    registry = SubscriptionRegistry(store, formatters)

    if runner is None and settings.sync_mode == "queued":
        from .queues.dispatcher import QueuedTaskRunner  # late import – needs DBOS

        runner = QueuedTaskRunner(settings.queue_name, settings.queue_concurrency)

    if allow_cross_tenant is None:
        allowed = settings.cross_tenant_sync
        allow_cross_tenant = lambda subscription: allowed  # noqa: E731

    coordinator = SyncCoordinator(
        store,
        registry,
        SnapshotBuilder(formatters),
        allow_cross_tenant=allow_cross_tenant,
        runner=runner,
        mode=settings.sync_mode,
    )
    notifier.register("create", (Record,), coordinator.handle_saved)
    notifier.register("update", (Record,), coordinator.handle_saved)

    # Attach store to Record *and* every existing subclass
    Record._store = store  # type: ignore[misc]
    for subclass in _subclasses(Record):
        if "_store" in vars(subclass):
            subclass._store = store  # type: ignore[misc]

    return Wiring(store, registry, coordinator, VersionSelector(store), settings)
