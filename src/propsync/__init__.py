"""
Public surface for propsync.
Importing this module does **not** touch the database or DBOS; call
`propsync.init_propsync(engine)` during application start-up.
"""

from .bootstrap import Wiring, init_propsync
from .config import Settings
from .core.properties import PropertiesBase
from .core.record import Record, RecordRef
from .core.versioned import FlagVersioned, TimestampVersioned
from .errors import (
    ConcurrencyError,
    ConfigurationError,
    NotFoundError,
    PersistenceError,
    PropsyncError,
    SyncFailed,
)
from .events import ChangeNotifier, on
from .formatters import AttributeFormatter, FormatterRegistry, formatters
from .subscriptions.models import FormatterSelection, KeySelection, Subscription
from .subscriptions.registry import SubscriptionRegistry
from .sync.coordinator import SyncCoordinator, SyncReport, SyncResult, SyncState
from .sync.snapshot import SnapshotBuilder
from .tenancy import TenantContext
from .versioning import VersionSelector

__all__ = [
    "AttributeFormatter",
    "ChangeNotifier",
    "ConcurrencyError",
    "ConfigurationError",
    "FlagVersioned",
    "FormatterRegistry",
    "FormatterSelection",
    "KeySelection",
    "NotFoundError",
    "PersistenceError",
    "PropertiesBase",
    "PropsyncError",
    "Record",
    "RecordRef",
    "Settings",
    "SnapshotBuilder",
    "Subscription",
    "SubscriptionRegistry",
    "SyncCoordinator",
    "SyncFailed",
    "SyncReport",
    "SyncResult",
    "SyncState",
    "TenantContext",
    "TimestampVersioned",
    "VersionSelector",
    "Wiring",
    "formatters",
    "init_propsync",
    "on",
]
