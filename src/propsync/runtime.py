"""
propsync.runtime  ──  A thin façade for running propsync on DBOS queues.

Usage pattern in user code
--------------------------
    from propsync.runtime import PropSync

    wiring = PropSync.init(name="crm", database_url="postgresql://...")
    PropSync.launch()          # starts the DBOS queue workers
"""

from __future__ import annotations
from typing import Any, ClassVar, Optional

from dbos import DBOS  # the only direct dbos import outside queues/
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from .bootstrap import Wiring, init_propsync
from .config import Settings


class PropSync(DBOS):  # inherit all decorators & queue API
    """
    Drop-in replacement for DBOS in downstream code. A private singleton
    keeps one DBOS instance and one propsync wiring per process.
    """

    _singleton: ClassVar[Optional["PropSync"]] = None
    _engine: ClassVar[Optional[Engine]] = None
    _wiring: ClassVar[Optional[Wiring]] = None

    # ---------- one-shot initialiser ----------
    @classmethod
    def init(
        cls,
        *,
        name: str,
        database_url: Optional[str] = None,
        settings: Optional[Settings] = None,
        **extra_cfg: Any,
    ) -> Wiring:
        if cls._singleton is None:
            settings = settings or Settings.from_env()
            database_url = database_url or settings.database_url
            cfg = {"name": name, "database_url": database_url, **extra_cfg}
            cls._singleton = cls(config=cfg)
            cls._engine = create_engine(database_url, pool_pre_ping=True, future=True)
            # queued is the point of running under DBOS
            settings = settings.model_copy(update={"sync_mode": "queued"})
            cls._wiring = init_propsync(cls._engine, settings)  # auto-wire RecordStores
        return cls._wiring  # type: ignore[return-value]

    # ---------- convenience helpers ----------
    @classmethod
    def instance(cls) -> "PropSync":
        if cls._singleton is None:
            raise RuntimeError("PropSync.init() has not been called")
        return cls._singleton

    @classmethod
    def wiring(cls) -> Wiring:
        if cls._wiring is None:
            raise RuntimeError("PropSync.init() has not been called")
        return cls._wiring
