"""
Deferred sync: what gets serialized when a subject change is queued.

Only the subject's identity and the tenant active at enqueue time travel;
the handler reloads the subject when it runs.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Protocol, Tuple

import structlog
from pydantic import BaseModel

from ..core.record import Record, RecordRef

logger = structlog.get_logger()


class SyncTask(BaseModel):
    subject: RecordRef
    tenant: Optional[str] = None
    # subjects already being synced upstream of this one
    chain: Tuple[RecordRef, ...] = ()
    model_config = {"frozen": True}

    @classmethod
    def for_subject(
        cls, subject: Record, tenant: Optional[str], chain: Tuple[RecordRef, ...] = ()
    ) -> "SyncTask":
        return cls(subject=subject.ref, tenant=tenant, chain=chain)


TaskHandler = Callable[[SyncTask], Any]


class TaskRunner(Protocol):
    def bind(self, handler: TaskHandler) -> None: ...

    def enqueue(self, task: SyncTask) -> Any: ...


class InlineTaskRunner:
    """Runs each task right away, after a JSON round trip like a real queue."""

    def __init__(self, handler: Optional[TaskHandler] = None):
        self._handler = handler
        self.delivered: list[SyncTask] = []

    def bind(self, handler: TaskHandler) -> None:
        self._handler = handler

    def enqueue(self, task: SyncTask) -> Any:
        if self._handler is None:
            raise RuntimeError("InlineTaskRunner has no handler bound")
        delivered = SyncTask.model_validate_json(task.model_dump_json())
        self.delivered.append(delivered)
        logger.debug("task.delivered", subject=str(delivered.subject), tenant=delivered.tenant)
        return self._handler(delivered)
