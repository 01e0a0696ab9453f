"""
Task runner that pushes sync tasks onto a DBOS queue.

The queue delivers at least once; a task that raises (e.g. `SyncFailed`)
is retried by DBOS according to the step's retry settings. Re-running a
task is safe because each subscription sync is idempotent.
"""

from typing import Any, Dict, Optional

import structlog
from dbos import DBOS, Queue

from ..sync.tasks import SyncTask, TaskHandler

logger = structlog.get_logger()

# DBOS resolves workflows by name, so the handler is process-wide
_handler: Optional[TaskHandler] = None


@DBOS.step(retries_allowed=True, max_attempts=3)
def apply_sync_task(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if _handler is None:
        raise RuntimeError("No sync handler bound; call init_propsync() first")
    report = _handler(SyncTask.model_validate(payload))
    return report.model_dump(mode="json") if report is not None else None


@DBOS.workflow()
def run_sync_task(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return apply_sync_task(payload)


class QueuedTaskRunner:
    """Enqueue each SyncTask on a named DBOS :class:`Queue`."""

    def __init__(self, queue_name: str, concurrency: int = 1):
        self.queue = Queue(queue_name, concurrency=concurrency)

    def bind(self, handler: TaskHandler) -> None:
        global _handler
        _handler = handler

    def enqueue(self, task: SyncTask) -> Any:
        logger.debug("queue.enqueue", queue=self.queue.name, subject=str(task.subject))
        return self.queue.enqueue(run_sync_task, task.model_dump(mode="json"))
