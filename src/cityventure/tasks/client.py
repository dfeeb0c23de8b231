"""Tasks client with idempotent enqueue.

Provides multiple backends selectable via TASKS_BACKEND env var:
- inline (default): records tasks without executing them (dev/tests)
- http: sends tasks to the worker via HTTP POST
- cloud_tasks: sends tasks to Google Cloud Tasks

Refund work that must survive a crash or a gateway outage (submission to
Stripe, applying a Stripe result) always goes through here, so the queue's
retry policy drives retries: a worker 5xx makes the queue try again.
"""

from datetime import datetime

from cityventure.config import get_settings

SUBMIT_REFUND_PATH = "/tasks/refunds/submit"
APPLY_REFUND_RESULT_PATH = "/tasks/refunds/apply-result"


def submit_refund_task_id(refund_id: str, attempt: str | None = None) -> str:
    """Task id for a gateway submission; a manual resubmit passes an attempt token."""
    if attempt:
        return f"refund-submit:{refund_id}:{attempt}"
    return f"refund-submit:{refund_id}"


def apply_result_task_id(event_id: str) -> str:
    return f"refund-result:{event_id}"


class TasksClient:
    """Tasks client with idempotent enqueue by task_id.

    Backend is read from TASKS_BACKEND when the client is created, unless
    passed explicitly.

    Tracks task_ids to ensure idempotency (same task_id = no-op).
    """

    def __init__(self, backend: str | None = None) -> None:
        self._enqueued_ids: set[str] = set()
        self._recorded_tasks: list[dict] = []
        self._backend = backend or get_settings().tasks_backend

    @property
    def backend(self) -> str:
        return self._backend

    def enqueue_http(
        self,
        task_id: str,
        url_path: str,
        payload: dict,
        correlation_id: str | None = None,
        schedule_time: datetime | None = None,
    ) -> bool:
        """Enqueue task for HTTP-based execution on the worker.

        Idempotent by task_id: if same task_id was already enqueued,
        returns False without re-enqueuing.

        Args:
            task_id: Unique identifier for idempotency.
            url_path: Worker endpoint path (e.g., "/tasks/refunds/submit").
            payload: Task data (ids only, no PII).
            correlation_id: Optional correlation ID for tracing.
            schedule_time: Optional future execution time.

        Returns:
            True if task was enqueued (new task_id).
            False if no-op (task_id already seen) or the HTTP backend
            could not deliver it.

        Raises:
            ValueError: If TASKS_BACKEND is unknown.
        """
        if task_id in self._enqueued_ids:
            return False

        if self._backend == "inline":
            self._recorded_tasks.append({
                "task_id": task_id,
                "url_path": url_path,
                "payload": payload,
                "correlation_id": correlation_id,
                "schedule_time": schedule_time,
            })
            enqueued = True

        elif self._backend == "http":
            from cityventure.tasks.http_backend import enqueue_http
            enqueued = enqueue_http(
                task_id, url_path, payload, correlation_id, schedule_time
            )

        elif self._backend == "cloud_tasks":
            from cityventure.tasks.cloud_tasks_backend import enqueue_cloud_task
            enqueued = enqueue_cloud_task(
                task_id, url_path, payload, correlation_id, schedule_time
            )

        else:
            raise ValueError(f"Unknown TASKS_BACKEND: {self._backend}")

        if enqueued:
            self._enqueued_ids.add(task_id)
        return enqueued

    def was_enqueued(self, task_id: str) -> bool:
        return task_id in self._enqueued_ids

    def get_recorded_tasks(self) -> list[dict]:
        """Tasks recorded by the inline backend (useful for testing)."""
        return list(self._recorded_tasks)

    def clear(self) -> None:
        """Clear enqueued task_ids and recorded tasks (useful for testing)."""
        self._enqueued_ids.clear()
        self._recorded_tasks.clear()
