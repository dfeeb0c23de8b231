"""Cloud Tasks backend for GCP deployment."""
import json
import os
from datetime import datetime

from google.api_core.exceptions import AlreadyExists
from google.cloud import tasks_v2
from google.protobuf import timestamp_pb2

from cityventure.observability.logging import get_logger

logger = get_logger(__name__)


def task_name_for(parent: str, task_id: str) -> str:
    """Cloud Tasks names allow only [A-Za-z0-9_-]; the name doubles as dedupe key."""
    safe_task_id = task_id.replace(":", "-").replace("/", "-")
    return f"{parent}/tasks/{safe_task_id}"


def enqueue_cloud_task(
    task_id: str,
    url_path: str,
    payload: dict,
    correlation_id: str | None = None,
    schedule_time: datetime | None = None,
) -> bool:
    """Enqueue task via Google Cloud Tasks.

    Args:
        task_id: Unique task identifier.
        url_path: Worker endpoint path (e.g., /tasks/refunds/submit).
        payload: Task payload (ids only).
        correlation_id: Optional correlation ID for tracing.
        schedule_time: Optional future execution time.

    Returns:
        True if the task was created or already existed.

    Raises:
        RuntimeError: If required env vars not set.
    """
    project = os.environ.get("GOOGLE_CLOUD_PROJECT") or os.environ.get("GCP_PROJECT_ID")
    location = os.environ.get("GCP_LOCATION", "asia-southeast1")
    queue = os.environ.get("GCP_TASKS_QUEUE", "cityventure-refunds")
    worker_url = os.environ.get("WORKER_BASE_URL")
    oidc_service_account = os.environ.get("TASKS_OIDC_SERVICE_ACCOUNT")
    oidc_audience = os.environ.get("TASKS_OIDC_AUDIENCE")

    if not project:
        raise RuntimeError("GOOGLE_CLOUD_PROJECT or GCP_PROJECT_ID required")
    if not worker_url:
        raise RuntimeError("WORKER_BASE_URL required for Cloud Tasks")
    if not oidc_service_account:
        raise RuntimeError("TASKS_OIDC_SERVICE_ACCOUNT required for Cloud Tasks")
    if not oidc_audience:
        raise RuntimeError("TASKS_OIDC_AUDIENCE required for Cloud Tasks")

    client = tasks_v2.CloudTasksClient()
    parent = client.queue_path(project, location, queue)

    headers = {"Content-Type": "application/json"}
    if correlation_id:
        headers["X-Correlation-Id"] = correlation_id

    task = {
        "name": task_name_for(parent, task_id),
        "http_request": {
            "http_method": tasks_v2.HttpMethod.POST,
            "url": f"{worker_url.rstrip('/')}{url_path}",
            "headers": headers,
            "body": json.dumps(payload).encode(),
            "oidc_token": {
                "service_account_email": oidc_service_account,
                "audience": oidc_audience,
            },
        },
    }

    if schedule_time:
        timestamp = timestamp_pb2.Timestamp()
        timestamp.FromDatetime(schedule_time)
        task["schedule_time"] = timestamp

    try:
        response = client.create_task(parent=parent, task=task)
    except AlreadyExists:
        logger.info(
            "cloud task already exists (dedupe)",
            extra={"extra_fields": {"task_id": task_id, "correlationId": correlation_id}},
        )
        return True
    except Exception as e:
        logger.exception(
            "failed to enqueue cloud task",
            extra={
                "extra_fields": {
                    "task_id": task_id,
                    "correlationId": correlation_id,
                    "error": str(e),
                }
            },
        )
        raise

    logger.info(
        "cloud task enqueued",
        extra={
            "extra_fields": {
                "task_name": response.name,
                "url_path": url_path,
                "correlationId": correlation_id,
            }
        },
    )
    return True
