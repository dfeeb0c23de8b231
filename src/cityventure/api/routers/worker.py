"""Worker/internal routes (APP_ROLE=worker)."""

from fastapi import APIRouter

router = APIRouter()


@router.get("/tasks/health")
def tasks_health() -> dict:
    """Refund tasks subsystem health check."""
    return {"status": "ok", "subsystem": "tasks"}
