"""Worker/internal routes (APP_ROLE=worker)."""

from fastapi import APIRouter

from carrental.api.routes import tasks_bookings, tasks_payments

router = APIRouter()


@router.get("/tasks/health")
def tasks_health() -> dict:
    """Tasks subsystem health check."""
    return {"status": "ok", "subsystem": "tasks"}


router.include_router(tasks_payments.router)
router.include_router(tasks_bookings.router)
