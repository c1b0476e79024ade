"""Public-facing routes (APP_ROLE=public)."""

from fastapi import APIRouter

from carrental.api.routes import bookings

router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


router.include_router(bookings.router)
