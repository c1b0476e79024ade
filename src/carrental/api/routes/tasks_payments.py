"""Worker routes for bank-transfer payment events (push delivery)."""

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from carrental.api.task_auth import verify_task_auth
from carrental.domain.payment_events import process_payment_message
from carrental.feed.dead_letters import DeadLetterPublisher, get_dead_letter_publisher
from carrental.infra.stores import (
    BookingStore,
    PaymentLedger,
    get_booking_store,
    get_payment_ledger,
)
from carrental.observability.correlation import get_correlation_id
from carrental.observability.logging import get_logger
from carrental.observability.redaction import safe_log_context

router = APIRouter(prefix="/tasks/payments", tags=["tasks"])

logger = get_logger(__name__)


def _get_booking_store() -> BookingStore:
    """Get booking store (allows override in tests)."""
    return get_booking_store()


def _get_payment_ledger() -> PaymentLedger:
    """Get payment ledger (allows override in tests)."""
    return get_payment_ledger()


def _get_dead_letters() -> DeadLetterPublisher:
    """Get dead-letter publisher (allows override in tests)."""
    return get_dead_letter_publisher()


@router.post("/bank-transfer")
async def handle_bank_transfer(request: Request) -> JSONResponse:
    """Run one payment event through the pipeline.

    The body is the raw feed message. Always answers 200 once authenticated:
    the outcome (SUCCESS, FAILED, SKIPPED, DUPLICATE, POISON) is in the body,
    and anything not applied has already been dead-lettered, so the pusher
    must not redeliver.
    """
    correlation_id = get_correlation_id()

    # Verify task authentication (OIDC or internal secret in local dev)
    if not verify_task_auth(request):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")

    raw = (await request.body()).decode("utf-8", errors="replace")

    result = process_payment_message(
        raw,
        store=_get_booking_store(),
        ledger=_get_payment_ledger(),
        dead_letters=_get_dead_letters(),
    )

    logger.info(
        "bank transfer task processed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                outcome=result.outcome,
                payment_id=result.payment_id,
            )
        },
    )
    return JSONResponse(status_code=200, content={"ok": True, **result.to_dict()})
