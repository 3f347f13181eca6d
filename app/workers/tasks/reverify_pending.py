"""
Celery beat task: re-verify payments still pending after the gateway should have settled them.
Covers webhooks that never arrived. Orphaned gateway transactions without a local record
are not visible here.
"""
import logging
from datetime import datetime, timedelta, timezone

from app.core.celery_app import celery_app
from app.core.config import settings
from app.db.session import SessionLocal
from app.services.payments.errors import PaymentError, PaymentErrorKind
from app.services.payments.factory import build_reconciler

logger = logging.getLogger(__name__)


def reverify_pending(reconciler, older_than_minutes: int, limit: int) -> dict:
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
    pending = reconciler.store.list_stale_pending(cutoff, limit=limit)

    verified = 0
    failed = 0
    for payment in pending:
        try:
            reconciler.verify(payment.reference)
            verified += 1
        except PaymentError as e:
            failed += 1
            logger.warning(
                "pending_reverify_failed",
                extra={"reference": payment.reference, "error": e.message, "status": e.kind.value},
            )
            if e.kind is PaymentErrorKind.GATEWAY_UNAVAILABLE:
                # Stop the batch while the gateway is unavailable.
                break

    if pending:
        logger.info(
            "pending_reverify_done",
            extra={"count": len(pending), "outcome": f"verified={verified} failed={failed}"},
        )
    return {"ok": True, "checked": len(pending), "verified": verified, "failed": failed}


@celery_app.task(
    name="app.workers.tasks.reverify_pending.reverify_stale_pending",
    time_limit=300,
    soft_time_limit=280,
)
def reverify_stale_pending() -> dict:
    db = SessionLocal()
    try:
        return reverify_pending(
            build_reconciler(db),
            settings.pending_reverify_after_minutes,
            settings.pending_reverify_batch,
        )
    except PaymentError as e:
        logger.error("pending_reverify_error", extra={"error": e.message})
        db.rollback()
        return {"ok": False}
    except Exception:
        logger.exception("pending_reverify_error")
        db.rollback()
        return {"ok": False}
    finally:
        db.close()
