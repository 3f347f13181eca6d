"""
Payment routes: initialize (JSON or redirect), verify, Paystack webhook and payment listings.
"""
import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.db.session import get_db
from app.schemas.payments import (
    InitializeData,
    InitializeResponse,
    PaymentOut,
    PaymentRequest,
    VerifyData,
    VerifyResponse,
    WebhookAck,
)
from app.services.payments.errors import PaymentError, PaymentErrorKind
from app.services.payments.factory import build_reconciler
from app.services.payments.reconciler import PaymentReconciler
from app.services.payments.store import PaymentStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])

SIGNATURE_HEADER = "x-paystack-signature"

WEBHOOK_STATUS_CODES = {
    PaymentErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    PaymentErrorKind.SIGNATURE_INVALID: status.HTTP_401_UNAUTHORIZED,
}


def get_reconciler(db: Session = Depends(get_db)) -> PaymentReconciler:
    return build_reconciler(db)


def get_store(db: Session = Depends(get_db)) -> PaymentStore:
    return PaymentStore(db)


def _initialize_error(e: PaymentError) -> JSONResponse:
    code = (
        status.HTTP_400_BAD_REQUEST
        if e.kind is PaymentErrorKind.VALIDATION
        else status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    body = InitializeResponse(status=False, message=e.message)
    return JSONResponse(status_code=code, content=body.model_dump())


@router.get("/health")
def health() -> dict:
    return {"status": "ok", "service": "payments"}


@router.post("/initialize", response_model=InitializeResponse)
def initialize_payment(
    body: PaymentRequest,
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """
    Open a gateway transaction and return its authorization artifacts.
    Validation errors return 400 rather than 500: nothing reached the gateway and the client must
    fix the request. Gateway and persistence failures return 500.
    """
    try:
        result = reconciler.initialize(body)
    except PaymentError as e:
        logger.error("payment_initialize_failed", extra={"error": e.message, "status": e.kind.value})
        return _initialize_error(e)
    return InitializeResponse(
        status=True,
        message=result.message or "Authorization URL created",
        data=InitializeData(
            authorization_url=result.authorization_url,
            access_code=result.access_code,
            reference=result.reference,
        ),
    )


@router.post("/initialize/redirect")
def initialize_payment_redirect(
    body: PaymentRequest,
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """307 to the authorization URL. Error statuses match /initialize (400 validation, 500 otherwise)."""
    try:
        url = reconciler.redirect(body)
    except PaymentError as e:
        logger.error("payment_redirect_failed", extra={"error": e.message, "status": e.kind.value})
        return _initialize_error(e)
    return RedirectResponse(url=url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)


@router.get("/verify/{reference}", response_model=VerifyResponse)
def verify_payment(
    reference: str,
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    try:
        result = reconciler.verify(reference)
    except PaymentError as e:
        logger.error("payment_verify_failed", extra={"reference": reference, "error": e.message})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=VerifyResponse.failed().model_dump(),
        )
    return VerifyResponse(
        status=True,
        message=result.message or "Verification successful",
        data=VerifyData(
            status=result.status,
            amount=result.amount,
            reference=result.reference,
            gateway_response=result.gateway_response,
        ),
    )


@router.post("/webhook", response_model=WebhookAck)
async def paystack_webhook(
    request: Request,
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    # Signature is computed over the exact bytes received; read the whole body once.
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    try:
        result = await run_in_threadpool(reconciler.handle_webhook, signature, raw_body)
    except PaymentError as e:
        code = WEBHOOK_STATUS_CODES.get(e.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
        logger.error(
            "webhook_failed",
            extra={"error": e.message, "status": e.kind.value, "reference": e.reference},
        )
        return JSONResponse(status_code=code, content=WebhookAck(status="error", message=e.message).model_dump())
    except Exception:
        logger.exception("webhook_internal_error")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=WebhookAck(status="error", message="internal error").model_dump(),
        )
    return WebhookAck(status="ok", message="duplicate" if result.duplicate else None)


def _list_response(loader, **log_extra):
    try:
        views = loader()
    except PaymentError as e:
        logger.error("payment_list_failed", extra={"error": e.message, **log_extra})
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=[])
    logger.info("payment_list_fetched", extra={"count": len(views), **log_extra})
    return [PaymentOut.model_validate(v) for v in views]


@router.get("", response_model=list[PaymentOut])
def list_all_payments(store: PaymentStore = Depends(get_store)):
    return _list_response(store.list_all)


@router.get("/user/{user_id}", response_model=list[PaymentOut])
def list_user_payments(user_id: str, store: PaymentStore = Depends(get_store)):
    return _list_response(lambda: store.list_for_user(user_id), payer_kind="user", payer_id=user_id)


@router.get("/driver/{driver_id}", response_model=list[PaymentOut])
def list_driver_payments(driver_id: str, store: PaymentStore = Depends(get_store)):
    return _list_response(lambda: store.list_for_driver(driver_id), payer_kind="driver", payer_id=driver_id)
