"""
PaymentReconciler: payment lifecycle orchestration.

Responsibilities:
- initialize/redirect: validate, open a gateway transaction, store it as pending
- verify: pull gateway state for a reference and settle the local record
- handle_webhook: authenticate a gateway callback and settle the local record
Both settlement paths converge on apply_settlement, so arrival order and duplicates don't matter.
"""
import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

import redis

from app.models.payment import PayerKind, PaymentStatus
from app.schemas.payments import PaymentRequest
from app.services.idempotency import IdempotencyStore
from app.services.payments.errors import (
    PaymentError,
    ReferenceNotFound,
    SignatureInvalid,
    ValidationError,
)
from app.services.payments.gateway import (
    GatewayInitialization,
    GatewayVerification,
    PaystackClient,
)
from app.services.payments.signature import SignatureVerifier
from app.services.payments.store import Payer, PaymentStore, SettlementOutcome
from app.utils.metrics import (
    payment_settlements_total,
    payments_initialized_total,
    webhooks_rejected_total,
)

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "NGN"

WEBHOOK_EVENT_STATUS = {
    "charge.success": PaymentStatus.SUCCESS,
    "charge.failed": PaymentStatus.FAILED,
}

GATEWAY_TERMINAL_STATUS = {
    "success": PaymentStatus.SUCCESS,
    "failed": PaymentStatus.FAILED,
    "reversed": PaymentStatus.FAILED,
}


def normalize_status(raw: Any) -> PaymentStatus:
    """Map a gateway transaction status onto pending/success/failed."""
    if isinstance(raw, str):
        return GATEWAY_TERMINAL_STATUS.get(raw.strip().lower(), PaymentStatus.PENDING)
    return PaymentStatus.PENDING


def status_for_event(event: str, data: dict) -> PaymentStatus:
    if event in WEBHOOK_EVENT_STATUS:
        return WEBHOOK_EVENT_STATUS[event]
    return normalize_status(data.get("status") or PaymentStatus.PENDING.value)


def parse_event_time(value: Any) -> datetime | None:
    """Parse an ISO-8601 gateway timestamp (e.g. 2024-01-01T10:00:00.000Z). None if unusable."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def resolve_payer(request: PaymentRequest) -> Payer:
    user_id = (request.user_id or "").strip()
    driver_id = (request.driver_id or "").strip()
    if user_id and driver_id:
        raise ValidationError("Provide only one of user_id or driver_id")
    if user_id:
        return Payer(kind=PayerKind.USER, id=user_id)
    if driver_id:
        return Payer(kind=PayerKind.DRIVER, id=driver_id)
    raise ValidationError("user_id or driver_id is required")


@dataclass
class WebhookResult:
    event: str
    reference: str
    status: PaymentStatus
    outcome: SettlementOutcome | None = None
    duplicate: bool = False


class PaymentReconciler:
    def __init__(
        self,
        store: PaymentStore,
        gateway: PaystackClient,
        verifier: SignatureVerifier,
        replay_guard: IdempotencyStore | None = None,
        default_currency: str = DEFAULT_CURRENCY,
    ):
        self.store = store
        self.gateway = gateway
        self.verifier = verifier
        self.replay_guard = replay_guard
        self.default_currency = default_currency

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def _validate(self, request: PaymentRequest) -> tuple[Payer, str, str, str]:
        payer = resolve_payer(request)

        email = (request.email or "").strip()
        if not email or "@" not in email:
            raise ValidationError("A valid email is required")

        amount = (request.amount or "").strip()
        try:
            if not amount or Decimal(amount) <= 0:
                raise ValidationError("amount must be a positive number")
        except InvalidOperation as e:
            raise ValidationError("amount must be a decimal string") from e

        currency = (request.currency or "").strip().upper() or self.default_currency
        return payer, email, amount, currency

    def initialize(self, request: PaymentRequest) -> GatewayInitialization:
        """
        Open a gateway transaction and store it as pending.
        Validation runs before any outbound call; nothing is stored if the gateway call fails.
        """
        payer, email, amount, currency = self._validate(request)

        initialization = self.gateway.initialize(
            email,
            amount,
            currency,
            metadata={"payer_kind": payer.kind.value, "payer_id": payer.id},
        )

        try:
            self.store.insert_pending(payer, email, amount, currency, initialization)
        except PaymentError as e:
            # Gateway already holds a pending transaction with no local record.
            logger.error(
                "payment_orphaned_at_gateway",
                extra={
                    "reference": initialization.reference,
                    "payer_kind": payer.kind.value,
                    "payer_id": payer.id,
                    "error": e.message,
                },
            )
            raise

        payments_initialized_total.labels(payer_kind=payer.kind.value).inc()
        logger.info(
            "payment_initialized",
            extra={
                "reference": initialization.reference,
                "payer_kind": payer.kind.value,
                "payer_id": payer.id,
            },
        )
        return initialization

    def redirect(self, request: PaymentRequest) -> str:
        """Same as initialize, but only the authorization URL is returned."""
        return self.initialize(request).authorization_url

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def apply_settlement(
        self,
        reference: str,
        status: PaymentStatus | str,
        gateway_response: str | None = None,
        raw_payload: Any = None,
        event_at: datetime | None = None,
        source: str = "manual",
    ) -> SettlementOutcome:
        if not reference:
            raise ValidationError("reference is required")
        try:
            status = PaymentStatus(status)
        except ValueError as e:
            raise ValidationError(f"unknown payment status: {status}") from e

        try:
            outcome = self.store.apply_settlement(
                reference,
                status,
                gateway_response,
                raw_payload,
                event_at or datetime.now(timezone.utc),
            )
        except ReferenceNotFound:
            payment_settlements_total.labels(source=source, outcome="not_found").inc()
            raise

        payment_settlements_total.labels(source=source, outcome=outcome.value).inc()
        if outcome is SettlementOutcome.STALE:
            logger.warning(
                "payment_settlement_stale",
                extra={"reference": reference, "status": status.value, "source": source},
            )
        else:
            logger.info(
                "payment_settlement_applied",
                extra={"reference": reference, "status": status.value, "source": source},
            )
        return outcome

    def verify(self, reference: str) -> GatewayVerification:
        """
        Ask the gateway for the transaction state and settle the local record.
        The gateway result is returned even when no local record exists.
        """
        reference = (reference or "").strip()
        if not reference:
            raise ValidationError("reference is required")

        verification = self.gateway.verify(reference)
        try:
            self.apply_settlement(
                verification.reference or reference,
                normalize_status(verification.status),
                gateway_response=verification.gateway_response or None,
                raw_payload=verification.raw,
                event_at=parse_event_time(verification.paid_at),
                source="verify",
            )
        except ReferenceNotFound:
            logger.warning(
                "payment_verified_without_local_record",
                extra={"reference": verification.reference or reference, "status": verification.status},
            )
        return verification

    def handle_webhook(self, signature: str | None, raw_body: bytes) -> WebhookResult:
        """
        Authenticate and apply a gateway webhook delivery.
        `raw_body` must be the exact bytes received, read in full before this call.
        """
        signature = (signature or "").strip()
        if not signature or not _is_hex(signature):
            webhooks_rejected_total.labels(reason="malformed_signature").inc()
            raise ValidationError("missing or malformed signature header")

        if not self.verifier.verify(signature, raw_body):
            webhooks_rejected_total.labels(reason="signature_mismatch").inc()
            logger.warning("webhook_signature_invalid")
            raise SignatureInvalid("webhook signature mismatch")

        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            webhooks_rejected_total.labels(reason="invalid_json").inc()
            raise ValidationError("webhook body is not valid JSON") from e
        if not isinstance(payload, dict):
            webhooks_rejected_total.labels(reason="invalid_json").inc()
            raise ValidationError("webhook body must be a JSON object")

        event = payload.get("event") if isinstance(payload.get("event"), str) else ""
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        reference = data.get("reference") if isinstance(data.get("reference"), str) else ""
        if not reference.strip():
            webhooks_rejected_total.labels(reason="missing_reference").inc()
            raise ValidationError("webhook payload missing reference")
        reference = reference.strip()

        status = status_for_event(event, data)
        gateway_response = data.get("gateway_response")
        if not isinstance(gateway_response, str):
            gateway_response = None

        digest = hashlib.sha512(raw_body).hexdigest()
        if not self._claim_delivery(digest):
            payment_settlements_total.labels(source="webhook", outcome="duplicate").inc()
            logger.info(
                "webhook_duplicate_ignored",
                extra={"reference": reference, "event": event},
            )
            return WebhookResult(event=event, reference=reference, status=status, duplicate=True)

        try:
            outcome = self.apply_settlement(
                reference,
                status,
                gateway_response=gateway_response,
                raw_payload=payload,
                event_at=parse_event_time(data.get("paid_at") or data.get("paidAt")),
                source="webhook",
            )
        except Exception:
            self._release_delivery(digest)
            raise

        logger.info(
            "webhook_processed",
            extra={"reference": reference, "event": event, "status": status.value, "outcome": outcome.value},
        )
        return WebhookResult(event=event, reference=reference, status=status, outcome=outcome)

    # ------------------------------------------------------------------
    # Replay guard (Redis, shared by every API replica)
    # ------------------------------------------------------------------

    def _claim_delivery(self, digest: str) -> bool:
        if self.replay_guard is None:
            return True
        try:
            return self.replay_guard.check_and_set(f"webhook:{digest}")
        except redis.RedisError as e:
            logger.warning("webhook_replay_guard_redis_error", extra={"error": str(e)})
            return True  # fail open: settlement is idempotent anyway

    def _release_delivery(self, digest: str) -> None:
        if self.replay_guard is None:
            return
        try:
            self.replay_guard.release(f"webhook:{digest}")
        except redis.RedisError as e:
            logger.warning("webhook_replay_guard_redis_error", extra={"error": str(e)})


def _is_hex(value: str) -> bool:
    try:
        bytes.fromhex(value)
    except ValueError:
        return False
    return True
