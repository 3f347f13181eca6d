"""
Process-wide payment collaborators built once from settings.
Routes and workers combine them with a per-request DB session via build_reconciler.
"""
import logging
from functools import lru_cache

from sqlalchemy.orm import Session

from app.core.config import settings
from app.services.circuit_breaker import get_circuit_breaker
from app.services.idempotency import IdempotencyStore
from app.services.payments.errors import GatewayResponseInvalid
from app.services.payments.gateway import PaystackClient
from app.services.payments.reconciler import PaymentReconciler
from app.services.payments.signature import SignatureVerifier
from app.services.payments.store import PaymentStore

logger = logging.getLogger(__name__)


@lru_cache
def get_gateway_client() -> PaystackClient:
    breaker = get_circuit_breaker("paystack", exclude=[GatewayResponseInvalid])
    logger.info("Creating Paystack client")
    return PaystackClient(settings.gateway_config(), breaker=breaker)


@lru_cache
def get_signature_verifier() -> SignatureVerifier:
    return SignatureVerifier(settings.gateway_config())


@lru_cache
def get_replay_guard() -> IdempotencyStore:
    return IdempotencyStore(prefix="payments")


def build_reconciler(db: Session) -> PaymentReconciler:
    return PaymentReconciler(
        store=PaymentStore(db),
        gateway=get_gateway_client(),
        verifier=get_signature_verifier(),
        replay_guard=get_replay_guard(),
        default_currency=settings.default_currency,
    )
