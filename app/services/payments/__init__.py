"""
Payment lifecycle: gateway client, webhook signatures, partitioned store and the reconciler
that settles records from verify calls and webhook deliveries.
"""
from .errors import (
    ConfigurationError,
    GatewayResponseInvalid,
    GatewayUnavailable,
    PaymentError,
    PaymentErrorKind,
    PersistenceError,
    ReferenceNotFound,
    SignatureInvalid,
    ValidationError,
)
from .gateway import GatewayInitialization, GatewayVerification, PaystackClient
from .reconciler import PaymentReconciler, WebhookResult
from .signature import SignatureVerifier
from .store import Payer, PaymentStore, PaymentView, SettlementOutcome

__all__ = [
    "ConfigurationError",
    "GatewayResponseInvalid",
    "GatewayUnavailable",
    "PaymentError",
    "PaymentErrorKind",
    "PersistenceError",
    "ReferenceNotFound",
    "SignatureInvalid",
    "ValidationError",
    "GatewayInitialization",
    "GatewayVerification",
    "PaystackClient",
    "PaymentReconciler",
    "WebhookResult",
    "SignatureVerifier",
    "Payer",
    "PaymentStore",
    "PaymentView",
    "SettlementOutcome",
]
