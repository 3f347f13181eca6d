"""
Closed set of payment failure kinds.
HTTP handlers and workers branch on PaymentError.kind, never on message text.
"""
from enum import Enum


class PaymentErrorKind(str, Enum):
    VALIDATION = "validation"  # bad input, no external call made
    GATEWAY_UNAVAILABLE = "gateway_unavailable"  # transport, timeout, 5xx, breaker open
    GATEWAY_RESPONSE_INVALID = "gateway_response_invalid"  # 4xx, unparseable, status=false
    SIGNATURE_INVALID = "signature_invalid"
    REFERENCE_NOT_FOUND = "reference_not_found"
    PERSISTENCE = "persistence"
    CONFIGURATION = "configuration"


class PaymentError(Exception):
    kind: PaymentErrorKind

    def __init__(self, message: str, *, reference: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.reference = reference


class ValidationError(PaymentError):
    kind = PaymentErrorKind.VALIDATION


class GatewayUnavailable(PaymentError):
    kind = PaymentErrorKind.GATEWAY_UNAVAILABLE


class GatewayResponseInvalid(PaymentError):
    kind = PaymentErrorKind.GATEWAY_RESPONSE_INVALID

    def __init__(self, message: str, *, http_status: int | None = None, reference: str | None = None) -> None:
        super().__init__(message, reference=reference)
        self.http_status = http_status


class SignatureInvalid(PaymentError):
    kind = PaymentErrorKind.SIGNATURE_INVALID


class ReferenceNotFound(PaymentError):
    kind = PaymentErrorKind.REFERENCE_NOT_FOUND


class PersistenceError(PaymentError):
    kind = PaymentErrorKind.PERSISTENCE


class ConfigurationError(PaymentError):
    kind = PaymentErrorKind.CONFIGURATION
