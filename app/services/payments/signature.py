"""
Webhook signature check: hex HMAC-SHA512 of the raw request body, keyed with the webhook secret.
The body must be the exact bytes received; re-serialized JSON will not match.
"""
import hashlib
import hmac

from app.core.config import GatewayConfig
from app.services.payments.errors import ConfigurationError


class SignatureVerifier:
    def __init__(self, config: GatewayConfig) -> None:
        self._secret = (config.webhook_secret or "").encode("utf-8")

    def sign(self, raw_body: bytes) -> str:
        if not self._secret:
            raise ConfigurationError("webhook secret is not configured")
        return hmac.new(self._secret, raw_body, hashlib.sha512).hexdigest()

    def verify(self, signature_header: str, raw_body: bytes) -> bool:
        """True if the header matches the body. Mismatch is not an error."""
        expected = self.sign(raw_body)
        return hmac.compare_digest(expected.encode("ascii"), (signature_header or "").encode("utf-8"))
