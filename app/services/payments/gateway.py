"""
Paystack client using httpx sync client.
Translates initialize/verify calls to the gateway's wire format and back. No retries:
a repeated initialize could open a second transaction for the same customer.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx
import pybreaker

from app.core.config import GatewayConfig
from app.services.payments.errors import GatewayResponseInvalid, GatewayUnavailable
from app.utils.metrics import gateway_request_duration_seconds, gateway_requests_total


logger = logging.getLogger(__name__)


@dataclass
class GatewayInitialization:
    """Redirect artifacts issued by the gateway for a new transaction."""
    authorization_url: str
    access_code: str
    reference: str
    message: str = ""


@dataclass
class GatewayVerification:
    """Gateway-side transaction state for a reference."""
    status: str
    amount: int
    reference: str
    gateway_response: str
    message: str = ""
    paid_at: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class PaystackClient:
    """
    Sync Paystack client.
    Every call is bearer-authenticated, bounded by config.timeout and wrapped in the circuit breaker.
    """

    def __init__(
        self,
        config: GatewayConfig,
        breaker: pybreaker.CircuitBreaker | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._config = config
        self._breaker = breaker
        self._client = http_client

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self._config.timeout)
        return self._client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.api_key}",
            "Content-Type": "application/json",
        }

    def _record_request(self, operation: str, status: str, duration: float) -> None:
        gateway_requests_total.labels(operation=operation, status=status).inc()
        gateway_request_duration_seconds.labels(operation=operation).observe(duration)

    def _send(self, operation: str, method: str, url: str, **kwargs: Any) -> dict:
        try:
            resp = self.client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as e:
            raise GatewayUnavailable(f"{operation}: gateway timed out") from e
        except httpx.TransportError as e:
            raise GatewayUnavailable(f"{operation}: {type(e).__name__}: {e}") from e

        if resp.status_code >= 500:
            raise GatewayUnavailable(f"{operation}: gateway returned HTTP {resp.status_code}")

        try:
            body = resp.json()
        except ValueError as e:
            raise GatewayResponseInvalid(
                f"{operation}: response is not JSON (HTTP {resp.status_code})",
                http_status=resp.status_code,
            ) from e

        if not isinstance(body, dict):
            raise GatewayResponseInvalid(f"{operation}: unexpected response shape", http_status=resp.status_code)
        if not resp.is_success or body.get("status") is not True:
            raise GatewayResponseInvalid(
                f"{operation}: {body.get('message') or 'gateway rejected the request'}",
                http_status=resp.status_code,
            )
        return body

    def _call(self, operation: str, method: str, url: str, **kwargs: Any) -> dict:
        start = time.time()
        try:
            if self._breaker is not None:
                body = self._breaker.call(self._send, operation, method, url, **kwargs)
            else:
                body = self._send(operation, method, url, **kwargs)
        except pybreaker.CircuitBreakerError as e:
            self._record_request(operation, "circuit_open", time.time() - start)
            logger.warning("gateway_circuit_open", extra={"operation": operation})
            raise GatewayUnavailable(f"{operation}: gateway circuit open") from e
        except GatewayUnavailable as e:
            self._record_request(operation, "unavailable", time.time() - start)
            logger.error("gateway_unavailable", extra={"operation": operation, "error": e.message})
            raise
        except GatewayResponseInvalid as e:
            self._record_request(operation, "invalid", time.time() - start)
            logger.error(
                "gateway_response_invalid",
                extra={"operation": operation, "error": e.message, "http_status": e.http_status},
            )
            raise
        self._record_request(operation, "success", time.time() - start)
        return body

    def initialize(
        self,
        email: str,
        amount: str,
        currency: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> GatewayInitialization:
        payload: dict[str, Any] = {"email": email, "amount": amount}
        if currency:
            payload["currency"] = currency
        if self._config.callback_url:
            payload["callback_url"] = self._config.callback_url
        if metadata:
            payload["metadata"] = metadata

        body = self._call("initialize", "POST", self._config.initialize_url, json=payload)
        data = body.get("data")
        if not isinstance(data, dict):
            raise GatewayResponseInvalid("initialize: response has no data object")
        try:
            result = GatewayInitialization(
                authorization_url=str(data["authorization_url"]),
                access_code=str(data["access_code"]),
                reference=str(data["reference"]),
                message=str(body.get("message") or ""),
            )
        except KeyError as e:
            raise GatewayResponseInvalid(f"initialize: response is missing {e.args[0]}") from e
        if not result.reference:
            raise GatewayResponseInvalid("initialize: gateway returned an empty reference")

        logger.info("gateway_initialized", extra={"reference": result.reference})
        return result

    def verify(self, reference: str) -> GatewayVerification:
        url = f"{self._config.verify_url}{quote(reference, safe='')}"
        body = self._call("verify", "GET", url)
        data = body.get("data")
        if not isinstance(data, dict):
            raise GatewayResponseInvalid("verify: response has no data object", reference=reference)
        try:
            amount = int(data.get("amount") or 0)
        except (TypeError, ValueError) as e:
            raise GatewayResponseInvalid("verify: amount is not an integer", reference=reference) from e
        status = data.get("status")
        if not isinstance(status, str) or not status:
            raise GatewayResponseInvalid("verify: response is missing status", reference=reference)

        result = GatewayVerification(
            status=status,
            amount=amount,
            reference=str(data.get("reference") or reference),
            gateway_response=str(data.get("gateway_response") or ""),
            message=str(body.get("message") or ""),
            paid_at=data.get("paid_at") or data.get("paidAt"),
            raw=body,
        )
        logger.info(
            "gateway_verified",
            extra={"reference": result.reference, "status": result.status},
        )
        return result

    def close(self) -> None:
        """Close httpx client."""
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.warning("Failed to close client", extra={"error": str(e)})
            finally:
                self._client = None
