from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator


class PaymentRequest(BaseModel):
    """Initialize request. Payer exclusivity (user_id xor driver_id) is checked by the reconciler."""
    model_config = ConfigDict(extra="ignore")

    email: str
    amount: str
    currency: str | None = None
    user_id: str | None = None
    driver_id: str | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v):
        # Mobile clients send numbers; the gateway contract is a decimal string.
        if isinstance(v, bool):
            return v
        if isinstance(v, (int, float)):
            return str(v)
        return v


class InitializeData(BaseModel):
    authorization_url: str
    access_code: str
    reference: str


class InitializeResponse(BaseModel):
    status: bool
    message: str
    data: InitializeData | None = None


class VerifyData(BaseModel):
    status: str
    amount: int
    reference: str
    gateway_response: str


class VerifyResponse(BaseModel):
    status: bool
    message: str
    data: VerifyData

    @classmethod
    def failed(cls, message: str = "Payment verification failed") -> "VerifyResponse":
        return cls(
            status=False,
            message=message,
            data=VerifyData(status="failed", amount=0, reference="", gateway_response=""),
        )


class WebhookAck(BaseModel):
    status: str
    message: str | None = None


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    payer_type: str  # user | driver
    payer_id: str
    email: str
    amount: str
    currency: str
    status: str
    reference: str
    authorization_url: str | None = None
    access_code: str | None = None
    gateway_response: str | None = None
    created_at: datetime
    updated_at: datetime
