"""
Payment records, partitioned by payer kind (user_payments / driver_payments).
payment_references indexes every reference across both partitions and keeps it globally unique.
"""
import enum
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB

from app.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class PayerKind(str, enum.Enum):
    USER = "user"
    DRIVER = "driver"


class PaymentRecordMixin:
    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    email = Column(String, nullable=False)
    amount = Column(String, nullable=False)                   # decimal string, gateway units
    currency = Column(String(8), nullable=False, default="NGN")
    reference = Column(String, nullable=False, unique=True, index=True)
    status = Column(String(16), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    authorization_url = Column(String, nullable=True)
    access_code = Column(String, nullable=True)
    gateway_response = Column(String, nullable=True)
    raw_payload = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    last_event_at = Column(DateTime(timezone=True), nullable=True)  # last applied settlement
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class UserPayment(PaymentRecordMixin, Base):
    __tablename__ = "user_payments"

    user_id = Column(String, nullable=False, index=True)

    payer_kind = PayerKind.USER

    @property
    def payer_id(self) -> str:
        return self.user_id


class DriverPayment(PaymentRecordMixin, Base):
    __tablename__ = "driver_payments"

    driver_id = Column(String, nullable=False, index=True)

    payer_kind = PayerKind.DRIVER

    @property
    def payer_id(self) -> str:
        return self.driver_id


class PaymentReference(Base):
    __tablename__ = "payment_references"

    reference = Column(String, primary_key=True)
    payer_kind = Column(String(16), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


PARTITIONS: dict[PayerKind, type[PaymentRecordMixin]] = {
    PayerKind.USER: UserPayment,
    PayerKind.DRIVER: DriverPayment,
}
