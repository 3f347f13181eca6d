"""
PaymentStore: persistence of payment records across the user/driver partitions.

Settlement updates are single guarded UPDATE statements, one per partition, so concurrent
webhook and verify deliveries never read-modify-write. Settlement payloads carry no payer kind,
so both partitions are always probed.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.payment import (
    PARTITIONS,
    DriverPayment,
    PayerKind,
    PaymentReference,
    PaymentStatus,
    UserPayment,
)
from app.services.payments.errors import PersistenceError, ReferenceNotFound
from app.services.payments.gateway import GatewayInitialization

logger = logging.getLogger(__name__)


class SettlementOutcome(str, enum.Enum):
    APPLIED = "applied"
    STALE = "stale"  # row exists but the event is older than, or would regress, the stored state


@dataclass(frozen=True)
class Payer:
    kind: PayerKind
    id: str


@dataclass
class PaymentView:
    """Read model for a payment row, independent of its partition."""
    id: str
    payer_type: str
    payer_id: str
    email: str
    amount: str
    currency: str
    status: str
    reference: str
    authorization_url: str | None
    access_code: str | None
    gateway_response: str | None
    raw_payload: Any
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: UserPayment | DriverPayment) -> "PaymentView":
        return cls(
            id=row.id,
            payer_type=row.payer_kind.value,
            payer_id=row.payer_id,
            email=row.email,
            amount=row.amount,
            currency=row.currency,
            status=row.status,
            reference=row.reference,
            authorization_url=row.authorization_url,
            access_code=row.access_code,
            gateway_response=row.gateway_response,
            raw_payload=row.raw_payload,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class PaymentStore:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_pending(
        self,
        payer: Payer,
        email: str,
        amount: str,
        currency: str,
        initialization: GatewayInitialization,
    ) -> PaymentView:
        """Persist a new pending record and its reference index entry in one transaction."""
        model = PARTITIONS[payer.kind]
        now = datetime.now(timezone.utc)
        row = model(
            email=email,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PENDING.value,
            reference=initialization.reference,
            authorization_url=initialization.authorization_url,
            access_code=initialization.access_code,
            created_at=now,
            updated_at=now,
        )
        if payer.kind is PayerKind.USER:
            row.user_id = payer.id
        else:
            row.driver_id = payer.id

        try:
            self.db.add(PaymentReference(
                reference=initialization.reference,
                payer_kind=payer.kind.value,
                created_at=now,
            ))
            self.db.flush()
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(
                f"failed to store {payer.kind.value} payment: {type(e).__name__}",
                reference=initialization.reference,
            ) from e
        return PaymentView.from_row(row)

    def apply_settlement(
        self,
        reference: str,
        status: PaymentStatus,
        gateway_response: str | None,
        raw_payload: Any,
        event_at: datetime,
    ) -> SettlementOutcome:
        """
        Overwrite status/gateway_response/raw_payload for `reference` in whichever partition holds it.

        Guards: `pending` only touches rows that are still pending and never stamps last_event_at.
        A terminal status always settles a pending row; on a settled row it applies only if its
        event is not older than the last applied one.
        Raises ReferenceNotFound if no partition has the reference.
        """
        event_at = _as_utc(event_at)
        now = datetime.now(timezone.utc)
        affected = 0
        try:
            for model in (UserPayment, DriverPayment):
                stmt = update(model).where(model.reference == reference)
                values = {
                    "status": status.value,
                    "gateway_response": gateway_response,
                    "raw_payload": raw_payload,
                    "updated_at": now,
                }
                if status is PaymentStatus.PENDING:
                    # pending only refreshes pending rows and leaves last_event_at unset
                    stmt = stmt.where(model.status == PaymentStatus.PENDING.value)
                else:
                    # event time only orders terminal transitions
                    stmt = stmt.where(or_(
                        model.status == PaymentStatus.PENDING.value,
                        model.last_event_at.is_(None),
                        model.last_event_at <= event_at,
                    ))
                    values["last_event_at"] = event_at
                result = self.db.execute(
                    stmt.values(**values).execution_options(synchronize_session=False)
                )
                affected += result.rowcount or 0

            if affected == 0:
                exists = self._reference_exists(reference)
                self.db.rollback()
                if not exists:
                    raise ReferenceNotFound(f"no payment found for reference {reference}", reference=reference)
                return SettlementOutcome.STALE

            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(
                f"failed to apply settlement: {type(e).__name__}",
                reference=reference,
            ) from e

        if affected > 1:
            logger.error("payment_reference_duplicated", extra={"reference": reference, "count": affected})
        return SettlementOutcome.APPLIED

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _reference_exists(self, reference: str) -> bool:
        for model in (UserPayment, DriverPayment):
            found = self.db.execute(
                select(model.id).where(model.reference == reference).limit(1)
            ).first()
            if found is not None:
                return True
        return False

    def get_by_reference(self, reference: str) -> PaymentView | None:
        try:
            for model in (UserPayment, DriverPayment):
                row = self.db.query(model).filter(model.reference == reference).one_or_none()
                if row is not None:
                    return PaymentView.from_row(row)
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to load payment: {type(e).__name__}", reference=reference) from e
        return None

    def list_all(self) -> list[PaymentView]:
        """All payments of both partitions, newest first."""
        views = self._list(UserPayment) + self._list(DriverPayment)
        views.sort(key=lambda v: _as_utc(v.created_at), reverse=True)
        return views

    def list_for_user(self, user_id: str) -> list[PaymentView]:
        return self._list(UserPayment, UserPayment.user_id == user_id)

    def list_for_driver(self, driver_id: str) -> list[PaymentView]:
        return self._list(DriverPayment, DriverPayment.driver_id == driver_id)

    def list_stale_pending(self, older_than: datetime, limit: int = 100) -> list[PaymentView]:
        """Pending payments created before `older_than`, oldest first."""
        older_than = _as_utc(older_than)
        views: list[PaymentView] = []
        try:
            for model in (UserPayment, DriverPayment):
                rows = (
                    self.db.query(model)
                    .filter(
                        model.status == PaymentStatus.PENDING.value,
                        model.created_at < older_than,
                    )
                    .order_by(model.created_at.asc())
                    .limit(limit)
                    .all()
                )
                views.extend(PaymentView.from_row(r) for r in rows)
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to list pending payments: {type(e).__name__}") from e
        views.sort(key=lambda v: _as_utc(v.created_at))
        return views[:limit]

    def _list(self, model, *criteria) -> list[PaymentView]:
        try:
            rows = (
                self.db.query(model)
                .filter(*criteria)
                .order_by(model.created_at.desc())
                .all()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to list payments: {type(e).__name__}") from e
        return [PaymentView.from_row(r) for r in rows]
