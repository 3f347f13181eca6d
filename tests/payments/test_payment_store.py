"""Tests for PaymentStore against in-memory SQLite: partitions, guarded settlement, listings."""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.models.payment import DriverPayment, PayerKind, PaymentStatus, UserPayment
from app.services.payments.errors import PersistenceError, ReferenceNotFound
from app.services.payments.gateway import GatewayInitialization
from app.services.payments.store import Payer, SettlementOutcome

T0 = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


def _init(reference):
    return GatewayInitialization(
        authorization_url=f"https://checkout.paystack.com/{reference}",
        access_code=f"ac_{reference}",
        reference=reference,
    )


def _user_payment(store, reference="ref_123", user_id="u1"):
    return store.insert_pending(Payer(PayerKind.USER, user_id), "a@b.co", "5000", "NGN", _init(reference))


def _driver_payment(store, reference="ref_d1", driver_id="d1"):
    return store.insert_pending(Payer(PayerKind.DRIVER, driver_id), "d@b.co", "1200.50", "NGN", _init(reference))


class TestInsertPending:
    def test_user_record_is_pending(self, store):
        view = _user_payment(store)
        assert view.status == "pending"
        assert view.payer_type == "user"
        assert view.payer_id == "u1"
        assert view.amount == "5000"
        assert view.authorization_url == "https://checkout.paystack.com/ref_123"
        assert view.access_code == "ac_ref_123"

    def test_driver_record_lands_in_driver_partition(self, store, db):
        _driver_payment(store)
        assert db.query(DriverPayment).count() == 1
        assert db.query(UserPayment).count() == 0
        assert store.get_by_reference("ref_d1").payer_type == "driver"

    def test_reference_is_unique_across_partitions(self, store, db):
        _user_payment(store, reference="ref_dup")
        with pytest.raises(PersistenceError) as exc:
            _driver_payment(store, reference="ref_dup")
        assert exc.value.reference == "ref_dup"
        assert db.query(DriverPayment).count() == 0
        assert store.get_by_reference("ref_dup").payer_type == "user"

    def test_refresh_failure_is_persistence_error(self, store):
        failure = OperationalError("SELECT", {}, Exception("connection lost"))
        with patch.object(store.db, "refresh", side_effect=failure):
            with pytest.raises(PersistenceError) as exc:
                _user_payment(store)
        assert exc.value.reference == "ref_123"


class TestApplySettlement:
    def test_applies_and_overwrites_payload(self, store):
        _user_payment(store)
        outcome = store.apply_settlement("ref_123", PaymentStatus.SUCCESS, "Approved", {"event": "charge.success"}, T0)
        assert outcome is SettlementOutcome.APPLIED
        view = store.get_by_reference("ref_123")
        assert view.status == "success"
        assert view.gateway_response == "Approved"
        assert view.raw_payload == {"event": "charge.success"}

    def test_same_settlement_twice_is_idempotent(self, store, db):
        _user_payment(store)
        store.apply_settlement("ref_123", PaymentStatus.SUCCESS, "Approved", {"n": 1}, T0)
        first = store.get_by_reference("ref_123")
        store.apply_settlement("ref_123", PaymentStatus.SUCCESS, "Approved", {"n": 1}, T0)
        second = store.get_by_reference("ref_123")

        assert db.query(UserPayment).count() == 1
        assert (second.status, second.gateway_response, second.raw_payload) == (
            first.status,
            first.gateway_response,
            first.raw_payload,
        )

    def test_later_event_wins(self, store):
        _user_payment(store)
        store.apply_settlement("ref_123", PaymentStatus.SUCCESS, "Approved", None, T0)
        store.apply_settlement("ref_123", PaymentStatus.FAILED, "Reversed", None, T0 + timedelta(minutes=5))
        view = store.get_by_reference("ref_123")
        assert view.status == "failed"
        assert view.gateway_response == "Reversed"

    def test_older_event_is_stale(self, store):
        _user_payment(store)
        store.apply_settlement("ref_123", PaymentStatus.SUCCESS, "Approved", None, T0)
        outcome = store.apply_settlement("ref_123", PaymentStatus.FAILED, "Late", None, T0 - timedelta(minutes=1))
        assert outcome is SettlementOutcome.STALE
        assert store.get_by_reference("ref_123").status == "success"

    def test_pending_never_overwrites_terminal(self, store):
        _user_payment(store)
        store.apply_settlement("ref_123", PaymentStatus.SUCCESS, "Approved", None, T0)
        outcome = store.apply_settlement("ref_123", PaymentStatus.PENDING, None, None, T0 + timedelta(hours=1))
        assert outcome is SettlementOutcome.STALE
        assert store.get_by_reference("ref_123").status == "success"

    def test_pending_on_pending_applies(self, store):
        _user_payment(store)
        outcome = store.apply_settlement("ref_123", PaymentStatus.PENDING, "Awaiting", {"s": "ongoing"}, T0)
        assert outcome is SettlementOutcome.APPLIED
        assert store.get_by_reference("ref_123").gateway_response == "Awaiting"

    def test_pending_poll_does_not_block_earlier_terminal_event(self, store, db):
        _user_payment(store)
        store.apply_settlement("ref_123", PaymentStatus.PENDING, "Ongoing", None, T0 + timedelta(seconds=2))
        assert db.query(UserPayment).one().last_event_at is None

        outcome = store.apply_settlement("ref_123", PaymentStatus.SUCCESS, "Approved", None, T0)

        assert outcome is SettlementOutcome.APPLIED
        view = store.get_by_reference("ref_123")
        assert view.status == "success"
        assert view.gateway_response == "Approved"

    def test_settled_row_still_rejects_older_terminal_event(self, store):
        _user_payment(store)
        store.apply_settlement("ref_123", PaymentStatus.PENDING, None, None, T0 + timedelta(hours=1))
        store.apply_settlement("ref_123", PaymentStatus.SUCCESS, "Approved", None, T0)
        outcome = store.apply_settlement("ref_123", PaymentStatus.FAILED, "Late", None, T0 - timedelta(seconds=1))
        assert outcome is SettlementOutcome.STALE
        assert store.get_by_reference("ref_123").status == "success"

    def test_driver_partition_is_probed(self, store):
        _driver_payment(store)
        store.apply_settlement("ref_d1", PaymentStatus.SUCCESS, "Approved", None, T0)
        assert store.get_by_reference("ref_d1").status == "success"

    def test_unknown_reference_mutates_nothing(self, store):
        _user_payment(store)
        _driver_payment(store)
        before = [(v.reference, v.status) for v in store.list_all()]

        with pytest.raises(ReferenceNotFound) as exc:
            store.apply_settlement("ref_missing", PaymentStatus.SUCCESS, "Approved", None, T0)

        assert exc.value.reference == "ref_missing"
        assert [(v.reference, v.status) for v in store.list_all()] == before

    def test_naive_event_time_treated_as_utc(self, store):
        _user_payment(store)
        store.apply_settlement("ref_123", PaymentStatus.SUCCESS, None, None, T0)
        outcome = store.apply_settlement("ref_123", PaymentStatus.FAILED, None, None, datetime(2024, 1, 1, 9, 0))
        assert outcome is SettlementOutcome.STALE


class TestListings:
    def _backdate(self, db, model, reference, created_at):
        db.query(model).filter(model.reference == reference).update({"created_at": created_at})
        db.commit()

    def test_list_all_merges_partitions_newest_first(self, store, db):
        _user_payment(store, reference="ref_u_old")
        _driver_payment(store, reference="ref_d_mid")
        _user_payment(store, reference="ref_u_new")
        self._backdate(db, UserPayment, "ref_u_old", T0)
        self._backdate(db, DriverPayment, "ref_d_mid", T0 + timedelta(hours=1))
        self._backdate(db, UserPayment, "ref_u_new", T0 + timedelta(hours=2))

        views = store.list_all()
        assert [v.reference for v in views] == ["ref_u_new", "ref_d_mid", "ref_u_old"]
        assert [v.payer_type for v in views] == ["user", "driver", "user"]

    def test_list_for_user_and_driver(self, store):
        _user_payment(store, reference="ref_1", user_id="u1")
        _user_payment(store, reference="ref_2", user_id="u2")
        _driver_payment(store, reference="ref_3", driver_id="u1")

        assert [v.reference for v in store.list_for_user("u1")] == ["ref_1"]
        assert [v.reference for v in store.list_for_driver("u1")] == ["ref_3"]
        assert store.list_for_user("nobody") == []

    def test_list_stale_pending(self, store, db):
        _user_payment(store, reference="ref_old")
        _driver_payment(store, reference="ref_old_settled")
        _user_payment(store, reference="ref_fresh")
        self._backdate(db, UserPayment, "ref_old", T0)
        self._backdate(db, DriverPayment, "ref_old_settled", T0)
        store.apply_settlement("ref_old_settled", PaymentStatus.SUCCESS, None, None, T0)

        stale = store.list_stale_pending(T0 + timedelta(minutes=30))
        assert [v.reference for v in stale] == ["ref_old"]
