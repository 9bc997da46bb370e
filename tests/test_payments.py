from datetime import timedelta

import pytest

from models import AuditLog, Payment, BookingStatus, PaymentStatus
from services import booking as svc
from services import catalog
from services.errors import NotFound, ValidationError
from services.sweeper import sweep_expired_bookings
from tests.conftest import NOW, TOMORROW, local


@pytest.fixture
def pending(org, court, user):
    return svc.create_booking(org.id, user.id, court.id, TOMORROW, "10:00", 2, now=NOW)


class TestApplyPaymentOutcome:
    def test_completed_confirms_booking(self, pending):
        result = svc.apply_payment_outcome(pending.id, "completed", "cs_123", amount_cents=4000, now=NOW)

        assert result.applied is True
        assert result.status == BookingStatus.CONFIRMED
        payment = Payment.query.filter_by(booking_id=pending.id).one()
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.gateway_reference == "cs_123"
        assert payment.paid_at == NOW
        assert AuditLog.query.filter_by(action="PAYMENT_COMPLETED").count() == 1

    def test_completed_twice_is_idempotent(self, pending):
        first = svc.apply_payment_outcome(pending.id, "completed", "cs_123", now=NOW)
        second = svc.apply_payment_outcome(pending.id, "completed", "cs_123", now=NOW + timedelta(minutes=1))

        assert first.status == second.status == BookingStatus.CONFIRMED
        assert second.applied is False
        payment = Payment.query.filter_by(booking_id=pending.id).one()
        assert payment.paid_at == NOW
        assert AuditLog.query.filter_by(action="PAYMENT_COMPLETED").count() == 1

    def test_failure_keeps_hold_until_expiry(self, pending):
        result = svc.apply_payment_outcome(pending.id, "failed", "cs_fail", now=NOW)

        assert result.applied is True
        assert result.status == BookingStatus.PENDING_PAYMENT
        assert Payment.query.filter_by(booking_id=pending.id).one().status == PaymentStatus.FAILED

        # Repeated failure changes nothing
        assert svc.apply_payment_outcome(pending.id, "failed", "cs_fail", now=NOW).applied is False

    def test_success_after_failure_confirms(self, pending):
        svc.apply_payment_outcome(pending.id, "failed", "cs_1", now=NOW)
        result = svc.apply_payment_outcome(pending.id, "completed", "cs_2", now=NOW)

        assert result.status == BookingStatus.CONFIRMED
        payment = Payment.query.filter_by(booking_id=pending.id).one()
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.gateway_reference == "cs_2"

    def test_failure_after_confirmation_is_ignored(self, pending):
        svc.apply_payment_outcome(pending.id, "completed", "cs_1", now=NOW)
        result = svc.apply_payment_outcome(pending.id, "failed", "cs_1", now=NOW)

        assert result.applied is False
        assert result.status == BookingStatus.CONFIRMED
        assert Payment.query.filter_by(booking_id=pending.id).one().status == PaymentStatus.COMPLETED

    def test_amount_mismatch_rejected(self, pending):
        with pytest.raises(ValidationError):
            svc.apply_payment_outcome(pending.id, "completed", "cs_1", amount_cents=100, now=NOW)
        assert Payment.query.filter_by(booking_id=pending.id).one().status == PaymentStatus.PENDING

    def test_unknown_outcome_rejected(self, pending):
        with pytest.raises(ValidationError):
            svc.apply_payment_outcome(pending.id, "refunded", now=NOW)

    def test_unknown_booking_not_found(self, app):
        with pytest.raises(NotFound):
            svc.apply_payment_outcome(424242, "completed", "cs_1", now=NOW)

    def test_late_success_does_not_resurrect_expired_booking(self, org, court, pending):
        sweep_expired_bookings(now=NOW + timedelta(minutes=16))

        result = svc.apply_payment_outcome(pending.id, "completed", "cs_late", now=NOW + timedelta(minutes=20))

        assert result.applied is False
        assert result.status == BookingStatus.EXPIRED
        payment = Payment.query.filter_by(booking_id=pending.id).one()
        assert payment.status == PaymentStatus.EXPIRED
        assert payment.gateway_reference == "cs_late"
        assert AuditLog.query.filter_by(action="PAYMENT_LATE_SUCCESS", entity_id=str(pending.id)).count() == 1

    def test_confirmation_under_block_is_flagged(self, org, court, admin, pending):
        catalog.create_court_block(
            org.id, court.id, local(2026, 3, 3, 9).isoformat(), local(2026, 3, 3, 12).isoformat(), actor_id=admin.id
        )

        result = svc.apply_payment_outcome(pending.id, "completed", "cs_123", now=NOW)

        assert result.status == BookingStatus.CONFIRMED
        flagged = AuditLog.query.filter_by(action="BOOKING_CONFIRMED_UNDER_BLOCK").one()
        assert flagged.entity_id == str(pending.id)

    def test_confirmation_without_block_is_not_flagged(self, pending):
        svc.apply_payment_outcome(pending.id, "completed", "cs_123", now=NOW)
        assert AuditLog.query.filter_by(action="BOOKING_CONFIRMED_UNDER_BLOCK").count() == 0


class TestCompleteFinishedBookings:
    def test_only_finished_confirmed_bookings_complete(self, org, court, user, other_user):
        early = svc.create_booking(org.id, user.id, court.id, TOMORROW, "10:00", 1, now=NOW)
        late = svc.create_booking(org.id, other_user.id, court.id, TOMORROW, "15:00", 1, now=NOW)
        unpaid = svc.create_booking(org.id, user.id, court.id, TOMORROW, "08:00", 1, now=NOW)
        svc.apply_payment_outcome(early.id, "completed", "cs_e", now=NOW)
        svc.apply_payment_outcome(late.id, "completed", "cs_l", now=NOW)

        completed = svc.complete_finished_bookings(now=local(2026, 3, 3, 12))

        assert completed == [early.id]
        assert svc.get_booking(org.id, early.id, is_admin=True).status == BookingStatus.COMPLETED
        assert svc.get_booking(org.id, late.id, is_admin=True).status == BookingStatus.CONFIRMED
        assert svc.get_booking(org.id, unpaid.id, is_admin=True).status == BookingStatus.PENDING_PAYMENT

        # Running again finds nothing new
        assert svc.complete_finished_bookings(now=local(2026, 3, 3, 12)) == []
