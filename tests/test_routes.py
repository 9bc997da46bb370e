import json

import pytest
import stripe

from models import db, BookingStatus
from security.session import create_session
from services import booking as svc
from tests.conftest import make_user, real_tomorrow


@pytest.fixture
def tomorrow():
    return real_tomorrow()


@pytest.fixture
def pending(org, court, user, tomorrow):
    return svc.create_booking(org.id, user.id, court.id, tomorrow, "10:00", 1)


def _reload(org, booking_id):
    # Requests run in their own session; drop what this one cached
    db.session.expire_all()
    return svc.get_booking(org.id, booking_id, is_admin=True)


def _stripe_event(event_type, booking, **session):
    obj = {
        "id": "cs_test_123",
        "object": "checkout.session",
        "metadata": {"booking_id": str(booking.id)},
        "amount_total": booking.total_cents,
        "payment_status": "paid",
    }
    obj.update(session)
    return json.dumps({"id": "evt_1", "type": event_type, "data": {"object": obj}})


class TestPublicRoutes:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json() == {"status": "ok"}
        assert resp.headers["X-Content-Type-Options"] == "nosniff"

    def test_list_courts(self, client, org, court):
        resp = client.get(f"/orgs/{org.id}/courts")
        assert resp.status_code == 200
        body = resp.get_json()
        assert [c["id"] for c in body["courts"]] == [court.id]
        assert body["organization"]["timezone"] == "Asia/Singapore"
        assert len(body["bookable_dates"]) == 8

    def test_court_availability(self, client, org, court, tomorrow):
        resp = client.get(f"/orgs/{org.id}/courts/{court.id}/availability?date={tomorrow}")
        assert resp.status_code == 200
        slots = resp.get_json()["slots"]
        assert len(slots) == 15
        assert all(s["is_available"] for s in slots)
        assert slots[0]["start_time"].endswith("+00:00")

    def test_aggregated_availability(self, client, org, court, tomorrow):
        resp = client.get(f"/orgs/{org.id}/availability?date={tomorrow}")
        assert resp.status_code == 200
        assert resp.get_json()["total_courts"] == 1

    def test_availability_requires_valid_date(self, client, org, court):
        assert client.get(f"/orgs/{org.id}/courts/{court.id}/availability").status_code == 400
        resp = client.get(f"/orgs/{org.id}/courts/{court.id}/availability?date=soon")
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "validation_error"

    def test_unknown_org_is_not_found(self, client, court, tomorrow):
        resp = client.get(f"/orgs/999/courts/{court.id}/availability?date={tomorrow}")
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "not_found"

    def test_availability_rate_limited(self, app, client, org, court, tomorrow):
        app.config["AVAILABILITY_RATE_MAX_REQUESTS"] = 2
        url = f"/orgs/{org.id}/courts/{court.id}/availability?date={tomorrow}"
        assert client.get(url).status_code == 200
        assert client.get(url).status_code == 200
        resp = client.get(url)
        assert resp.status_code == 429
        assert int(resp.headers["Retry-After"]) >= 1


class TestBookingRoutes:
    def test_booking_requires_login(self, client, org, court, tomorrow):
        resp = client.post(f"/orgs/{org.id}/bookings", json={"court_id": court.id, "date": tomorrow, "start_time": "10:00"})
        assert resp.status_code == 401

    def test_create_and_conflict(self, client, org, court, user, other_user, auth_headers, tomorrow):
        payload = {"court_id": court.id, "date": tomorrow, "start_time": "10:00", "slots": 2}
        resp = client.post(f"/orgs/{org.id}/bookings", json=payload, headers=auth_headers(user))
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["status"] == BookingStatus.PENDING_PAYMENT
        assert len(body["slots"]) == 2
        assert body["payment"]["status"] == "PENDING"
        assert body["expires_at"] is not None

        payload["slots"] = 1
        payload["start_time"] = "11:00"
        resp = client.post(f"/orgs/{org.id}/bookings", json=payload, headers=auth_headers(other_user))
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "slot_unavailable"

    def test_cookie_session_also_accepted(self, app, client, org, court, user, tomorrow):
        client.set_cookie(app.config["AUTH_COOKIE_NAME"], create_session(user.id))
        resp = client.post(f"/orgs/{org.id}/bookings", json={"court_id": court.id, "date": tomorrow, "start_time": "10:00"})
        assert resp.status_code == 201

    def test_too_many_slots_is_forbidden(self, client, org, court, user, auth_headers, tomorrow):
        payload = {"court_id": court.id, "date": tomorrow, "start_time": "10:00", "slots": 4}
        resp = client.post(f"/orgs/{org.id}/bookings", json=payload, headers=auth_headers(user))
        assert resp.status_code == 403
        assert resp.get_json()["code"] == "policy_violation"

    def test_missing_fields(self, client, org, user, auth_headers):
        resp = client.post(f"/orgs/{org.id}/bookings", json={}, headers=auth_headers(user))
        assert resp.status_code == 400

    def test_booking_attempts_rate_limited(self, app, client, org, court, user, auth_headers, tomorrow):
        app.config["BOOKING_RATE_MAX_REQUESTS"] = 1
        headers = auth_headers(user)
        payload = {"court_id": court.id, "date": tomorrow, "start_time": "10:00"}
        assert client.post(f"/orgs/{org.id}/bookings", json=payload, headers=headers).status_code == 201
        payload["start_time"] = "12:00"
        assert client.post(f"/orgs/{org.id}/bookings", json=payload, headers=headers).status_code == 429

    def test_my_bookings_and_visibility(self, client, org, user, other_user, auth_headers, pending):
        resp = client.get(f"/orgs/{org.id}/bookings/me", headers=auth_headers(user))
        assert [b["id"] for b in resp.get_json()] == [pending.id]

        assert client.get(f"/orgs/{org.id}/bookings/{pending.id}", headers=auth_headers(user)).status_code == 200
        assert client.get(f"/orgs/{org.id}/bookings/{pending.id}", headers=auth_headers(other_user)).status_code == 404

    def test_owner_cannot_cancel_pending(self, client, org, user, auth_headers, pending):
        resp = client.post(f"/orgs/{org.id}/bookings/{pending.id}/cancel", headers=auth_headers(user))
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "not_cancelable"

    def test_owner_cancels_confirmed(self, client, org, user, auth_headers, pending):
        svc.apply_payment_outcome(pending.id, "completed", "cs_1")
        resp = client.post(
            f"/orgs/{org.id}/bookings/{pending.id}/cancel",
            json={"reason": "Injured"},
            headers=auth_headers(user),
        )
        assert resp.status_code == 200
        assert resp.get_json()["booking"]["status"] == BookingStatus.CANCELLED

    def test_guest_booking_route(self, client, org, court, tomorrow):
        slots = [{"court_id": court.id, "start_time": f"{tomorrow}T10:00:00+08:00"}]
        resp = client.post(f"/orgs/{org.id}/guest-bookings", json={"guest": {"name": "G", "email": "g@example.com"}, "slots": slots})
        assert resp.status_code == 403


class TestAdminRoutes:
    def test_member_is_forbidden(self, client, org, user, auth_headers, pending):
        resp = client.post(f"/orgs/{org.id}/admin/bookings/{pending.id}/cancel", headers=auth_headers(user))
        assert resp.status_code == 403

    def test_admin_of_other_org_is_forbidden(self, client, org, other_org, court, auth_headers):
        outsider = make_user("outsider@example.com", other_org, role="ADMIN")
        resp = client.delete(f"/orgs/{org.id}/admin/courts/{court.id}", headers=auth_headers(outsider))
        assert resp.status_code == 403

    def test_admin_cancels_pending(self, client, org, admin, auth_headers, pending):
        resp = client.post(f"/orgs/{org.id}/admin/bookings/{pending.id}/cancel", json={"reason": "Storm"}, headers=auth_headers(admin))
        assert resp.status_code == 200
        body = resp.get_json()["booking"]
        assert body["status"] == BookingStatus.CANCELLED
        assert body["cancel_reason"] == "Storm"

    def test_block_lifecycle(self, client, org, court, admin, auth_headers, tomorrow):
        headers = auth_headers(admin)
        resp = client.post(
            f"/orgs/{org.id}/admin/courts/{court.id}/blocks",
            json={"start_time": f"{tomorrow}T09:00:00+08:00", "end_time": f"{tomorrow}T11:00:00+08:00", "reason": "TOURNAMENT"},
            headers=headers,
        )
        assert resp.status_code == 201
        block_id = resp.get_json()["id"]

        listed = client.get(f"/orgs/{org.id}/admin/courts/{court.id}/blocks", headers=headers).get_json()
        assert [b["id"] for b in listed] == [block_id]

        slots = client.get(f"/orgs/{org.id}/courts/{court.id}/availability?date={tomorrow}").get_json()["slots"]
        assert [s["is_available"] for s in slots[1:5]] == [True, False, False, True]

        assert client.delete(f"/orgs/{org.id}/admin/blocks/{block_id}", headers=headers).status_code == 200

    def test_delete_court_with_booking_refused(self, client, org, court, admin, auth_headers, pending):
        resp = client.delete(f"/orgs/{org.id}/admin/courts/{court.id}", headers=auth_headers(admin))
        assert resp.status_code == 403


class TestCron:
    def test_requires_secret(self, client):
        assert client.post("/cron/expire-bookings").status_code == 401
        assert client.post("/cron/expire-bookings", headers={"Authorization": "Bearer wrong"}).status_code == 401

    def test_sweeps(self, client, pending):
        resp = client.get("/cron/expire-bookings", headers={"Authorization": "Bearer test-cron-secret"})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        # The hold has not lapsed yet
        assert body["expired_count"] == 0


class TestStripeWebhook:
    @pytest.fixture
    def verified(self, monkeypatch):
        monkeypatch.setattr(stripe.Webhook, "construct_event", lambda payload, sig, secret: None)

    def _post(self, client, payload):
        return client.post(
            "/webhooks/stripe",
            data=payload,
            headers={"Stripe-Signature": "t=1,v1=sig"},
            content_type="application/json",
        )

    def test_bad_signature(self, client, pending, monkeypatch):
        def reject(payload, sig, secret):
            raise stripe.SignatureVerificationError("bad signature", sig)

        monkeypatch.setattr(stripe.Webhook, "construct_event", reject)
        assert self._post(client, _stripe_event("checkout.session.completed", pending)).status_code == 400

    def test_completed_checkout_confirms(self, client, org, pending, verified):
        resp = self._post(client, _stripe_event("checkout.session.completed", pending))
        assert resp.status_code == 200
        assert resp.get_json()["applied"] is True
        booking = _reload(org, pending.id)
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.payment.gateway_reference == "cs_test_123"

        # Redelivery is harmless
        again = self._post(client, _stripe_event("checkout.session.completed", pending))
        assert again.get_json()["applied"] is False

    def test_expired_checkout_marks_payment_failed(self, client, org, pending, verified):
        resp = self._post(client, _stripe_event("checkout.session.expired", pending))
        assert resp.status_code == 200
        booking = _reload(org, pending.id)
        assert booking.status == BookingStatus.PENDING_PAYMENT
        assert booking.payment.status == "FAILED"

    def test_client_reference_fallback(self, client, org, pending, verified):
        payload = _stripe_event("checkout.session.completed", pending, metadata={}, client_reference_id=str(pending.id))
        assert self._post(client, payload).get_json()["applied"] is True

    def test_unknown_booking_acknowledged(self, client, pending, verified):
        payload = _stripe_event("checkout.session.completed", pending, metadata={"booking_id": "99999"})
        resp = self._post(client, payload)
        assert resp.status_code == 200
        assert resp.get_json()["applied"] is False

    def test_unhandled_event_ignored(self, client, pending, verified):
        resp = self._post(client, _stripe_event("customer.created", pending))
        assert resp.get_json() == {"received": True}


class TestPaymentBridge:
    def _post(self, client, org, body, secret="test-bridge-secret"):
        return client.post(f"/orgs/{org.id}/payments/outcome", json=body, headers={"Authorization": f"Bearer {secret}"})

    def test_rejects_wrong_secret(self, client, org, pending):
        body = {"booking_id": pending.id, "outcome": "completed"}
        assert self._post(client, org, body, secret="nope").status_code == 401

    def test_applies_outcome(self, client, org, pending):
        body = {"booking_id": pending.id, "outcome": "completed", "gateway_reference": "pi_1", "amount_cents": pending.total_cents}
        resp = self._post(client, org, body)
        assert resp.status_code == 200
        assert resp.get_json() == {"booking_id": pending.id, "status": BookingStatus.CONFIRMED, "applied": True}

    def test_amount_mismatch(self, client, org, pending):
        body = {"booking_id": pending.id, "outcome": "completed", "amount_cents": 1}
        assert self._post(client, org, body).status_code == 400

    def test_other_tenant_not_found(self, client, other_org, pending):
        body = {"booking_id": pending.id, "outcome": "completed"}
        assert self._post(client, other_org, body).status_code == 404


class TestCheckout:
    @pytest.fixture
    def stripe_config(self, app):
        app.config.update(
            STRIPE_SECRET_KEY="sk_test_x",
            STRIPE_SUCCESS_URL="https://club.example/paid",
            STRIPE_CANCEL_URL="https://club.example/cancelled",
        )

    def test_not_configured(self, client, org, user, auth_headers, pending):
        resp = client.post(f"/orgs/{org.id}/bookings/{pending.id}/checkout", headers=auth_headers(user))
        assert resp.status_code == 500

    def test_opens_session_for_pending_booking(self, client, org, user, auth_headers, pending, stripe_config, monkeypatch):
        calls = []

        def fake_create(**kwargs):
            calls.append(kwargs)
            return {"id": "cs_test_abc", "url": "https://checkout.stripe.test/cs_test_abc"}

        monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)

        resp = client.post(f"/orgs/{org.id}/bookings/{pending.id}/checkout", headers=auth_headers(user))

        assert resp.status_code == 200
        assert resp.get_json()["checkout_url"].endswith("cs_test_abc")
        assert calls[0]["metadata"]["booking_id"] == str(pending.id)
        assert calls[0]["line_items"][0]["price_data"]["unit_amount"] == pending.total_cents
        assert _reload(org, pending.id).payment.gateway_reference == "cs_test_abc"

    def test_confirmed_booking_cannot_check_out(self, client, org, user, auth_headers, pending, stripe_config):
        svc.apply_payment_outcome(pending.id, "completed", "cs_1")
        resp = client.post(f"/orgs/{org.id}/bookings/{pending.id}/checkout", headers=auth_headers(user))
        assert resp.status_code == 400

    def test_other_user_cannot_check_out(self, client, org, other_user, auth_headers, pending, stripe_config):
        resp = client.post(f"/orgs/{org.id}/bookings/{pending.id}/checkout", headers=auth_headers(other_user))
        assert resp.status_code == 404
