import pytest
import stripe
from fastapi.testclient import TestClient
from jose import jwt

from orderdesk.config import Settings
from orderdesk.database import Base
from orderdesk.main import create_app
from orderdesk.models import AdminUser, Order, PaymentTransaction, Refund

SECRET = "integration-secret"
CUSTOMER = "customer-42"
ADMIN_AUTH_ID = "auth-admin-42"


def auth(user_id):
    return {"Authorization": f"Bearer {jwt.encode({'sub': user_id}, SECRET, algorithm='HS256')}"}


@pytest.fixture
def fastapi_app():
    app = create_app(Settings(
        database_url="sqlite:///./test_integration.db",
        jwt_secret=SECRET,
        stripe_secret_key="sk_test_integration",
        stripe_webhook_secret="whsec_test",
    ))
    yield app
    Base.metadata.drop_all(bind=app.state.engine)
    app.state.engine.dispose()


@pytest.fixture
def client(fastapi_app):
    db = fastapi_app.state.session_factory()
    db.add(AdminUser(auth_user_id=ADMIN_AUTH_ID, name="Ops", status="active"))
    db.commit()
    db.close()

    with TestClient(fastapi_app) as c:
        yield c


def test_full_refund_lifecycle_integration(client, fastapi_app, mocker):
    """
    Test the full lifecycle:
    1. Checkout (API -> DB + Stripe mocked)
    2. Webhook success (Stripe -> API -> DB)
    3. Customer requests a refund
    4. Admin moves it to processing, then completed (Stripe refund mocked)
    """

    # --- 1. CHECKOUT ---
    mock_pi = mocker.Mock()
    mock_pi.id = "pi_integration_test_123"
    mock_pi.client_secret = "secret_test_456"
    create_intent = mocker.patch("stripe.PaymentIntent.create", return_value=mock_pi)

    response = client.post(
        "/orders/checkout", json={"totalAmount": "500.00", "currency": "inr"}, headers=auth(CUSTOMER)
    )

    assert response.status_code == 200
    assert response.json()["clientSecret"] == "secret_test_456"
    order_id = response.json()["orderId"]
    assert create_intent.call_args.kwargs["amount"] == 50000
    assert create_intent.call_args.kwargs["idempotency_key"] == order_id

    # --- 2. WEBHOOK SUCCESS ---
    mock_event = {
        "id": "evt_test",
        "type": "payment_intent.succeeded",
        "data": {
            "object": {
                "id": "pi_integration_test_123"
            }
        }
    }
    mocker.patch("stripe.Webhook.construct_event", return_value=mock_event)

    webhook_response = client.post(
        "/webhook",
        content="raw_stripe_payload",
        headers={"stripe-signature": "test_signature"}
    )

    assert webhook_response.status_code == 200
    assert webhook_response.json() == {"ok": True}

    db = fastapi_app.state.session_factory()
    order = db.get(Order, order_id)
    assert order.payment_status == "completed"
    assert order.status == "confirmed"
    db.close()

    # --- 3. REFUND REQUEST ---
    response = client.post(
        "/refunds", json={"orderId": order_id, "reason": "Stone came loose"}, headers=auth(CUSTOMER)
    )

    assert response.status_code == 200
    refund_id = response.json()["refund"]["id"]
    assert response.json()["refund"]["status"] == "pending"

    # --- 4. ADMIN REVIEW ---
    response = client.post(
        "/admin/refunds/process",
        json={"refundId": refund_id, "status": "processing"},
        headers=auth(ADMIN_AUTH_ID)
    )
    assert response.status_code == 200

    stripe_refund = mocker.Mock()
    stripe_refund.id = "re_integration_1"
    stripe_refund.status = "succeeded"
    stripe_refund.to_dict.return_value = {"id": "re_integration_1", "status": "succeeded", "amount": 50000}
    create_refund = mocker.patch("stripe.Refund.create", return_value=stripe_refund)

    response = client.post(
        "/admin/refunds/process",
        json={"refundId": refund_id, "status": "completed", "adminNotes": "Approved"},
        headers=auth(ADMIN_AUTH_ID)
    )

    assert response.status_code == 200
    assert response.json()["paymentGatewayResponse"]["id"] == "re_integration_1"
    assert create_refund.call_args.kwargs["payment_intent"] == "pi_integration_test_123"
    assert create_refund.call_args.kwargs["idempotency_key"] == f"refund-{refund_id}"

    db = fastapi_app.state.session_factory()
    order = db.get(Order, order_id)
    assert order.status == "cancelled"
    assert order.payment_status == "refunded"
    refund = db.get(Refund, refund_id)
    assert [h.new_status for h in refund.history] == ["pending", "processing", "completed"]
    assert len(refund.notifications) == 3
    statuses = sorted(t.status for t in db.query(PaymentTransaction).filter_by(order_id=order_id))
    assert statuses == ["completed", "refunded"]
    db.close()

    # --- 5. DETAILS ---
    response = client.get(f"/orders/{order_id}", headers=auth(CUSTOMER))
    assert response.status_code == 200
    timeline = [entry["status"] for entry in response.json()["order"]["timeline"]]
    assert timeline == ["pending", "confirmed", "cancelled"]


def test_webhook_non_existent_payment(client, mocker):
    """Webhook for an unknown payment intent is acknowledged and ignored."""
    mock_event = {
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": "pi_unknown"}}
    }
    mocker.patch("stripe.Webhook.construct_event", return_value=mock_event)

    response = client.post("/webhook", headers={"stripe-signature": "test"})
    assert response.status_code == 200


def test_webhook_invalid_signature(client, mocker):
    mocker.patch(
        "stripe.Webhook.construct_event",
        side_effect=stripe.SignatureVerificationError("Invalid", "sig")
    )

    response = client.post("/webhook", headers={"stripe-signature": "invalid_sig"})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid signature"


def test_checkout_database_integrity_on_stripe_error(client, fastapi_app, mocker):
    """If Stripe fails, return an error and leave no order in the database."""
    mocker.patch(
        "stripe.PaymentIntent.create",
        side_effect=stripe.APIConnectionError("Stripe Service Unavailable")
    )

    response = client.post("/orders/checkout", json={"totalAmount": 2500}, headers=auth(CUSTOMER))

    assert response.status_code == 500
    assert response.json()["error"].startswith("Payment gateway error")

    db = fastapi_app.state.session_factory()
    assert db.query(Order).count() == 0
    db.close()


def test_cancel_paid_order_refunds_through_stripe(client, fastapi_app, mocker):
    mock_pi = mocker.Mock()
    mock_pi.id = "pi_cancel_1"
    mock_pi.client_secret = "secret_cancel_1"
    mocker.patch("stripe.PaymentIntent.create", return_value=mock_pi)
    order_id = client.post("/orders/checkout", json={"totalAmount": 75}, headers=auth(CUSTOMER)).json()["orderId"]

    mocker.patch(
        "stripe.Webhook.construct_event",
        return_value={"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_cancel_1"}}}
    )
    client.post("/webhook", content="payload", headers={"stripe-signature": "sig"})

    stripe_refund = mocker.Mock()
    stripe_refund.id = "re_cancel_1"
    stripe_refund.status = "succeeded"
    stripe_refund.to_dict.return_value = {"id": "re_cancel_1"}
    mocker.patch("stripe.Refund.create", return_value=stripe_refund)

    response = client.post(f"/orders/{order_id}/cancel", json={"reason": "Ordered twice"}, headers=auth(CUSTOMER))

    assert response.status_code == 200
    assert response.json()["refunded"] is True

    db = fastapi_app.state.session_factory()
    assert db.get(Order, order_id).payment_status == "refunded"
    db.close()
