from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from orderdesk.auth import Identity, current_identity, require_admin
from orderdesk.database import get_db
from orderdesk.gateway import StripeGateway, as_payload
from orderdesk.models import AdminUser
from orderdesk.orders import OrderStatusController
from orderdesk.refunds import RefundStateController
from orderdesk.schemas import (
    CancelOrderRequest,
    CheckoutRequest,
    OrderDetailOut,
    OrderOut,
    OrderStatusRequest,
    ProcessRefundRequest,
    RefundDetailOut,
    RefundOut,
    RefundRequest,
    TimelineEntryOut,
    dump,
)

router = APIRouter()


def get_gateway(request: Request) -> StripeGateway:
    return request.app.state.gateway


def get_order_controller(
    request: Request,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway)
) -> OrderStatusController:
    return OrderStatusController(db, gateway, request.app.state.settings.gateway_payment_methods)


def get_refund_controller(
    request: Request,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway)
) -> RefundStateController:
    return RefundStateController(db, gateway, request.app.state.settings.gateway_payment_methods)


@router.post("/admin/refunds/process")
def process_refund(
    body: ProcessRefundRequest,
    admin: AdminUser = Depends(require_admin),
    refunds: RefundStateController = Depends(get_refund_controller)
):
    outcome = refunds.process(body.refund_id, admin.id, body.status, body.admin_notes)
    return {
        "success": True,
        "message": f"Refund status updated to {body.status}",
        "refund": dump(RefundOut, outcome.record),
        "paymentGatewayResponse": outcome.gateway_response,
        "warnings": outcome.warnings(),
    }


@router.post("/admin/orders/status")
def update_order_status(
    body: OrderStatusRequest,
    admin: AdminUser = Depends(require_admin),
    orders: OrderStatusController = Depends(get_order_controller)
):
    outcome = orders.transition(body.order_id, body.status, body.notes, admin.id)
    return {
        "success": True,
        "order": dump(OrderOut, outcome.record),
        "timeline": dump(TimelineEntryOut, outcome.history),
        "warnings": outcome.warnings(),
    }


@router.post("/refunds")
def request_refund(
    body: RefundRequest,
    identity: Identity = Depends(current_identity),
    refunds: RefundStateController = Depends(get_refund_controller)
):
    outcome = refunds.request_refund(body.order_id, identity.user_id, body.amount, body.reason)
    return {
        "success": True,
        "message": "Refund request submitted successfully",
        "refund": dump(RefundOut, outcome.record),
        "warnings": outcome.warnings(),
    }


@router.get("/refunds/{refund_id}")
def get_refund(
    refund_id: str,
    identity: Identity = Depends(current_identity),
    refunds: RefundStateController = Depends(get_refund_controller)
):
    refund = refunds.get_details(refund_id, identity.user_id, identity.is_admin)
    return {"success": True, "refund": dump(RefundDetailOut, refund)}


@router.post("/orders/checkout")
def checkout(
    body: CheckoutRequest,
    request: Request,
    identity: Identity = Depends(current_identity),
    orders: OrderStatusController = Depends(get_order_controller)
):
    currency = (body.currency or request.app.state.settings.default_currency).lower()
    outcome = orders.checkout(identity.user_id, body.total_amount, currency)
    order = outcome.record
    return {
        "success": True,
        "orderId": order.id,
        "orderNumber": order.order_number,
        "clientSecret": outcome.gateway_response["client_secret"],
        "amount": float(order.total_amount),
        "currency": order.currency,
    }


@router.post("/orders/{order_id}/cancel")
def cancel_order(
    order_id: str,
    body: Optional[CancelOrderRequest] = None,
    identity: Identity = Depends(current_identity),
    orders: OrderStatusController = Depends(get_order_controller)
):
    outcome = orders.cancel(order_id, identity.user_id, body.reason if body else None)
    return {
        "success": True,
        "message": "Order cancelled successfully",
        "refunded": outcome.gateway_response is not None,
        "warnings": outcome.warnings(),
    }


@router.get("/orders/{order_id}")
def get_order(
    order_id: str,
    identity: Identity = Depends(current_identity),
    orders: OrderStatusController = Depends(get_order_controller)
):
    order = orders.get_details(order_id, identity.user_id, identity.is_admin)
    return {"success": True, "order": dump(OrderDetailOut, order)}


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    orders: OrderStatusController = Depends(get_order_controller)
):
    payload = await request.body()
    event = orders.gateway.construct_event(payload, stripe_signature)

    if event["type"] == "payment_intent.succeeded":
        intent = event["data"]["object"]
        orders.confirm_payment(intent["id"], as_payload(intent))

    return {"ok": True}
