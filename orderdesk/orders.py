import logging
import secrets
import time
import uuid
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from orderdesk.database import primary_write
from orderdesk.errors import InvalidTransition, NotFound, PaymentGatewayError, ValidationError
from orderdesk.gateway import StripeGateway, to_minor_units
from orderdesk.history import StatusHistoryRecorder
from orderdesk.models import (
    Order,
    OrderStatus,
    PaymentStatus,
    PaymentTransaction,
    Refund,
    RefundStatus,
    utcnow,
)
from orderdesk.notifications import NotificationEmitter
from orderdesk.outcomes import SideEffectFailure, TransitionOutcome, best_effort

logger = logging.getLogger(__name__)

ORDER_STATUSES = frozenset(s.value for s in OrderStatus)

CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value})


def generate_order_number() -> str:
    return f"ORD-{int(time.time() * 1000) % 1_000_000:06d}-{secrets.randbelow(1000)}"


class OrderStatusController:
    def __init__(
        self,
        db: Session,
        gateway: Optional[StripeGateway] = None,
        gateway_payment_methods: Iterable[str] = ("Stripe",),
        history: Optional[StatusHistoryRecorder] = None,
        notifications: Optional[NotificationEmitter] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.gateway_payment_methods = frozenset(gateway_payment_methods)
        self.history = history or StatusHistoryRecorder(db)
        self.notifications = notifications or NotificationEmitter(db)

    def checkout(
        self,
        user_id: str,
        total_amount,
        currency: str = "inr",
        payment_method: str = StripeGateway.name,
    ) -> TransitionOutcome:
        try:
            total = Decimal(str(total_amount))
        except InvalidOperation:
            raise ValidationError("Order total must be a number")
        if total <= 0:
            raise ValidationError("Order total must be positive")

        order_id = str(uuid.uuid4())
        intent = self.gateway.create_payment(to_minor_units(total), currency, idempotency_key=order_id)

        order = Order(
            id=order_id,
            order_number=generate_order_number(),
            user_id=user_id,
            total_amount=total,
            currency=currency,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            payment_method=payment_method,
            gateway_order_id=intent.id
        )
        with primary_write(self.db, "Failed to create order"):
            self.db.add(order)
            self.db.flush()

        outcome = TransitionOutcome(
            record=order,
            gateway_response={"id": intent.id, "client_secret": intent.client_secret}
        )
        with best_effort(self.db, outcome, "order_timeline"):
            outcome.history = self.history.record_order(order.id, None, OrderStatus.PENDING.value, "Order placed")

        with primary_write(self.db, "Failed to create order"):
            self.db.commit()

        logger.info("Order %s (%s) placed by user %s", order.id, order.order_number, user_id)
        return outcome

    def transition(
        self,
        order_id: str,
        target_status: str,
        note: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> TransitionOutcome:
        if target_status not in ORDER_STATUSES:
            raise ValidationError("Invalid status")

        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFound("Order not found")

        previous_status = order.status
        if target_status == previous_status:
            raise InvalidTransition(f"Order is already {previous_status}")

        with primary_write(self.db, "Failed to update order status"):
            order.status = target_status
            order.updated_at = utcnow()
            self.db.flush()

        outcome = TransitionOutcome(record=order)
        with best_effort(self.db, outcome, "order_timeline"):
            outcome.history = self.history.record_order(
                order.id,
                previous_status,
                target_status,
                note or f"Status updated to {target_status}",
                actor_id
            )

        with primary_write(self.db, "Failed to update order status"):
            self.db.commit()

        logger.info("Order %s moved %s -> %s by %s", order.id, previous_status, target_status, actor_id)
        return outcome

    def confirm_payment(self, gateway_order_id: str, payload: Optional[dict] = None) -> Optional[TransitionOutcome]:
        """Mark the order behind a gateway payment as paid. Repeated events are ignored.

        A payment that lands on an order already cancelled is recorded, then
        refunded in full; the order stays cancelled.
        """
        order = self.db.query(Order).filter_by(gateway_order_id=gateway_order_id).first()
        if order is None:
            logger.warning("Payment %s does not match any order", gateway_order_id)
            return None
        if order.payment_status != PaymentStatus.PENDING.value:
            return None

        cancelled = order.status == OrderStatus.CANCELLED.value
        previous_status = order.status
        with primary_write(self.db, "Failed to update order"):
            order.payment_status = PaymentStatus.COMPLETED.value
            if not cancelled:
                order.status = OrderStatus.CONFIRMED.value
            order.gateway_payment_id = gateway_order_id
            order.updated_at = utcnow()
            self.db.flush()

        outcome = TransitionOutcome(record=order, gateway_response=payload)
        if not cancelled:
            with best_effort(self.db, outcome, "order_timeline"):
                outcome.history = self.history.record_order(
                    order.id, previous_status, OrderStatus.CONFIRMED.value, "Payment completed successfully"
                )

        with best_effort(self.db, outcome, "payment_transaction"):
            self.db.add(PaymentTransaction(
                order_id=order.id,
                gateway_payment_id=gateway_order_id,
                gateway_order_id=gateway_order_id,
                amount=order.total_amount,
                currency=order.currency,
                status=PaymentStatus.COMPLETED.value,
                payment_method=order.payment_method,
                gateway_response=payload or {}
            ))
            self.db.flush()

        with primary_write(self.db, "Failed to update order"):
            self.db.commit()

        logger.info("Payment confirmed for order %s", order.id)

        if cancelled:
            logger.warning("Payment %s arrived after order %s was cancelled, refunding", gateway_order_id, order.id)
            refunded = self._refund_in_full(
                order, order.user_id, "Payment received after order cancellation", outcome
            )
            if refunded:
                with best_effort(self.db, outcome, "order_timeline"):
                    self.history.record_order(
                        order.id,
                        OrderStatus.CANCELLED.value,
                        OrderStatus.CANCELLED.value,
                        "Late payment refunded automatically"
                    )
            with primary_write(self.db, "Failed to update order"):
                self.db.commit()

        return outcome

    def cancel(self, order_id: str, user_id: str, reason: Optional[str] = None) -> TransitionOutcome:
        """Cancel an early order on behalf of its owner.

        A gateway payment is refunded in full and recorded as a completed
        refund. A failed gateway refund does not block the cancellation.
        """
        order = self.db.get(Order, order_id)
        if order is None or order.user_id != user_id:
            raise NotFound("Order not found or access denied")
        if order.status not in CANCELLABLE_STATUSES:
            raise ValidationError("Order cannot be cancelled at this stage")

        reason = reason or "Customer requested cancellation"
        outcome = TransitionOutcome(record=order)

        refunded = False
        if order.payment_status == PaymentStatus.COMPLETED.value:
            refunded = self._refund_in_full(order, user_id, reason, outcome)

        previous_status = order.status
        with primary_write(self.db, "Failed to update order status"):
            order.status = OrderStatus.CANCELLED.value
            order.updated_at = utcnow()
            self.db.flush()

        with best_effort(self.db, outcome, "order_timeline"):
            outcome.history = self.history.record_order(
                order.id, previous_status, OrderStatus.CANCELLED.value, reason, None
            )

        with primary_write(self.db, "Failed to update order status"):
            self.db.commit()

        logger.info("Order %s cancelled by user %s (refunded=%s)", order.id, user_id, refunded)
        return outcome

    def _refund_in_full(self, order: Order, user_id: str, reason: str, outcome: TransitionOutcome) -> bool:
        """Refund a paid order through the gateway and record a completed refund.

        Flushes without committing. A gateway failure is reported on ``outcome``
        and leaves the order's payment untouched.
        """
        payment_id = order.gateway_payment_id or order.gateway_order_id
        if order.payment_method not in self.gateway_payment_methods or not payment_id:
            return False

        try:
            gateway_refund = self.gateway.refund(
                payment_id,
                to_minor_units(order.total_amount),
                notes={"reason": reason, "order_id": order.id, "order_number": order.order_number},
                idempotency_key=f"order-cancel-{order.id}"
            )
        except PaymentGatewayError as exc:
            outcome.side_effect_failures.append(SideEffectFailure(effect="gateway_refund", error=exc.message))
            return False

        now = utcnow()
        refund = Refund(
            order_id=order.id,
            user_id=user_id,
            amount=order.total_amount,
            payment_method=order.payment_method,
            payment_id=payment_id,
            reason=reason,
            status=RefundStatus.COMPLETED.value,
            completed_at=now
        )
        with primary_write(self.db, "Failed to record order refund"):
            order.payment_status = PaymentStatus.REFUNDED.value
            order.updated_at = now
            self.db.add(refund)
            self.db.flush()

        outcome.gateway_response = gateway_refund.payload
        with best_effort(self.db, outcome, "payment_transaction"):
            self.db.add(PaymentTransaction(
                order_id=order.id,
                gateway_payment_id=gateway_refund.gateway_id,
                amount=order.total_amount,
                currency=order.currency,
                status=PaymentStatus.REFUNDED.value,
                payment_method=order.payment_method,
                gateway_response=gateway_refund.payload
            ))
            self.db.flush()

        with best_effort(self.db, outcome, "status_history"):
            self.history.record_refund(
                refund.id, None, RefundStatus.COMPLETED.value, "Refunded automatically on order cancellation"
            )

        with best_effort(self.db, outcome, "notification"):
            outcome.notification = self.notifications.emit(refund, RefundStatus.COMPLETED.value)

        logger.info("Order %s refunded in full through %s", order.id, gateway_refund.gateway_id)
        return True

    def get_details(self, order_id: str, viewer_id: str, is_admin: bool = False) -> Order:
        order = self.db.get(Order, order_id)
        if order is None or (not is_admin and order.user_id != viewer_id):
            raise NotFound("Order not found or access denied")
        return order
