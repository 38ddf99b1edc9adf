"""Refund workflow: customer requests, admin review and gateway refunds.

A refund moves ``pending -> processing -> completed`` or ends in ``rejected``.
``completed`` and ``rejected`` are terminal. Completing a refund paid through
the gateway issues the gateway refund first; if that call fails nothing is
written.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from orderdesk.database import primary_write
from orderdesk.errors import InvalidTransition, NotFound, ValidationError
from orderdesk.gateway import StripeGateway, to_minor_units
from orderdesk.history import StatusHistoryRecorder
from orderdesk.models import (
    TERMINAL_REFUND_STATUSES,
    Order,
    OrderStatus,
    PaymentStatus,
    PaymentTransaction,
    Refund,
    RefundStatus,
    utcnow,
)
from orderdesk.notifications import NotificationEmitter
from orderdesk.outcomes import TransitionOutcome, best_effort

logger = logging.getLogger(__name__)

DEFAULT_REASON = "Customer requested cancellation"

REFUNDABLE_ORDER_STATUSES = frozenset({
    OrderStatus.PENDING.value,
    OrderStatus.CONFIRMED.value,
    OrderStatus.PROCESSING.value,
})

PROCESS_TARGETS = frozenset({
    RefundStatus.PROCESSING.value,
    RefundStatus.COMPLETED.value,
    RefundStatus.REJECTED.value,
})


def _parse_amount(amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValidationError("Refund amount must be a number")
    if value <= 0:
        raise ValidationError("Refund amount must be positive")
    return value


class RefundStateController:
    def __init__(
        self,
        db: Session,
        gateway: StripeGateway,
        gateway_payment_methods: Iterable[str] = ("Stripe",),
        history: Optional[StatusHistoryRecorder] = None,
        notifications: Optional[NotificationEmitter] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.gateway_payment_methods = frozenset(gateway_payment_methods)
        self.history = history or StatusHistoryRecorder(db)
        self.notifications = notifications or NotificationEmitter(db)

    def request_refund(
        self,
        order_id: str,
        user_id: str,
        amount=None,
        reason: Optional[str] = None,
    ) -> TransitionOutcome:
        """Open a ``pending`` refund for a paid order owned by ``user_id``.

        The amount defaults to the order total. It is not checked against
        the total, nor against earlier refunds of the same order.
        The order itself is cancelled.
        """
        order = self.db.get(Order, order_id)
        if order is None or order.user_id != user_id:
            raise NotFound("Order not found or access denied")
        if order.status not in REFUNDABLE_ORDER_STATUSES:
            raise ValidationError("This order cannot be refunded at its current status")
        if order.payment_status != PaymentStatus.COMPLETED.value:
            raise ValidationError("Only completed payments can be refunded")

        value = order.total_amount if amount is None else _parse_amount(amount)
        reason = reason or DEFAULT_REASON

        refund = Refund(
            order_id=order.id,
            user_id=user_id,
            amount=value,
            payment_method=order.payment_method or "Unknown",
            payment_id=order.gateway_payment_id or order.gateway_order_id,
            reason=reason,
            status=RefundStatus.PENDING.value
        )
        with primary_write(self.db, "Failed to create refund request"):
            self.db.add(refund)
            self.db.flush()

        outcome = TransitionOutcome(record=refund)

        previous_order_status = order.status
        with best_effort(self.db, outcome, "order_cancellation"):
            order.status = OrderStatus.CANCELLED.value
            order.updated_at = utcnow()
            self.db.flush()
            self.history.record_order(
                order.id,
                previous_order_status,
                OrderStatus.CANCELLED.value,
                f"Order cancelled and refund requested: {reason}"
            )

        with best_effort(self.db, outcome, "status_history"):
            outcome.history = self.history.record_refund(
                refund.id, None, RefundStatus.PENDING.value, "Refund request initiated by customer"
            )

        with best_effort(self.db, outcome, "notification"):
            outcome.notification = self.notifications.emit(refund, RefundStatus.PENDING.value)

        with primary_write(self.db, "Failed to create refund request"):
            self.db.commit()

        logger.info("Refund %s requested for order %s by user %s", refund.id, order.id, user_id)
        return outcome

    def process(
        self,
        refund_id: str,
        actor_admin_id: str,
        target_status: str,
        admin_notes: Optional[str] = None,
    ) -> TransitionOutcome:
        if target_status not in PROCESS_TARGETS:
            raise ValidationError("Invalid status. Must be processing, completed, or rejected")

        refund = self.db.get(Refund, refund_id)
        if refund is None:
            raise NotFound("Refund not found")

        previous_status = refund.status
        if target_status == previous_status:
            raise InvalidTransition(f"Refund is already {previous_status}")
        if previous_status in TERMINAL_REFUND_STATUSES:
            raise InvalidTransition(f"Refund is already {previous_status} and cannot be changed")

        completing = target_status == RefundStatus.COMPLETED.value
        gateway_refund = None
        if completing and self._paid_through_gateway(refund):
            gateway_refund = self.gateway.refund(
                refund.payment_id,
                to_minor_units(refund.amount),
                notes={
                    "reason": refund.reason or DEFAULT_REASON,
                    "order_id": refund.order_id,
                    "refund_id": refund.id,
                },
                idempotency_key=f"refund-{refund.id}"
            )
            logger.info("Gateway refund %s issued for refund %s", gateway_refund.gateway_id, refund.id)

        now = utcnow()
        with primary_write(self.db, "Failed to update refund status"):
            refund.status = target_status
            refund.admin_notes = admin_notes or refund.admin_notes
            refund.processed_by = actor_admin_id
            refund.updated_at = now
            if completing:
                refund.completed_at = now
            self.db.flush()

        outcome = TransitionOutcome(
            record=refund,
            gateway_response=gateway_refund.payload if gateway_refund else None
        )

        if completing:
            with best_effort(self.db, outcome, "order_payment_status"):
                refund.order.payment_status = PaymentStatus.REFUNDED.value
                refund.order.updated_at = now
                self.db.flush()

            if gateway_refund is not None:
                with best_effort(self.db, outcome, "payment_transaction"):
                    self.db.add(PaymentTransaction(
                        order_id=refund.order_id,
                        gateway_payment_id=gateway_refund.gateway_id,
                        amount=refund.amount,
                        currency=refund.order.currency,
                        status=PaymentStatus.REFUNDED.value,
                        payment_method=refund.payment_method,
                        gateway_response=gateway_refund.payload
                    ))
                    self.db.flush()

        with best_effort(self.db, outcome, "status_history"):
            outcome.history = self.history.record_refund(
                refund.id,
                previous_status,
                target_status,
                admin_notes or f"Refund status updated to {target_status} by admin",
                actor_admin_id
            )

        with best_effort(self.db, outcome, "notification"):
            outcome.notification = self.notifications.emit(refund, target_status)

        with primary_write(self.db, "Failed to update refund status"):
            self.db.commit()

        logger.info(
            "Refund %s moved %s -> %s by admin %s", refund.id, previous_status, target_status, actor_admin_id
        )
        return outcome

    def get_details(self, refund_id: str, viewer_id: str, is_admin: bool = False) -> Refund:
        refund = self.db.get(Refund, refund_id)
        if refund is None or (not is_admin and refund.user_id != viewer_id):
            raise NotFound("Refund not found or access denied")
        return refund

    def _paid_through_gateway(self, refund: Refund) -> bool:
        return bool(refund.payment_id) and refund.payment_method in self.gateway_payment_methods
