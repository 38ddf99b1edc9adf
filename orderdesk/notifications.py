from decimal import Decimal

from sqlalchemy.orm import Session

from orderdesk.models import NotificationChannel, NotificationStatus, Refund, RefundNotification, RefundStatus

REQUEST_RECEIVED = (
    "Your refund request has been received and is pending review. "
    "You will be notified once it is processed."
)


def format_amount(amount, currency: str = "inr") -> str:
    return f"{(currency or 'inr').upper()} {Decimal(str(amount)):.2f}"


def refund_message(status: str, amount, currency: str = "inr") -> str:
    if status == RefundStatus.COMPLETED.value:
        return (
            f"Your refund of {format_amount(amount, currency)} has been processed successfully "
            "and will be credited to your original payment method within 3-5 business days."
        )
    if status == RefundStatus.PROCESSING.value:
        return (
            "Your refund request is now being processed. "
            "This typically takes 3-5 business days to complete."
        )
    if status == RefundStatus.PENDING.value:
        return REQUEST_RECEIVED
    return "Your refund request has been reviewed. Please contact customer support for more information."


class NotificationEmitter:
    """Queues a user-facing notification for a refund status change.

    Delivery is handled elsewhere; rows are written as ``pending``.
    """

    def __init__(self, db: Session, channel: NotificationChannel = NotificationChannel.IN_APP):
        self.db = db
        self.channel = channel

    def emit(self, refund: Refund, status: str) -> RefundNotification:
        currency = refund.order.currency if refund.order is not None else "inr"
        notification = RefundNotification(
            refund_id=refund.id,
            user_id=refund.user_id,
            type=self.channel.value,
            status=NotificationStatus.PENDING.value,
            content=refund_message(status, refund.amount, currency)
        )
        self.db.add(notification)
        self.db.flush()
        return notification
