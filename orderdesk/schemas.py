from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ProcessRefundRequest(RequestModel):
    refund_id: str = Field(alias="refundId", min_length=1)
    status: str = Field(min_length=1)
    admin_notes: Optional[str] = Field(default=None, alias="adminNotes")


class OrderStatusRequest(RequestModel):
    order_id: str = Field(alias="orderId", min_length=1)
    status: str = Field(min_length=1)
    notes: Optional[str] = None


class RefundRequest(RequestModel):
    order_id: str = Field(alias="orderId", min_length=1)
    reason: Optional[str] = None
    amount: Optional[Decimal] = None


class CheckoutRequest(RequestModel):
    total_amount: Decimal = Field(alias="totalAmount")
    currency: Optional[str] = None


class CancelOrderRequest(RequestModel):
    reason: Optional[str] = None


class Record(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class HistoryEntryOut(Record):
    id: str
    previous_status: Optional[str] = None
    new_status: str
    notes: Optional[str] = None
    changed_by: Optional[str] = None
    created_at: datetime


class TimelineEntryOut(Record):
    id: str
    previous_status: Optional[str] = None
    status: str
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime


class NotificationOut(Record):
    id: str
    user_id: str
    type: str
    status: str
    content: str
    sent_at: Optional[datetime] = None
    created_at: datetime


class RefundOut(Record):
    id: str
    order_id: str
    user_id: str
    amount: float
    payment_method: str
    payment_id: Optional[str] = None
    reason: Optional[str] = None
    status: str
    admin_notes: Optional[str] = None
    processed_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class RefundDetailOut(RefundOut):
    history: List[HistoryEntryOut] = []
    notifications: List[NotificationOut] = []


class OrderOut(Record):
    id: str
    order_number: str
    user_id: str
    total_amount: float
    currency: Optional[str] = None
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class OrderDetailOut(OrderOut):
    timeline: List[TimelineEntryOut] = []
    refunds: List[RefundOut] = []


def dump(schema, obj) -> Optional[dict]:
    if obj is None:
        return None
    return schema.model_validate(obj).model_dump(mode="json")
