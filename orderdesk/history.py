from typing import Optional

from sqlalchemy.orm import Session

from orderdesk.models import OrderTimeline, RefundStatusHistory


class StatusHistoryRecorder:
    def __init__(self, db: Session):
        self.db = db

    def record_refund(
        self,
        refund_id: str,
        previous_status: Optional[str],
        new_status: str,
        notes: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> RefundStatusHistory:
        entry = RefundStatusHistory(
            refund_id=refund_id,
            previous_status=previous_status,
            new_status=new_status,
            notes=notes,
            changed_by=actor_id
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def record_order(
        self,
        order_id: str,
        previous_status: Optional[str],
        new_status: str,
        notes: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> OrderTimeline:
        entry = OrderTimeline(
            order_id=order_id,
            previous_status=previous_status,
            status=new_status,
            notes=notes,
            created_by=actor_id
        )
        self.db.add(entry)
        self.db.flush()
        return entry
