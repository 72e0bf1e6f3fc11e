"""
Notification audit records.

One record is written per dispatch attempt. Records are never edited except to
move a `sent` record to `delivered` or `failed`.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4


class NotificationType(str, Enum):
    DUE_TODAY = "due_today"
    DUE_TOMORROW = "due_tomorrow"
    OVERDUE = "overdue"
    REMINDER = "reminder"
    DAILY_SUMMARY = "daily_summary"
    EVENING_REMINDER = "evening_reminder"


class DeliveryStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


# Allowed status transitions
STATUS_TRANSITIONS = {
    DeliveryStatus.SENT: (DeliveryStatus.DELIVERED, DeliveryStatus.FAILED),
    DeliveryStatus.DELIVERED: (),
    DeliveryStatus.FAILED: (),
}


@dataclass
class Notification:
    """
    A record of one attempt to notify a user.

    Attributes:
        user_id: Internal id of the recipient
        type: What the notification was about
        id: Unique identifier (UUID)
        task_id: Task the notification concerns; None for summaries
        message: Text that was (or would have been) sent
        delivery_id: Channel message id, when the send succeeded
        delivery_status: sent, delivered or failed
        error: Failure description for failed attempts
        sent_at: When the attempt was made
    """

    user_id: str
    type: NotificationType
    id: str = field(default_factory=lambda: str(uuid4()))
    task_id: Optional[str] = None
    message: Optional[str] = None
    delivery_id: Optional[str] = None
    delivery_status: DeliveryStatus = DeliveryStatus.SENT
    error: Optional[str] = None
    sent_at: Optional[datetime] = None

    def __post_init__(self):
        self.type = NotificationType(self.type)
        self.delivery_status = DeliveryStatus(self.delivery_status)
        if self.sent_at is None:
            self.sent_at = datetime.now(timezone.utc)

    def can_transition_to(self, status: DeliveryStatus) -> bool:
        return DeliveryStatus(status) in STATUS_TRANSITIONS[self.delivery_status]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "task_id": self.task_id,
            "type": self.type.value,
            "message": self.message,
            "delivery_id": self.delivery_id,
            "delivery_status": self.delivery_status.value,
            "error": self.error,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Notification":
        """Create Notification from dictionary (e.g., database row)."""
        sent_at = data.get("sent_at")
        if isinstance(sent_at, str):
            sent_at = datetime.fromisoformat(sent_at.replace("Z", "+00:00"))
        return cls(
            id=data.get("id"),
            user_id=data["user_id"],
            task_id=data.get("task_id"),
            type=data["type"],
            message=data.get("message"),
            delivery_id=data.get("delivery_id"),
            delivery_status=data.get("delivery_status") or DeliveryStatus.SENT,
            error=data.get("error"),
            sent_at=sent_at,
        )
