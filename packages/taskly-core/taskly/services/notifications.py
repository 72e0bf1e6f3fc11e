"""
Notification Service for Taskly.

Audit trail of dispatch attempts.
"""

import logging
from datetime import datetime

from taskly.db import get_adapter, rowcount
from taskly.models.notification import DeliveryStatus, Notification, NotificationType

logger = logging.getLogger(__name__)


class NotificationService:
    """Service for recording and querying notification attempts."""

    def __init__(self, adapter=None):
        self._adapter = adapter

    @property
    def adapter(self):
        """Get the database adapter."""
        if self._adapter is None:
            self._adapter = get_adapter()
        return self._adapter

    def _table_name(self) -> str:
        return self.adapter.table("notifications")

    async def insert(self, record: Notification) -> Notification:
        await self.adapter.execute(
            f"""
            INSERT INTO {self._table_name()}
                (id, user_id, task_id, type, message, delivery_id, delivery_status, error, sent_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            """,
            record.id, record.user_id, record.task_id, record.type.value, record.message,
            record.delivery_id, record.delivery_status.value, record.error, record.sent_at,
        )
        return record

    async def get(self, notification_id: str) -> Notification | None:
        row = await self.adapter.fetchrow(
            f"SELECT * FROM {self._table_name()} WHERE id = $1", notification_id
        )
        return Notification.from_dict(row) if row else None

    async def set_status(self, notification_id: str, status: DeliveryStatus) -> bool:
        """
        Move a `sent` record to `delivered` or `failed`.

        Returns:
            True if the record moved, False if it does not exist or changed underneath

        Raises:
            ValueError: If the transition is not allowed
        """
        status = DeliveryStatus(status)
        record = await self.get(notification_id)
        if record is None:
            return False
        if not record.can_transition_to(status):
            raise ValueError(
                f"Cannot move a {record.delivery_status.value} notification to {status.value}"
            )

        result = await self.adapter.execute(
            f"UPDATE {self._table_name()} SET delivery_status = $1 WHERE id = $2 AND delivery_status = $3",
            status.value, notification_id, record.delivery_status.value,
        )
        return rowcount(result) == 1

    async def list_for_task(self, task_id: str) -> list[Notification]:
        rows = await self.adapter.fetch(
            f"SELECT * FROM {self._table_name()} WHERE task_id = $1 ORDER BY sent_at",
            task_id,
        )
        return [Notification.from_dict(row) for row in rows]

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[Notification]:
        rows = await self.adapter.fetch(
            f"SELECT * FROM {self._table_name()} WHERE user_id = $1 ORDER BY sent_at DESC LIMIT $2",
            user_id, limit,
        )
        return [Notification.from_dict(row) for row in rows]

    async def sent_since(self, user_id: str, type: NotificationType, since: datetime) -> bool:
        """Whether a non-failed notification of `type` went to the user at or after `since`."""
        found = await self.adapter.fetchval(
            f"""
            SELECT 1 FROM {self._table_name()}
            WHERE user_id = $1 AND type = $2 AND delivery_status != $3 AND sent_at >= $4
            LIMIT 1
            """,
            user_id, NotificationType(type).value, DeliveryStatus.FAILED.value, since,
        )
        return found is not None

    async def delete_older_than(self, cutoff: datetime) -> int:
        result = await self.adapter.execute(
            f"DELETE FROM {self._table_name()} WHERE sent_at < $1",
            cutoff,
        )
        deleted = rowcount(result)
        logger.info(f"Deleted {deleted} notifications older than {cutoff.isoformat()}")
        return deleted
