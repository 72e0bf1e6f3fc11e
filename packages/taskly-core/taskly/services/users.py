"""
User Service for Taskly.

Read access to users for the scheduled jobs, plus the get-or-create lookup the
identity handshake hands verified Telegram users to.
"""

import logging

from taskly.db import get_adapter, rowcount
from taskly.models.user import User, UserSettings

logger = logging.getLogger(__name__)


class UserService:
    """Service for looking up and registering users."""

    def __init__(self, adapter=None):
        """
        Initialize user service.

        Args:
            adapter: Optional DatabaseAdapter. If not provided, uses the shared adapter.
        """
        self._adapter = adapter

    @property
    def adapter(self):
        """Get the database adapter."""
        if self._adapter is None:
            self._adapter = get_adapter()
        return self._adapter

    def _table_name(self) -> str:
        return self.adapter.table("users")

    async def resolve(
        self,
        telegram_id: int,
        first_name: str | None = None,
        username: str | None = None,
        timezone: str | None = None,
    ) -> User:
        """
        Get the user for an already-verified Telegram identity, creating it on
        first sight. The internal id stays stable across calls.
        """
        existing = await self.get_by_telegram_id(telegram_id)
        if existing is not None:
            return existing

        user = User(
            telegram_id=telegram_id,
            first_name=first_name,
            username=username,
            timezone=timezone,
        )
        result = await self.adapter.execute(
            f"""
            INSERT INTO {self._table_name()} (id, telegram_id, first_name, username, timezone, settings, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (telegram_id) DO NOTHING
            """,
            user.id, user.telegram_id, user.first_name, user.username,
            user.timezone, user.settings.to_dict(), user.created_at,
        )
        if rowcount(result) == 1:
            logger.info(f"Registered user {user.id} for telegram id {telegram_id}")
            return user

        # Lost a race with a concurrent sign-in
        return await self.get_by_telegram_id(telegram_id)

    async def get(self, user_id: str) -> User | None:
        row = await self.adapter.fetchrow(f"SELECT * FROM {self._table_name()} WHERE id = $1", user_id)
        return User.from_dict(row) if row else None

    async def get_by_telegram_id(self, telegram_id: int) -> User | None:
        row = await self.adapter.fetchrow(
            f"SELECT * FROM {self._table_name()} WHERE telegram_id = $1", telegram_id
        )
        return User.from_dict(row) if row else None

    async def get_many(self, user_ids: list[str]) -> dict[str, User]:
        """Users by id; unknown ids are simply missing from the result."""
        users = {}
        for user_id in dict.fromkeys(user_ids):
            user = await self.get(user_id)
            if user is not None:
                users[user_id] = user
        return users

    async def list_notifiable(self, page_size: int = 500) -> list[User]:
        """
        Users with notifications switched on and a usable chat id.

        Reads every user a page at a time; the settings check happens on the
        parsed settings, which accept the loose values older rows carry.
        """
        table = self._table_name()
        notifiable = []
        offset = 0
        while True:
            rows = await self.adapter.fetch(
                f"SELECT * FROM {table} WHERE telegram_id > $1 ORDER BY created_at, id LIMIT $2 OFFSET $3",
                0, page_size, offset,
            )
            users = [User.from_dict(row) for row in rows]
            notifiable.extend(u for u in users if u.settings.notifications)
            if len(rows) < page_size:
                return notifiable
            offset += page_size

    async def update_settings(self, user_id: str, settings: UserSettings, timezone: str | None = None) -> User | None:
        if timezone is None:
            await self.adapter.execute(
                f"UPDATE {self._table_name()} SET settings = $1 WHERE id = $2",
                settings.to_dict(), user_id,
            )
        else:
            await self.adapter.execute(
                f"UPDATE {self._table_name()} SET settings = $1, timezone = $2 WHERE id = $3",
                settings.to_dict(), timezone, user_id,
            )
        return await self.get(user_id)
