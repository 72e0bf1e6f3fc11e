"""
Outbound message channels.

The dispatcher only knows MessageChannel.send(); TelegramChannel is the Bot API
implementation, with retries for rate limits and transient server errors.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class ChannelError(Exception):
    """A message could not be delivered to the channel."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff for channel sends.

    Args:
        max_attempts: Attempts including the first one
        backoff_base: Delay before the first retry, in seconds
        backoff_factor: Multiplier applied per further retry
        max_backoff: Upper bound for any computed delay
        retry_status_codes: HTTP statuses worth another attempt
    """

    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_factor: float = 2.0
    max_backoff: float = 30.0
    retry_status_codes: frozenset[int] = field(default_factory=lambda: frozenset({429, 500, 502, 503, 504}))

    def delay_for(self, attempt: int) -> float:
        """Delay after failed attempt number `attempt` (1-based)."""
        if attempt < 1:
            raise ValueError("attempt must be >= 1")
        return min(self.backoff_base * (self.backoff_factor ** (attempt - 1)), self.max_backoff)


class MessageChannel(ABC):
    """Where notifications go."""

    @abstractmethod
    async def send(self, chat_id: int, text: str, keyboard: Optional[dict] = None) -> str:
        """
        Send a message.

        Returns:
            The channel's delivery id for the message

        Raises:
            ChannelError: If the message was not accepted
        """
        ...

    async def close(self) -> None:
        """Release any connections held by the channel."""
        return None


def button(text: str, callback_data: str | None = None, web_app_url: str | None = None) -> dict:
    """An inline keyboard button: a callback button or a Web App launcher."""
    if web_app_url:
        return {"text": text, "web_app": {"url": web_app_url}}
    if callback_data is None:
        raise ValueError("A button needs callback_data or web_app_url")
    return {"text": text, "callback_data": callback_data}


def inline_keyboard(rows: list[list[dict]]) -> dict:
    """Reply markup for an inline keyboard; empty rows are dropped."""
    return {"inline_keyboard": [row for row in rows if row]}


class TelegramChannel(MessageChannel):
    """
    Telegram Bot API channel.

    Args:
        bot_token: Bot token from @BotFather
        api_base: API root, overridable for a local Bot API server
        timeout: Per-request timeout in seconds
        retry_policy: Backoff for 429 and 5xx answers and transport errors
        client: Optional httpx.AsyncClient (tests pass one with a MockTransport)
        sleep: Awaitable used between attempts
    """

    def __init__(
        self,
        bot_token: str,
        api_base: str = "https://api.telegram.org",
        timeout: float = 30.0,
        retry_policy: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
        sleep=asyncio.sleep,
    ):
        if not bot_token:
            raise ValueError("A Telegram bot token is required")
        self._token = bot_token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

    @classmethod
    def from_config(cls, config) -> "TelegramChannel":
        """Build from a TasklyConfig's telegram section."""
        tg = config.telegram
        if not tg.bot_token:
            raise ValueError("Telegram bot token not configured. Set TELEGRAM_BOT_TOKEN.")
        policy = RetryPolicy(max_attempts=max(1, tg.max_retries), backoff_base=tg.retry_delay)
        return cls(tg.bot_token, api_base=tg.api_base, timeout=tg.timeout, retry_policy=policy)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def send(self, chat_id: int, text: str, keyboard: Optional[dict] = None) -> str:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "MarkdownV2",
            "disable_web_page_preview": True,
        }
        if keyboard:
            payload["reply_markup"] = keyboard

        result = await self._call("sendMessage", payload, chat_id)
        message_id = result.get("message_id")
        logger.debug(f"Message {message_id} sent to chat {chat_id}")
        return str(message_id)

    async def _call(self, method: str, payload: dict, chat_id: int) -> dict:
        url = f"{self.api_base}/bot{self._token}/{method}"
        policy = self.retry_policy
        last_error: ChannelError | None = None

        for attempt in range(1, policy.max_attempts + 1):
            try:
                response = await self.client.post(url, json=payload)
            except httpx.TransportError as e:
                last_error = ChannelError(f"Telegram {method} failed: {type(e).__name__}")
                delay = policy.delay_for(attempt)
            else:
                data = _json_body(response)
                if response.status_code == 200 and data.get("ok"):
                    return data.get("result") or {}

                description = data.get("description") or f"HTTP {response.status_code}"
                last_error = ChannelError(f"Telegram {method} failed: {description}", response.status_code)
                if response.status_code not in policy.retry_status_codes:
                    raise last_error

                retry_after = (data.get("parameters") or {}).get("retry_after")
                delay = float(retry_after) if retry_after else policy.delay_for(attempt)

            if attempt >= policy.max_attempts:
                break
            logger.warning(
                f"{last_error} (chat {chat_id}), retrying in {delay:.1f}s "
                f"(attempt {attempt}/{policy.max_attempts})"
            )
            await self._sleep(delay)

        raise last_error


def _json_body(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
