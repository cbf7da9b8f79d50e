"""
WhatsApp gateway client.

The messaging connection itself (pairing, sockets) lives in a separate
gateway service; this client only posts outbound text to it.
"""

import logging
from typing import Optional

import httpx

from app.config import get_settings

logger = logging.getLogger(__name__)


class MessagingError(Exception):
    """Raised when the gateway does not accept a message."""
    pass


def normalize_chat_id(chat_id: str) -> str:
    """Bare phone number of a chat id ("5583999@c.us" -> "5583999")."""
    return chat_id.split("@", 1)[0].strip()


def is_group_chat(chat_id: str) -> bool:
    """Group chats use the @g.us suffix."""
    return chat_id.endswith("@g.us")


class WhatsAppGateway:
    """
    HTTP client for the WhatsApp gateway.

    Gateway exposes:
    - POST /messages - Send a text message {"to": ..., "text": ...}
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize client.

        Args:
            base_url: Gateway base URL (defaults to settings)
            token: Bearer token for the gateway (optional)
            timeout: Request timeout in seconds
        """
        settings = get_settings()
        self.base_url = base_url or settings.whatsapp_gateway_url
        self.token = token if token is not None else settings.whatsapp_gateway_token
        self.timeout = timeout or settings.whatsapp_timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def send_text(self, to: str, text: str) -> None:
        """Send a text message.

        Args:
            to: Phone number or chat id
            text: Message body

        Raises:
            MessagingError: if the gateway rejects or cannot be reached
        """
        client = await self._get_client()
        try:
            response = await client.post("/messages", json={"to": to, "text": text})
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to send message to {to}: {e}")
            raise MessagingError(f"Failed to send message: {e}") from e

        logger.debug(f"Message sent to {to}")
