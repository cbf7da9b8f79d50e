"""Tests for the messaging gateway and the conversation lock."""

import asyncio
import gc
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from httpx import Response
from redis.exceptions import ConnectionError as RedisConnectionError

from app.infra.messaging import (
    MessagingError,
    WhatsAppGateway,
    is_group_chat,
    normalize_chat_id,
)
from app.infra.redis import ConversationBusyError, ConversationLock


class TestChatIds:
    """Test chat id helpers."""

    def test_normalize(self):
        assert normalize_chat_id("5583999999999@c.us") == "5583999999999"
        assert normalize_chat_id("5583999999999") == "5583999999999"

    def test_group(self):
        assert is_group_chat("120363000000@g.us") is True
        assert is_group_chat("5583999999999@c.us") is False


class TestWhatsAppGateway:
    """Test outbound messages."""

    @pytest.mark.asyncio
    async def test_send_text(self):
        gateway = WhatsAppGateway(base_url="http://gateway:3001", token="t")
        client = AsyncMock()
        client.post = AsyncMock(
            return_value=Response(200, request=httpx.Request("POST", "http://gateway:3001/messages"))
        )
        gateway._client = client

        await gateway.send_text("5583999999999", "Olá")

        client.post.assert_awaited_once_with(
            "/messages", json={"to": "5583999999999", "text": "Olá"}
        )

    @pytest.mark.asyncio
    async def test_send_text_rejected(self):
        gateway = WhatsAppGateway(base_url="http://gateway:3001")
        client = AsyncMock()
        client.post = AsyncMock(
            return_value=Response(500, request=httpx.Request("POST", "http://gateway:3001/messages"))
        )
        gateway._client = client

        with pytest.raises(MessagingError):
            await gateway.send_text("5583999999999", "Olá")

    @pytest.mark.asyncio
    async def test_send_text_unreachable(self):
        gateway = WhatsAppGateway(base_url="http://gateway:3001")
        client = AsyncMock()
        client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        gateway._client = client

        with pytest.raises(MessagingError):
            await gateway.send_text("5583999999999", "Olá")


class TestConversationLock:
    """Test per-phone serialization."""

    @pytest.mark.asyncio
    async def test_local_lock_serializes_same_key(self):
        lock = ConversationLock(None, timeout=5)
        order = []

        async def worker(name):
            async with lock.hold("5583999999999"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order in (
            ["a-in", "a-out", "b-in", "b-out"],
            ["b-in", "b-out", "a-in", "a-out"],
        )

    @pytest.mark.asyncio
    async def test_redis_lock_used_when_available(self):
        redis_lock = MagicMock()
        redis_lock.acquire = AsyncMock(return_value=True)
        redis_lock.release = AsyncMock()
        client = MagicMock()
        client.lock = MagicMock(return_value=redis_lock)
        redis_client = MagicMock()
        redis_client.get_client = AsyncMock(return_value=client)

        lock = ConversationLock(redis_client, timeout=5)
        async with lock.hold("5583999999999"):
            pass

        client.lock.assert_called_once_with(
            "artestofados:v1:lock:conversation:5583999999999",
            timeout=5,
            blocking_timeout=5,
        )
        redis_lock.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_redis_error_falls_back_to_local(self):
        redis_lock = MagicMock()
        redis_lock.acquire = AsyncMock(side_effect=RedisConnectionError("down"))
        client = MagicMock()
        client.lock = MagicMock(return_value=redis_lock)
        redis_client = MagicMock()
        redis_client.get_client = AsyncMock(return_value=client)

        lock = ConversationLock(redis_client, timeout=5)
        entered = False
        async with lock.hold("5583999999999"):
            entered = True

        assert entered is True

    @pytest.mark.asyncio
    async def test_redis_timeout_raises_busy(self):
        redis_lock = MagicMock()
        redis_lock.acquire = AsyncMock(return_value=False)
        client = MagicMock()
        client.lock = MagicMock(return_value=redis_lock)
        redis_client = MagicMock()
        redis_client.get_client = AsyncMock(return_value=client)

        lock = ConversationLock(redis_client, timeout=5)
        with pytest.raises(ConversationBusyError):
            async with lock.hold("5583999999999"):
                pass

        assert len(lock._local_locks) == 0

    @pytest.mark.asyncio
    async def test_local_locks_released_after_use(self):
        lock = ConversationLock(None, timeout=5)

        for phone in ("5583911111111", "5583922222222", "5583933333333"):
            async with lock.hold(phone):
                assert phone in lock._local_locks
        gc.collect()

        assert len(lock._local_locks) == 0
