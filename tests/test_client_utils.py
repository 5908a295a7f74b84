"""
Unit tests for the reconnect and retry helpers.
"""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from realtime_sync.shared.client_utils import backoff_delay, make_client_stats, with_reconnect, with_retry


class TestBackoff:
    """Test cases for backoff_delay."""

    def test_grows_exponentially_and_caps(self):
        assert 2.0 <= backoff_delay(1, 1.0, 32.0) <= 2.2
        assert 4.0 <= backoff_delay(2, 1.0, 32.0) <= 4.4
        assert 32.0 <= backoff_delay(10, 1.0, 32.0) <= 35.2

    def test_fresh_stats(self):
        stats = make_client_stats()
        assert stats["reconnect_count"] == 0
        assert stats["messages_received"] == 0
        assert stats["last_message_at"] is None


class TestWithReconnect:
    """Test cases for with_reconnect."""

    @pytest.mark.asyncio
    async def test_stops_when_duration_elapses(self):
        async def hold_open():
            await asyncio.sleep(10)

        stats = make_client_stats()
        await with_reconnect(hold_open, stats, duration_s=0.05)

        assert stats["reconnect_count"] == 0

    @pytest.mark.asyncio
    async def test_transient_errors_are_counted(self):
        connect = AsyncMock(side_effect=[OSError("reset"), httpx.ConnectError("refused"), asyncio.CancelledError()])
        stats = make_client_stats()

        with pytest.raises(asyncio.CancelledError):
            await with_reconnect(connect, stats, base_delay_s=0, max_delay_s=0)

        assert stats["reconnect_count"] == 2

    @pytest.mark.asyncio
    async def test_handshake_timeout_is_retried(self):
        connect = AsyncMock(side_effect=[TimeoutError("opening handshake timed out"), asyncio.CancelledError()])
        stats = make_client_stats()

        with pytest.raises(asyncio.CancelledError):
            await with_reconnect(connect, stats, duration_s=None, base_delay_s=0, max_delay_s=0)

        assert connect.await_count == 2
        assert stats["reconnect_count"] == 1

    @pytest.mark.asyncio
    async def test_handshake_timeout_within_duration_is_retried(self):
        connect = AsyncMock(side_effect=[asyncio.TimeoutError(), asyncio.CancelledError()])
        stats = make_client_stats()

        with pytest.raises(asyncio.CancelledError):
            await with_reconnect(connect, stats, duration_s=30, base_delay_s=0, max_delay_s=0)

        assert connect.await_count == 2
        assert stats["reconnect_count"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self):
        connect = AsyncMock(side_effect=KeyError("bug"))

        with pytest.raises(KeyError):
            await with_reconnect(connect, make_client_stats(), base_delay_s=0, max_delay_s=0)


class TestWithRetry:
    """Test cases for with_retry."""

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        fn = AsyncMock(side_effect=[ConnectionError("x"), "ok"])
        assert await with_retry(fn, max_retries=3, base_delay_s=0) == "ok"
        assert fn.await_count == 2

    @pytest.mark.asyncio
    async def test_reraises_after_last_attempt(self):
        fn = AsyncMock(side_effect=ConnectionError("x"))
        with pytest.raises(ConnectionError):
            await with_retry(fn, max_retries=2, base_delay_s=0)
        assert fn.await_count == 3

    @pytest.mark.asyncio
    async def test_non_transient_errors_not_retried(self):
        fn = AsyncMock(side_effect=ValueError("bad payload"))
        with pytest.raises(ValueError):
            await with_retry(fn, max_retries=5, base_delay_s=0)
        assert fn.await_count == 1
