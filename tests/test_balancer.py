"""
Tests for the round-robin load balancer.

Tests cover:
1. Round-robin start offset after a success
2. Failover on error and AllProvidersFailedError
3. Cancellation is propagated, never failed over
"""

from unittest.mock import AsyncMock

import pytest

from app.core.cancellation import CancellationToken
from app.core.errors import AllProvidersFailedError, OperationCancelledError
from app.services.balancer import LoadBalancer, ServiceStrategy


class TestLoadBalancer:
    """Tests for LoadBalancer.execute."""

    @pytest.mark.asyncio
    async def test_round_robin_after_success(self):
        a = ServiceStrategy("a", AsyncMock(return_value="a"))
        b = ServiceStrategy("b", AsyncMock(return_value="b"))
        balancer = LoadBalancer([a, b])

        assert [await balancer.execute() for _ in range(3)] == ["a", "b", "a"]

    @pytest.mark.asyncio
    async def test_forwards_arguments_and_token(self):
        a = ServiceStrategy("a", AsyncMock(return_value=[]))
        balancer = LoadBalancer([a])
        token = CancellationToken()

        await balancer.execute(50.85, 4.35, 1500, token=token)
        a.execute.assert_awaited_once_with(50.85, 4.35, 1500, token=token)

    @pytest.mark.asyncio
    async def test_fails_over_to_next_strategy(self):
        a = ServiceStrategy("a", AsyncMock(side_effect=ValueError("down")))
        b = ServiceStrategy("b", AsyncMock(return_value="b"))
        balancer = LoadBalancer([a, b])

        assert await balancer.execute() == "b"
        # b answered, so the next call starts over at a
        assert await balancer.execute() == "b"
        assert a.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_all_failed(self):
        first, second = ValueError("a down"), ValueError("b down")
        balancer = LoadBalancer(
            [ServiceStrategy("a", AsyncMock(side_effect=first)), ServiceStrategy("b", AsyncMock(side_effect=second))]
        )

        with pytest.raises(AllProvidersFailedError) as exc_info:
            await balancer.execute()
        assert exc_info.value.errors == [("a", first), ("b", second)]

    @pytest.mark.asyncio
    async def test_no_strategy(self):
        balancer = LoadBalancer([])
        assert balancer.number_of_strategies == 0
        with pytest.raises(AllProvidersFailedError):
            await balancer.execute()

    @pytest.mark.asyncio
    async def test_cancellation_is_not_failed_over(self):
        a = ServiceStrategy("a", AsyncMock(side_effect=OperationCancelledError("user")))
        b = ServiceStrategy("b", AsyncMock(return_value="b"))
        balancer = LoadBalancer([a, b])

        with pytest.raises(OperationCancelledError):
            await balancer.execute()
        b.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancelled_token_stops_before_calling(self):
        a = ServiceStrategy("a", AsyncMock(return_value="a"))
        token = CancellationToken()
        token.cancel("user")

        with pytest.raises(OperationCancelledError):
            await LoadBalancer([a]).execute(token=token)
        a.execute.assert_not_called()
