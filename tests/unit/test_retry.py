"""Tests for retry with backoff and confirmation polling."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.core.retry import calculate_delay, poll_until, retry, with_retry


@pytest.mark.unit
def test_calculate_delay_doubles_and_caps() -> None:
    """Test exponential growth of the backoff delay with its ceiling."""
    assert calculate_delay(0.5, 0) == 0.5
    assert calculate_delay(0.5, 1) == 1.0
    assert calculate_delay(0.5, 2) == 2.0
    assert calculate_delay(1.0, 10) == 30.0


@pytest.mark.unit
async def test_retry_returns_first_success() -> None:
    operation = AsyncMock(return_value="doc-1")

    with patch("src.core.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        result = await retry(operation, max_attempts=3, base_delay=0.5)

    assert result == "doc-1"
    assert operation.await_count == 1
    mock_sleep.assert_not_awaited()


@pytest.mark.unit
async def test_retry_backs_off_between_failures() -> None:
    operation = AsyncMock(side_effect=[httpx.ConnectError("down"), httpx.ConnectError("down"), "ok"])

    with patch("src.core.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        result = await retry(operation, max_attempts=3, base_delay=0.5)

    assert result == "ok"
    assert [call.args[0] for call in mock_sleep.await_args_list] == [0.5, 1.0]


@pytest.mark.unit
async def test_retry_reraises_last_failure() -> None:
    operation = AsyncMock(side_effect=[RuntimeError("first"), RuntimeError("last")])

    with (
        patch("src.core.retry.asyncio.sleep", new_callable=AsyncMock),
        pytest.raises(RuntimeError, match="last"),
    ):
        await retry(operation, max_attempts=2, base_delay=0.1)

    assert operation.await_count == 2


@pytest.mark.unit
async def test_retry_does_not_retry_unlisted_errors() -> None:
    operation = AsyncMock(side_effect=ValueError("bad input"))

    with pytest.raises(ValueError, match="bad input"):
        await retry(operation, max_attempts=3, retry_on=(httpx.TransportError,))

    assert operation.await_count == 1


@pytest.mark.unit
async def test_retry_rejects_empty_budget() -> None:
    with pytest.raises(ValueError, match="at least 1"):
        await retry(AsyncMock(), max_attempts=0)


@pytest.mark.unit
async def test_with_retry_decorator() -> None:
    calls = {"count": 0}

    @with_retry(max_attempts=2, base_delay=0)
    async def flaky(value: int) -> int:
        calls["count"] += 1
        if calls["count"] == 1:
            raise httpx.ReadTimeout("slow")
        return value * 2

    assert await flaky(21) == 42
    assert calls["count"] == 2


@pytest.mark.unit
async def test_poll_until_confirms() -> None:
    probe = AsyncMock(side_effect=[False, False, True])

    with patch("src.core.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        assert await poll_until(probe, attempts=5, interval=2.0) is True

    assert probe.await_count == 3
    assert [call.args[0] for call in mock_sleep.await_args_list] == [2.0, 2.0]


@pytest.mark.unit
async def test_poll_until_exhausts_without_raising() -> None:
    probe = AsyncMock(return_value=False)

    with patch("src.core.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        assert await poll_until(probe, attempts=3, interval=1.0) is False

    assert probe.await_count == 3
    # No sleep after the final attempt
    assert mock_sleep.await_count == 2


@pytest.mark.unit
async def test_poll_until_treats_probe_errors_as_misses() -> None:
    probe = AsyncMock(side_effect=[httpx.ConnectError("down"), True])

    with patch("src.core.retry.asyncio.sleep", new_callable=AsyncMock):
        assert await poll_until(probe, attempts=2, interval=0) is True
