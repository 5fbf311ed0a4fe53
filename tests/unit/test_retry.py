"""Unit tests for retry-with-backoff and retryable-error classification."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from listing_harvester.core.exceptions import RetryExhaustedError
from listing_harvester.workers.retry import is_retryable_error, retry_with_backoff


class TestIsRetryableError:
    @pytest.mark.parametrize(
        "message",
        [
            "net::ERR_CONNECTION_RESET at https://example.com",
            "Navigation timeout of 30000 ms exceeded",
            "Request timed out",
            "connect ECONNREFUSED 127.0.0.1:443",
            "read ECONNRESET",
            "Network error while loading page",
            "Server responded with 503",
            "HTTP 500 Internal Server Error",
        ],
    )
    def test_transient_messages_are_retryable(self, message: str) -> None:
        assert is_retryable_error(RuntimeError(message)) is True

    @pytest.mark.parametrize(
        "message",
        [
            "Server responded with 404",
            "HTTP 403 Forbidden",
            "waiting for selector '.vendor-card' failed",
            "Unexpected token < in JSON",
        ],
    )
    def test_deterministic_failures_are_not_retryable(self, message: str) -> None:
        assert is_retryable_error(RuntimeError(message)) is False

    def test_builtin_timeout_and_connection_errors_are_retryable(self) -> None:
        assert is_retryable_error(TimeoutError()) is True
        assert is_retryable_error(ConnectionResetError()) is True

    def test_status_code_must_be_a_whole_number(self) -> None:
        assert is_retryable_error(RuntimeError("listing id 15003 missing")) is False


@pytest.mark.asyncio
class TestRetryWithBackoff:
    async def test_returns_first_success_without_sleeping(self) -> None:
        operation = AsyncMock(return_value="ok")
        with patch("listing_harvester.workers.retry._sleep", new=AsyncMock()) as sleep:
            result = await retry_with_backoff(operation, max_retries=3)

        assert result == "ok"
        assert operation.await_count == 1
        sleep.assert_not_awaited()

    async def test_always_failing_operation_is_called_exactly_max_retries_times(self) -> None:
        last = RuntimeError("net::ERR_CONNECTION_RESET")
        operation = AsyncMock(side_effect=[RuntimeError("timeout"), RuntimeError("timeout"), last])

        with patch("listing_harvester.workers.retry._sleep", new=AsyncMock()):
            with pytest.raises(RetryExhaustedError) as exc_info:
                await retry_with_backoff(operation, max_retries=3, initial_delay=0.01)

        assert operation.await_count == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is last
        assert exc_info.value.__cause__ is last
        assert "Failed after 3 attempts" in str(exc_info.value)

    async def test_recovers_after_transient_failures(self) -> None:
        operation = AsyncMock(side_effect=[TimeoutError("slow"), "page"])
        with patch("listing_harvester.workers.retry._sleep", new=AsyncMock()):
            result = await retry_with_backoff(operation, max_retries=3)

        assert result == "page"
        assert operation.await_count == 2

    async def test_exponential_delays_are_capped(self) -> None:
        operation = AsyncMock(side_effect=RuntimeError("timeout"))
        with patch("listing_harvester.workers.retry._sleep", new=AsyncMock()) as sleep:
            with pytest.raises(RetryExhaustedError):
                await retry_with_backoff(
                    operation,
                    max_retries=5,
                    initial_delay=1.0,
                    max_delay=5.0,
                )

        delays = [call.args[0] for call in sleep.await_args_list]
        assert delays == [1.0, 2.0, 4.0, 5.0]

    async def test_fixed_delay_when_not_exponential(self) -> None:
        operation = AsyncMock(side_effect=RuntimeError("timeout"))
        with patch("listing_harvester.workers.retry._sleep", new=AsyncMock()) as sleep:
            with pytest.raises(RetryExhaustedError):
                await retry_with_backoff(
                    operation,
                    max_retries=3,
                    initial_delay=2.0,
                    exponential=False,
                )

        assert [call.args[0] for call in sleep.await_args_list] == [2.0, 2.0]

    async def test_non_retryable_error_fails_fast_with_original_exception(self) -> None:
        error = RuntimeError("HTTP 404 Not Found")
        operation = AsyncMock(side_effect=error)

        with patch("listing_harvester.workers.retry._sleep", new=AsyncMock()) as sleep:
            with pytest.raises(RuntimeError) as exc_info:
                await retry_with_backoff(operation, max_retries=3, retry_if=is_retryable_error)

        assert exc_info.value is error
        assert operation.await_count == 1
        sleep.assert_not_awaited()

    async def test_rejects_zero_attempt_budget(self) -> None:
        with pytest.raises(ValueError):
            await retry_with_backoff(AsyncMock(), max_retries=0)

    async def test_lambda_returning_a_coroutine_is_awaited_and_retried(self) -> None:
        calls: list[str] = []

        async def goto(url: str) -> str:
            calls.append(url)
            if len(calls) < 2:
                raise RuntimeError("net::ERR_CONNECTION_RESET")
            return "loaded"

        with patch("listing_harvester.workers.retry._sleep", new=AsyncMock()):
            result = await retry_with_backoff(lambda: goto("https://example.com"), max_retries=3)

        assert result == "loaded"
        assert calls == ["https://example.com", "https://example.com"]

    async def test_lambda_operation_exhausts_budget(self) -> None:
        async def goto() -> None:
            raise TimeoutError("Navigation timeout of 30000 ms exceeded")

        with patch("listing_harvester.workers.retry._sleep", new=AsyncMock()):
            with pytest.raises(RetryExhaustedError) as exc_info:
                await retry_with_backoff(lambda: goto(), max_retries=2)  # noqa: PLW0108

        assert exc_info.value.attempts == 2
