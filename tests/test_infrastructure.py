"""Tests for infrastructure/ retry layer.

Covers:
- retry decorator: backoff, max attempts, exception filtering
- on_retry hook used to count favourite slot conflicts
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from core.song_fame.errors import StaleFavouriteSlotsError
from infrastructure.retry import with_retry

# ---------------------------------------------------------------------------
# Retry decorator
# ---------------------------------------------------------------------------


class TestWithRetry:
    def test_succeeds_on_first_attempt(self) -> None:
        call_count = 0

        @with_retry(max_attempts=3, base_seconds=0.0)
        def fn() -> str:
            nonlocal call_count
            call_count += 1
            return "ok"

        result = fn()
        assert result == "ok"
        assert call_count == 1

    def test_retries_on_failure_then_succeeds(self) -> None:
        call_count = 0

        @with_retry(max_attempts=3, base_seconds=0.0, exceptions=(ValueError,))
        def fn() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ValueError("transient")
            return "ok"

        result = fn()
        assert result == "ok"
        assert call_count == 3

    def test_reraises_last_error_after_max_attempts(self) -> None:
        @with_retry(max_attempts=3, base_seconds=0.0, exceptions=(StaleFavouriteSlotsError,))
        def fn() -> None:
            raise StaleFavouriteSlotsError("band-1", 4)

        with pytest.raises(StaleFavouriteSlotsError) as exc_info:
            fn()
        assert exc_info.value.band_id == "band-1"

    def test_does_not_retry_unregistered_exception(self) -> None:
        call_count = 0

        @with_retry(max_attempts=3, base_seconds=0.0, exceptions=(ValueError,))
        def fn() -> None:
            nonlocal call_count
            call_count += 1
            raise TypeError("not retried")

        with pytest.raises(TypeError):
            fn()
        assert call_count == 1

    def test_on_retry_sees_every_failure(self) -> None:
        seen: list[Exception] = []

        @with_retry(max_attempts=2, base_seconds=0.0, exceptions=(ValueError,), on_retry=seen.append)
        def fn() -> None:
            raise ValueError("boom")

        with pytest.raises(ValueError):
            fn()
        assert len(seen) == 2

    def test_backoff_is_exponential_and_capped(self) -> None:
        @with_retry(
            max_attempts=5,
            base_seconds=0.1,
            max_seconds=0.3,
            jitter=False,
            exceptions=(ValueError,),
        )
        def fn() -> None:
            raise ValueError("boom")

        with patch("infrastructure.retry.time.sleep") as sleep, pytest.raises(ValueError):
            fn()
        waits = [call.args[0] for call in sleep.call_args_list]
        assert waits == pytest.approx([0.1, 0.2, 0.3, 0.3])

    def test_jitter_stays_within_a_quarter(self) -> None:
        @with_retry(max_attempts=2, base_seconds=0.2, exceptions=(ValueError,))
        def fn() -> None:
            raise ValueError("boom")

        with patch("infrastructure.retry.time.sleep") as sleep, pytest.raises(ValueError):
            fn()
        (wait,) = [call.args[0] for call in sleep.call_args_list]
        assert 0.15 <= wait <= 0.25

    def test_zero_attempts_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            with_retry(max_attempts=0)

    def test_preserves_return_value(self) -> None:
        @with_retry(max_attempts=2, base_seconds=0.0)
        def fn() -> dict:
            return {"key": "value"}

        assert fn() == {"key": "value"}

    def test_preserves_function_name(self) -> None:
        @with_retry(max_attempts=2, base_seconds=0.0)
        def my_function() -> None:
            pass

        assert my_function.__name__ == "my_function"
