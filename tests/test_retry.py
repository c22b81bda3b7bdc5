"""Test retry logic for storage connections."""

from unittest.mock import patch

import pytest

from movie_reviews.exceptions import UnavailableError
from movie_reviews.retry import with_connection_retry


class TestConnectionRetry:
    """Test retry decorator functionality."""

    @pytest.mark.asyncio
    async def test_success_first_try(self) -> None:
        call_count = 0

        @with_connection_retry("TestStore")
        async def connect():
            nonlocal call_count
            call_count += 1
            return "connected"

        assert await connect() == "connected"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_success_after_transient_failure(self) -> None:
        call_count = 0

        @with_connection_retry("TestStore", max_retries=3, min_wait=0.001, max_wait=0.002)
        async def connect():
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise ConnectionError("refused")
            return "connected"

        assert await connect() == "connected"
        assert call_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_become_unavailable(self) -> None:
        call_count = 0

        @with_connection_retry("TestStore", max_retries=3, min_wait=0.001, max_wait=0.002)
        async def connect():
            nonlocal call_count
            call_count += 1
            raise TimeoutError("timed out")

        with pytest.raises(UnavailableError, match="TestStore connect") as exc_info:
            await connect()

        assert call_count == 3
        assert exc_info.value.status_code == 503
        assert isinstance(exc_info.value.__cause__, TimeoutError)

    @pytest.mark.asyncio
    async def test_non_transient_error_not_retried(self) -> None:
        call_count = 0

        @with_connection_retry("TestStore", max_retries=3, min_wait=0.001, max_wait=0.002)
        async def connect():
            nonlocal call_count
            call_count += 1
            raise ValueError("bad url")

        with pytest.raises(ValueError, match="bad url"):
            await connect()

        assert call_count == 1

    @pytest.mark.asyncio
    async def test_logs_each_retry(self) -> None:
        @with_connection_retry("TestStore", max_retries=2, min_wait=0.001, max_wait=0.002)
        async def connect():
            raise OSError("disk unavailable")

        with patch("movie_reviews.retry.logger") as mock_logger:
            with pytest.raises(UnavailableError):
                await connect()

            assert mock_logger.warning.call_count == 1
            assert "TestStore connect attempt 1" in str(mock_logger.warning.call_args)
            mock_logger.error.assert_called_once()

    def test_preserves_function_metadata(self) -> None:
        @with_connection_retry("TestStore")
        async def connect():
            """Open the store."""

        assert connect.__name__ == "connect"
        assert connect.__doc__ == "Open the store."
