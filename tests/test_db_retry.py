"""Tests for database retry functionality."""

import sqlite3
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from api.db_retry import (
    DatabaseRetryableError,
    db_execute_with_retry,
    execute_with_retry,
    fetch_one_with_retry,
    is_retryable_database_error,
)


class TestIsRetryableDatabaseError:
    """Tests for is_retryable_database_error function."""

    @pytest.mark.parametrize(
        "message",
        [
            "database is locked",
            "database table is locked",
            "SQLITE_BUSY: some other text",
            "Error: SQLITE_LOCKED",
            "DATABASE IS LOCKED",
            "deadlock detected",
            "could not serialize access due to concurrent update",
            "server closed the connection unexpectedly",
        ],
    )
    def test_retryable_messages(self, message):
        assert is_retryable_database_error(Exception(message)) is True

    def test_sqlstate_code(self):
        exc = Exception("opaque driver error")
        exc.sqlstate = "40P01"
        assert is_retryable_database_error(exc) is True

    def test_wrapped_cause(self):
        """The databases library wraps driver errors; the cause is inspected."""
        try:
            try:
                raise sqlite3.OperationalError("database is locked")
            except sqlite3.OperationalError as inner:
                raise RuntimeError("query failed") from inner
        except RuntimeError as outer:
            assert is_retryable_database_error(outer) is True

    @pytest.mark.parametrize(
        "exc",
        [
            sqlite3.OperationalError("no such table: videos"),
            sqlite3.IntegrityError("CHECK constraint failed: ck_videos_status"),
            ValueError("bad value"),
        ],
    )
    def test_non_retryable(self, exc):
        assert is_retryable_database_error(exc) is False


class TestExecuteWithRetry:
    """Tests for execute_with_retry function."""

    @pytest.mark.asyncio
    async def test_success_on_first_try(self):
        mock_func = AsyncMock(return_value="success")

        assert await execute_with_retry(mock_func) == "success"
        assert mock_func.call_count == 1

    @pytest.mark.asyncio
    async def test_retry_then_succeed(self):
        mock_func = AsyncMock(
            side_effect=[
                sqlite3.OperationalError("database is locked"),
                sqlite3.OperationalError("database is locked"),
                "success",
            ]
        )

        with patch("api.db_retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            result = await execute_with_retry(mock_func, max_retries=3, base_delay=0.1)

        assert result == "success"
        assert mock_func.call_count == 3
        assert mock_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_backoff_is_bounded(self):
        mock_func = AsyncMock(side_effect=sqlite3.OperationalError("database is locked"))

        with patch("api.db_retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(DatabaseRetryableError):
                await execute_with_retry(mock_func, max_retries=6, base_delay=0.1, max_delay=0.5)

        delays = [call.args[0] for call in mock_sleep.await_args_list]
        assert len(delays) == 6
        # jitter is +/-25%
        assert all(0.01 <= d <= 0.5 * 1.25 for d in delays)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        mock_func = AsyncMock(side_effect=sqlite3.OperationalError("database is locked"))

        with patch("api.db_retry.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(DatabaseRetryableError, match="after 3 attempts"):
                await execute_with_retry(mock_func, max_retries=2)

        assert mock_func.call_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_raised_immediately(self):
        mock_func = AsyncMock(side_effect=ValueError("not a db error"))

        with pytest.raises(ValueError):
            await execute_with_retry(mock_func)

        assert mock_func.call_count == 1


class TestQueryHelpers:
    @pytest.mark.asyncio
    async def test_fetch_one_passes_query(self):
        db = MagicMock()
        db.fetch_one = AsyncMock(return_value={"id": "v1"})

        assert await fetch_one_with_retry(db, "SELECT 1") == {"id": "v1"}
        db.fetch_one.assert_awaited_once_with("SELECT 1")

    @pytest.mark.asyncio
    async def test_execute_retries(self):
        db = MagicMock()
        db.execute = AsyncMock(side_effect=[Exception("database is locked"), 1])

        with patch("api.db_retry.asyncio.sleep", new_callable=AsyncMock):
            assert await db_execute_with_retry(db, "UPDATE videos SET view_count = 1") == 1

        assert db.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_slow_query_logged(self, caplog):
        db = MagicMock()
        db.fetch_one = AsyncMock(return_value=None)

        with patch("api.db_retry.SLOW_QUERY_THRESHOLD", 0.0):
            await fetch_one_with_retry(db, "SELECT * FROM videos")

        assert "Slow query (" in caplog.text
        assert "SELECT * FROM videos" in caplog.text
