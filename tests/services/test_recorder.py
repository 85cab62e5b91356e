"""
Unit tests for membership state recorders.
"""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import SERVICE_URL, TENANT_ID, make_event
from welcome_bot.app.errors import RecorderFailure
from welcome_bot.app.services.recorder import (
    UPSERT_TEAM_SQL,
    UPSERT_USER_SQL,
    LoggingMembershipRecorder,
    PostgresMembershipRecorder,
)


@pytest.fixture
def mock_conn():
    conn = AsyncMock()
    conn.execute = AsyncMock(return_value="INSERT 0 1")
    return conn


@pytest.fixture
def recorder(mock_conn):
    """PostgresMembershipRecorder over a mocked asyncpg pool."""
    pool = MagicMock()
    acquire_ctx = MagicMock()
    acquire_ctx.__aenter__ = AsyncMock(return_value=mock_conn)
    acquire_ctx.__aexit__ = AsyncMock(return_value=False)
    pool.acquire = MagicMock(return_value=acquire_ctx)
    pool.close = AsyncMock()
    return PostgresMembershipRecorder(pool)


TEAM_CHANNEL_DATA = {
    "eventType": "teamRenamed",
    "team": {"id": "team-42", "name": "Platform Team"},
    "tenant": {"id": TENANT_ID}
}


class TestPostgresMembershipRecorder:

    @pytest.mark.asyncio
    async def test_team_rename_upserts_team(self, recorder, mock_conn):
        await recorder.on_team_info_updated(make_event(channel_data=TEAM_CHANNEL_DATA))

        mock_conn.execute.assert_awaited_once_with(
            UPSERT_TEAM_SQL, "team-42", "Platform Team", SERVICE_URL, TENANT_ID
        )

    @pytest.mark.asyncio
    async def test_team_rename_without_team_is_skipped(self, recorder, mock_conn):
        await recorder.on_team_info_updated(make_event(channel_data={"eventType": "teamRenamed"}))

        mock_conn.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_team_install_upserts_team(self, recorder, mock_conn):
        await recorder.on_bot_added(make_event(members_added=["bot-1"], channel_data=TEAM_CHANNEL_DATA))

        query, team_id = mock_conn.execute.await_args.args[:2]
        assert query == UPSERT_TEAM_SQL
        assert team_id == "team-42"

    @pytest.mark.asyncio
    async def test_personal_install_upserts_user(self, recorder, mock_conn):
        await recorder.on_bot_added(make_event(members_added=["bot-1"]))

        mock_conn.execute.assert_awaited_once_with(
            UPSERT_USER_SQL, "user-admin", "aad-admin", "conv-1", SERVICE_URL, TENANT_ID
        )

    @pytest.mark.asyncio
    async def test_team_uninstall_deletes_team(self, recorder, mock_conn):
        mock_conn.execute.return_value = "DELETE 1"

        await recorder.on_bot_removed(make_event(members_removed=["bot-1"], channel_data=TEAM_CHANNEL_DATA))

        query, team_id = mock_conn.execute.await_args.args
        assert query.startswith("DELETE FROM team_data")
        assert team_id == "team-42"

    @pytest.mark.asyncio
    async def test_uninstall_without_row_warns(self, recorder, mock_conn, caplog):
        mock_conn.execute.return_value = "DELETE 0"

        with caplog.at_level(logging.WARNING):
            await recorder.on_bot_removed(make_event(members_removed=["bot-1"]))

        assert mock_conn.execute.await_args.args[0].startswith("DELETE FROM user_data")
        assert "No bot install found to remove for user user-admin" in caplog.text

    @pytest.mark.asyncio
    async def test_database_error_raises_recorder_failure(self, recorder, mock_conn):
        mock_conn.execute.side_effect = OSError("connection reset")

        with pytest.raises(RecorderFailure) as exc_info:
            await recorder.on_team_info_updated(make_event(channel_data=TEAM_CHANNEL_DATA))

        assert "team rename" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, OSError)

    @pytest.mark.asyncio
    async def test_close_closes_pool(self, recorder):
        await recorder.close()

        recorder.pool.close.assert_awaited_once()


class TestLoggingMembershipRecorder:

    @pytest.mark.asyncio
    async def test_logs_without_persisting(self, caplog):
        recorder = LoggingMembershipRecorder()

        with caplog.at_level(logging.INFO):
            await recorder.on_team_info_updated(make_event(channel_data=TEAM_CHANNEL_DATA))
            await recorder.on_bot_added(make_event(members_added=["bot-1"], channel_data=TEAM_CHANNEL_DATA))
            await recorder.on_bot_removed(make_event(members_removed=["bot-1"]))

        assert "Team team-42 renamed to 'Platform Team' (not persisted)" in caplog.text
        assert "Bot added to team scope team-42" in caplog.text
        assert "Bot removed from personal scope conv-1" in caplog.text
