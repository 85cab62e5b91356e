"""
Unit tests for ConversationUpdateHandler

Covers the end-to-end reactions to a conversationUpdate:
- Team rename recorded without any welcomes
- Members added alongside the bot welcomed individually
- Bot install reintroducing the bot to every team member
- Error boundaries between recorder, enumeration and delivery
"""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from conftest import BOT_ID, make_event, member
from welcome_bot.app.errors import ChannelOpenFailure, EnumerationFailure, RecorderFailure
from welcome_bot.app.models.delivery import DeliveryStage
from welcome_bot.app.services.dispatcher import ConversationUpdateHandler
from welcome_bot.app.services.proactive_messaging import ProactiveMessagingService


@pytest.fixture
def messaging(mock_connector, welcome_card):
    return ProactiveMessagingService(mock_connector, lambda: welcome_card, max_concurrent_deliveries=4)


@pytest.fixture
def handler(mock_recorder, messaging):
    return ConversationUpdateHandler(mock_recorder, messaging, processing_timeout=5)


class TestScenarios:

    @pytest.mark.asyncio
    async def test_team_rename_only_updates_metadata(self, handler, mock_recorder, mock_connector):
        event = make_event(channel_data={"eventType": "teamRenamed", "team": {"id": "team-42", "name": "New"}})

        report = await handler.dispatch(event)

        mock_recorder.on_team_info_updated.assert_awaited_once_with(event)
        mock_recorder.on_bot_added.assert_not_awaited()
        mock_recorder.on_bot_removed.assert_not_awaited()
        mock_connector.open_channel.assert_not_awaited()
        mock_connector.list_scope_members.assert_not_awaited()
        assert report.deliveries == ()

    @pytest.mark.asyncio
    async def test_members_added_get_personal_welcomes(self, handler, mock_recorder, mock_connector):
        open_channel = mock_connector.open_channel.side_effect

        async def flaky_open(service_url, member_ref, bot, tenant_id, notify=True):
            if member_ref.id == "u2":
                raise ChannelOpenFailure("forbidden", status_code=403)
            return await open_channel(service_url, member_ref, bot, tenant_id, notify)

        mock_connector.open_channel.side_effect = flaky_open
        event = make_event(members_added=["u1", "u2", "u3"])

        report = await handler.dispatch(event)

        assert len(report.personal_results) == 3
        assert sorted(r.member.id for r in report.personal_results if r.succeeded) == ["u1", "u3"]
        [failed] = report.failed_deliveries
        assert failed.member.id == "u2"
        assert failed.stage == DeliveryStage.OPEN_CHANNEL
        mock_recorder.on_bot_added.assert_not_awaited()
        mock_connector.list_scope_members.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bot_install_reintroduces_to_team(self, handler, mock_recorder, mock_connector):
        mock_connector.list_scope_members.return_value = [member("u1"), member("u2")]
        event = make_event(members_added=[BOT_ID], channel_data={"team": {"id": "team-42"}})

        report = await handler.dispatch(event)

        mock_recorder.on_bot_added.assert_awaited_once_with(event)
        assert mock_connector.list_scope_members.await_args.args[1] == "team-42"
        assert report.personal_results == ()
        assert sorted(r.member.id for r in report.team_results) == ["u1", "u2"]
        opened = [c.args[1].id for c in mock_connector.open_channel.await_args_list]
        assert BOT_ID not in opened
        assert len(set(opened)) == 2

    @pytest.mark.asyncio
    async def test_bot_added_with_members_runs_both_fan_outs(self, handler, mock_connector):
        mock_connector.list_scope_members.return_value = [member("u1"), member("u5")]
        event = make_event(members_added=[BOT_ID, "u1"], channel_data={"team": {"id": "team-42"}})

        report = await handler.dispatch(event)

        assert [r.member.id for r in report.personal_results] == ["u1"]
        assert sorted(r.member.id for r in report.team_results) == ["u1", "u5"]

    @pytest.mark.asyncio
    async def test_bot_removed_only_records(self, handler, mock_recorder, mock_connector):
        event = make_event(members_removed=[BOT_ID])

        await handler.dispatch(event)

        mock_recorder.on_bot_removed.assert_awaited_once_with(event)
        mock_connector.open_channel.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_outcome_does_nothing(self, handler, mock_recorder, mock_connector):
        report = await handler.dispatch(make_event(members_removed=["u7"]))

        assert report.outcome.is_empty
        mock_recorder.on_team_info_updated.assert_not_awaited()
        mock_recorder.on_bot_removed.assert_not_awaited()
        mock_connector.open_channel.assert_not_awaited()


class TestErrorBoundaries:

    @pytest.mark.asyncio
    async def test_recorder_failure_does_not_block_welcomes(self, handler, mock_recorder, mock_connector):
        mock_recorder.on_team_info_updated.side_effect = RecorderFailure("db down")
        event = make_event(
            members_added=["u1"],
            channel_data={"eventType": "teamRenamed", "team": {"id": "team-42"}}
        )

        report = await handler.dispatch(event)

        assert report.recorder_failures == ["on_team_info_updated"]
        assert [r.succeeded for r in report.personal_results] == [True]

    @pytest.mark.asyncio
    async def test_hung_recorder_does_not_hold_up_welcomes(self, mock_recorder, messaging, mock_connector):
        async def hang(event):
            await asyncio.Event().wait()

        mock_recorder.on_team_info_updated.side_effect = hang
        handler = ConversationUpdateHandler(mock_recorder, messaging, processing_timeout=0.2)
        event = make_event(
            members_added=["u1"],
            channel_data={"eventType": "teamRenamed", "team": {"id": "team-42"}}
        )

        report = await asyncio.wait_for(handler.dispatch(event), timeout=2)

        assert report.recorder_failures == ["on_team_info_updated"]
        assert [r.succeeded for r in report.personal_results] == [True]
        assert mock_connector.open_channel.await_count == 1

    @pytest.mark.asyncio
    async def test_enumeration_failure_is_reported_not_raised(self, handler, mock_connector, caplog):
        mock_connector.list_scope_members.side_effect = EnumerationFailure("forbidden", status_code=403)
        event = make_event(members_added=[BOT_ID], channel_data={"team": {"id": "team-42"}})

        with caplog.at_level(logging.ERROR):
            report = await handler.dispatch(event)

        assert report.enumeration_failed is True
        assert report.team_results == ()
        mock_connector.open_channel.assert_not_awaited()
        assert "member listing failed" in caplog.text

    @pytest.mark.asyncio
    async def test_enumeration_failure_keeps_personal_results(self, handler, mock_connector):
        mock_connector.list_scope_members.side_effect = EnumerationFailure("throttled", status_code=429)
        event = make_event(members_added=[BOT_ID, "u1"], channel_data={"team": {"id": "team-42"}})

        report = await handler.dispatch(event)

        assert report.enumeration_failed is True
        assert [r.member.id for r in report.personal_results] == ["u1"]

    @pytest.mark.asyncio
    async def test_unexpected_listing_error_is_an_enumeration_failure(self, handler, mock_connector):
        mock_connector.list_scope_members.side_effect = RuntimeError("connection pool closed")
        event = make_event(members_added=[BOT_ID], channel_data={"team": {"id": "team-42"}})

        report = await handler.dispatch(event)

        assert report.enumeration_failed is True
        assert report.team_results == ()
        mock_connector.open_channel.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_handle_conversation_update_never_raises(self, mock_recorder, caplog):
        messaging = AsyncMock()
        messaging.send_personal_welcomes.side_effect = RuntimeError("unexpected")
        handler = ConversationUpdateHandler(mock_recorder, messaging)

        with caplog.at_level(logging.ERROR):
            await handler.handle_conversation_update(make_event(members_added=["u1"]))

        assert "Personal welcome fan-out failed" in caplog.text

    @pytest.mark.asyncio
    async def test_handler_swallows_dispatch_errors(self, handler, caplog):
        handler.dispatch = AsyncMock(side_effect=RuntimeError("broken"))

        with caplog.at_level(logging.ERROR):
            await handler.handle_conversation_update(make_event(members_added=["u1"]))

        assert "Unhandled error processing conversationUpdate activity-123" in caplog.text

    @pytest.mark.asyncio
    async def test_correlation_id_defaults_to_activity_id(self, handler):
        report = await handler.dispatch(make_event(members_added=["u1"]))

        assert report.correlation_id == "activity-123"
