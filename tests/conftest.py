"""
Shared pytest configuration and fixtures for welcome bot tests.
Provides activity builders and connector/recorder mocks.
"""

import os
import sys
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from botbuilder.core import CardFactory

from welcome_bot.app.models.delivery import ChannelHandle
from welcome_bot.app.models.events import ConversationEvent, ConversationScope, MemberRef

SERVICE_URL = "https://smba.trafficmanager.net/amer/"
BOT_ID = "bot-1"
TENANT_ID = "t1"


def make_activity(
    members_added: Optional[List[str]] = None,
    members_removed: Optional[List[str]] = None,
    channel_data: Optional[Dict[str, Any]] = None,
    recipient: Optional[str] = BOT_ID,
    activity_type: str = "conversationUpdate",
    **extra: Any
) -> Dict[str, Any]:
    """Build a Teams activity payload as posted to the messaging endpoint."""
    activity = {
        "type": activity_type,
        "id": extra.pop("id", "activity-123"),
        "channelId": "msteams",
        "serviceUrl": SERVICE_URL,
        "conversation": extra.pop("conversation", {"id": "conv-1", "tenantId": TENANT_ID}),
        "from": extra.pop("from_", {"id": "user-admin", "aadObjectId": "aad-admin"}),
    }
    if recipient is not None:
        activity["recipient"] = {"id": recipient, "name": "Welcome Bot"}
    if members_added is not None:
        activity["membersAdded"] = [{"id": member_id} for member_id in members_added]
    if members_removed is not None:
        activity["membersRemoved"] = [{"id": member_id} for member_id in members_removed]
    if channel_data is not None:
        activity["channelData"] = channel_data
    activity.update(extra)
    return activity


def make_event(**kwargs: Any) -> ConversationEvent:
    return ConversationEvent.from_body(make_activity(**kwargs))


def member(member_id: str, scope: ConversationScope = ConversationScope.TEAM) -> MemberRef:
    return MemberRef(id=member_id, scope=scope, tenant_id=TENANT_ID)


@pytest.fixture
def welcome_card():
    """Minimal welcome card attachment."""
    return CardFactory.adaptive_card({"type": "AdaptiveCard", "version": "1.0", "body": []})


@pytest.fixture
def mock_connector():
    """Connector that opens a conversation per member and accepts every send."""
    connector = AsyncMock()

    async def open_channel(service_url, member_ref, bot, tenant_id, notify=True):
        return ChannelHandle(
            conversation_id=f"a:conv-{member_ref.id}",
            service_url=service_url,
            member_id=member_ref.id
        )

    async def send_message(handle, artifact, notify=True):
        return f"activity-{handle.member_id}"

    connector.open_channel = AsyncMock(side_effect=open_channel)
    connector.send_message = AsyncMock(side_effect=send_message)
    connector.list_scope_members = AsyncMock(return_value=[])
    return connector


@pytest.fixture
def mock_recorder():
    """Membership recorder with all operations mocked."""
    recorder = AsyncMock()
    recorder.on_team_info_updated = AsyncMock()
    recorder.on_bot_added = AsyncMock()
    recorder.on_bot_removed = AsyncMock()
    return recorder
