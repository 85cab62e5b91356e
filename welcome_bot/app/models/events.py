"""Inbound Bot Framework activity view and membership value types.

The activity is deserialized with the Bot Framework schema (botbuilder.schema),
Teams channelData with TeamsChannelData. ConversationEvent exposes the few
derived values the membership dispatcher reads.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from botbuilder.schema import Activity, ActivityTypes, ChannelAccount, ConversationAccount
from botbuilder.schema.teams import TeamsChannelData
from msrest.exceptions import DeserializationError

from welcome_bot.app.errors import InvalidActivityError


CONVERSATION_UPDATE = ActivityTypes.conversation_update.value


class ConversationScope(str, Enum):
    """Conversation context a member was seen in."""
    PERSONAL = "personal"
    TEAM = "team"


def _teams_channel_data(activity: Activity) -> Optional[TeamsChannelData]:
    raw = activity.channel_data
    if not isinstance(raw, dict):
        return None
    return TeamsChannelData().deserialize(raw)


@dataclass(frozen=True, eq=False)
class ConversationEvent:
    """Read-only view of one inbound activity.

    Example:
        >>> event = ConversationEvent.from_body({
        ...     "type": "conversationUpdate",
        ...     "serviceUrl": "https://smba.trafficmanager.net/amer/",
        ...     "recipient": {"id": "bot-1"},
        ...     "membersAdded": [{"id": "bot-1"}],
        ...     "channelData": {"team": {"id": "team-42"}, "tenant": {"id": "t1"}},
        ... })
        >>> event.scope_id
        'team-42'
    """

    activity: Activity
    channel_data: Optional[TeamsChannelData] = None

    @classmethod
    def from_activity(cls, activity: Activity) -> "ConversationEvent":
        """
        Wrap a deserialized activity.

        Raises:
            InvalidActivityError: If the activity has no type, a member without
                an ID, or a service URL that is not http(s)
        """
        if not activity.type:
            raise InvalidActivityError("Activity has no type")

        for member in (activity.members_added or []) + (activity.members_removed or []):
            if member is None or not member.id:
                raise InvalidActivityError("Member entry without ID")

        service_url = activity.service_url
        if service_url is not None and not service_url.startswith(('https://', 'http://')):
            raise InvalidActivityError("Service URL must start with http:// or https://")

        try:
            channel_data = _teams_channel_data(activity)
        except DeserializationError as e:
            raise InvalidActivityError(f"Unreadable channelData: {e}") from e

        return cls(activity=activity, channel_data=channel_data)

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "ConversationEvent":
        """Deserialize the JSON body posted to the messaging endpoint."""
        try:
            activity = Activity().deserialize(body)
        except DeserializationError as e:
            raise InvalidActivityError(f"Unreadable activity: {e}") from e
        return cls.from_activity(activity)

    @property
    def type(self) -> Optional[str]:
        return self.activity.type

    @property
    def id(self) -> Optional[str]:
        return self.activity.id

    @property
    def service_url(self) -> Optional[str]:
        return self.activity.service_url

    @property
    def conversation(self) -> Optional[ConversationAccount]:
        return self.activity.conversation

    @property
    def recipient(self) -> Optional[ChannelAccount]:
        return self.activity.recipient

    @property
    def from_(self) -> Optional[ChannelAccount]:
        return self.activity.from_property

    @property
    def members_added(self) -> Tuple[ChannelAccount, ...]:
        # Teams sends null rather than [] when nobody joined or left
        return tuple(self.activity.members_added or ())

    @property
    def members_removed(self) -> Tuple[ChannelAccount, ...]:
        return tuple(self.activity.members_removed or ())

    @property
    def is_conversation_update(self) -> bool:
        return self.type == CONVERSATION_UPDATE

    @property
    def bot_id(self) -> Optional[str]:
        return self.recipient.id if self.recipient else None

    @property
    def team_id(self) -> Optional[str]:
        if self.channel_data and self.channel_data.team:
            return self.channel_data.team.id
        return None

    @property
    def conversation_id(self) -> Optional[str]:
        return self.conversation.id if self.conversation else None

    @property
    def tenant_id(self) -> Optional[str]:
        """Tenant of the conversation, falling back to channelData.tenant."""
        if self.conversation and self.conversation.tenant_id:
            return self.conversation.tenant_id
        if self.channel_data and self.channel_data.tenant:
            return self.channel_data.tenant.id
        return None

    @property
    def scope(self) -> ConversationScope:
        if self.team_id:
            return ConversationScope.TEAM
        if self.conversation and self.conversation.conversation_type == "channel":
            return ConversationScope.TEAM
        return ConversationScope.PERSONAL

    @property
    def scope_id(self) -> Optional[str]:
        """Team ID when the event comes from a team, otherwise the conversation ID."""
        return self.team_id or self.conversation_id


@dataclass(frozen=True)
class MemberRef:
    """A recipient of a welcome message. Two refs are equal when their IDs are."""

    id: str
    name: Optional[str] = field(default=None, compare=False)
    aad_object_id: Optional[str] = field(default=None, compare=False)
    scope: ConversationScope = field(default=ConversationScope.PERSONAL, compare=False)
    tenant_id: Optional[str] = field(default=None, compare=False)

    @classmethod
    def from_account(
        cls,
        account: ChannelAccount,
        scope: ConversationScope,
        tenant_id: Optional[str]
    ) -> "MemberRef":
        return cls(
            id=account.id,
            name=account.name,
            aad_object_id=account.aad_object_id,
            scope=scope,
            tenant_id=tenant_id
        )


@dataclass(frozen=True)
class ClassificationOutcome:
    """Independent facts derived from one conversationUpdate activity.

    Any combination may be true at once, e.g. a rename delivered together with
    the bot being added.
    """

    is_team_renamed: bool = False
    is_bot_added: bool = False
    is_bot_removed: bool = False
    added_non_bot_members: Tuple[MemberRef, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (
            self.is_team_renamed
            or self.is_bot_added
            or self.is_bot_removed
            or self.added_non_bot_members
        )

    def describe(self) -> str:
        facts = []
        if self.is_team_renamed:
            facts.append("team_renamed")
        if self.is_bot_added:
            facts.append("bot_added")
        if self.is_bot_removed:
            facts.append("bot_removed")
        if self.added_non_bot_members:
            facts.append(f"members_added={len(self.added_non_bot_members)}")
        return ", ".join(facts) or "none"
