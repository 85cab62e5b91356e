"""Classification of Teams conversationUpdate activities."""

from welcome_bot.app.models.events import (
    ClassificationOutcome,
    ConversationEvent,
    MemberRef,
)

TEAM_RENAMED_EVENT_TYPE = "teamRenamed"


def is_team_renamed(event: ConversationEvent) -> bool:
    """True when channelData marks the activity as a team rename."""
    channel_data = event.channel_data
    if channel_data is None or not channel_data.event_type:
        return False
    return channel_data.event_type.casefold() == TEAM_RENAMED_EVENT_TYPE.casefold()


def classify(event: ConversationEvent) -> ClassificationOutcome:
    """
    Derive the membership facts carried by an activity.

    Each fact is computed on its own, so a single activity can be a rename and
    a membership change at the same time. Missing fields yield false/empty.

    Args:
        event: Inbound activity

    Returns:
        ClassificationOutcome for the activity
    """
    bot_id = event.bot_id
    scope = event.scope
    tenant_id = event.tenant_id

    added_ids = {member.id for member in event.members_added}
    removed_ids = {member.id for member in event.members_removed}

    return ClassificationOutcome(
        is_team_renamed=is_team_renamed(event),
        is_bot_added=bot_id is not None and bot_id in added_ids,
        is_bot_removed=bot_id is not None and bot_id in removed_ids,
        added_non_bot_members=tuple(
            MemberRef.from_account(member, scope, tenant_id)
            for member in event.members_added
            if member.id != bot_id
        )
    )
