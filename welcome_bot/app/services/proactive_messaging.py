"""
Proactive welcome messaging for Teams members.

Members the bot has never talked to have no conversation with it yet, so each
welcome is a two-step exchange with the Bot Connector: create a 1:1
conversation, then send the card into it. Two fan-outs use this:

- send_personal_welcomes: members added alongside (not including) the bot
- reintroduce_to_scope: the bot itself was added, so every current member of
  the team or conversation is welcomed individually

Every recipient is attempted on its own; one failing never stops the others.
"""

import asyncio
import logging
from typing import Callable, Iterable, Optional, Tuple

from botbuilder.schema import Attachment

from welcome_bot.app.errors import EnumerationFailure
from welcome_bot.app.models.delivery import DeliveryResult, DeliveryStage
from welcome_bot.app.models.events import ConversationEvent, MemberRef
from welcome_bot.app.services.aggregator import DeliveryResultAggregator
from welcome_bot.app.services.connector import ConnectorGateway

logger = logging.getLogger(__name__)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "timed out before the processing deadline"
    return f"{type(exc).__name__}: {exc}"


def _missing_routing(event: ConversationEvent) -> Optional[str]:
    if not event.service_url:
        return "activity carries no service URL"
    if event.recipient is None or not event.recipient.id:
        return "activity carries no bot recipient"
    return None


class ProactiveMessagingService:
    """
    Delivers welcome cards over freshly created 1:1 conversations.

    Features:
    - Open-then-send per recipient with the failing stage recorded
    - Bounded concurrency across all fan-outs of this service
    - Optional per-event deadline applied to every connector call
    """

    def __init__(
        self,
        connector: ConnectorGateway,
        card_factory: Callable[[], Attachment],
        max_concurrent_deliveries: int = 8
    ):
        """
        Args:
            connector: Bot Connector capabilities
            card_factory: Builds the welcome card attachment
            max_concurrent_deliveries: Upper bound on recipients handled at once
        """
        if max_concurrent_deliveries < 1:
            raise ValueError("max_concurrent_deliveries must be at least 1")

        self.connector = connector
        self.card_factory = card_factory
        self.max_concurrent_deliveries = max_concurrent_deliveries
        self._semaphore = asyncio.Semaphore(max_concurrent_deliveries)

    @staticmethod
    def _remaining(deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return max(deadline - asyncio.get_running_loop().time(), 0.0)

    async def _deliver(
        self,
        event: ConversationEvent,
        member: MemberRef,
        artifact: Attachment,
        notify: bool,
        deadline: Optional[float],
        correlation_id: str
    ) -> DeliveryResult:
        """Open a conversation with one member and send the card into it."""
        async with self._semaphore:
            tenant_id = member.tenant_id or event.tenant_id

            try:
                handle = await asyncio.wait_for(
                    self.connector.open_channel(
                        event.service_url,
                        member,
                        event.recipient,
                        tenant_id,
                        notify=notify
                    ),
                    timeout=self._remaining(deadline)
                )
            except Exception as e:
                reason = _describe(e)
                logger.warning(
                    f"[{correlation_id}] Welcome to {member.id} failed at "
                    f"{DeliveryStage.OPEN_CHANNEL.value}: {reason}"
                )
                return DeliveryResult.failure(member, DeliveryStage.OPEN_CHANNEL, reason)

            try:
                activity_id = await asyncio.wait_for(
                    self.connector.send_message(handle, artifact, notify=notify),
                    timeout=self._remaining(deadline)
                )
            except Exception as e:
                reason = _describe(e)
                logger.warning(
                    f"[{correlation_id}] Welcome to {member.id} failed at "
                    f"{DeliveryStage.SEND_MESSAGE.value} (conversation {handle.conversation_id}): {reason}"
                )
                return DeliveryResult.failure(member, DeliveryStage.SEND_MESSAGE, reason)

            logger.info(
                f"[{correlation_id}] Welcome sent to {member.id} "
                f"in conversation {handle.conversation_id}"
            )
            return DeliveryResult.success(member, activity_id)

    async def _fan_out(
        self,
        event: ConversationEvent,
        members: Iterable[MemberRef],
        aggregator: DeliveryResultAggregator,
        notify: bool,
        deadline: Optional[float],
        correlation_id: str
    ) -> Tuple[DeliveryResult, ...]:
        members = list(members)
        if not members:
            return aggregator.summary()

        missing = _missing_routing(event)
        if missing:
            # Nothing to open a conversation through; every member fails the same way
            logger.warning(f"[{correlation_id}] Cannot open conversations: {missing}")
            for member in members:
                aggregator.record(
                    member,
                    DeliveryResult.failure(member, DeliveryStage.OPEN_CHANNEL, missing)
                )
            aggregator.log_summary(correlation_id)
            return aggregator.summary()

        artifact = self.card_factory()

        async def attempt(member: MemberRef) -> None:
            result = await self._deliver(event, member, artifact, notify, deadline, correlation_id)
            aggregator.record(member, result)

        await asyncio.gather(*(attempt(member) for member in members))
        aggregator.log_summary(correlation_id)
        return aggregator.summary()

    async def send_personal_welcomes(
        self,
        event: ConversationEvent,
        members: Iterable[MemberRef],
        aggregator: Optional[DeliveryResultAggregator] = None,
        deadline: Optional[float] = None,
        correlation_id: str = "-"
    ) -> Tuple[DeliveryResult, ...]:
        """
        Welcome members who joined a conversation the bot is already in.

        Args:
            event: The conversationUpdate activity
            members: Added members, excluding the bot
            aggregator: Collects per-recipient results (a new one when omitted)
            deadline: Event loop time after which connector calls time out
            correlation_id: Prefix for log records

        Returns:
            One DeliveryResult per member
        """
        if aggregator is None:
            aggregator = DeliveryResultAggregator("personal welcome")
        return await self._fan_out(event, members, aggregator, True, deadline, correlation_id)

    async def reintroduce_to_scope(
        self,
        event: ConversationEvent,
        aggregator: Optional[DeliveryResultAggregator] = None,
        deadline: Optional[float] = None,
        correlation_id: str = "-"
    ) -> Tuple[DeliveryResult, ...]:
        """
        Welcome every current member after the bot was added to a team or chat.

        Members who were there before the bot joined are included: the bot has
        no conversation with any of them yet.

        Raises:
            EnumerationFailure: If the members could not be listed
        """
        if aggregator is None:
            aggregator = DeliveryResultAggregator("team welcome")

        scope_id = event.scope_id
        if not scope_id:
            raise EnumerationFailure("Activity carries neither a team ID nor a conversation ID")
        if not event.service_url:
            raise EnumerationFailure(f"Activity for {scope_id} carries no service URL")

        try:
            members = await asyncio.wait_for(
                self.connector.list_scope_members(
                    event.service_url,
                    scope_id,
                    event.tenant_id,
                    scope=event.scope
                ),
                timeout=self._remaining(deadline)
            )
        except EnumerationFailure:
            raise
        except asyncio.TimeoutError as e:
            raise EnumerationFailure(f"Listing members of {scope_id} {_describe(e)}") from e
        except Exception as e:
            raise EnumerationFailure(f"Listing members of {scope_id} failed: {_describe(e)}") from e

        # Rosters can repeat an entry; each member gets one conversation
        recipients = [
            member for member in dict.fromkeys(members)
            if member.id != event.bot_id
        ]
        logger.info(
            f"[{correlation_id}] Reintroducing bot to {len(recipients)} members of {scope_id}"
        )
        return await self._fan_out(event, recipients, aggregator, True, deadline, correlation_id)
