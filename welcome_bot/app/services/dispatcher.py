"""
conversationUpdate dispatch.

Classifies an activity, hands metadata changes to the membership recorder and
membership changes to the proactive messaging service. Every step has its own
error boundary: a failed rename record never blocks welcomes, and a failed
member listing never stops the handler from returning.
"""

import asyncio
import logging
import uuid
from typing import Optional

from welcome_bot.app.errors import EnumerationFailure
from welcome_bot.app.models.delivery import DispatchReport
from welcome_bot.app.models.events import ConversationEvent
from welcome_bot.app.services.aggregator import DeliveryResultAggregator
from welcome_bot.app.services.classifier import classify
from welcome_bot.app.services.proactive_messaging import ProactiveMessagingService
from welcome_bot.app.services.recorder import MembershipStateRecorder

logger = logging.getLogger(__name__)


class ConversationUpdateHandler:
    """Entry point for conversationUpdate activities."""

    def __init__(
        self,
        recorder: MembershipStateRecorder,
        messaging: ProactiveMessagingService,
        processing_timeout: Optional[float] = None
    ):
        self.recorder = recorder
        self.messaging = messaging
        self.processing_timeout = processing_timeout

    async def handle_conversation_update(
        self,
        event: ConversationEvent,
        timeout: Optional[float] = None
    ) -> None:
        """
        Process one activity. Never raises; every failure ends in a log record.

        Args:
            event: Inbound activity
            timeout: Seconds allowed for processing (defaults to processing_timeout)
        """
        try:
            await self.dispatch(event, timeout=timeout)
        except Exception as e:
            logger.error(
                f"Unhandled error processing conversationUpdate {event.id}: {e}",
                exc_info=True
            )

    async def _record(
        self,
        report: DispatchReport,
        name: str,
        call,
        event: ConversationEvent,
        deadline: Optional[float]
    ) -> None:
        timeout = None if deadline is None else max(deadline - asyncio.get_running_loop().time(), 0.0)
        try:
            await asyncio.wait_for(call(event), timeout=timeout)
        except asyncio.TimeoutError:
            report.recorder_failures.append(name)
            logger.error(f"[{report.correlation_id}] Recorder {name} timed out before the processing deadline")
        except Exception as e:
            report.recorder_failures.append(name)
            logger.error(
                f"[{report.correlation_id}] Recorder {name} failed: {e}",
                exc_info=True
            )

    async def dispatch(
        self,
        event: ConversationEvent,
        timeout: Optional[float] = None,
        correlation_id: Optional[str] = None
    ) -> DispatchReport:
        """
        Classify an activity and run every matching reaction.

        Returns:
            DispatchReport describing recorder failures and delivery results
        """
        correlation_id = correlation_id or event.id or str(uuid.uuid4())
        outcome = classify(event)
        report = DispatchReport(correlation_id=correlation_id, outcome=outcome)

        logger.info(
            f"[{correlation_id}] conversationUpdate in {event.scope.value} scope "
            f"{event.scope_id}: {outcome.describe()}"
        )
        if outcome.is_empty:
            return report

        timeout = timeout if timeout is not None else self.processing_timeout
        deadline = asyncio.get_running_loop().time() + timeout if timeout is not None else None

        # Recorder calls start first but deliveries never wait on them
        await asyncio.gather(
            self._record_outcome(report, event, deadline),
            self._welcome(report, event, deadline)
        )
        return report

    async def _record_outcome(
        self,
        report: DispatchReport,
        event: ConversationEvent,
        deadline: Optional[float]
    ) -> None:
        outcome = report.outcome
        if outcome.is_team_renamed:
            await self._record(report, "on_team_info_updated", self.recorder.on_team_info_updated, event, deadline)
        if outcome.is_bot_added:
            await self._record(report, "on_bot_added", self.recorder.on_bot_added, event, deadline)
        if outcome.is_bot_removed:
            await self._record(report, "on_bot_removed", self.recorder.on_bot_removed, event, deadline)

    async def _welcome(
        self,
        report: DispatchReport,
        event: ConversationEvent,
        deadline: Optional[float]
    ) -> None:
        outcome = report.outcome
        correlation_id = report.correlation_id

        if outcome.added_non_bot_members:
            try:
                report.personal_results = await self.messaging.send_personal_welcomes(
                    event,
                    outcome.added_non_bot_members,
                    aggregator=DeliveryResultAggregator("personal welcome"),
                    deadline=deadline,
                    correlation_id=correlation_id
                )
            except Exception as e:
                logger.error(f"[{correlation_id}] Personal welcome fan-out failed: {e}", exc_info=True)

        if outcome.is_bot_added:
            try:
                report.team_results = await self.messaging.reintroduce_to_scope(
                    event,
                    aggregator=DeliveryResultAggregator("team welcome"),
                    deadline=deadline,
                    correlation_id=correlation_id
                )
            except EnumerationFailure as e:
                report.enumeration_failed = True
                logger.error(f"[{correlation_id}] Skipping team welcome, member listing failed: {e}")
            except Exception as e:
                logger.error(f"[{correlation_id}] Team welcome fan-out failed: {e}", exc_info=True)
