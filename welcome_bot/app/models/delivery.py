"""Delivery bookkeeping types for proactive welcome messages."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .events import ClassificationOutcome, MemberRef


class DeliveryStage(str, Enum):
    """Step of the open-then-send protocol a recipient failed at."""
    OPEN_CHANNEL = "open_channel"
    SEND_MESSAGE = "send_message"


@dataclass(frozen=True)
class ChannelHandle:
    """A freshly created 1:1 conversation with one recipient."""

    conversation_id: str
    service_url: str
    member_id: str


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one welcome delivery attempt."""

    member: MemberRef
    succeeded: bool
    stage: Optional[DeliveryStage] = None
    failure_reason: Optional[str] = None
    activity_id: Optional[str] = None

    @classmethod
    def success(cls, member: MemberRef, activity_id: Optional[str] = None) -> "DeliveryResult":
        return cls(member=member, succeeded=True, activity_id=activity_id)

    @classmethod
    def failure(cls, member: MemberRef, stage: DeliveryStage, reason: str) -> "DeliveryResult":
        return cls(member=member, succeeded=False, stage=stage, failure_reason=reason)


@dataclass
class DispatchReport:
    """What happened while handling one conversationUpdate activity."""

    correlation_id: str
    outcome: ClassificationOutcome
    recorder_failures: List[str] = field(default_factory=list)
    personal_results: Tuple[DeliveryResult, ...] = ()
    team_results: Tuple[DeliveryResult, ...] = ()
    enumeration_failed: bool = False

    @property
    def deliveries(self) -> Tuple[DeliveryResult, ...]:
        return self.personal_results + self.team_results

    @property
    def failed_deliveries(self) -> Tuple[DeliveryResult, ...]:
        return tuple(r for r in self.deliveries if not r.succeeded)
