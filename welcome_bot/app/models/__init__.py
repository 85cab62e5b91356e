"""Welcome bot models package."""
from .events import (
    ClassificationOutcome,
    ConversationEvent,
    ConversationScope,
    MemberRef,
)
from .delivery import ChannelHandle, DeliveryResult, DeliveryStage, DispatchReport

__all__ = [
    "ClassificationOutcome",
    "ConversationEvent",
    "ConversationScope",
    "MemberRef",
    "ChannelHandle",
    "DeliveryResult",
    "DeliveryStage",
    "DispatchReport",
]
