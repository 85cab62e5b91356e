"""Welcome bot services."""
from .classifier import classify
from .aggregator import DeliveryResultAggregator
from .proactive_messaging import ProactiveMessagingService
from .dispatcher import ConversationUpdateHandler

__all__ = [
    "classify",
    "DeliveryResultAggregator",
    "ProactiveMessagingService",
    "ConversationUpdateHandler",
]
