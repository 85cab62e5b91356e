"""Per-recipient delivery result collection for a welcome fan-out."""

import logging
import threading
from typing import List, Tuple

from welcome_bot.app.models.delivery import DeliveryResult
from welcome_bot.app.models.events import MemberRef

logger = logging.getLogger(__name__)


class DeliveryResultAggregator:
    """
    Append-only record of delivery outcomes for one fan-out.

    Appends are guarded by a lock so recipients handled on concurrent tasks
    (or threads) never lose entries.
    """

    def __init__(self, label: str = "welcome"):
        self.label = label
        self._results: List[DeliveryResult] = []
        self._lock = threading.Lock()

    def record(self, member: MemberRef, result: DeliveryResult) -> None:
        if result.member != member:
            raise ValueError(
                f"Result for {result.member.id} recorded under member {member.id}"
            )
        with self._lock:
            self._results.append(result)

    def summary(self) -> Tuple[DeliveryResult, ...]:
        with self._lock:
            return tuple(self._results)

    @property
    def succeeded(self) -> Tuple[DeliveryResult, ...]:
        return tuple(r for r in self.summary() if r.succeeded)

    @property
    def failed(self) -> Tuple[DeliveryResult, ...]:
        return tuple(r for r in self.summary() if not r.succeeded)

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def log_summary(self, correlation_id: str) -> None:
        results = self.summary()
        if not results:
            return

        failed = [r for r in results if not r.succeeded]
        message = (
            f"[{correlation_id}] {self.label} deliveries: "
            f"{len(results) - len(failed)}/{len(results)} succeeded"
        )
        if failed:
            details = "; ".join(
                f"{r.member.id} at {r.stage.value}: {r.failure_reason}" for r in failed
            )
            logger.warning(f"{message} (failed: {details})")
        else:
            logger.info(message)
