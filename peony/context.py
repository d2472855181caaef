"""
Per-invocation context objects for core services.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

import peony.config as config
from peony.errors import ValidationIssue
from peony.timestamps import ensure_utc, utc_now


@dataclass(frozen=True)
class StoreContext:
    """
    Time inputs for lifecycle operations.

    ``settle_duration`` is how long a captured or rested thought waits before
    it can be tended; ``clock`` returns the current time (UTC).
    """

    settle_duration: timedelta = field(default_factory=lambda: config.SETTLE_DURATION)
    clock: Callable[[], datetime] = utc_now

    def __post_init__(self) -> None:
        if not isinstance(self.settle_duration, timedelta):
            raise ValidationIssue(
                "settle_duration must be a timedelta",
                field="settle_duration",
                error_type="invalid_type",
            )
        if self.settle_duration < timedelta(0):
            raise ValidationIssue(
                "settle_duration must not be negative",
                field="settle_duration",
                error_type="out_of_range",
            )

    @staticmethod
    def from_config() -> "StoreContext":
        return StoreContext(settle_duration=config.SETTLE_DURATION)

    @staticmethod
    def from_values(
        settle_duration: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "StoreContext":
        return StoreContext(
            settle_duration=config.SETTLE_DURATION if settle_duration is None else settle_duration,
            clock=clock or utc_now,
        )

    def now(self) -> datetime:
        return ensure_utc(self.clock())

    def eligibility_from(self, moment: datetime) -> datetime:
        return moment + self.settle_duration


def resolve_store_context(context: Optional[StoreContext]) -> StoreContext:
    if context is None:
        return StoreContext.from_config()
    return context


__all__ = [
    "StoreContext",
    "resolve_store_context",
]
