"""Retailer operational status."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class InvalidStatusTransition(ValueError):
    """Raised when a retailer status change is not allowed."""


class RetailerStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    DISABLED = "disabled"
    DEGRADED = "degraded"
    FAILED = "failed"

    def is_available_for_crawling(self) -> bool:
        return self in (RetailerStatus.ACTIVE, RetailerStatus.DEGRADED)

    def allowed_transitions(self) -> frozenset:
        return _TRANSITIONS[self]

    def can_transition_to(self, target: "RetailerStatus") -> bool:
        return target is self or target in _TRANSITIONS[self]

    def transition_to(self, target: "RetailerStatus") -> "RetailerStatus":
        if not self.can_transition_to(target):
            raise InvalidStatusTransition(f"Cannot move retailer from {self.value} to {target.value}")
        return target


_TRANSITIONS = {
    RetailerStatus.ACTIVE: frozenset(
        {RetailerStatus.PAUSED, RetailerStatus.DISABLED, RetailerStatus.DEGRADED, RetailerStatus.FAILED}
    ),
    RetailerStatus.PAUSED: frozenset({RetailerStatus.ACTIVE, RetailerStatus.DISABLED}),
    RetailerStatus.DISABLED: frozenset({RetailerStatus.ACTIVE}),
    RetailerStatus.DEGRADED: frozenset(
        {RetailerStatus.ACTIVE, RetailerStatus.PAUSED, RetailerStatus.DISABLED, RetailerStatus.FAILED}
    ),
    RetailerStatus.FAILED: frozenset({RetailerStatus.ACTIVE, RetailerStatus.DISABLED}),
}


@dataclass
class RetailerRecord:
    """Operational view of a retailer row."""

    slug: str
    name: str
    status: RetailerStatus = RetailerStatus.ACTIVE
    consecutive_failures: int = 0
    last_failure_at: Optional[datetime] = None
    paused_until: Optional[datetime] = None

    def is_paused(self, now: datetime) -> bool:
        return self.paused_until is not None and self.paused_until > now
