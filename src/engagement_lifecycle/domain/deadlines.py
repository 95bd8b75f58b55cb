"""Deadline policy: the single source of every time offset the scanner uses.

    D   acceptance deadline, measured from Engagement.delivered_at
    D'  cancellation response deadline, measured from CancellationRequest.created_at
    L   warning lead: how long before a deadline the warning is sent
    W   = D  - L   (delivery warning offset)
    W'  = D' - L   (cancellation warning offset)
    e   warning window width

The warning offsets are derived, never configured separately, so the
"N days remaining" text in a warning always matches the deadline actually
enforced.

A row is warning-eligible while its anchor lies in (now - W - e, now - W]
and auto-action-eligible once its anchor is <= now - D.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from engagement_lifecycle.config import Settings


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite hands back naive values)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True)
class TimeWindow:
    """A half-open timestamp range (after, until].

    Either bound may be None, meaning unbounded on that side.
    """

    after: datetime | None = None
    until: datetime | None = None

    def contains(self, value: datetime) -> bool:
        value = ensure_utc(value)
        if self.after is not None and value <= ensure_utc(self.after):
            return False
        if self.until is not None and value > ensure_utc(self.until):
            return False
        return True


@dataclass(frozen=True)
class DeadlinePolicy:
    """Deadline offsets for delivery acceptance and cancellation responses."""

    delivery_acceptance: timedelta = timedelta(days=14)
    cancellation_response: timedelta = timedelta(days=7)
    warning_lead: timedelta = timedelta(days=3)
    warning_window: timedelta = timedelta(hours=24)

    def __post_init__(self) -> None:
        if self.warning_lead <= timedelta(0):
            raise ValueError("warning_lead must be positive")
        if self.warning_lead >= min(self.delivery_acceptance, self.cancellation_response):
            raise ValueError(
                "warning_lead must be shorter than both the acceptance and "
                "cancellation response deadlines"
            )
        if not timedelta(0) < self.warning_window <= self.warning_lead:
            raise ValueError("warning_window must be positive and no longer than warning_lead")

    @classmethod
    def from_settings(cls, settings: Settings) -> DeadlinePolicy:
        return cls(
            delivery_acceptance=timedelta(days=settings.delivery_acceptance_days),
            cancellation_response=timedelta(days=settings.cancellation_response_days),
            warning_lead=timedelta(days=settings.deadline_warning_lead_days),
            warning_window=timedelta(hours=settings.deadline_warning_window_hours),
        )

    # --- Derived offsets ---

    @property
    def delivery_warning_offset(self) -> timedelta:
        return self.delivery_acceptance - self.warning_lead

    @property
    def cancellation_warning_offset(self) -> timedelta:
        return self.cancellation_response - self.warning_lead

    @property
    def warning_lead_days(self) -> int:
        return self.warning_lead.days

    # --- Candidate windows ---

    def delivery_warning_window(self, now: datetime) -> TimeWindow:
        return self._warning_window(now, self.delivery_warning_offset)

    def cancellation_warning_window(self, now: datetime) -> TimeWindow:
        return self._warning_window(now, self.cancellation_warning_offset)

    def delivery_auto_action_window(self, now: datetime) -> TimeWindow:
        return TimeWindow(until=now - self.delivery_acceptance)

    def cancellation_auto_action_window(self, now: datetime) -> TimeWindow:
        return TimeWindow(until=now - self.cancellation_response)

    def _warning_window(self, now: datetime, offset: timedelta) -> TimeWindow:
        return TimeWindow(after=now - offset - self.warning_window, until=now - offset)

    # --- Deadline checks (re-validated by the executor before writing) ---

    def acceptance_deadline(self, delivered_at: datetime) -> datetime:
        return ensure_utc(delivered_at) + self.delivery_acceptance

    def cancellation_deadline(self, created_at: datetime) -> datetime:
        return ensure_utc(created_at) + self.cancellation_response

    def acceptance_elapsed(self, delivered_at: datetime, now: datetime) -> bool:
        return ensure_utc(now) >= self.acceptance_deadline(delivered_at)

    def cancellation_response_elapsed(self, created_at: datetime, now: datetime) -> bool:
        return ensure_utc(now) >= self.cancellation_deadline(created_at)
