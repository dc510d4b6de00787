"""Subscription state machine over payment ledger snapshots.

Nothing here touches the store. Callers hand in ledger rows (ORM objects or
anything exposing the same attributes) plus a clock value, which keeps every
transition unit-testable.
"""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable
from uuid import uuid4
from zoneinfo import ZoneInfo


PAID = "Paid"
CANCEL = "Cancel"

STATUS_SUBSCRIBED = "subscribed"
STATUS_FREE = "free"

# Keyed by the status of the authoritative row for a transaction key
# (None when the key has no rows yet).
ALLOWED_TRANSITIONS: dict[str | None, set[str]] = {
    None: {PAID},
    PAID: {PAID, CANCEL},
    CANCEL: {PAID},
}


def validate_transition(current: str | None, new: str) -> None:
    """Raise when a ledger transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current or 'none'} -> {new}")


class SubscriptionState(str, Enum):
    """Access derived from the authoritative ledger row.

    A cancellation ends access at once: the Cancel row becomes authoritative
    and reads as FREE even while the copied window is still running, so there
    is no separate "cancelled but paid through" state.
    """

    FREE = "free"
    ACTIVE = "active"
    # Paid window elapsed, grace period running: access continues until the
    # scheduled renewal lands or the grace period ends.
    GRACE = "grace"


@dataclass(frozen=True)
class BillingPolicy:
    """Date math knobs for one billing cycle."""

    period_days: int = 30
    grace_days: int = 1
    schedule_offset_days: int = 1
    schedule_hour: int = 10
    jitter_minutes: int = 60
    timezone: str = "Asia/Seoul"

    def __post_init__(self) -> None:
        if not 1 <= self.jitter_minutes <= 60:
            raise ValueError("jitter_minutes must stay within one hour (1..60)")
        if not 0 <= self.schedule_hour <= 23:
            raise ValueError("schedule_hour must be 0..23")

    @classmethod
    def from_settings(cls, settings) -> "BillingPolicy":
        return cls(
            period_days=settings.billing_period_days,
            grace_days=settings.grace_period_days,
            schedule_offset_days=settings.schedule_offset_days,
            schedule_hour=settings.schedule_hour,
            jitter_minutes=settings.schedule_jitter_minutes,
            timezone=settings.schedule_timezone,
        )


@dataclass(frozen=True)
class AccessWindow:
    start_at: datetime
    end_at: datetime
    end_grace_at: datetime
    next_schedule_at: datetime
    next_schedule_id: str


@dataclass(frozen=True)
class SubscriptionStatus:
    is_subscribed: bool
    status: str
    state: SubscriptionState
    transaction_key: str | None = None


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive timestamps from the store as UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def paid_window(now: datetime, policy: BillingPolicy, rng: random.Random | None = None) -> AccessWindow:
    """Compute the access window and next charge for a fresh Paid event.

    The next charge lands `schedule_offset_days` after `end_at`, at a random
    minute inside `schedule_hour` (local to `policy.timezone`) to spread
    gateway load.
    """

    now = as_utc(now)
    end_at = now + timedelta(days=policy.period_days)
    end_grace_at = end_at + timedelta(days=policy.grace_days)

    charge_day = (end_at + timedelta(days=policy.schedule_offset_days)).astimezone(ZoneInfo(policy.timezone))
    minute = (rng or random).randrange(policy.jitter_minutes)
    next_schedule_at = charge_day.replace(hour=policy.schedule_hour, minute=minute, second=0, microsecond=0)

    return AccessWindow(
        start_at=now,
        end_at=end_at,
        end_grace_at=end_grace_at,
        next_schedule_at=next_schedule_at.astimezone(timezone.utc),
        next_schedule_id=str(uuid4()),
    )


def cancel_of(paid_row) -> dict:
    """Field values for the Cancel row reversing `paid_row`.

    The window and schedule pointers are copied verbatim; only the amount
    flips sign.
    """

    if paid_row.status != PAID:
        raise ValueError(f"only Paid rows can be reversed, got {paid_row.status}")
    return {
        "transaction_key": paid_row.transaction_key,
        "amount": -paid_row.amount,
        "status": CANCEL,
        "start_at": paid_row.start_at,
        "end_at": paid_row.end_at,
        "end_grace_at": paid_row.end_grace_at,
        "next_schedule_at": paid_row.next_schedule_at,
        "next_schedule_id": paid_row.next_schedule_id,
        "user_id": paid_row.user_id,
    }


def current_rows(rows: Iterable) -> list:
    """Authoritative row per transaction key (maximum `created_at`).

    Groups keep the order in which their key first appears in `rows`; the
    ledger hands rows over newest first, so the most recently touched key
    leads.
    """

    latest: dict[str, object] = {}
    for row in rows:
        held = latest.get(row.transaction_key)
        if held is None or as_utc(row.created_at) > as_utc(held.created_at):
            latest[row.transaction_key] = row
    return list(latest.values())


def state_of(row, now: datetime) -> SubscriptionState:
    """State established by one authoritative row at `now`."""

    if row is None or row.status != PAID:
        return SubscriptionState.FREE
    start_at = as_utc(row.start_at)
    end_grace_at = as_utc(row.end_grace_at)
    if start_at is None or end_grace_at is None:
        return SubscriptionState.FREE
    now = as_utc(now)
    if now < start_at or now > end_grace_at:
        return SubscriptionState.FREE
    end_at = as_utc(row.end_at)
    if end_at is not None and now > end_at:
        return SubscriptionState.GRACE
    return SubscriptionState.ACTIVE


def is_active(row, now: datetime) -> bool:
    """Paid and `start_at <= now <= end_grace_at`."""

    return state_of(row, now) is not SubscriptionState.FREE


def derive_status(rows: Iterable, now: datetime) -> SubscriptionStatus:
    for row in current_rows(rows):
        state = state_of(row, now)
        if state is not SubscriptionState.FREE:
            return SubscriptionStatus(
                is_subscribed=True,
                status=STATUS_SUBSCRIBED,
                state=state,
                transaction_key=row.transaction_key,
            )
    return SubscriptionStatus(is_subscribed=False, status=STATUS_FREE, state=SubscriptionState.FREE)
