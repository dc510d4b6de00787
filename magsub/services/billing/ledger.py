"""Append-only access to the payment ledger."""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from magsub.common.state_machine import PAID, SubscriptionStatus, derive_status
from magsub.services.billing.models import PaymentEvent


class SubscriptionLedger:
    """Thin repository over one SQLAlchemy session.

    Exposes inserts and reads only; callers own commit/rollback.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def append(self, **fields) -> PaymentEvent:
        row = PaymentEvent(**fields)
        self.db.add(row)
        self.db.flush()
        return row

    def rows(self, user_id: str | None = None, transaction_keys: list[str] | None = None) -> list[PaymentEvent]:
        """Matching rows, newest first."""

        stmt = select(PaymentEvent)
        if user_id:
            stmt = stmt.where(PaymentEvent.user_id == user_id)
        if transaction_keys:
            stmt = stmt.where(PaymentEvent.transaction_key.in_(transaction_keys))
        stmt = stmt.order_by(PaymentEvent.created_at.desc(), PaymentEvent.id.desc())
        return list(self.db.execute(stmt).scalars().all())

    def history(self, transaction_key: str) -> list[PaymentEvent]:
        """All rows for one key, oldest first."""

        return list(
            self.db.execute(
                select(PaymentEvent)
                .where(PaymentEvent.transaction_key == transaction_key)
                .order_by(PaymentEvent.created_at, PaymentEvent.id)
            )
            .scalars()
            .all()
        )

    def latest(self, transaction_key: str) -> PaymentEvent | None:
        """Authoritative row for one key."""

        return self.db.execute(
            select(PaymentEvent)
            .where(PaymentEvent.transaction_key == transaction_key)
            .order_by(PaymentEvent.created_at.desc(), PaymentEvent.id.desc())
            .limit(1)
        ).scalar_one_or_none()

    def latest_paid(self, transaction_key: str) -> PaymentEvent | None:
        return self.db.execute(
            select(PaymentEvent)
            .where(PaymentEvent.transaction_key == transaction_key, PaymentEvent.status == PAID)
            .order_by(PaymentEvent.created_at.desc(), PaymentEvent.id.desc())
            .limit(1)
        ).scalar_one_or_none()

    def owned_by(self, user_id: str, transaction_key: str) -> bool:
        return (
            self.db.execute(
                select(PaymentEvent.id)
                .where(PaymentEvent.user_id == user_id, PaymentEvent.transaction_key == transaction_key)
                .limit(1)
            ).scalar_one_or_none()
            is not None
        )


def read_subscription(
    session_factory,
    now: datetime,
    user_id: str | None = None,
    transaction_keys: list[str] | None = None,
) -> SubscriptionStatus:
    """Derive current access for a user and/or explicit transaction keys."""

    with session_factory() as db:
        rows = SubscriptionLedger(db).rows(user_id=user_id, transaction_keys=transaction_keys)
    return derive_status(rows, now)
