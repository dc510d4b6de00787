"""Billing database models: the payment ledger and the webhook inbox."""

from datetime import date, datetime, timezone

from sqlalchemy import Date, DateTime, Integer, String, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from magsub.common.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentEvent(Base):
    """One subscription state transition; rows are never updated or deleted."""

    __tablename__ = "payment"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_key: Mapped[str] = mapped_column(String, index=True)
    amount: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String, index=True)
    start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_grace_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_schedule_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_schedule_id: Mapped[str | None] = mapped_column(String, nullable=True)
    # Set in Python so ordering keeps sub-second resolution on every backend.
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    user_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)


class WebhookInbox(Base):
    """Deduplication rows for applied gateway notifications."""

    __tablename__ = "webhook_inbox"
    __table_args__ = (UniqueConstraint("payment_id", "status", "received_on", name="uq_webhook_delivery"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payment_id: Mapped[str] = mapped_column(String, index=True)
    status: Mapped[str] = mapped_column(String)
    received_on: Mapped[date] = mapped_column(Date)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


@event.listens_for(PaymentEvent, "before_update")
def _refuse_update(mapper, connection, target) -> None:
    raise RuntimeError("payment ledger is append-only; UPDATE is not allowed")


@event.listens_for(PaymentEvent, "before_delete")
def _refuse_delete(mapper, connection, target) -> None:
    raise RuntimeError("payment ledger is append-only; DELETE is not allowed")
