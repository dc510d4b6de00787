"""Subscription billing logic.

Turns gateway notifications into payment ledger rows, keeps the gateway's
schedule registry in step with the ledger, and serves the client-triggered
checkout/cancel actions (which never write the ledger themselves).
"""

import json
import random
import secrets
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import select

from magsub.common.errors import AuthenticationFailed, NotFound, PermissionDenied, ValidationFailed
from magsub.common.identity import AuthUser
from magsub.common.logging import logger, payment_id_ctx, transaction_key_ctx
from magsub.common.metrics import (
    client_actions_total,
    duplicate_webhooks_skipped_total,
    ledger_rows_appended_total,
    webhook_events_total,
)
from magsub.common.rate_limit import TokenBucket
from magsub.common.state_machine import (
    CANCEL,
    PAID,
    BillingPolicy,
    SubscriptionStatus,
    as_utc,
    cancel_of,
    paid_window,
    state_of,
    validate_transition,
)
from magsub.services.billing.gateway import PortOneClient, normalize_payment
from magsub.services.billing.ledger import SubscriptionLedger, read_subscription
from magsub.services.billing.models import PaymentEvent, WebhookInbox
from magsub.services.billing.schemas import PaymentCreateRequest, PaymentCreateResponse

WEBHOOK_PAID = "Paid"
WEBHOOK_CANCELLED = "Cancelled"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value is not None else None


def new_payment_id() -> str:
    return f"payment_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


def _merge_custom_data(raw: dict | str | None, caller: AuthUser | None) -> str | None:
    """Serialize customData for the gateway, stamping the caller's user id."""

    data = raw
    if isinstance(data, str):
        try:
            parsed = json.loads(data)
        except ValueError:
            parsed = None
        if not isinstance(parsed, dict):
            # Opaque string: forwarded untouched.
            return data
        data = parsed
    data = dict(data or {})
    if caller is not None:
        data["userId"] = caller.id
    return json.dumps(data) if data else None


class BillingService:
    """Owns the subscription ledger and its webhook-driven transitions."""

    def __init__(
        self,
        session_factory,
        gateway: PortOneClient,
        settings,
        rate_limiter: TokenBucket | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _utcnow,
        service_name: str = "billing",
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.settings = settings
        self.policy = BillingPolicy.from_settings(settings)
        self.rate_limiter = rate_limiter
        self.rng = rng
        self.clock = clock
        self.service_name = service_name

    # -- webhook -----------------------------------------------------------

    def _inbox_seen(self, db, payment_id: str, status: str, day) -> bool:
        return (
            db.execute(
                select(WebhookInbox.id).where(
                    WebhookInbox.payment_id == payment_id,
                    WebhookInbox.status == status,
                    WebhookInbox.received_on == day,
                )
            ).scalar_one_or_none()
            is not None
        )

    def _mark_inbox(self, db, payment_id: str, status: str, now: datetime) -> None:
        db.add(WebhookInbox(payment_id=payment_id, status=status, received_on=now.date(), received_at=now))

    def _skip_duplicate(self, payment_id: str, status: str) -> dict:
        logger.info("duplicate webhook skipped payment_id=%s status=%s", payment_id, status)
        duplicate_webhooks_skipped_total.labels(service=self.service_name, status=status).inc()
        webhook_events_total.labels(service=self.service_name, status=status, outcome="duplicate").inc()
        return {"success": True, "details": {"duplicate": True, "paymentId": payment_id}}

    def handle_webhook(self, payment_id: str, status: str) -> dict:
        """Apply one gateway notification.

        Unrecognized statuses are acknowledged without side effects. Any
        exception propagates to the caller, which reports it as a failure.
        """

        payment_id_ctx.set(payment_id)
        logger.info("webhook_received payment_id=%s status=%s", payment_id, status)
        if status == WEBHOOK_PAID:
            return self._handle_paid(payment_id)
        if status == WEBHOOK_CANCELLED:
            return self._handle_cancelled(payment_id)
        logger.info("webhook ignored status=%s", status)
        webhook_events_total.labels(service=self.service_name, status=status, outcome="ignored").inc()
        return {"success": True}

    def _handle_paid(self, payment_id: str) -> dict:
        now = self.clock()
        with self.session_factory() as db:
            if self._inbox_seen(db, payment_id, WEBHOOK_PAID, now.date()):
                return self._skip_duplicate(payment_id, WEBHOOK_PAID)

        info = normalize_payment(self.gateway.get_payment(payment_id), payment_id)
        transaction_key_ctx.set(info.transaction_key)
        window = paid_window(now, self.policy, self.rng)
        logger.info(
            "paid window computed start_at=%s end_at=%s end_grace_at=%s next_schedule_at=%s next_schedule_id=%s",
            window.start_at.isoformat(),
            window.end_at.isoformat(),
            window.end_grace_at.isoformat(),
            window.next_schedule_at.isoformat(),
            window.next_schedule_id,
        )

        scheduling = "skipped"
        schedule_resp: dict = {}
        with self.session_factory() as db:
            ledger = SubscriptionLedger(db)
            current = ledger.latest(info.transaction_key)
            validate_transition(current.status if current else None, PAID)
            ledger.append(
                transaction_key=info.transaction_key,
                amount=info.amount,
                status=PAID,
                start_at=window.start_at,
                end_at=window.end_at,
                end_grace_at=window.end_grace_at,
                next_schedule_at=window.next_schedule_at,
                next_schedule_id=window.next_schedule_id,
                created_at=now,
                user_id=info.user_id,
            )
            self._mark_inbox(db, payment_id, WEBHOOK_PAID, now)
            db.flush()

            if info.billing_key:
                try:
                    schedule_resp = self.gateway.create_schedule(
                        schedule_id=window.next_schedule_id,
                        billing_key=info.billing_key,
                        order_name=info.order_name,
                        customer_id=info.customer_id,
                        amount=info.amount,
                        currency=self.settings.currency,
                        time_to_pay=window.next_schedule_at,
                    )
                except Exception:
                    db.rollback()
                    logger.error("schedule registration failed; ledger row rolled back")
                    raise
                scheduling = "registered"
            else:
                logger.info("no billing key on payment; next charge not scheduled")

            try:
                db.commit()
            except Exception:
                db.rollback()
                if scheduling == "registered":
                    self._discard_schedule(schedule_resp, info.billing_key)
                raise

        ledger_rows_appended_total.labels(service=self.service_name, status=PAID).inc()
        webhook_events_total.labels(service=self.service_name, status=WEBHOOK_PAID, outcome="applied").inc()
        logger.info("paid transition applied scheduling=%s", scheduling)
        return {
            "success": True,
            "details": {
                "paymentInfo": {
                    "paymentId": info.transaction_key,
                    "amount": info.amount,
                    "billingKey": info.billing_key,
                },
                "schedule": {
                    "nextScheduleId": window.next_schedule_id,
                    "nextScheduleAt": window.next_schedule_at.isoformat(),
                    "endAt": window.end_at.isoformat(),
                    "endGraceAt": window.end_grace_at.isoformat(),
                },
                "scheduling": scheduling,
            },
        }

    def _discard_schedule(self, schedule_resp: dict, billing_key: str | None) -> None:
        """Undo a registered charge whose ledger row failed to commit."""

        schedule = schedule_resp.get("schedule") if isinstance(schedule_resp, dict) else None
        schedule_id = schedule.get("id") if isinstance(schedule, dict) else None
        if not schedule_id:
            logger.error("cannot compensate schedule registration: gateway returned no schedule id")
            return
        try:
            self.gateway.delete_schedules([schedule_id], billing_key)
            logger.warning("schedule %s deleted after ledger commit failure", schedule_id)
        except Exception as exc:
            logger.error("schedule compensation failed schedule_id=%s error=%s", schedule_id, exc)

    def _handle_cancelled(self, payment_id: str) -> dict:
        now = self.clock()
        with self.session_factory() as db:
            if self._inbox_seen(db, payment_id, WEBHOOK_CANCELLED, now.date()):
                return self._skip_duplicate(payment_id, WEBHOOK_CANCELLED)

        info = normalize_payment(self.gateway.get_payment(payment_id), payment_id)
        transaction_key = info.transaction_key
        transaction_key_ctx.set(transaction_key)

        with self.session_factory() as db:
            ledger = SubscriptionLedger(db)
            paid = ledger.latest_paid(transaction_key)
            if paid is None:
                raise NotFound(f"no Paid ledger row for transaction {transaction_key}")
            current = ledger.latest(transaction_key)
            if current.status == CANCEL:
                # Redelivery of a cancellation already on the ledger.
                self._mark_inbox(db, payment_id, WEBHOOK_CANCELLED, now)
                db.commit()
                logger.info("cancellation already applied; nothing to write")
                webhook_events_total.labels(
                    service=self.service_name, status=WEBHOOK_CANCELLED, outcome="already_applied"
                ).inc()
                return {
                    "success": True,
                    "details": {"alreadyCancelled": True, "transactionKey": transaction_key},
                }
            validate_transition(current.status, CANCEL)
            fields = cancel_of(paid)
            if fields["user_id"] is None:
                fields["user_id"] = info.user_id
            ledger.append(created_at=now, **fields)
            self._mark_inbox(db, payment_id, WEBHOOK_CANCELLED, now)
            db.commit()

        ledger_rows_appended_total.labels(service=self.service_name, status=CANCEL).inc()
        webhook_events_total.labels(service=self.service_name, status=WEBHOOK_CANCELLED, outcome="applied").inc()
        logger.info("cancel transition applied amount=%s", fields["amount"])

        cleanup = "skipped"
        if info.billing_key and paid.next_schedule_at is not None and paid.next_schedule_id:
            cleanup = self._cleanup_schedule(info.billing_key, paid)
        return {
            "success": True,
            "details": {
                "transactionKey": transaction_key,
                "amount": fields["amount"],
                "scheduleCleanup": cleanup,
            },
        }

    def _cleanup_schedule(self, billing_key: str, paid: PaymentEvent) -> str:
        """Best-effort removal of the pending charge a cancelled row pointed to.

        Failures are logged and swallowed: the Cancel row is already durable.
        """

        window = timedelta(days=self.settings.schedule_lookup_window_days)
        scheduled_at = as_utc(paid.next_schedule_at)
        try:
            items = self.gateway.list_schedules(billing_key, scheduled_at - window, scheduled_at + window)
            match = next((item for item in items if item.get("paymentId") == paid.next_schedule_id), None)
            if match is None:
                logger.info("no pending schedule matches next_schedule_id=%s", paid.next_schedule_id)
                return "not_found"
            self.gateway.delete_schedules([match["id"]], billing_key)
        except Exception as exc:
            logger.warning("schedule cleanup failed next_schedule_id=%s error=%s", paid.next_schedule_id, exc)
            return "failed"
        logger.info("pending schedule %s deleted", match["id"])
        return "deleted"

    # -- reader ------------------------------------------------------------

    def subscription_status(
        self, user_id: str | None = None, transaction_keys: list[str] | None = None
    ) -> SubscriptionStatus:
        """Derive access from the ledger; recomputed on every call."""

        if not user_id and not transaction_keys:
            raise ValidationFailed("user_id or transaction_keys is required")
        return read_subscription(
            self.session_factory, self.clock(), user_id=user_id, transaction_keys=transaction_keys
        )

    def ledger_report(self, transaction_key: str) -> dict:
        with self.session_factory() as db:
            rows = SubscriptionLedger(db).history(transaction_key)
        if not rows:
            raise NotFound(f"no ledger rows for transaction {transaction_key}")
        # history() is oldest first, so the last row is authoritative.
        current = rows[-1]
        return {
            "transactionKey": transaction_key,
            "currentStatus": current.status,
            "state": state_of(current, self.clock()).value,
            "netAmount": sum(row.amount for row in rows),
            "rows": [
                {
                    "id": row.id,
                    "amount": row.amount,
                    "status": row.status,
                    "startAt": _iso(row.start_at),
                    "endAt": _iso(row.end_at),
                    "endGraceAt": _iso(row.end_grace_at),
                    "nextScheduleAt": _iso(row.next_schedule_at),
                    "nextScheduleId": row.next_schedule_id,
                    "createdAt": _iso(row.created_at),
                    "userId": row.user_id,
                }
                for row in rows
            ],
        }

    # -- client actions ----------------------------------------------------

    def create_payment(self, req: PaymentCreateRequest, caller: AuthUser | None) -> dict:
        """Charge a billing key once. The ledger row arrives later via webhook."""

        if self.settings.require_auth and caller is None:
            raise AuthenticationFailed("authentication required")
        if caller is not None and caller.id != req.customer.id:
            client_actions_total.labels(service=self.service_name, action="checkout", outcome="forbidden").inc()
            raise PermissionDenied("customer.id does not match the authenticated user")
        if self.rate_limiter is not None:
            self.rate_limiter.consume(req.customer.id)

        payment_id = new_payment_id()
        payment_id_ctx.set(payment_id)
        try:
            portone_data = self.gateway.pay_with_billing_key(
                payment_id=payment_id,
                billing_key=req.billing_key,
                order_name=req.order_name,
                amount=req.amount,
                customer_id=req.customer.id,
                currency=self.settings.currency,
                custom_data=_merge_custom_data(req.custom_data, caller),
            )
        except Exception:
            client_actions_total.labels(service=self.service_name, action="checkout", outcome="failed").inc()
            raise
        client_actions_total.labels(service=self.service_name, action="checkout", outcome="ok").inc()
        logger.info("billing key charged payment_id=%s amount=%s", payment_id, req.amount)
        return PaymentCreateResponse(payment_id=payment_id, portone_data=portone_data).model_dump(by_alias=True)

    def cancel_payment(self, transaction_key: str, caller: AuthUser | None) -> dict:
        """Ask the gateway to cancel; its Cancelled webhook writes the ledger."""

        transaction_key_ctx.set(transaction_key)
        if self.settings.require_auth and caller is None:
            raise AuthenticationFailed("authentication required")
        if self.settings.strict_cancel_ownership:
            if caller is None:
                raise AuthenticationFailed("authentication required to verify ownership")
            with self.session_factory() as db:
                owned = SubscriptionLedger(db).owned_by(caller.id, transaction_key)
            if not owned:
                client_actions_total.labels(service=self.service_name, action="cancel", outcome="not_found").inc()
                raise NotFound("payment not found for this user")

        try:
            self.gateway.cancel_payment(transaction_key, self.settings.cancel_reason)
        except Exception:
            client_actions_total.labels(service=self.service_name, action="cancel", outcome="failed").inc()
            raise
        client_actions_total.labels(service=self.service_name, action="cancel", outcome="ok").inc()
        logger.info("gateway cancellation requested")
        return {
            "success": True,
            "details": {
                "transactionKey": transaction_key,
                "cancelledAt": self.clock().isoformat(),
            },
        }
