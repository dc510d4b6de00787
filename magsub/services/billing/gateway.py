"""PortOne v2 REST client plus normalization of its payment payloads.

The client is pure I/O: every call authenticates with the static API secret
(`Authorization: PortOne <secret>`) and raises `GatewayError` on any non-2xx
response or transport failure.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from time import perf_counter
from typing import Any
from urllib.parse import quote

import httpx

from magsub.common.errors import UpstreamError
from magsub.common.logging import logger
from magsub.common.metrics import gateway_calls_total, gateway_latency_seconds
from magsub.common.tracing import tracer


class GatewayError(UpstreamError):
    """Gateway call failed; `message` carries the upstream detail."""

    def __init__(self, operation: str, status_code: int | None, detail: str) -> None:
        status = status_code if status_code is not None else "transport"
        super().__init__(f"{operation} failed: {status} - {detail}")
        self.operation = operation
        self.upstream_status = status_code
        self.detail = detail


@dataclass(frozen=True)
class PaymentInfo:
    """Gateway payment reduced to the fields the ledger needs."""

    transaction_key: str
    amount: int
    billing_key: str | None
    order_name: str
    customer_id: str | None
    user_id: str | None


def _first(*values):
    for value in values:
        if value is not None and value != "":
            return value
    return None


def _custom_data(raw: dict) -> dict:
    custom = raw.get("customData")
    if isinstance(custom, str):
        try:
            custom = json.loads(custom)
        except ValueError:
            return {}
    return custom if isinstance(custom, dict) else {}


def normalize_payment(raw: dict, fallback_payment_id: str) -> PaymentInfo:
    """Map a gateway payment response onto `PaymentInfo`.

    Precedence, first present value wins:

    - transaction key: `id`, `paymentId`, then the inbound `fallback_payment_id`
    - billing key: `billingKey`, `billing_key`, else None
    - order name: `orderName`, `order_name`, else ""
    - amount: `amount.total`, then a bare integer `amount`
    - customer id: `customer.id`, `customerId`
    - user id: `customData.userId` (customData may be a JSON string), then
      the customer id

    Raises ValueError when no amount can be found.
    """

    customer = raw.get("customer") if isinstance(raw.get("customer"), dict) else {}
    amount_field = raw.get("amount")
    if isinstance(amount_field, dict):
        amount = amount_field.get("total")
    else:
        amount = amount_field
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise ValueError("payment response has no amount.total")

    customer_id = _first(customer.get("id"), raw.get("customerId"))
    return PaymentInfo(
        transaction_key=_first(raw.get("id"), raw.get("paymentId"), fallback_payment_id),
        amount=int(amount),
        billing_key=_first(raw.get("billingKey"), raw.get("billing_key")),
        order_name=_first(raw.get("orderName"), raw.get("order_name")) or "",
        customer_id=customer_id,
        user_id=_first(_custom_data(raw).get("userId"), customer_id),
    )


def _error_detail(resp: httpx.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        return resp.text
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return resp.text


class PortOneClient:
    """Synchronous client for the handful of PortOne endpoints we use."""

    def __init__(
        self,
        base_url: str,
        api_secret: str,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_secret = api_secret
        self.timeout = timeout
        self.transport = transport

    def _request(self, operation: str, method: str, path: str, **kwargs) -> Any:
        headers = {"Content-Type": "application/json", "Authorization": f"PortOne {self.api_secret}"}
        start = perf_counter()
        try:
            with tracer.start_as_current_span(f"portone.{operation}") as span, httpx.Client(
                timeout=self.timeout, transport=self.transport
            ) as client:
                resp = client.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
                span.set_attribute("http.status_code", resp.status_code)
        except httpx.HTTPError as exc:
            gateway_calls_total.labels(operation=operation, result="error").inc()
            logger.error("gateway_call_failed operation=%s error=%s", operation, exc)
            raise GatewayError(operation, None, str(exc)) from exc
        finally:
            gateway_latency_seconds.labels(operation=operation).observe(max(0.0, perf_counter() - start))

        if resp.status_code >= 400:
            gateway_calls_total.labels(operation=operation, result="error").inc()
            detail = _error_detail(resp)
            logger.error("gateway_call_rejected operation=%s status=%s detail=%s", operation, resp.status_code, detail)
            raise GatewayError(operation, resp.status_code, detail)
        gateway_calls_total.labels(operation=operation, result="ok").inc()
        if not resp.content:
            return {}
        return resp.json()

    def get_payment(self, payment_id: str) -> dict:
        return self._request("get_payment", "GET", f"/payments/{quote(payment_id, safe='')}")

    def pay_with_billing_key(
        self,
        payment_id: str,
        billing_key: str,
        order_name: str,
        amount: int,
        customer_id: str,
        currency: str,
        custom_data: str | None = None,
    ) -> dict:
        body = {
            "billingKey": billing_key,
            "orderName": order_name,
            "amount": {"total": amount},
            "customer": {"id": customer_id},
            "currency": currency,
        }
        if custom_data is not None:
            body["customData"] = custom_data
        return self._request(
            "pay_with_billing_key", "POST", f"/payments/{quote(payment_id, safe='')}/billing-key", json=body
        )

    def create_schedule(
        self,
        schedule_id: str,
        billing_key: str,
        order_name: str,
        customer_id: str | None,
        amount: int,
        currency: str,
        time_to_pay: datetime,
    ) -> dict:
        """Register a future charge; `schedule_id` becomes that charge's payment id."""

        body = {
            "payment": {
                "billingKey": billing_key,
                "orderName": order_name,
                "customer": {"id": customer_id},
                "amount": {"total": amount},
                "currency": currency,
            },
            "timeToPay": time_to_pay.isoformat(),
        }
        return self._request("create_schedule", "POST", f"/payments/{quote(schedule_id, safe='')}/schedule", json=body)

    def list_schedules(self, billing_key: str, from_: datetime, until: datetime) -> list[dict]:
        request_body = {
            "filter": {
                "billingKey": billing_key,
                "from": from_.isoformat(),
                "until": until.isoformat(),
            }
        }
        payload = self._request(
            "list_schedules", "GET", "/payment-schedules", params={"requestBody": json.dumps(request_body)}
        )
        items = payload.get("items") if isinstance(payload, dict) else None
        return items if isinstance(items, list) else []

    def delete_schedules(self, schedule_ids: list[str], billing_key: str | None = None) -> dict:
        body: dict[str, Any] = {"scheduleIds": schedule_ids}
        if billing_key:
            body["billingKey"] = billing_key
        return self._request("delete_schedules", "DELETE", "/payment-schedules", json=body)

    def cancel_payment(self, payment_id: str, reason: str) -> dict:
        return self._request(
            "cancel_payment", "POST", f"/payments/{quote(payment_id, safe='')}/cancel", json={"reason": reason}
        )
