"""Reader-side client for the billing service.

Wraps the three actions a signed-in reader can trigger: start a subscription
with a freshly issued billing key, cancel it, and ask whether it is active.
Every failure surfaces as `ClientActionError` carrying the server's message;
nothing is retried.
"""

from typing import Any

import httpx

from magsub.common.config import CommonSettings
from magsub.common.logging import logger


class ClientActionError(Exception):
    """A client action failed; `message` is meant to be shown to the reader."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class MagsubClient:
    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        order_name: str = "IT Magazine Monthly Subscription",
        amount: int = 9900,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.order_name = order_name
        self.amount = amount
        self.token = token
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(
        cls, app_settings: CommonSettings, base_url: str, token: str | None = None, **kwargs
    ) -> "MagsubClient":
        """Client whose plan defaults come from `app_settings`."""

        return cls(
            base_url,
            token,
            order_name=app_settings.subscription_order_name,
            amount=app_settings.subscription_amount,
            **kwargs,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _call(self, action: str, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                resp = client.request(method, f"{self.base_url}{path}", headers=self._headers(), **kwargs)
        except httpx.HTTPError as exc:
            logger.error("client_action_failed action=%s error=%s", action, exc)
            raise ClientActionError(f"{action} failed: {exc}") from exc

        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        if resp.status_code >= 400 or (isinstance(payload, dict) and payload.get("success") is False):
            message = payload.get("error") if isinstance(payload, dict) else None
            message = message or f"{action} failed with status {resp.status_code}"
            logger.error("client_action_failed action=%s status=%s error=%s", action, resp.status_code, message)
            raise ClientActionError(message, resp.status_code)
        return payload

    def subscribe(
        self,
        billing_key: str,
        user_id: str,
        order_name: str | None = None,
        amount: int | None = None,
        custom_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Charge the first month against `billing_key`.

        Returns the server response (`paymentId`, `portoneData`). The
        subscription becomes visible only after the gateway's Paid webhook
        lands, so callers should poll `subscription_status()` afterwards.
        """

        body: dict[str, Any] = {
            "billingKey": billing_key,
            "orderName": order_name or self.order_name,
            "amount": amount if amount is not None else self.amount,
            "customer": {"id": user_id},
        }
        if custom_data:
            body["customData"] = custom_data
        return self._call("subscribe", "POST", "/payments", json=body)

    def cancel_subscription(self, transaction_key: str) -> dict[str, Any]:
        return self._call("cancel", "POST", "/payments/cancel", json={"transactionKey": transaction_key})

    def subscription_status(self, transaction_keys: list[str] | None = None) -> dict[str, Any]:
        params = {"transaction_key": transaction_keys} if transaction_keys else None
        return self._call("status", "GET", "/subscriptions/status", params=params)
