"""API request/response schemas for billing endpoints."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WebhookRequest(BaseModel):
    """Gateway notification payload."""

    payment_id: str = Field(min_length=1)
    status: str = Field(min_length=1)


class Customer(BaseModel):
    id: str = Field(min_length=1)


class PaymentCreateRequest(BaseModel):
    """Payload accepted by `POST /payments`."""

    model_config = ConfigDict(populate_by_name=True)

    billing_key: str = Field(alias="billingKey", min_length=1)
    order_name: str = Field(alias="orderName", min_length=1)
    amount: int = Field(gt=0)
    customer: Customer
    custom_data: dict[str, Any] | str | None = Field(default=None, alias="customData")


class PaymentCreateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    payment_id: str = Field(serialization_alias="paymentId")
    portone_data: dict[str, Any] = Field(serialization_alias="portoneData")


class CancelRequest(BaseModel):
    """Payload accepted by `POST /payments/cancel`."""

    model_config = ConfigDict(populate_by_name=True)

    transaction_key: str = Field(alias="transactionKey", min_length=1)


class SubscriptionStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_subscribed: bool = Field(serialization_alias="isSubscribed")
    status: str
    state: str
    transaction_key: str | None = Field(default=None, serialization_alias="transactionKey")
