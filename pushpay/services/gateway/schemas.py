"""API request/response schemas for gateway endpoints."""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class InitiatePaymentRequest(BaseModel):
    """Payload accepted by `POST /initiate-payment`.

    Every field is optional here so that missing ones are reported together
    by the initiation flow instead of by request parsing.
    """

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    user_id: str | None = Field(default=None, validation_alias="userId")
    invoice_id: str | None = Field(default=None, validation_alias="invoiceId")
    payment_id: str | None = Field(default=None, validation_alias="paymentId")
    phone_number: str | None = Field(
        default=None,
        validation_alias=AliasChoices("phoneNumber", "customerPhoneNumber"),
    )
    amount: Any = None


class InitiatePaymentResponse(BaseModel):
    success: bool = True
    message: str = "Payment initiated"
    paymentId: str
    checkoutRequestId: str
    data: dict[str, Any]


class TokenResponse(BaseModel):
    accessToken: str
    expiresAt: float
    expiresInSeconds: int
    source: str
