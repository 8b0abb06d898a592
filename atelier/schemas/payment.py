from pydantic import AliasChoices, BaseModel, Field


class CreatePaymentOrderRequest(BaseModel):
    order_id: int


class VerifyPaymentRequest(BaseModel):
    """All fields optional so missing ones are reported (and audit-logged) by the endpoint itself."""

    gateway_order_id: str | None = Field(
        default=None, validation_alias=AliasChoices("gateway_order_id", "razorpay_order_id")
    )
    gateway_payment_id: str | None = Field(
        default=None, validation_alias=AliasChoices("gateway_payment_id", "razorpay_payment_id")
    )
    gateway_signature: str | None = Field(
        default=None, validation_alias=AliasChoices("gateway_signature", "razorpay_signature")
    )
    order_id: int | None = None
