from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, ValidationError

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


class PaymentDataIn(BaseModel):
    payment_id: str = Field(min_length=1)
    order_id: str | None = None
    signature: str | None = None
    amount: int | None = Field(default=None, ge=0)
    currency: str = "INR"


class BookingRequest(BaseModel):
    date: str = Field(pattern=DATE_PATTERN)
    time_slots: list[str] = Field(min_length=1)
    performance_type: str
    participant_details: dict[str, Any] = Field(default_factory=dict)
    payment: PaymentDataIn


class PaymentSummary(BaseModel):
    payment_id: str | None = None
    order_id: str | None = None
    amount: int
    currency: str
    status: str
    webhook_processed: bool


class BookingResponse(BaseModel):
    booking_id: str
    date: str
    time_slots: list[str]
    performance_type: str
    status: str
    failure_reason: str | None = None
    payment: PaymentSummary


class QuoteRequest(BaseModel):
    time_slots: list[str] = Field(min_length=1)
    performance_type: str
    participant_details: dict[str, Any] = Field(default_factory=dict)


class SlotPriceResponse(BaseModel):
    time_slot: str
    price_per_person: int
    amount: int


class QuoteResponse(BaseModel):
    performance_type: str
    participant_count: int
    slots: list[SlotPriceResponse]
    total_amount: int
    total_amount_paise: int


class SlotMapResponse(BaseModel):
    date: str
    slots: dict[str, str]


class PaymentStatusResponse(BaseModel):
    payment_id: str
    status: str
    webhook_processed: bool
    booking_id: str | None = None
    failure_reason: str | None = None


class CleanupResponse(BaseModel):
    payment_id: str
    bookings_cancelled: int


class AwaitPaymentResponse(BaseModel):
    payment_id: str
    confirmed: bool
    status: str
    reason: str | None = None
    booking_id: str | None = None


class CreateOrderRequest(BaseModel):
    # Strict so strings like "100" are rejected rather than coerced.
    amount: StrictInt | StrictFloat
    currency: str = "INR"
    receipt: str | None = None
    notes: dict[str, Any] | None = None


class RazorpayPaymentEntity(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    order_id: str | None = None
    amount: int | None = None
    currency: str | None = None
    status: str | None = None
    error_reason: str | None = None
    error_description: str | None = None


class RazorpayWebhookEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str
    payload: Any = Field(default_factory=dict)

    def payment_entity(self, strict: bool = True) -> RazorpayPaymentEntity | None:
        """
        The ``payload.payment.entity`` object, or None when absent.

        Strict parsing raises ValidationError for a malformed entity; lenient
        parsing (advisory events) treats it as absent instead.
        """
        payment = self.payload.get("payment") if isinstance(self.payload, dict) else None
        entity = payment.get("entity") if isinstance(payment, dict) else None
        if not isinstance(entity, dict) or not entity:
            return None

        if strict:
            return RazorpayPaymentEntity.model_validate(entity)
        if not entity.get("id"):
            return None
        try:
            return RazorpayPaymentEntity.model_validate(entity)
        except ValidationError:
            return None


class FlatBookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    booking_id: str
    event_date: str
    time_slot: str
    performance_type: str
    performance_type_name: str
    participant_name: str
    price_per_person: int
    amount_per_slot: int
    total_slots: int
    payment_id: str | None = None
    payment_status: str
    booking_status: str


class CancelBookingRequest(BaseModel):
    reason: str = Field(default="Cancelled by administrator", min_length=1)


class CancelBookingResponse(BaseModel):
    booking_id: str
    status: str
    slots_freed: int
