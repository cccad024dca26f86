from datetime import date, time
from decimal import Decimal

from pydantic import BaseModel, Field

from reservation_engine.domain.state_machine import BookingStatus


class BranchCreate(BaseModel):
    name: str
    address: str
    phone: str | None = None


class BranchResponse(BaseModel):
    id: int
    name: str
    address: str
    phone: str | None
    is_active: bool


class TableFields(BaseModel):
    zone: str
    table_type: str
    capacity: int
    minimum_spend: Decimal = Decimal("0")
    base_price: Decimal = Decimal("0")
    is_active: bool = True
    notes: str | None = Field(default=None, max_length=500)


class TableCreate(TableFields):
    table_number: str


class TableResponse(BaseModel):
    id: int
    branch_id: int
    table_number: str
    zone: str
    table_type: str
    capacity: int
    minimum_spend: Decimal
    base_price: Decimal
    is_active: bool
    notes: str | None


class PreOrderItem(BaseModel):
    item_name: str
    price: Decimal = Field(ge=0)
    quantity: int = Field(gt=0)


class BookingCreate(BaseModel):
    branch_id: int
    table_id: int
    booking_date: date
    start_time: str
    duration_hours: int
    party_size: int
    zone: str | None = None
    promo_code: str | None = Field(default=None, max_length=50)
    special_requests: str | None = None
    pre_order_items: list[PreOrderItem] | None = None


class BookingResponse(BaseModel):
    id: int
    booking_code: str
    user_id: str
    table_id: int
    booking_date: str
    start_time: str
    end_time: str
    party_size: int
    status: BookingStatus
    total_amount: Decimal
    deposit_amount: Decimal
    discount_amount: Decimal
    promo_code: str | None
    special_requests: str | None
    pre_order_items: list[PreOrderItem]
    reminder_sent: bool
    created_at: str
    modified_at: str | None
    check_in_time: str | None
    check_out_time: str | None


class PaymentResponse(BaseModel):
    provider: str
    order_id: str | None
    payment_id: str | None
    amount: Decimal
    currency: str
    status: str
    refund_amount: Decimal
    refund_date: str | None


class BookingDetailResponse(BookingResponse):
    payment: PaymentResponse | None


class RazorpayVerifyRequest(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class BookingUpdate(BaseModel):
    table_id: int | None = None
    booking_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    party_size: int | None = None
    status: BookingStatus | None = None
    special_requests: str | None = None


class BookingCodeRequest(BaseModel):
    booking_code: str


class PromoValidationResponse(BaseModel):
    code: str
    valid: bool
    reason: str | None
    description: str | None
    discount: Decimal


class PromoCreate(BaseModel):
    code: str
    description: str
    valid_from: date
    valid_to: date
    max_uses: int
    discount_percent: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    minimum_spend: Decimal = Decimal("0")
    applicable_days: list[str] = Field(default_factory=list)
    applicable_zones: list[str] = Field(default_factory=list)
    applicable_table_types: list[str] = Field(default_factory=list)
    is_active: bool = True


class PromoResponse(BaseModel):
    id: int
    code: str
    description: str
    discount_percent: Decimal
    discount_amount: Decimal
    minimum_spend: Decimal
    valid_from: str
    valid_to: str
    max_uses: int
    current_uses: int
    applicable_days: list[str]
    applicable_zones: list[str]
    applicable_table_types: list[str]
    is_active: bool


class SweepResponse(BaseModel):
    ran_at: str
    no_shows: list[str]
    reminders: list[str]


class OutboxEventResponse(BaseModel):
    id: int
    aggregate_type: str
    aggregate_id: str
    event_type: str
    payload: dict
    status: str
    attempts: int
    created_at: str
