from pydantic import BaseModel, Field

from boxoffice.domain.reservation import PurchaseChannel


class QuoteRequest(BaseModel):
    ticket_type_id: str | None = None
    quantity: int | None = Field(default=None, gt=0)
    event_id: str | None = None
    seat_ids: list[str] | None = None


class QuoteResponse(BaseModel):
    total_price: int
    total_display: str
    currency: str
    ticket_type_id: str | None = None
    quantity: int | None = None
    unit_price: int | None = None
    applied_rule: str | None = None
    price_per_ticket: int | None = None
    discount_amount: int = 0
    group_discount_applied: bool = False
    seat_prices: dict[str, int] = Field(default_factory=dict)
    table_prices: dict[str, int] = Field(default_factory=dict)


class ReservationRequest(BaseModel):
    buyer_id: str
    age: int | None = Field(default=None, ge=0)
    is_member: bool = False
    channel: PurchaseChannel = PurchaseChannel.ONLINE
    ticket_type_id: str | None = None
    quantity: int | None = Field(default=None, gt=0)
    event_id: str | None = None
    seat_ids: list[str] | None = None


class ReservationResponse(BaseModel):
    reservation_id: str
    kind: str
    state: str
    buyer_id: str
    event_id: str
    ticket_type_id: str | None = None
    seat_ids: list[str] = Field(default_factory=list)
    quantity: int
    unit_price: int | None = None
    total_price: int
    currency: str
    channel: str
    expires_at: str


class ReleaseResponse(BaseModel):
    reservation_id: str
    released: bool
    prior_state: str | None = None


class InventoryResponse(BaseModel):
    ticket_type_id: str
    event_id: str
    quantity_available: int
    quantity_sold: int
    quantity_reserved: int
    remaining: int
    version: int
    status: str


class EventInventoryResponse(BaseModel):
    event_id: str
    total_capacity: int
    total_sold: int
    total_reserved: int
    total_remaining: int
    low_stock_alerts: int
    ticket_types: list[InventoryResponse]


class InventoryAdjustmentRequest(BaseModel):
    delta: int
    reason: str | None = None


class SweepResponse(BaseModel):
    expired_reservations: list[str]
    released_seats: list[str]
    errors: int


class OutboxEventResponse(BaseModel):
    id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    payload: dict
    status: str
    attempts: int
    created_at: str
