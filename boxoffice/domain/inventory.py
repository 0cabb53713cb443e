from dataclasses import dataclass
from enum import Enum


class InventoryStatus(str, Enum):
    AVAILABLE = "available"
    LOW_STOCK = "low_stock"
    VERY_LOW_STOCK = "very_low_stock"
    SOLD_OUT = "sold_out"


@dataclass(frozen=True)
class InventorySnapshot:
    ticket_type_id: str
    event_id: str
    quantity_available: int
    quantity_sold: int
    quantity_reserved: int
    version: int
    status: InventoryStatus

    @property
    def remaining(self) -> int:
        return self.quantity_available - self.quantity_sold - self.quantity_reserved


def classify_stock(remaining: int, low_threshold: int, very_low_threshold: int) -> InventoryStatus:
    if remaining <= 0:
        return InventoryStatus.SOLD_OUT
    if remaining <= very_low_threshold:
        return InventoryStatus.VERY_LOW_STOCK
    if remaining <= low_threshold:
        return InventoryStatus.LOW_STOCK
    return InventoryStatus.AVAILABLE


@dataclass(frozen=True)
class EventInventorySummary:
    """Counters for every ticket type of one event, plus their totals."""

    event_id: str
    ticket_types: tuple[InventorySnapshot, ...]

    @property
    def total_capacity(self) -> int:
        return sum(snapshot.quantity_available for snapshot in self.ticket_types)

    @property
    def total_sold(self) -> int:
        return sum(snapshot.quantity_sold for snapshot in self.ticket_types)

    @property
    def total_reserved(self) -> int:
        return sum(snapshot.quantity_reserved for snapshot in self.ticket_types)

    @property
    def total_remaining(self) -> int:
        return sum(max(snapshot.remaining, 0) for snapshot in self.ticket_types)

    @property
    def low_stock_alerts(self) -> int:
        return sum(
            1
            for snapshot in self.ticket_types
            if snapshot.status in (InventoryStatus.LOW_STOCK, InventoryStatus.VERY_LOW_STOCK)
        )
