"""In-venue orders: drinks and chip purchases."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from cardroom.errors import ValidationError
from cardroom.floor.records import record_values
from cardroom.floor.workflow import TransitionTable


class OrderStatus(str, Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    DELIVERED_AWAITING_CONFIRMATION = "delivered_awaiting_confirmation"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class OrderEvent(str, Enum):
    START_PREPARING = "start_preparing"
    MARK_DELIVERED = "mark_delivered"
    CONFIRM = "confirm"
    AUTO_COMPLETE = "auto_complete"
    CANCEL = "cancel"
    FAIL = "fail"


class ItemType(str, Enum):
    DRINK = "drink"
    CHIP = "chip"


_PRE_COMPLETED = (
    OrderStatus.PENDING,
    OrderStatus.PREPARING,
    OrderStatus.DELIVERED_AWAITING_CONFIRMATION,
)

ORDER_FLOW: TransitionTable[OrderStatus, OrderEvent] = TransitionTable(
    "order",
    {
        (OrderStatus.PENDING, OrderEvent.START_PREPARING): OrderStatus.PREPARING,
        (OrderStatus.PREPARING, OrderEvent.MARK_DELIVERED): OrderStatus.DELIVERED_AWAITING_CONFIRMATION,
        (OrderStatus.DELIVERED_AWAITING_CONFIRMATION, OrderEvent.CONFIRM): OrderStatus.COMPLETED,
        # chip-only orders complete as soon as the chips are credited
        (OrderStatus.PENDING, OrderEvent.AUTO_COMPLETE): OrderStatus.COMPLETED,
        (OrderStatus.PENDING, OrderEvent.FAIL): OrderStatus.FAILED,
        **{(status, OrderEvent.CANCEL): OrderStatus.CANCELLED for status in _PRE_COMPLETED},
    },
)


class ChipPurchaseStatus(str, Enum):
    NOT_APPLICABLE = "not_applicable"
    PENDING = "pending"
    CREDITED = "credited"
    REVERSED = "reversed"
    FAILED = "failed"


@dataclass
class CartItem:
    """A line requested by the client; prices are never taken from here."""
    item_id: str
    item_type: ItemType
    quantity: int

    @classmethod
    def parse(cls, data: dict) -> "CartItem":
        try:
            item_type = ItemType(data.get("item_type") or data.get("itemType"))
        except ValueError:
            raise ValidationError(f"Unknown item type in cart line {data!r}") from None
        item_id = data.get("item_id") or data.get("itemId")
        quantity = data.get("quantity", 1)
        if not item_id:
            raise ValidationError("Cart line is missing an item id")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError(f"Quantity for {item_id} must be a positive integer")
        return cls(item_id=item_id, item_type=item_type, quantity=quantity)


@dataclass
class OrderItem:
    item_id: str
    item_name: str
    item_type: ItemType
    quantity: int
    unit_price: int
    total_item_price: int
    chips_amount: int = 0

    @property
    def chips_total(self) -> int:
        return self.chips_amount * self.quantity

    def to_dict(self) -> dict:
        return record_values(self, iso_dates=True)

    @classmethod
    def from_dict(cls, data: dict) -> "OrderItem":
        return cls(
            item_id=data["item_id"],
            item_name=data["item_name"],
            item_type=ItemType(data["item_type"]),
            quantity=int(data["quantity"]),
            unit_price=int(data["unit_price"]),
            total_item_price=int(data["total_item_price"]),
            chips_amount=int(data.get("chips_amount", 0)),
        )


@dataclass
class PaymentDetails:
    chip_purchase_status: ChipPurchaseStatus = ChipPurchaseStatus.NOT_APPLICABLE
    chips_awarded: int = 0
    chips_price_yen: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return record_values(self, iso_dates=True)

    @classmethod
    def from_dict(cls, data: dict) -> "PaymentDetails":
        return cls(
            chip_purchase_status=ChipPurchaseStatus(data["chip_purchase_status"]),
            chips_awarded=int(data.get("chips_awarded", 0)),
            chips_price_yen=int(data.get("chips_price_yen", 0)),
            error=data.get("error"),
        )


@dataclass
class Order:
    id: str
    patron_id: str
    items: list[OrderItem]
    total_price: int
    status: OrderStatus = OrderStatus.PENDING
    payment_details: PaymentDetails = field(default_factory=PaymentDetails)
    notes: str = ""
    ordered_at: Optional[datetime] = None
    admin_processed_at: Optional[datetime] = None
    admin_delivered_at: Optional[datetime] = None
    customer_confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @property
    def chip_items(self) -> list[OrderItem]:
        return [item for item in self.items if item.item_type == ItemType.CHIP]

    @property
    def drink_items(self) -> list[OrderItem]:
        return [item for item in self.items if item.item_type == ItemType.DRINK]

    @property
    def chips_total(self) -> int:
        return sum(item.chips_total for item in self.chip_items)

    @property
    def chips_price_total(self) -> int:
        return sum(item.total_item_price for item in self.chip_items)

    @property
    def drinks_total(self) -> int:
        return sum(item.total_item_price for item in self.drink_items)

    @property
    def chips_credited(self) -> bool:
        return self.payment_details.chip_purchase_status == ChipPurchaseStatus.CREDITED

    def apply(self, event: OrderEvent) -> OrderStatus:
        self.status = ORDER_FLOW.next_state(self.status, event)
        return self.status

    def to_dict(self) -> dict:
        return record_values(self, iso_dates=True)

    @classmethod
    def from_record(cls, record) -> "Order":
        return cls(
            id=record["id"],
            patron_id=record["patron_id"],
            items=[OrderItem.from_dict(item) for item in record["items"]],
            total_price=record["total_price"],
            status=OrderStatus(record["status"]),
            payment_details=PaymentDetails.from_dict(record["payment_details"]),
            notes=record["notes"],
            ordered_at=record["ordered_at"],
            admin_processed_at=record["admin_processed_at"],
            admin_delivered_at=record["admin_delivered_at"],
            customer_confirmed_at=record["customer_confirmed_at"],
            completed_at=record["completed_at"],
            cancelled_at=record["cancelled_at"],
        )


def parse_cart(raw_items: list) -> list[CartItem]:
    """Parse a client cart, rejecting empty or malformed carts."""
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Cart must contain at least one item")
    cart = []
    for raw in raw_items:
        if isinstance(raw, CartItem):
            cart.append(raw)
        elif isinstance(raw, dict):
            cart.append(CartItem.parse(raw))
        else:
            raise ValidationError(f"Malformed cart line {raw!r}")
    return cart


def chip_lines_match(order: Order, cart: list[CartItem]) -> bool:
    """Check that a cart describes the same chip purchase as the stored order."""
    def tally(lines) -> dict[str, int]:
        counts: dict[str, int] = {}
        for line in lines:
            if line.item_type == ItemType.CHIP:
                counts[line.item_id] = counts.get(line.item_id, 0) + line.quantity
        return counts

    return tally(order.items) == tally(cart)
