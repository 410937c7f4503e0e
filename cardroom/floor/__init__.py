"""Floor domain: records and workflow state machines."""
from .workflow import TransitionTable
from .patron import Patron, PendingSettlement, validate_chip_amount
from .seating import Table, TableStatus, Seat, SeatStatus, build_seats, check_assignment
from .settlement import SettlementState, SettlementEvent, SETTLEMENT_FLOW, settlement_state
from .withdrawal import WithdrawalRequest, WithdrawalStatus, WithdrawalEvent, WITHDRAWAL_FLOW
from .orders import (
    Order,
    OrderItem,
    OrderStatus,
    OrderEvent,
    ORDER_FLOW,
    CartItem,
    ItemType,
    PaymentDetails,
    ChipPurchaseStatus,
)
from .waitlist import (
    WaitingListEntry,
    WaitlistStatus,
    WaitlistEvent,
    WAITLIST_FLOW,
    queue_rank,
    ordered_queue,
)
from .catalog import GameTemplate, ChipPurchaseOption, MenuItem
from .announcement import Announcement, published_order
from .journal import ChipTransaction, TransactionType
from .session import GameSession, calculate_play_fee

__all__ = [
    "TransitionTable",
    "Patron",
    "PendingSettlement",
    "validate_chip_amount",
    "Table",
    "TableStatus",
    "Seat",
    "SeatStatus",
    "build_seats",
    "check_assignment",
    "SettlementState",
    "SettlementEvent",
    "SETTLEMENT_FLOW",
    "settlement_state",
    "WithdrawalRequest",
    "WithdrawalStatus",
    "WithdrawalEvent",
    "WITHDRAWAL_FLOW",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderEvent",
    "ORDER_FLOW",
    "CartItem",
    "ItemType",
    "PaymentDetails",
    "ChipPurchaseStatus",
    "WaitingListEntry",
    "WaitlistStatus",
    "WaitlistEvent",
    "WAITLIST_FLOW",
    "queue_rank",
    "ordered_queue",
    "GameTemplate",
    "ChipPurchaseOption",
    "MenuItem",
    "Announcement",
    "published_order",
    "GameSession",
    "calculate_play_fee",
    "ChipTransaction",
    "TransactionType",
]
