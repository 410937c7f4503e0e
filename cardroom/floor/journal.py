"""Chip journal entries."""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from cardroom.floor.records import record_values


class TransactionType(str, Enum):
    """Types of chip transactions."""
    PURCHASE = "purchase"
    PURCHASE_REVERSAL = "purchase_reversal"
    CHECK_IN = "check_in"
    WITHDRAWAL = "withdrawal"
    SETTLEMENT = "settlement"
    PLAY_FEE = "play_fee"
    DRINK_ORDER = "drink_order"
    BILL_PAYMENT = "bill_payment"


@dataclass
class ChipTransaction:
    """One append-only journal line.

    Deltas are signed; replaying every line for a patron from zero yields
    their current bank chips, chips in play and bill.
    """
    id: str
    patron_id: str
    type: TransactionType
    bank_delta: int
    in_play_delta: int
    bill_delta: int
    reference_id: Optional[str]
    actor_id: Optional[str]
    note: Optional[str]
    created_at: datetime

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return record_values(self, iso_dates=True)

    @classmethod
    def from_record(cls, record) -> "ChipTransaction":
        """Create from database record."""
        return cls(
            id=record["id"],
            patron_id=record["patron_id"],
            type=TransactionType(record["type"]),
            bank_delta=record["bank_delta"],
            in_play_delta=record["in_play_delta"],
            bill_delta=record["bill_delta"],
            reference_id=record["reference_id"],
            actor_id=record["actor_id"],
            note=record["note"],
            created_at=record["created_at"],
        )
