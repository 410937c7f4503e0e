"""Withdrawal requests: releasing banked chips to a patron."""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from cardroom.floor.records import record_values
from cardroom.floor.workflow import TransitionTable


class WithdrawalStatus(str, Enum):
    REQUESTED = "requested"
    APPROVED_PREPARING = "approved_preparing"
    DELIVERED_AWAITING_CONFIRMATION = "delivered_awaiting_confirmation"
    CONFIRMED = "confirmed"
    DENIED = "denied"
    CANCELLED = "cancelled"


class WithdrawalEvent(str, Enum):
    APPROVE = "approve"
    DENY = "deny"
    DELIVER = "deliver"
    CONFIRM = "confirm"
    CANCEL = "cancel"


WITHDRAWAL_FLOW: TransitionTable[WithdrawalStatus, WithdrawalEvent] = TransitionTable(
    "withdrawal request",
    {
        (WithdrawalStatus.REQUESTED, WithdrawalEvent.APPROVE): WithdrawalStatus.APPROVED_PREPARING,
        (WithdrawalStatus.REQUESTED, WithdrawalEvent.DENY): WithdrawalStatus.DENIED,
        (WithdrawalStatus.REQUESTED, WithdrawalEvent.CANCEL): WithdrawalStatus.CANCELLED,
        (WithdrawalStatus.APPROVED_PREPARING, WithdrawalEvent.DELIVER):
            WithdrawalStatus.DELIVERED_AWAITING_CONFIRMATION,
        (WithdrawalStatus.APPROVED_PREPARING, WithdrawalEvent.CANCEL): WithdrawalStatus.CANCELLED,
        (WithdrawalStatus.DELIVERED_AWAITING_CONFIRMATION, WithdrawalEvent.CONFIRM):
            WithdrawalStatus.CONFIRMED,
    },
)

# Statuses that block a settlement from starting
OPEN_WITHDRAWAL_STATUSES = (WithdrawalStatus.REQUESTED, WithdrawalStatus.APPROVED_PREPARING)


@dataclass
class WithdrawalRequest:
    id: str
    patron_id: str
    requested_amount: int
    status: WithdrawalStatus = WithdrawalStatus.REQUESTED
    requested_at: Optional[datetime] = None
    admin_processed_at: Optional[datetime] = None
    admin_delivered_at: Optional[datetime] = None
    customer_confirmed_at: Optional[datetime] = None
    processed_by: Optional[str] = None
    notes: str = ""

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_WITHDRAWAL_STATUSES

    def apply(self, event: WithdrawalEvent) -> WithdrawalStatus:
        self.status = WITHDRAWAL_FLOW.next_state(self.status, event)
        return self.status

    def to_dict(self) -> dict:
        return record_values(self, iso_dates=True)

    @classmethod
    def from_record(cls, record) -> "WithdrawalRequest":
        return cls(
            id=record["id"],
            patron_id=record["patron_id"],
            requested_amount=record["requested_amount"],
            status=WithdrawalStatus(record["status"]),
            requested_at=record["requested_at"],
            admin_processed_at=record["admin_processed_at"],
            admin_delivered_at=record["admin_delivered_at"],
            customer_confirmed_at=record["customer_confirmed_at"],
            processed_by=record["processed_by"],
            notes=record["notes"],
        )
