"""Patron aggregate: chip balances, bill and seat reference."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from cardroom.auth.roles import Role
from cardroom.errors import ConflictError, ValidationError
from cardroom.floor.records import parse_datetime, record_values


@dataclass
class PendingSettlement:
    """A staff-counted chip stack awaiting the patron's confirmation."""
    table_id: str
    seat_number: int
    declared_total: int
    denomination_counts: dict[int, int]
    initiated_by: str
    initiated_at: datetime

    def to_dict(self) -> dict:
        return {
            "table_id": self.table_id,
            "seat_number": self.seat_number,
            "declared_total": self.declared_total,
            "denomination_counts": {str(v): c for v, c in self.denomination_counts.items()},
            "initiated_by": self.initiated_by,
            "initiated_at": self.initiated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PendingSettlement":
        return cls(
            table_id=data["table_id"],
            seat_number=int(data["seat_number"]),
            declared_total=int(data["declared_total"]),
            denomination_counts={int(v): int(c) for v, c in data["denomination_counts"].items()},
            initiated_by=data["initiated_by"],
            initiated_at=parse_datetime(data["initiated_at"]),
        )


@dataclass
class Patron:
    """A registered patron (or staff member) of the card room.

    ``bank_chips``, ``chips_in_play`` and ``bill`` are the conserved fields.
    They are only changed through ``apply_deltas``, which the chip ledger
    calls together with writing a journal entry.
    """
    id: str
    poker_name: str
    email: str
    role: Role = Role.PATRON
    approved: bool = False
    bank_chips: int = 0
    chips_in_play: int = 0
    bill: int = 0
    is_checked_in: bool = False
    current_table_id: Optional[str] = None
    current_seat_number: Optional[int] = None
    pending_settlement: Optional[PendingSettlement] = None
    active_game_session_id: Optional[str] = None
    password_hash: Optional[str] = None
    checked_in_at: Optional[datetime] = None
    checked_out_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def seat_ref(self) -> Optional[tuple[str, int]]:
        if self.current_table_id is None or self.current_seat_number is None:
            return None
        return (self.current_table_id, self.current_seat_number)

    @property
    def is_staff(self) -> bool:
        return self.role.satisfies(Role.STAFF)

    def apply_deltas(self, bank: int = 0, in_play: int = 0, bill: int = 0) -> None:
        """Apply balance changes, refusing any that would go negative.

        Raises:
            ConflictError: If a conserved field would drop below zero.
        """
        new_bank = self.bank_chips + bank
        new_in_play = self.chips_in_play + in_play
        new_bill = self.bill + bill
        if new_bank < 0:
            raise ConflictError(
                f"{self.poker_name} holds only {self.bank_chips} bank chips",
                code="INSUFFICIENT_CHIPS",
            )
        if new_in_play < 0:
            raise ConflictError(
                f"{self.poker_name} has only {self.chips_in_play} chips in play",
                code="INSUFFICIENT_CHIPS",
            )
        if new_bill < 0:
            raise ConflictError(
                f"Bill of {self.poker_name} cannot go below zero (currently {self.bill})",
                code="NEGATIVE_BILL",
            )
        self.bank_chips = new_bank
        self.chips_in_play = new_in_play
        self.bill = new_bill

    def take_seat(self, table_id: str, seat_number: int) -> None:
        self.current_table_id = table_id
        self.current_seat_number = seat_number

    def leave_seat(self) -> None:
        self.current_table_id = None
        self.current_seat_number = None
        self.is_checked_in = False

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses (no credentials)."""
        data = record_values(self, iso_dates=True, exclude=("password_hash",))
        data["is_staff"] = self.is_staff
        return data

    @classmethod
    def from_record(cls, record) -> "Patron":
        """Create from database record."""
        pending = record["pending_settlement"]
        return cls(
            id=record["id"],
            poker_name=record["poker_name"],
            email=record["email"],
            role=Role(record["role"]),
            approved=record["approved"],
            bank_chips=record["bank_chips"],
            chips_in_play=record["chips_in_play"],
            bill=record["bill"],
            is_checked_in=record["is_checked_in"],
            current_table_id=record["current_table_id"],
            current_seat_number=record["current_seat_number"],
            pending_settlement=PendingSettlement.from_dict(pending) if pending else None,
            active_game_session_id=record["active_game_session_id"],
            password_hash=record["password_hash"],
            checked_in_at=record["checked_in_at"],
            checked_out_at=record["checked_out_at"],
            created_at=record["created_at"],
            updated_at=record["updated_at"],
        )


def validate_chip_amount(amount: object, allow_zero: bool = False) -> int:
    """Check that a chip or currency amount is a positive integer.

    Raises:
        ValidationError: For non-integers, negatives, or zero when not allowed.
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"Amount must be an integer, got {amount!r}")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError("Amount must be positive" if not allow_zero else "Amount cannot be negative")
    return amount
