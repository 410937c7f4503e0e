"""Tables and seats on the card-room floor."""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from cardroom.errors import ConflictError, ValidationError
from cardroom.floor.records import record_values


class TableStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    FULL = "full"
    MAINTENANCE = "maintenance"


class SeatStatus(str, Enum):
    EMPTY = "empty"
    OCCUPIED = "occupied"


@dataclass
class Table:
    """A physical table running one game at fixed stakes."""
    id: str
    name: str
    max_seats: int
    status: TableStatus = TableStatus.ACTIVE
    game_type: str = "nlh"
    blinds_or_rate: str = ""
    game_template_id: Optional[str] = None
    min_buy_in: int = 0
    max_buy_in: int = 0
    created_at: Optional[datetime] = None

    def check_seat_number(self, seat_number: int) -> None:
        """Raises ValidationError when the seat number is not on this table."""
        if isinstance(seat_number, bool) or not isinstance(seat_number, int):
            raise ValidationError(f"Seat number must be an integer, got {seat_number!r}")
        if not 1 <= seat_number <= self.max_seats:
            raise ValidationError(
                f"Seat {seat_number} does not exist at {self.name} (seats 1-{self.max_seats})"
            )

    def to_dict(self) -> dict:
        return record_values(self, iso_dates=True)

    @classmethod
    def from_record(cls, record) -> "Table":
        return cls(
            id=record["id"],
            name=record["name"],
            max_seats=record["max_seats"],
            status=TableStatus(record["status"]),
            game_type=record["game_type"],
            blinds_or_rate=record["blinds_or_rate"],
            game_template_id=record["game_template_id"],
            min_buy_in=record["min_buy_in"],
            max_buy_in=record["max_buy_in"],
            created_at=record["created_at"],
        )


@dataclass
class Seat:
    """One numbered seat. ``occupant_id`` is the only source of occupancy."""
    table_id: str
    seat_number: int
    occupant_id: Optional[str] = None
    occupant_name: Optional[str] = None
    status: SeatStatus = SeatStatus.EMPTY
    occupied_at: Optional[datetime] = None
    current_stack: int = 0

    @property
    def is_empty(self) -> bool:
        return self.occupant_id is None

    def occupy(self, patron_id: str, poker_name: str, now: datetime) -> None:
        self.occupant_id = patron_id
        self.occupant_name = poker_name
        self.status = SeatStatus.OCCUPIED
        self.occupied_at = now

    def vacate(self) -> None:
        self.occupant_id = None
        self.occupant_name = None
        self.status = SeatStatus.EMPTY
        self.occupied_at = None
        self.current_stack = 0

    def to_dict(self) -> dict:
        return record_values(self, iso_dates=True)

    @classmethod
    def from_record(cls, record) -> "Seat":
        return cls(
            table_id=record["table_id"],
            seat_number=record["seat_number"],
            occupant_id=record["occupant_id"],
            occupant_name=record["occupant_name"],
            status=SeatStatus(record["status"]),
            occupied_at=record["occupied_at"],
            current_stack=record["current_stack"],
        )


def build_seats(table: Table) -> list[Seat]:
    """Create the empty seats 1..max_seats for a new table."""
    if table.max_seats < 1:
        raise ValidationError("A table needs at least one seat")
    return [Seat(table_id=table.id, seat_number=n) for n in range(1, table.max_seats + 1)]


def check_assignment(seat: Seat, patron_id: str, held_seat: Optional[Seat]) -> bool:
    """Decide whether a patron may take a seat.

    Args:
        seat: Target seat, read under lock.
        patron_id: Patron being seated.
        held_seat: The seat the patron currently occupies anywhere, if any.

    Returns:
        False when the patron already holds this exact seat (nothing to do),
        True when the assignment should proceed.

    Raises:
        ConflictError: If the seat belongs to someone else or the patron is
            already seated elsewhere.
    """
    if seat.occupant_id == patron_id:
        return False
    if not seat.is_empty:
        raise ConflictError(
            f"Seat {seat.seat_number} is occupied by {seat.occupant_name or seat.occupant_id}",
            code="SEAT_OCCUPIED",
        )
    if held_seat is not None:
        raise ConflictError(
            f"Patron already occupies seat {held_seat.seat_number} at table {held_seat.table_id}",
            code="ALREADY_SEATED",
        )
    return True
