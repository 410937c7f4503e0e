"""Game sessions: a patron's stretch of play at one seat."""
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from cardroom.floor.records import record_values


@dataclass
class GameSession:
    """A play session opened at check-in and closed at settlement."""
    id: str
    patron_id: str
    table_id: str
    table_name: str
    seat_number: int
    game_type: str
    rate: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    chips_in: int = 0
    additional_chips_in: int = 0
    chips_out: Optional[int] = None
    profit: Optional[int] = None
    duration_minutes: Optional[int] = None
    play_fee: int = 0
    play_fee_applied: bool = False

    @property
    def total_chips_in(self) -> int:
        return self.chips_in + self.additional_chips_in

    @property
    def is_active(self) -> bool:
        return self.ended_at is None

    def close(self, chips_out: int, now: datetime, fee_per_unit: int,
              unit_minutes: int, free_minutes: int = 0) -> int:
        """Close the session and compute its play fee.

        Returns:
            The play fee to add to the patron's bill.
        """
        self.ended_at = now
        self.chips_out = chips_out
        self.profit = chips_out - self.total_chips_in
        self.duration_minutes = round((now - self.started_at).total_seconds() / 60)
        self.play_fee = calculate_play_fee(
            self.duration_minutes, fee_per_unit, unit_minutes, free_minutes
        )
        self.play_fee_applied = True
        return self.play_fee

    def to_dict(self) -> dict:
        data = record_values(self, iso_dates=True)
        data["total_chips_in"] = self.total_chips_in
        return data

    @classmethod
    def from_record(cls, record) -> "GameSession":
        return cls(
            id=record["id"],
            patron_id=record["patron_id"],
            table_id=record["table_id"],
            table_name=record["table_name"],
            seat_number=record["seat_number"],
            game_type=record["game_type"],
            rate=record["rate"],
            started_at=record["started_at"],
            ended_at=record["ended_at"],
            chips_in=record["chips_in"],
            additional_chips_in=record["additional_chips_in"],
            chips_out=record["chips_out"],
            profit=record["profit"],
            duration_minutes=record["duration_minutes"],
            play_fee=record["play_fee"],
            play_fee_applied=record["play_fee_applied"],
        )


def calculate_play_fee(duration_minutes: int, fee_per_unit: int,
                       unit_minutes: int, free_minutes: int = 0) -> int:
    """Charge ``fee_per_unit`` for every started ``unit_minutes`` beyond the free period.

    >>> calculate_play_fee(45, 500, 30)
    1000
    >>> calculate_play_fee(10, 500, 30, free_minutes=15)
    0
    """
    if unit_minutes <= 0 or duration_minutes <= free_minutes:
        return 0
    return math.ceil((duration_minutes - free_minutes) / unit_minutes) * fee_per_unit
