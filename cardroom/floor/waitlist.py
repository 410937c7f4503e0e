"""Per-game-template waiting list."""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from cardroom.floor.records import record_values
from cardroom.floor.workflow import TransitionTable


class WaitlistStatus(str, Enum):
    WAITING = "waiting"
    CALLED = "called"
    CONFIRMED = "confirmed"
    SEATED = "seated"
    CANCELLED_BY_USER = "cancelled_by_user"
    CANCELLED_BY_ADMIN = "cancelled_by_admin"
    NO_SHOW = "no_show"


class WaitlistEvent(str, Enum):
    CALL = "call"
    CONFIRM = "confirm"
    SEAT = "seat"
    CANCEL_BY_USER = "cancel_by_user"
    CANCEL_BY_ADMIN = "cancel_by_admin"
    MARK_NO_SHOW = "mark_no_show"


OPEN_WAITLIST_STATUSES = (WaitlistStatus.WAITING, WaitlistStatus.CALLED, WaitlistStatus.CONFIRMED)

_EXITS = {
    WaitlistEvent.CANCEL_BY_USER: WaitlistStatus.CANCELLED_BY_USER,
    WaitlistEvent.CANCEL_BY_ADMIN: WaitlistStatus.CANCELLED_BY_ADMIN,
    WaitlistEvent.MARK_NO_SHOW: WaitlistStatus.NO_SHOW,
}

WAITLIST_FLOW: TransitionTable[WaitlistStatus, WaitlistEvent] = TransitionTable(
    "waiting list entry",
    {
        (WaitlistStatus.WAITING, WaitlistEvent.CALL): WaitlistStatus.CALLED,
        (WaitlistStatus.CALLED, WaitlistEvent.CALL): WaitlistStatus.CALLED,
        (WaitlistStatus.CALLED, WaitlistEvent.CONFIRM): WaitlistStatus.CONFIRMED,
        (WaitlistStatus.CONFIRMED, WaitlistEvent.SEAT): WaitlistStatus.SEATED,
        **{
            (status, event): target
            for status in OPEN_WAITLIST_STATUSES
            for event, target in _EXITS.items()
        },
    },
)


@dataclass
class WaitingListEntry:
    id: str
    patron_id: str
    poker_name: str
    game_template_id: str
    status: WaitlistStatus = WaitlistStatus.WAITING
    requested_at: Optional[datetime] = None
    notes_for_staff: str = ""
    admin_notes: str = ""
    call_count: int = 0
    called_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    seated_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_WAITLIST_STATUSES

    def apply(self, event: WaitlistEvent, now: datetime) -> WaitlistStatus:
        """Apply an event and stamp the matching timestamp."""
        self.status = WAITLIST_FLOW.next_state(self.status, event)
        if event == WaitlistEvent.CALL:
            self.call_count += 1
            self.called_at = now
        elif event == WaitlistEvent.CONFIRM:
            self.confirmed_at = now
        elif event == WaitlistEvent.SEAT:
            self.seated_at = now
        else:
            self.cancelled_at = now
        return self.status

    def to_dict(self, rank: Optional[int] = None) -> dict:
        data = record_values(self, iso_dates=True)
        data["rank"] = rank
        return data

    @classmethod
    def from_record(cls, record) -> "WaitingListEntry":
        return cls(
            id=record["id"],
            patron_id=record["patron_id"],
            poker_name=record["poker_name"],
            game_template_id=record["game_template_id"],
            status=WaitlistStatus(record["status"]),
            requested_at=record["requested_at"],
            notes_for_staff=record["notes_for_staff"],
            admin_notes=record["admin_notes"],
            call_count=record["call_count"],
            called_at=record["called_at"],
            confirmed_at=record["confirmed_at"],
            seated_at=record["seated_at"],
            cancelled_at=record["cancelled_at"],
        )


def queue_rank(entry: WaitingListEntry, entries: Iterable[WaitingListEntry]) -> Optional[int]:
    """Position of an entry in its template's queue, computed at read time.

    Only WAITING entries hold a rank: 1 + the number of WAITING entries for
    the same template requested strictly earlier.
    """
    if entry.status != WaitlistStatus.WAITING:
        return None
    ahead = sum(
        1 for other in entries
        if other.id != entry.id
        and other.game_template_id == entry.game_template_id
        and other.status == WaitlistStatus.WAITING
        and other.requested_at < entry.requested_at
    )
    return ahead + 1


def ordered_queue(entries: Iterable[WaitingListEntry]) -> list[tuple[WaitingListEntry, Optional[int]]]:
    """Open entries in FIFO order, each paired with its rank."""
    pool = list(entries)
    open_entries = sorted((e for e in pool if e.is_open), key=lambda e: (e.requested_at, e.id))
    return [(entry, queue_rank(entry, pool)) for entry in open_entries]
