"""Two-phase chip settlement: staff counts, patron confirms."""
from enum import Enum
from typing import Mapping, Optional

from cardroom.errors import ValidationError
from cardroom.floor.patron import Patron
from cardroom.floor.workflow import TransitionTable


class SettlementState(str, Enum):
    IDLE = "idle"
    SEATED_PLAYING = "seated_playing"
    SETTLEMENT_PENDING = "settlement_pending"
    SETTLED = "settled"
    FORCE_SETTLED = "force_settled"
    CANCELLED = "cancelled"


class SettlementEvent(str, Enum):
    INITIATE = "initiate"
    CONFIRM = "confirm"
    FORCE_COMPLETE = "force_complete"
    CANCEL = "cancel"


SETTLEMENT_FLOW: TransitionTable[SettlementState, SettlementEvent] = TransitionTable(
    "settlement",
    {
        (SettlementState.SEATED_PLAYING, SettlementEvent.INITIATE): SettlementState.SETTLEMENT_PENDING,
        (SettlementState.SETTLEMENT_PENDING, SettlementEvent.CONFIRM): SettlementState.SETTLED,
        (SettlementState.SETTLEMENT_PENDING, SettlementEvent.FORCE_COMPLETE): SettlementState.FORCE_SETTLED,
        # Cancelling returns the patron to play; the derived state after
        # commit is SEATED_PLAYING again.
        (SettlementState.SETTLEMENT_PENDING, SettlementEvent.CANCEL): SettlementState.CANCELLED,
    },
)


def settlement_state(patron: Patron) -> SettlementState:
    """Derive the settlement state from the stored patron fields."""
    if patron.pending_settlement is not None:
        return SettlementState.SETTLEMENT_PENDING
    if patron.seat_ref is not None:
        return SettlementState.SEATED_PLAYING
    return SettlementState.IDLE


def normalize_counts(raw: Mapping, denominations: list[int]) -> dict[int, int]:
    """Validate a denomination -> count map coming off the wire.

    Keys may be strings (JSON object keys). Zero counts are dropped.

    Raises:
        ValidationError: For unknown denominations or negative/non-integer counts.
    """
    if not isinstance(raw, Mapping):
        raise ValidationError("denominationCounts must be an object")
    allowed = set(denominations)
    counts: dict[int, int] = {}
    for key, count in raw.items():
        try:
            value = int(key)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid denomination {key!r}") from None
        if value <= 0 or value not in allowed:
            raise ValidationError(f"Unknown chip denomination {value}")
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise ValidationError(f"Count for denomination {value} must be a non-negative integer")
        if count:
            counts[value] = counts.get(value, 0) + count
    return counts


def denomination_total(counts: Mapping[int, int]) -> int:
    return sum(value * count for value, count in counts.items())


def resolve_declared_total(counts: Mapping[int, int], declared_total: Optional[int]) -> int:
    """Return the settlement total, rejecting a summary that disagrees with the count.

    Raises:
        ValidationError: If ``declared_total`` is given and differs from the
            denomination sum.
    """
    total = denomination_total(counts)
    if declared_total is None:
        return total
    if isinstance(declared_total, bool) or not isinstance(declared_total, int) or declared_total < 0:
        raise ValidationError("declaredTotal must be a non-negative integer")
    if declared_total != total:
        raise ValidationError(
            f"Declared total {declared_total} does not match denomination count {total}",
            code="DENOMINATION_MISMATCH",
        )
    return total
