"""Chip ledger: the only path that changes a patron's conserved balances."""
from dataclasses import dataclass
from typing import Iterable, Optional

from cardroom.floor.journal import ChipTransaction, TransactionType
from cardroom.floor.patron import Patron
from cardroom.services.base import Clock, new_id, utc_now
from cardroom.state.store import UnitOfWork
from cardroom.utils.logger import format_deltas, get_logger

logger = get_logger(__name__)


@dataclass
class Balances:
    """Replayed balances of one patron."""
    bank_chips: int = 0
    chips_in_play: int = 0
    bill: int = 0

    def to_dict(self) -> dict:
        return {"bank_chips": self.bank_chips, "chips_in_play": self.chips_in_play, "bill": self.bill}


class ChipLedger:
    """Applies balance deltas and journals them in the same unit of work."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or utc_now

    async def apply(
        self,
        uow: UnitOfWork,
        patron: Patron,
        transaction_type: TransactionType,
        bank: int = 0,
        in_play: int = 0,
        bill: int = 0,
        reference_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> ChipTransaction:
        """Change a patron's balances and append the matching journal entry.

        Both writes go through ``uow`` so they commit or roll back together.

        Args:
            uow: Open transaction the patron was read from.
            patron: Patron record to mutate.
            transaction_type: Journal category.
            bank: Signed change to bank chips.
            in_play: Signed change to chips in play.
            bill: Signed change to the bill.
            reference_id: Order, withdrawal or session the movement belongs to.
            actor_id: Staff or patron who triggered it.
            note: Free-text annotation.

        Returns:
            The recorded transaction.

        Raises:
            ConflictError: If any balance would become negative.
        """
        patron.apply_deltas(bank=bank, in_play=in_play, bill=bill)
        now = self.clock()
        patron.updated_at = now

        transaction = ChipTransaction(
            id=new_id(),
            patron_id=patron.id,
            type=transaction_type,
            bank_delta=bank,
            in_play_delta=in_play,
            bill_delta=bill,
            reference_id=reference_id,
            actor_id=actor_id,
            note=note,
            created_at=now,
        )
        await uow.save_patron(patron)
        await uow.record_transaction(transaction)

        logger.info(
            f"Recorded {transaction_type.value} for {patron.poker_name}: "
            f"{format_deltas(bank=bank, in_play=in_play, bill=bill)}"
        )
        return transaction


def replay(transactions: Iterable[ChipTransaction]) -> dict[str, Balances]:
    """Rebuild every patron's balances from the journal, starting at zero."""
    balances: dict[str, Balances] = {}
    for t in transactions:
        b = balances.setdefault(t.patron_id, Balances())
        b.bank_chips += t.bank_delta
        b.chips_in_play += t.in_play_delta
        b.bill += t.bill_delta
    return balances


def find_discrepancies(patrons: Iterable[Patron], transactions: Iterable[ChipTransaction]) -> list[str]:
    """List patrons whose stored balances disagree with the journal replay."""
    replayed = replay(transactions)
    problems = []
    for patron in patrons:
        expected = replayed.get(patron.id, Balances())
        actual = Balances(patron.bank_chips, patron.chips_in_play, patron.bill)
        if expected != actual:
            problems.append(
                f"{patron.poker_name} ({patron.id}): stored {actual.to_dict()} "
                f"but journal gives {expected.to_dict()}"
            )
    return problems
