"""Floor reports: journal summaries, stale workflows and ledger checks."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from cardroom.auth.middleware import AuthenticatedUser
from cardroom.auth.roles import Role, require_role
from cardroom.config import config
from cardroom.floor.journal import ChipTransaction, TransactionType
from cardroom.floor.patron import Patron
from cardroom.floor.withdrawal import OPEN_WITHDRAWAL_STATUSES, WithdrawalRequest
from cardroom.services.base import Manager, ensure_self_or_staff
from cardroom.services.ledger import find_discrepancies
from cardroom.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class PatronSummary:
    """A patron's chip movements as recorded in the journal."""
    patron_id: str
    player: str
    purchased: int
    settled: int
    withdrawn: int
    fees: int
    billed: int
    paid: int

    @property
    def net(self) -> int:
        """Chips settled back to the bank minus chips taken to the table."""
        return self.settled - self.withdrawn

    @property
    def outstanding(self) -> int:
        return self.billed - self.paid

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "patron_id": self.patron_id,
            "player": self.player,
            "purchased": self.purchased,
            "settled": self.settled,
            "withdrawn": self.withdrawn,
            "fees": self.fees,
            "billed": self.billed,
            "paid": self.paid,
            "net": self.net,
            "outstanding": self.outstanding,
        }


def summarize(patron: Patron, transactions: Iterable[ChipTransaction]) -> PatronSummary:
    """Fold a patron's journal lines into a summary."""
    summary = PatronSummary(patron.id, patron.poker_name, 0, 0, 0, 0, 0, 0)
    for t in transactions:
        if t.patron_id != patron.id:
            continue
        if t.type in (TransactionType.PURCHASE, TransactionType.PURCHASE_REVERSAL):
            summary.purchased += t.bank_delta
        elif t.type == TransactionType.SETTLEMENT:
            summary.settled += t.bank_delta
        elif t.type in (TransactionType.WITHDRAWAL, TransactionType.CHECK_IN):
            summary.withdrawn -= t.bank_delta
        elif t.type == TransactionType.PLAY_FEE:
            summary.fees += t.bill_delta

        if t.bill_delta > 0:
            summary.billed += t.bill_delta
        elif t.type == TransactionType.BILL_PAYMENT:
            summary.paid -= t.bill_delta
        else:
            summary.billed += t.bill_delta
    return summary


def format_summary_table(summaries: list[PatronSummary]) -> str:
    """Format summaries as a text table.

    Args:
        summaries: Patron summaries, in display order.

    Returns:
        Formatted table string.
    """
    if not summaries:
        return "No transactions recorded."

    lines = [
        "| Player     | Purchased | Withdrawn |   Settled | Net (+/-) |    Bill |",
        "|------------|-----------|-----------|-----------|-----------|---------|",
    ]

    for s in summaries:
        net_str = f"+{s.net}" if s.net >= 0 else str(s.net)
        lines.append(
            f"| {s.player:<10} | {s.purchased:>9} | {s.withdrawn:>9} | "
            f"{s.settled:>9} | {net_str:>9} | {s.outstanding:>7} |"
        )

    return "\n".join(lines)


@dataclass
class StaleItem:
    """A money-bearing workflow left open past the threshold."""
    kind: str
    record_id: str
    patron_id: str
    player: str
    amount: int
    since: datetime
    age_minutes: int

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "record_id": self.record_id,
            "patron_id": self.patron_id,
            "player": self.player,
            "amount": self.amount,
            "since": self.since.isoformat(),
            "age_minutes": self.age_minutes,
        }


def find_stale(
    patrons: Iterable[Patron],
    withdrawals: Iterable[WithdrawalRequest],
    now: datetime,
    threshold_minutes: int,
) -> list[StaleItem]:
    """List pending settlements and open withdrawals older than the threshold.

    Oldest first. Nothing is cancelled automatically; staff act on the list.
    """
    cutoff = now - timedelta(minutes=threshold_minutes)
    names = {}
    stale = []

    for patron in patrons:
        names[patron.id] = patron.poker_name
        pending = patron.pending_settlement
        if pending is not None and pending.initiated_at <= cutoff:
            stale.append(StaleItem(
                kind="settlement",
                record_id=f"{pending.table_id}:{pending.seat_number}",
                patron_id=patron.id,
                player=patron.poker_name,
                amount=pending.declared_total,
                since=pending.initiated_at,
                age_minutes=int((now - pending.initiated_at).total_seconds() // 60),
            ))

    for request in withdrawals:
        if request.status not in OPEN_WITHDRAWAL_STATUSES or request.requested_at > cutoff:
            continue
        stale.append(StaleItem(
            kind=f"withdrawal:{request.status.value}",
            record_id=request.id,
            patron_id=request.patron_id,
            player=names.get(request.patron_id, request.patron_id),
            amount=request.requested_amount,
            since=request.requested_at,
            age_minutes=int((now - request.requested_at).total_seconds() // 60),
        ))

    stale.sort(key=lambda item: item.since)
    return stale


class ReportManager(Manager):
    """Read-only reports over patrons, withdrawals and the chip journal."""

    def __init__(self, *args, stale_after_minutes: Optional[int] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.stale_after_minutes = stale_after_minutes or config.stale_after_minutes

    async def patron_summary(self, actor: AuthenticatedUser, patron_id: str) -> PatronSummary:
        ensure_self_or_staff(actor, patron_id, "view a chip summary")
        async with self.store.read() as uow:
            patron = await uow.get_patron(patron_id)
            transactions = await uow.list_transactions(patron_id=patron_id)
        return summarize(patron, transactions)

    @require_role(Role.STAFF)
    async def floor_summary(self, actor: AuthenticatedUser) -> list[PatronSummary]:
        """Summaries for every patron with journal activity, best net first."""
        async with self.store.read() as uow:
            patrons = await uow.list_patrons()
            transactions = await uow.list_transactions()
        active = {t.patron_id for t in transactions}
        summaries = [summarize(p, transactions) for p in patrons if p.id in active]
        summaries.sort(key=lambda s: s.net, reverse=True)
        return summaries

    @require_role(Role.STAFF)
    async def stale(self, actor: AuthenticatedUser, threshold_minutes: Optional[int] = None) -> list[StaleItem]:
        threshold = threshold_minutes if threshold_minutes is not None else self.stale_after_minutes
        async with self.store.read() as uow:
            patrons = await uow.list_patrons()
            withdrawals = await uow.list_withdrawals(statuses=list(OPEN_WITHDRAWAL_STATUSES))
        items = find_stale(patrons, withdrawals, self.clock(), threshold)
        if items:
            logger.warning(f"{len(items)} money workflows open longer than {threshold} minutes")
        return items

    @require_role(Role.STAFF)
    async def discrepancies(self, actor: AuthenticatedUser) -> list[str]:
        """Patrons whose stored balances disagree with the journal."""
        async with self.store.read() as uow:
            patrons = await uow.list_patrons()
            transactions = await uow.list_transactions()
        problems = find_discrepancies(patrons, transactions)
        for problem in problems:
            logger.error(f"Ledger discrepancy: {problem}")
        return problems
