"""Settlement workflow: staff counts a patron's stack, the patron confirms."""
from typing import Mapping, Optional

from cardroom.auth.middleware import AuthenticatedUser
from cardroom.auth.roles import Role, require_role
from cardroom.config import config
from cardroom.errors import ConflictError
from cardroom.floor.journal import TransactionType
from cardroom.floor.patron import Patron, PendingSettlement
from cardroom.floor.settlement import (
    SETTLEMENT_FLOW,
    SettlementEvent,
    normalize_counts,
    resolve_declared_total,
    settlement_state,
)
from cardroom.floor.withdrawal import OPEN_WITHDRAWAL_STATUSES
from cardroom.services.base import Manager
from cardroom.services.game_sessions import close_game_session
from cardroom.services.ledger import ChipLedger
from cardroom.state.store import UnitOfWork
from cardroom.utils.logger import get_logger

logger = get_logger(__name__)


class SettlementManager(Manager):
    """Runs the two-phase settlement procedures."""

    def __init__(self, *args, denominations: Optional[list[int]] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.ledger = ChipLedger(self.clock)
        self.denominations = denominations or config.chip_denominations

    @require_role(Role.STAFF)
    async def initiate(
        self,
        actor: AuthenticatedUser,
        patron_id: str,
        table_id: str,
        seat_number: int,
        denomination_counts: Mapping,
        declared_total: Optional[int] = None,
    ) -> Patron:
        """Record a staff chip count and wait for the patron to confirm it.

        Args:
            actor: Staff member counting the chips.
            patron_id: Patron being settled.
            table_id: Table the patron sits at.
            seat_number: Seat the patron occupies.
            denomination_counts: Chip face value -> count.
            declared_total: Staff-entered summary total; must equal the count.

        Raises:
            ValidationError: For bad counts or a total that disagrees with them.
            ConflictError: If the seat is not the patron's, a settlement is
                already pending, or a withdrawal is still open.
        """
        counts = normalize_counts(denomination_counts, self.denominations)
        total = resolve_declared_total(counts, declared_total)

        async with self.store.transaction() as uow:
            patron = await uow.get_patron(patron_id)
            if patron.pending_settlement is not None:
                raise ConflictError(
                    f"A settlement is already pending for {patron.poker_name}",
                    code="SETTLEMENT_ALREADY_PENDING",
                )
            seat = await uow.get_seat(table_id, seat_number)
            if seat.occupant_id != patron.id or patron.seat_ref != (table_id, seat_number):
                raise ConflictError(
                    f"{patron.poker_name} does not occupy seat {seat_number} at table {table_id}",
                    code="SEAT_NOT_OCCUPIED",
                )
            open_withdrawals = await uow.list_withdrawals(patron_id=patron.id, statuses=OPEN_WITHDRAWAL_STATUSES)
            if open_withdrawals:
                raise ConflictError(
                    f"{patron.poker_name} has an open withdrawal request; resolve it before settling",
                    code="WITHDRAWAL_IN_PROGRESS",
                )
            SETTLEMENT_FLOW.next_state(settlement_state(patron), SettlementEvent.INITIATE)

            patron.pending_settlement = PendingSettlement(
                table_id=table_id,
                seat_number=seat_number,
                declared_total=total,
                denomination_counts=counts,
                initiated_by=actor.user_id,
                initiated_at=self.clock(),
            )
            await uow.save_patron(patron)

        logger.info(f"Settlement of {total} initiated for {patron.poker_name} by {actor.poker_name}")
        await self._notify("patrons", patron.id, patron.id, patron.to_dict())
        return patron

    async def confirm(self, actor: AuthenticatedUser) -> Patron:
        """The acting patron accepts the pending count.

        Raises:
            ConflictError: If nothing is pending (including a repeated confirm).
        """
        return await self._finalize(actor, actor.user_id, SettlementEvent.CONFIRM)

    @require_role(Role.STAFF)
    async def force_complete(self, actor: AuthenticatedUser, patron_id: str) -> Patron:
        """Apply the pending count without the patron's confirmation."""
        return await self._finalize(actor, patron_id, SettlementEvent.FORCE_COMPLETE)

    @require_role(Role.STAFF)
    async def cancel(self, actor: AuthenticatedUser, patron_id: str) -> Patron:
        """Discard the pending count; the patron keeps playing."""
        async with self.store.transaction() as uow:
            patron = await self._pending_patron(uow, patron_id)
            SETTLEMENT_FLOW.next_state(settlement_state(patron), SettlementEvent.CANCEL)
            patron.pending_settlement = None
            await uow.save_patron(patron)

        logger.info(f"Settlement for {patron.poker_name} cancelled by {actor.poker_name}")
        await self._notify("patrons", patron.id, patron.id, patron.to_dict())
        return patron

    async def _pending_patron(self, uow: UnitOfWork, patron_id: str) -> Patron:
        patron = await uow.get_patron(patron_id)
        if patron.pending_settlement is None:
            raise ConflictError(
                f"No settlement is pending for {patron.poker_name}",
                code="NO_PENDING_SETTLEMENT",
            )
        return patron

    async def _finalize(self, actor: AuthenticatedUser, patron_id: str, event: SettlementEvent) -> Patron:
        """Credit the counted chips, clear play state and free the seat."""
        async with self.store.transaction() as uow:
            patron = await self._pending_patron(uow, patron_id)
            outcome = SETTLEMENT_FLOW.next_state(settlement_state(patron), event)
            pending = patron.pending_settlement
            now = self.clock()

            await self.ledger.apply(
                uow, patron, TransactionType.SETTLEMENT,
                bank=pending.declared_total,
                in_play=-patron.chips_in_play,
                reference_id=patron.active_game_session_id,
                actor_id=actor.user_id,
                note=outcome.value,
            )
            await close_game_session(uow, self.ledger, patron, pending.declared_total, now, actor.user_id)

            seat = await uow.get_seat(pending.table_id, pending.seat_number)
            if seat.occupant_id == patron.id:
                seat.vacate()
                await uow.save_seat(seat)
            patron.pending_settlement = None
            patron.leave_seat()
            patron.checked_out_at = now
            await uow.save_patron(patron)

        logger.info(
            f"Settlement {outcome.value} for {patron.poker_name}: "
            f"+{pending.declared_total} bank chips (by {actor.poker_name})"
        )
        await self._notify("patrons", patron.id, patron.id, patron.to_dict())
        await self._notify("seats", f"{pending.table_id}/{pending.seat_number}", patron.id, seat.to_dict())
        return patron
