"""Seat registry: tables, seat assignment and check-in."""
from typing import Optional

from cardroom.auth.middleware import AuthenticatedUser
from cardroom.auth.roles import Role, require_role
from cardroom.errors import ConflictError, ValidationError
from cardroom.floor.journal import TransactionType
from cardroom.floor.patron import Patron, validate_chip_amount
from cardroom.floor.seating import Seat, Table, TableStatus, build_seats, check_assignment
from cardroom.services.base import Manager, new_id
from cardroom.services.game_sessions import open_game_session
from cardroom.services.ledger import ChipLedger
from cardroom.services.waitlist_manager import seat_from_waitlist
from cardroom.state.store import UnitOfWork
from cardroom.utils.logger import get_logger

logger = get_logger(__name__)

_CLOSED_TABLE_STATUSES = (TableStatus.INACTIVE, TableStatus.MAINTENANCE)


class SeatManager(Manager):
    """Manages table creation and seat occupancy."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.ledger = ChipLedger(self.clock)

    @require_role(Role.STAFF)
    async def create_table(
        self,
        actor: AuthenticatedUser,
        name: str,
        max_seats: int,
        game_type: str = "nlh",
        blinds_or_rate: str = "",
        game_template_id: Optional[str] = None,
        min_buy_in: int = 0,
        max_buy_in: int = 0,
    ) -> Table:
        """Create a table with empty seats 1..max_seats in one commit."""
        if not name or not name.strip():
            raise ValidationError("Table name is required")
        if isinstance(max_seats, bool) or not isinstance(max_seats, int) or max_seats < 1:
            raise ValidationError("max_seats must be a positive integer")
        if min_buy_in < 0 or max_buy_in < 0 or (max_buy_in and min_buy_in > max_buy_in):
            raise ValidationError("Invalid buy-in range")

        table = Table(
            id=new_id(),
            name=name.strip(),
            max_seats=max_seats,
            game_type=game_type,
            blinds_or_rate=blinds_or_rate,
            game_template_id=game_template_id,
            min_buy_in=min_buy_in,
            max_buy_in=max_buy_in,
            created_at=self.clock(),
        )
        async with self.store.transaction() as uow:
            if game_template_id is not None:
                await uow.get_game_template(game_template_id)
            await uow.save_table(table)
            for seat in build_seats(table):
                await uow.save_seat(seat)

        logger.info(f"Created table {table.name} ({max_seats} seats) by {actor.poker_name}")
        await self._notify("tables", table.id, None, table.to_dict())
        return table

    async def list_tables(self) -> list[tuple[Table, list[Seat]]]:
        async with self.store.read() as uow:
            tables = await uow.list_tables()
            return [(table, await uow.list_seats(table.id)) for table in tables]

    async def get_table(self, table_id: str) -> tuple[Table, list[Seat]]:
        async with self.store.read() as uow:
            table = await uow.get_table(table_id)
            return table, await uow.list_seats(table_id)

    @require_role(Role.STAFF)
    async def update_table(self, actor: AuthenticatedUser, table_id: str, **changes) -> Table:
        """Last-writer-wins edit of a table's name, status or stakes label."""
        await self.store.patch("tables", table_id, changes)
        table, _ = await self.get_table(table_id)
        logger.info(f"Table {table.name} updated by {actor.poker_name}: {sorted(changes)}")
        await self._notify("tables", table.id, None, table.to_dict())
        return table

    async def _take_seat(
        self,
        uow: UnitOfWork,
        patron: Patron,
        table_id: str,
        seat_number: int,
    ) -> tuple[Table, Seat, bool]:
        """Seat a patron inside an open transaction.

        Returns:
            The table, the seat and whether anything changed.
        """
        table = await uow.get_table(table_id)
        table.check_seat_number(seat_number)
        seat = await uow.get_seat(table_id, seat_number)
        held = await uow.find_seat_of(patron.id)
        if not check_assignment(seat, patron.id, held):
            return table, seat, False
        if not patron.approved:
            raise ConflictError(f"{patron.poker_name} has not been approved yet", code="NOT_APPROVED")
        if table.status in _CLOSED_TABLE_STATUSES:
            raise ConflictError(f"Table {table.name} is {table.status.value}", code="TABLE_CLOSED")

        now = self.clock()
        seat.occupy(patron.id, patron.poker_name, now)
        patron.take_seat(table.id, seat_number)
        await uow.save_seat(seat)
        await uow.save_patron(patron)
        if table.game_template_id:
            await seat_from_waitlist(uow, patron.id, table.game_template_id, now)
        return table, seat, True

    @require_role(Role.STAFF)
    async def assign(self, actor: AuthenticatedUser, table_id: str, seat_number: int, patron_id: str) -> Seat:
        """Seat a patron. Re-assigning the seat they already hold is a no-op.

        Raises:
            ValidationError: If the seat number is outside the table.
            NotFoundError: If the table or patron does not exist.
            ConflictError: If the seat is taken, the patron sits elsewhere or
                has not been approved.
        """
        async with self.store.transaction() as uow:
            patron = await uow.get_patron(patron_id)
            table, seat, changed = await self._take_seat(uow, patron, table_id, seat_number)

        if changed:
            logger.info(f"Seated {patron.poker_name} at {table.name} seat {seat_number} by {actor.poker_name}")
            await self._notify("seats", f"{table_id}/{seat_number}", patron_id, seat.to_dict())
        return seat

    @require_role(Role.STAFF)
    async def release(self, actor: AuthenticatedUser, table_id: str, seat_number: int) -> Seat:
        """Clear a seat and its occupant's seat reference. No-op when empty.

        Raises:
            ConflictError: If the occupant has a settlement pending or still
                has chips in play.
        """
        async with self.store.transaction() as uow:
            table = await uow.get_table(table_id)
            table.check_seat_number(seat_number)
            seat = await uow.get_seat(table_id, seat_number)
            if seat.is_empty:
                return seat

            patron = await uow.get_patron(seat.occupant_id)
            if patron.pending_settlement is not None:
                raise ConflictError(
                    f"{patron.poker_name} has a settlement pending; finish or cancel it first",
                    code="SETTLEMENT_PENDING",
                )
            if patron.chips_in_play or patron.active_game_session_id:
                raise ConflictError(
                    f"{patron.poker_name} still has {patron.chips_in_play} chips in play; settle them first",
                    code="CHIPS_IN_PLAY",
                )
            seat.vacate()
            patron.leave_seat()
            patron.checked_out_at = self.clock()
            await uow.save_seat(seat)
            await uow.save_patron(patron)

        logger.info(f"Released {table.name} seat {seat_number} ({patron.poker_name}) by {actor.poker_name}")
        await self._notify("seats", f"{table_id}/{seat_number}", patron.id, seat.to_dict())
        return seat

    @require_role(Role.STAFF)
    async def check_in(
        self,
        actor: AuthenticatedUser,
        patron_id: str,
        table_id: str,
        seat_number: int,
        amount_to_play: int,
    ) -> Patron:
        """Check a patron in: seat them and move chips from bank to play.

        Raises:
            ValidationError: For a negative amount or one above the bank balance.
            ConflictError: If the patron is already checked in or playing, is
                not approved, or the seat is taken.
        """
        validate_chip_amount(amount_to_play, allow_zero=True)
        async with self.store.transaction() as uow:
            patron = await uow.get_patron(patron_id)
            if patron.is_checked_in:
                raise ConflictError(f"{patron.poker_name} is already checked in", code="ALREADY_CHECKED_IN")
            if patron.active_game_session_id:
                raise ConflictError(
                    f"{patron.poker_name} already has an open game session; settle it first",
                    code="SESSION_OPEN",
                )
            if amount_to_play > patron.bank_chips:
                raise ValidationError(
                    f"Cannot bring {amount_to_play} chips; {patron.poker_name} holds {patron.bank_chips}"
                )

            table, seat, _ = await self._take_seat(uow, patron, table_id, seat_number)
            now = self.clock()
            patron.is_checked_in = True
            patron.checked_in_at = now
            seat.current_stack = amount_to_play
            await uow.save_seat(seat)
            await open_game_session(uow, patron, table, seat_number, amount_to_play, now)
            await self.ledger.apply(
                uow, patron, TransactionType.CHECK_IN,
                bank=-amount_to_play,
                in_play=amount_to_play,
                reference_id=patron.active_game_session_id,
                actor_id=actor.user_id,
            )

        logger.info(f"Checked in {patron.poker_name} at {table.name} seat {seat_number} with {amount_to_play}")
        await self._notify("patrons", patron.id, patron.id, patron.to_dict())
        return patron
