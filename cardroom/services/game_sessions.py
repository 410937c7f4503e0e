"""Opening and closing play sessions inside floor transactions."""
from datetime import datetime
from typing import Optional

from cardroom.auth.middleware import AuthenticatedUser
from cardroom.config import config
from cardroom.floor.journal import TransactionType
from cardroom.floor.patron import Patron
from cardroom.floor.seating import Table
from cardroom.floor.session import GameSession
from cardroom.services.base import Manager, ensure_self_or_staff, new_id
from cardroom.services.ledger import ChipLedger
from cardroom.state.store import UnitOfWork
from cardroom.utils.logger import get_logger

logger = get_logger(__name__)


async def open_game_session(
    uow: UnitOfWork,
    patron: Patron,
    table: Table,
    seat_number: int,
    chips_in: int,
    now: datetime,
) -> GameSession:
    """Start a session for a seated patron and link it from the patron record.

    The caller saves the patron.
    """
    session = GameSession(
        id=new_id(),
        patron_id=patron.id,
        table_id=table.id,
        table_name=table.name,
        seat_number=seat_number,
        game_type=table.game_type,
        rate=table.blinds_or_rate,
        started_at=now,
        chips_in=chips_in,
    )
    await uow.save_game_session(session)
    patron.active_game_session_id = session.id
    logger.info(f"Opened game session {session.id} for {patron.poker_name} at {table.name}")
    return session


async def add_chips_to_session(uow: UnitOfWork, patron: Patron, amount: int) -> Optional[GameSession]:
    """Count chips brought to the table mid-session as additional buy-in."""
    if patron.active_game_session_id is None:
        return None
    session = await uow.get_game_session(patron.active_game_session_id)
    session.additional_chips_in += amount
    await uow.save_game_session(session)
    return session


async def close_game_session(
    uow: UnitOfWork,
    ledger: ChipLedger,
    patron: Patron,
    chips_out: int,
    now: datetime,
    actor_id: Optional[str] = None,
) -> Optional[GameSession]:
    """Close the patron's active session and bill its play fee.

    The fee goes through the ledger so it is journaled with the settlement.
    """
    if patron.active_game_session_id is None:
        return None
    session = await uow.get_game_session(patron.active_game_session_id)
    fee = session.close(
        chips_out,
        now,
        fee_per_unit=config.play_fee_per_unit,
        unit_minutes=config.play_fee_unit_minutes,
        free_minutes=config.play_fee_free_minutes,
    )
    await uow.save_game_session(session)
    patron.active_game_session_id = None
    if fee:
        await ledger.apply(
            uow, patron, TransactionType.PLAY_FEE,
            bill=fee,
            reference_id=session.id,
            actor_id=actor_id,
            note=f"{session.duration_minutes} min at {session.table_name}",
        )
    logger.info(
        f"Closed game session {session.id} for {patron.poker_name}: "
        f"{session.duration_minutes} min, profit {session.profit:+d}, fee {fee}"
    )
    return session


class GameSessionManager(Manager):
    """Read access to play history."""

    async def list_sessions(self, actor: AuthenticatedUser, patron_id: str) -> list[GameSession]:
        ensure_self_or_staff(actor, patron_id, "view game sessions")
        async with self.store.read() as uow:
            return await uow.list_game_sessions(patron_id)
