"""Withdrawal workflow: a patron asks for banked chips, staff hand them over."""
from typing import Optional

from cardroom.auth.middleware import AuthenticatedUser
from cardroom.auth.roles import Role, require_role
from cardroom.errors import ConflictError, ValidationError
from cardroom.floor.journal import TransactionType
from cardroom.floor.patron import validate_chip_amount
from cardroom.floor.withdrawal import WithdrawalEvent, WithdrawalRequest, WithdrawalStatus
from cardroom.services.base import Manager, ensure_self, ensure_self_or_staff, new_id
from cardroom.services.game_sessions import add_chips_to_session, open_game_session
from cardroom.services.ledger import ChipLedger
from cardroom.utils.logger import get_logger

logger = get_logger(__name__)


class WithdrawalManager(Manager):
    """Drives withdrawal requests through their transition table."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.ledger = ChipLedger(self.clock)

    async def request(self, actor: AuthenticatedUser, amount: int, patron_id: Optional[str] = None,
                      notes: str = "") -> WithdrawalRequest:
        """Ask to withdraw banked chips.

        Raises:
            ValidationError: If the amount is not positive or exceeds bank chips.
            ConflictError: While a settlement is pending.
        """
        patron_id = patron_id or actor.user_id
        ensure_self_or_staff(actor, patron_id, "request a withdrawal")
        validate_chip_amount(amount)

        async with self.store.transaction() as uow:
            patron = await uow.get_patron(patron_id)
            if amount > patron.bank_chips:
                raise ValidationError(
                    f"Requested {amount} chips but only {patron.bank_chips} are banked",
                    code="INSUFFICIENT_CHIPS",
                )
            if patron.pending_settlement is not None:
                raise ConflictError(
                    "A chip settlement is pending; withdrawals are blocked until it completes",
                    code="SETTLEMENT_PENDING",
                )
            request = WithdrawalRequest(
                id=new_id(),
                patron_id=patron.id,
                requested_amount=amount,
                requested_at=self.clock(),
                notes=notes,
            )
            await uow.save_withdrawal(request)

        logger.info(f"Withdrawal {request.id} of {amount} requested for {patron.poker_name}")
        await self._notify("withdrawal_requests", request.id, patron.id, request.to_dict())
        return request

    @require_role(Role.STAFF)
    async def approve(self, actor: AuthenticatedUser, request_id: str) -> WithdrawalRequest:
        """Approve against the current balance, net of other approved requests.

        Raises:
            ConflictError: If the patron no longer holds enough chips.
        """
        async with self.store.transaction() as uow:
            request = await uow.get_withdrawal(request_id)
            patron = await uow.get_patron(request.patron_id)
            request.apply(WithdrawalEvent.APPROVE)

            reserved = sum(
                other.requested_amount
                for other in await uow.list_withdrawals(
                    patron_id=patron.id, statuses=[WithdrawalStatus.APPROVED_PREPARING]
                )
                if other.id != request.id
            )
            available = patron.bank_chips - reserved
            if request.requested_amount > available:
                raise ConflictError(
                    f"{patron.poker_name} has {available} chips available "
                    f"({patron.bank_chips} banked, {reserved} reserved); "
                    f"cannot approve {request.requested_amount}",
                    code="INSUFFICIENT_CHIPS",
                )
            request.admin_processed_at = self.clock()
            request.processed_by = actor.user_id
            await uow.save_withdrawal(request)

        logger.info(f"Withdrawal {request.id} approved by {actor.poker_name}")
        await self._notify("withdrawal_requests", request.id, request.patron_id, request.to_dict())
        return request

    @require_role(Role.STAFF)
    async def deny(self, actor: AuthenticatedUser, request_id: str, notes: Optional[str] = None) -> WithdrawalRequest:
        return await self._close(actor, request_id, WithdrawalEvent.DENY, notes)

    @require_role(Role.STAFF)
    async def cancel(self, actor: AuthenticatedUser, request_id: str, notes: Optional[str] = None) -> WithdrawalRequest:
        return await self._close(actor, request_id, WithdrawalEvent.CANCEL, notes)

    async def _close(self, actor: AuthenticatedUser, request_id: str, event: WithdrawalEvent,
                     notes: Optional[str]) -> WithdrawalRequest:
        """Deny or cancel; neither touches balances."""
        async with self.store.transaction() as uow:
            request = await uow.get_withdrawal(request_id)
            request.apply(event)
            request.admin_processed_at = self.clock()
            request.processed_by = actor.user_id
            if notes is not None:
                request.notes = notes
            await uow.save_withdrawal(request)

        logger.info(f"Withdrawal {request.id} {request.status.value} by {actor.poker_name}")
        await self._notify("withdrawal_requests", request.id, request.patron_id, request.to_dict())
        return request

    @require_role(Role.STAFF)
    async def dispense(self, actor: AuthenticatedUser, request_id: str) -> WithdrawalRequest:
        """Mark chips handed over and debit the bank in the same commit.

        The released chips move to chips in play. A seated patron's game
        session counts them as additional buy-in, or a session is opened.

        Raises:
            ConflictError: If the request is not approved or the bank is short.
        """
        async with self.store.transaction() as uow:
            request = await uow.get_withdrawal(request_id)
            patron = await uow.get_patron(request.patron_id)
            request.apply(WithdrawalEvent.DELIVER)
            now = self.clock()

            amount = request.requested_amount
            await self.ledger.apply(
                uow, patron, TransactionType.WITHDRAWAL,
                bank=-amount,
                in_play=amount,
                reference_id=request.id,
                actor_id=actor.user_id,
            )
            session = await add_chips_to_session(uow, patron, amount)
            if session is None and patron.seat_ref is not None:
                table = await uow.get_table(patron.current_table_id)
                await open_game_session(uow, patron, table, patron.current_seat_number, amount, now)
                await uow.save_patron(patron)

            request.admin_delivered_at = now
            request.processed_by = actor.user_id
            await uow.save_withdrawal(request)

        logger.info(f"Dispensed {amount} chips to {patron.poker_name} for withdrawal {request.id}")
        await self._notify("withdrawal_requests", request.id, patron.id, request.to_dict())
        await self._notify("patrons", patron.id, patron.id, patron.to_dict())
        return request

    async def confirm(self, actor: AuthenticatedUser, request_id: str) -> WithdrawalRequest:
        """The patron acknowledges receiving the chips."""
        async with self.store.transaction() as uow:
            request = await uow.get_withdrawal(request_id)
            ensure_self(actor, request.patron_id, "confirm receipt of a withdrawal")
            request.apply(WithdrawalEvent.CONFIRM)
            request.customer_confirmed_at = self.clock()
            await uow.save_withdrawal(request)

        logger.info(f"Withdrawal {request.id} confirmed by {actor.poker_name}")
        await self._notify("withdrawal_requests", request.id, request.patron_id, request.to_dict())
        return request

    async def list_requests(
        self,
        actor: AuthenticatedUser,
        patron_id: Optional[str] = None,
        statuses: Optional[list[WithdrawalStatus]] = None,
    ) -> list[WithdrawalRequest]:
        """Patrons see their own requests; staff may see everyone's."""
        if not actor.is_staff:
            patron_id = actor.user_id
        async with self.store.read() as uow:
            return await uow.list_withdrawals(patron_id=patron_id, statuses=statuses)

    async def update_notes(self, actor: AuthenticatedUser, request_id: str, notes: str) -> None:
        """Last-writer-wins note edit."""
        async with self.store.read() as uow:
            request = await uow.get_withdrawal(request_id)
        ensure_self_or_staff(actor, request.patron_id, "edit withdrawal notes")
        await self.store.patch("withdrawal_requests", request_id, {"notes": notes})
