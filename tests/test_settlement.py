"""Tests for the two-phase chip settlement."""
import asyncio

import pytest

from cardroom.auth.roles import Role
from cardroom.errors import AuthorizationError, ConflictError, ValidationError
from cardroom.floor.journal import TransactionType
from cardroom.services.ledger import find_discrepancies


@pytest.fixture
def seated(floor, staff, alice, table):
    """Check Alice in at seat 3 with 3000 of her 5000 chips."""
    async def _seat():
        return await floor.seats.check_in(staff, alice.user_id, table.id, 3, 3000)
    return _seat


class TestInitiate:
    """Test staff starting a settlement."""

    @pytest.mark.asyncio
    async def test_records_pending_count(self, floor, staff, alice, table, seated):
        await seated()
        patron = await floor.settlements.initiate(
            staff, alice.user_id, table.id, 3, {"1000": 4, "100": 2}, declared_total=4200
        )

        pending = patron.pending_settlement
        assert pending.declared_total == 4200
        assert pending.denomination_counts == {1000: 4, 100: 2}
        assert pending.initiated_by == staff.user_id
        # nothing moves until the patron confirms
        assert patron.bank_chips == 2000
        assert patron.chips_in_play == 3000

    @pytest.mark.asyncio
    async def test_total_mismatch(self, floor, staff, alice, table, seated):
        await seated()
        with pytest.raises(ValidationError) as exc_info:
            await floor.settlements.initiate(staff, alice.user_id, table.id, 3, {"1000": 4}, declared_total=5000)
        assert exc_info.value.code == "DENOMINATION_MISMATCH"
        assert (await floor.patron(alice)).pending_settlement is None

    @pytest.mark.asyncio
    async def test_wrong_seat(self, floor, staff, alice, table, seated):
        await seated()
        with pytest.raises(ConflictError) as exc_info:
            await floor.settlements.initiate(staff, alice.user_id, table.id, 4, {"1000": 1})
        assert exc_info.value.code == "SEAT_NOT_OCCUPIED"

    @pytest.mark.asyncio
    async def test_unseated_patron(self, floor, staff, bob, table):
        with pytest.raises(ConflictError):
            await floor.settlements.initiate(staff, bob.user_id, table.id, 3, {"1000": 1})

    @pytest.mark.asyncio
    async def test_second_initiate_rejected(self, floor, staff, alice, table, seated):
        await seated()
        await floor.settlements.initiate(staff, alice.user_id, table.id, 3, {"1000": 1})
        with pytest.raises(ConflictError) as exc_info:
            await floor.settlements.initiate(staff, alice.user_id, table.id, 3, {"1000": 2})
        assert exc_info.value.code == "SETTLEMENT_ALREADY_PENDING"

    @pytest.mark.asyncio
    async def test_concurrent_initiate_one_winner(self, floor, staff, alice, table, seated):
        """Two staff devices counting the same stack at once: exactly one count is kept."""
        await seated()
        pit_boss = await floor.add_patron("PitBoss", role=Role.STAFF)
        results = await asyncio.gather(
            floor.settlements.initiate(staff, alice.user_id, table.id, 3, {"1000": 3}),
            floor.settlements.initiate(pit_boss, alice.user_id, table.id, 3, {"1000": 2, "500": 1}),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], ConflictError)
        assert failures[0].code == "SETTLEMENT_ALREADY_PENDING"

        winner = next(r for r in results if not isinstance(r, Exception))
        pending = (await floor.patron(alice)).pending_settlement
        assert pending is not None
        assert pending.initiated_by == winner.pending_settlement.initiated_by
        assert pending.declared_total == winner.pending_settlement.declared_total

    @pytest.mark.asyncio
    async def test_patron_cannot_initiate(self, floor, alice, table, seated):
        await seated()
        with pytest.raises(AuthorizationError):
            await floor.settlements.initiate(alice, alice.user_id, table.id, 3, {"1000": 1})

    @pytest.mark.asyncio
    async def test_open_withdrawal_blocks_settlement(self, floor, staff, alice, table, seated):
        """Withdrawals and settlements never overlap for one patron."""
        await seated()
        await floor.withdrawals.request(alice, 500)
        with pytest.raises(ConflictError) as exc_info:
            await floor.settlements.initiate(staff, alice.user_id, table.id, 3, {"1000": 1})
        assert exc_info.value.code == "WITHDRAWAL_IN_PROGRESS"


class TestConfirm:
    """Test the patron accepting a count."""

    @pytest.mark.asyncio
    async def test_confirm_settles_and_frees_seat(self, floor, staff, alice, table, seated):
        """Counted chips go to the bank, play chips are cleared and the seat opens."""
        await seated()
        floor.clock.advance(minutes=45)
        await floor.settlements.initiate(staff, alice.user_id, table.id, 3, {"1000": 4})

        patron = await floor.settlements.confirm(alice)

        assert patron.bank_chips == 2000 + 4000
        assert patron.chips_in_play == 0
        assert patron.pending_settlement is None
        assert patron.seat_ref is None
        assert not patron.is_checked_in
        # 45 minutes is two started half-hours
        assert patron.bill == 1000

        async with floor.store.read() as uow:
            seat = await uow.get_seat(table.id, 3)
            sessions = await uow.list_game_sessions(alice.user_id)
        assert seat.is_empty
        assert sessions[0].chips_out == 4000
        assert sessions[0].profit == 1000
        assert not sessions[0].is_active

    @pytest.mark.asyncio
    async def test_settlement_is_journaled(self, floor, staff, alice, table, seated):
        await seated()
        floor.clock.advance(minutes=10)
        await floor.settlements.initiate(staff, alice.user_id, table.id, 3, {"500": 5})
        await floor.settlements.confirm(alice)

        async with floor.store.read() as uow:
            journal = await uow.list_transactions(patron_id=alice.user_id)
            patrons = await uow.list_patrons()
            transactions = await uow.list_transactions()

        types = [t.type for t in journal]
        assert types[-2:] == [TransactionType.SETTLEMENT, TransactionType.PLAY_FEE]
        assert journal[-2].bank_delta == 2500
        assert journal[-2].in_play_delta == -3000
        assert find_discrepancies(patrons, transactions) == []

    @pytest.mark.asyncio
    async def test_repeated_confirm_rejected(self, floor, staff, alice, table, seated):
        """A second confirm finds nothing pending and credits nothing."""
        await seated()
        await floor.settlements.initiate(staff, alice.user_id, table.id, 3, {"1000": 4})
        await floor.settlements.confirm(alice)

        with pytest.raises(ConflictError) as exc_info:
            await floor.settlements.confirm(alice)
        assert exc_info.value.code == "NO_PENDING_SETTLEMENT"
        assert (await floor.patron(alice)).bank_chips == 6000

    @pytest.mark.asyncio
    async def test_confirm_and_force_race(self, floor, staff, alice, table, seated):
        """Patron confirm and staff force-complete at once: the bank is credited once."""
        await seated()
        await floor.settlements.initiate(staff, alice.user_id, table.id, 3, {"1000": 4})

        results = await asyncio.gather(
            floor.settlements.confirm(alice),
            floor.settlements.force_complete(staff, alice.user_id),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], ConflictError)
        assert (await floor.patron(alice)).bank_chips == 6000

        async with floor.store.read() as uow:
            settlements = [
                t for t in await uow.list_transactions(patron_id=alice.user_id)
                if t.type == TransactionType.SETTLEMENT
            ]
        assert len(settlements) == 1


class TestStaffResolution:
    """Test force-complete and cancel."""

    @pytest.mark.asyncio
    async def test_force_complete(self, floor, staff, alice, table, seated):
        await seated()
        await floor.settlements.initiate(staff, alice.user_id, table.id, 3, {"1000": 2})
        patron = await floor.settlements.force_complete(staff, alice.user_id)

        assert patron.bank_chips == 4000
        assert patron.chips_in_play == 0

        async with floor.store.read() as uow:
            journal = await uow.list_transactions(patron_id=alice.user_id)
        settlement = next(t for t in journal if t.type == TransactionType.SETTLEMENT)
        assert settlement.note == "force_settled"
        assert settlement.actor_id == staff.user_id

    @pytest.mark.asyncio
    async def test_cancel_keeps_patron_playing(self, floor, staff, alice, table, seated):
        await seated()
        await floor.settlements.initiate(staff, alice.user_id, table.id, 3, {"1000": 2})
        patron = await floor.settlements.cancel(staff, alice.user_id)

        assert patron.pending_settlement is None
        assert patron.seat_ref == (table.id, 3)
        assert patron.chips_in_play == 3000

        # a fresh count may be started afterwards
        await floor.settlements.initiate(staff, alice.user_id, table.id, 3, {"1000": 3})

    @pytest.mark.asyncio
    async def test_cancel_without_pending(self, floor, staff, alice, table, seated):
        await seated()
        with pytest.raises(ConflictError):
            await floor.settlements.cancel(staff, alice.user_id)

    @pytest.mark.asyncio
    async def test_patron_cannot_force(self, floor, staff, alice, table, seated):
        await seated()
        await floor.settlements.initiate(staff, alice.user_id, table.id, 3, {"1000": 2})
        with pytest.raises(AuthorizationError):
            await floor.settlements.force_complete(alice, alice.user_id)

    @pytest.mark.asyncio
    async def test_pending_settlement_blocks_withdrawal(self, floor, staff, alice, table, seated):
        await seated()
        await floor.settlements.initiate(staff, alice.user_id, table.id, 3, {"1000": 2})
        with pytest.raises(ConflictError) as exc_info:
            await floor.withdrawals.request(alice, 500)
        assert exc_info.value.code == "SETTLEMENT_PENDING"
