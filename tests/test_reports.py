"""Tests for journal summaries, reconciliation and stale workflows."""
from datetime import datetime, timezone

import pytest

from cardroom.errors import AuthorizationError
from cardroom.floor.journal import ChipTransaction, TransactionType
from cardroom.floor.patron import Patron
from cardroom.services.ledger import find_discrepancies, replay
from cardroom.services.reports import PatronSummary, format_summary_table, summarize
from cardroom.utils.logger import format_deltas

T0 = datetime(2024, 6, 1, 18, 0, tzinfo=timezone.utc)


def _tx(patron_id: str, kind: TransactionType, bank: int = 0, in_play: int = 0, bill: int = 0) -> ChipTransaction:
    return ChipTransaction(
        id=f"{kind.value}-{bank}-{in_play}-{bill}",
        patron_id=patron_id,
        type=kind,
        bank_delta=bank,
        in_play_delta=in_play,
        bill_delta=bill,
        reference_id=None,
        actor_id=None,
        note=None,
        created_at=T0,
    )


class TestReplay:
    """Test rebuilding balances from the journal."""

    def test_replay(self):
        journal = [
            _tx("p1", TransactionType.PURCHASE, bank=1000, bill=2000),
            _tx("p1", TransactionType.CHECK_IN, bank=-800, in_play=800),
            _tx("p1", TransactionType.SETTLEMENT, bank=1200, in_play=-800),
            _tx("p1", TransactionType.BILL_PAYMENT, bill=-2000),
        ]
        balances = replay(journal)["p1"]
        assert balances.bank_chips == 1400
        assert balances.chips_in_play == 0
        assert balances.bill == 0

    def test_discrepancy_reported(self):
        patron = Patron(id="p1", poker_name="alice", email="a@example.com", bank_chips=999)
        journal = [_tx("p1", TransactionType.PURCHASE, bank=1000)]
        problems = find_discrepancies([patron], journal)
        assert len(problems) == 1
        assert "alice" in problems[0]

    def test_patron_without_journal_must_be_zero(self):
        patron = Patron(id="p1", poker_name="alice", email="a@example.com")
        assert find_discrepancies([patron], []) == []


class TestSummaries:
    """Test per-patron summaries."""

    def test_summarize(self):
        patron = Patron(id="p1", poker_name="alice", email="a@example.com")
        journal = [
            _tx("p1", TransactionType.PURCHASE, bank=1000, bill=2000),
            _tx("p1", TransactionType.CHECK_IN, bank=-1000, in_play=1000),
            _tx("p1", TransactionType.SETTLEMENT, bank=1500, in_play=-1000),
            _tx("p1", TransactionType.PLAY_FEE, bill=500),
            _tx("p1", TransactionType.BILL_PAYMENT, bill=-1000),
            _tx("p2", TransactionType.PURCHASE, bank=9999),
        ]
        summary = summarize(patron, journal)

        assert summary.purchased == 1000
        assert summary.withdrawn == 1000
        assert summary.settled == 1500
        assert summary.net == 500
        assert summary.fees == 500
        assert summary.billed == 2500
        assert summary.paid == 1000
        assert summary.outstanding == 1500

    def test_format_empty(self):
        assert format_summary_table([]) == "No transactions recorded."

    def test_format_table(self):
        summaries = [
            PatronSummary("1", "alice", 500, 750, 500, 0, 0, 0),
            PatronSummary("2", "bob", 500, 200, 500, 0, 0, 0),
        ]
        result = format_summary_table(summaries)
        assert "alice" in result
        assert "+250" in result
        assert "-300" in result


class TestReportManager:
    """Test the staff reports over a live floor."""

    @pytest.mark.asyncio
    async def test_floor_conserves_chips(self, floor, staff, alice, bob, table):
        """After a full evening the journal replays to the stored balances."""
        await floor.add_chip_option()
        await floor.orders.place_order(alice, [{"item_id": "chips-500", "item_type": "chip"}])
        await floor.seats.check_in(staff, alice.user_id, table.id, 1, 2000)
        await floor.seats.check_in(staff, bob.user_id, table.id, 2, 2000)
        floor.clock.advance(minutes=70)
        await floor.settlements.initiate(staff, alice.user_id, table.id, 1, {"1000": 3})
        await floor.settlements.confirm(alice)
        await floor.settlements.initiate(staff, bob.user_id, table.id, 2, {"1000": 1})
        await floor.settlements.force_complete(staff, bob.user_id)

        assert await floor.reports.discrepancies(staff) == []

        summaries = await floor.reports.floor_summary(staff)
        assert [s.player for s in summaries] == ["Alice", "Bob"]
        assert summaries[0].net == 1000
        assert summaries[1].net == -1000

    @pytest.mark.asyncio
    async def test_patron_summary_scope(self, floor, alice, bob):
        summary = await floor.reports.patron_summary(alice, alice.user_id)
        assert summary.purchased == 5000
        with pytest.raises(AuthorizationError):
            await floor.reports.patron_summary(bob, alice.user_id)
        with pytest.raises(AuthorizationError):
            await floor.reports.floor_summary(alice)

    @pytest.mark.asyncio
    async def test_stale_workflows(self, floor, staff, alice, bob, table):
        """Pending settlements and open withdrawals past the threshold are listed, oldest first."""
        await floor.withdrawals.request(bob, 500)
        floor.clock.advance(minutes=10)
        await floor.seats.check_in(staff, alice.user_id, table.id, 1, 1000)
        await floor.settlements.initiate(staff, alice.user_id, table.id, 1, {"1000": 1})

        assert await floor.reports.stale(staff) == []

        floor.clock.advance(minutes=65)
        items = await floor.reports.stale(staff)

        assert [item.kind for item in items] == ["withdrawal:requested", "settlement"]
        assert items[0].age_minutes == 75
        assert items[1].record_id == f"{table.id}:1"
        assert items[1].amount == 1000

    @pytest.mark.asyncio
    async def test_stale_custom_threshold(self, floor, staff, bob):
        await floor.withdrawals.request(bob, 500)
        floor.clock.advance(minutes=5)
        assert len(await floor.reports.stale(staff, threshold_minutes=5)) == 1
        assert await floor.reports.stale(staff, threshold_minutes=6) == []


class TestLogFormatting:
    """Test how balance changes are rendered in the log."""

    def test_only_nonzero_deltas(self):
        assert format_deltas(bank=-800, in_play=800, bill=0) == "bank=-800 in_play=+800"

    def test_no_change(self):
        assert format_deltas(bank=0, in_play=0, bill=0) == "no balance change"
