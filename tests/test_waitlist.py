"""Tests for game templates and waiting lists."""
import pytest

from cardroom.errors import AuthorizationError, ConflictError, ValidationError
from cardroom.floor.waitlist import WaitlistStatus


@pytest.fixture
def template(floor):
    async def _add():
        return await floor.add_template()
    return _add


class TestJoin:
    """Test joining a waiting list."""

    @pytest.mark.asyncio
    async def test_fifo_ranks(self, floor, staff, alice, bob, template):
        """Earlier requests rank first; later joiners queue behind."""
        await template()
        first = await floor.waitlist.join(alice, "nlh-1-2")
        floor.clock.advance(minutes=1)
        second = await floor.waitlist.join(bob, "nlh-1-2")

        assert await floor.waitlist.rank(alice, first.id) == 1
        assert await floor.waitlist.rank(bob, second.id) == 2

        queue = await floor.waitlist.queue("nlh-1-2")
        assert [(entry.patron_id, rank) for entry, rank in queue] == [
            (alice.user_id, 1),
            (bob.user_id, 2),
        ]

    @pytest.mark.asyncio
    async def test_one_open_entry_per_template(self, floor, alice, template):
        await template()
        await floor.waitlist.join(alice, "nlh-1-2")
        with pytest.raises(ConflictError) as exc_info:
            await floor.waitlist.join(alice, "nlh-1-2")
        assert exc_info.value.code == "ALREADY_WAITING"

    @pytest.mark.asyncio
    async def test_rejoin_after_cancel(self, floor, alice, template):
        await template()
        entry = await floor.waitlist.join(alice, "nlh-1-2")
        await floor.waitlist.cancel_by_user(alice, entry.id)
        again = await floor.waitlist.join(alice, "nlh-1-2")
        assert again.status == WaitlistStatus.WAITING

    @pytest.mark.asyncio
    async def test_inactive_template(self, floor, staff, alice):
        await floor.waitlist.upsert_template(staff, "Stud", "stud", template_id="stud", is_active=False)
        with pytest.raises(ValidationError):
            await floor.waitlist.join(alice, "stud")

    @pytest.mark.asyncio
    async def test_patron_cannot_add_others(self, floor, alice, bob, template):
        await template()
        with pytest.raises(AuthorizationError):
            await floor.waitlist.join(alice, "nlh-1-2", patron_id=bob.user_id)


class TestCalling:
    """Test the call / confirm / seat flow."""

    @pytest.mark.asyncio
    async def test_call_moves_queue_up(self, floor, staff, alice, bob, template):
        """A called entry loses its rank and the next patron becomes first."""
        await template()
        first = await floor.waitlist.join(alice, "nlh-1-2")
        floor.clock.advance(minutes=1)
        second = await floor.waitlist.join(bob, "nlh-1-2")

        called = await floor.waitlist.call(staff, first.id)

        assert called.status == WaitlistStatus.CALLED
        assert await floor.waitlist.rank(alice, first.id) is None
        assert await floor.waitlist.rank(bob, second.id) == 1

    @pytest.mark.asyncio
    async def test_recall_counts_calls(self, floor, staff, alice, template):
        await template()
        entry = await floor.waitlist.join(alice, "nlh-1-2")
        await floor.waitlist.call(staff, entry.id)
        floor.clock.advance(minutes=5)
        recalled = await floor.waitlist.call(staff, entry.id)

        assert recalled.call_count == 2
        assert recalled.called_at == floor.clock()

    @pytest.mark.asyncio
    async def test_only_owner_confirms(self, floor, staff, alice, bob, template):
        await template()
        entry = await floor.waitlist.join(alice, "nlh-1-2")
        await floor.waitlist.call(staff, entry.id)
        with pytest.raises(AuthorizationError):
            await floor.waitlist.confirm(bob, entry.id)
        assert (await floor.waitlist.confirm(alice, entry.id)).status == WaitlistStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_confirm_before_call(self, floor, alice, template):
        await template()
        entry = await floor.waitlist.join(alice, "nlh-1-2")
        with pytest.raises(ConflictError):
            await floor.waitlist.confirm(alice, entry.id)

    @pytest.mark.asyncio
    async def test_assign_to_template_table_seats_entry(self, floor, staff, alice, template):
        """Seating a confirmed patron at a table of the template closes their entry."""
        await template()
        table = await floor.seats.create_table(staff, "NLH", 9, game_template_id="nlh-1-2")
        entry = await floor.waitlist.join(alice, "nlh-1-2")
        await floor.waitlist.call(staff, entry.id)
        await floor.waitlist.confirm(alice, entry.id)

        await floor.seats.assign(staff, table.id, 4, alice.user_id)

        entries = await floor.waitlist.list_entries(alice)
        assert entries[0][0].status == WaitlistStatus.SEATED
        assert entries[0][0].seated_at == floor.clock()

    @pytest.mark.asyncio
    async def test_no_show(self, floor, staff, alice, template):
        await template()
        entry = await floor.waitlist.join(alice, "nlh-1-2")
        await floor.waitlist.call(staff, entry.id)
        marked = await floor.waitlist.mark_no_show(staff, entry.id)
        assert marked.status == WaitlistStatus.NO_SHOW
        assert await floor.waitlist.queue("nlh-1-2") == []

    @pytest.mark.asyncio
    async def test_patron_cannot_call(self, floor, alice, template):
        await template()
        entry = await floor.waitlist.join(alice, "nlh-1-2")
        with pytest.raises(AuthorizationError):
            await floor.waitlist.call(alice, entry.id)


class TestNotes:
    """Test last-writer-wins note edits."""

    @pytest.mark.asyncio
    async def test_patron_notes(self, floor, alice, template):
        await template()
        entry = await floor.waitlist.join(alice, "nlh-1-2")
        await floor.waitlist.update_notes(alice, entry.id, notes_for_staff="at the bar")

        entries = await floor.waitlist.list_entries(alice)
        assert entries[0][0].notes_for_staff == "at the bar"

    @pytest.mark.asyncio
    async def test_admin_notes_need_staff(self, floor, staff, alice, template):
        await template()
        entry = await floor.waitlist.join(alice, "nlh-1-2")
        with pytest.raises(AuthorizationError):
            await floor.waitlist.update_notes(alice, entry.id, admin_notes="regular")
        await floor.waitlist.update_notes(staff, entry.id, admin_notes="regular")


class TestTemplates:
    """Test template maintenance."""

    @pytest.mark.asyncio
    async def test_delete_with_waiting_patrons(self, floor, staff, alice, template):
        await template()
        entry = await floor.waitlist.join(alice, "nlh-1-2")
        with pytest.raises(ConflictError) as exc_info:
            await floor.waitlist.delete_template(staff, "nlh-1-2")
        assert exc_info.value.code == "WAITLIST_NOT_EMPTY"

        await floor.waitlist.cancel_by_admin(staff, entry.id)
        await floor.waitlist.delete_template(staff, "nlh-1-2")
        assert await floor.waitlist.list_templates() == []

    @pytest.mark.asyncio
    async def test_invalid_player_range(self, floor, staff):
        with pytest.raises(ValidationError):
            await floor.waitlist.upsert_template(staff, "NLH", "nlh", min_players=6, max_players=2)

    @pytest.mark.asyncio
    async def test_active_only(self, floor, staff):
        await floor.waitlist.upsert_template(staff, "NLH", "nlh", template_id="a")
        await floor.waitlist.upsert_template(staff, "Stud", "stud", template_id="b", is_active=False)
        active = await floor.waitlist.list_templates(active_only=True)
        assert [t.id for t in active] == ["a"]
