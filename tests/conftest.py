"""Shared fixtures: an in-memory floor with a controllable clock."""
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
import pytest_asyncio

from cardroom.auth.middleware import AuthenticatedUser
from cardroom.auth.roles import Role
from cardroom.floor.catalog import ChipPurchaseOption, GameTemplate, MenuItem
from cardroom.floor.journal import TransactionType
from cardroom.floor.patron import Patron
from cardroom.floor.seating import Table
from cardroom.services import (
    AccountManager,
    AnnouncementManager,
    CatalogManager,
    GameSessionManager,
    OrderManager,
    ReportManager,
    SeatManager,
    SettlementManager,
    WaitlistManager,
    WithdrawalManager,
)
from cardroom.services.ledger import ChipLedger
from cardroom.state.memory_store import MemoryStore


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 6, 1, 18, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float = 0, seconds: float = 0) -> None:
        self.now += timedelta(minutes=minutes, seconds=seconds)


def as_actor(patron: Patron) -> AuthenticatedUser:
    return AuthenticatedUser(user_id=patron.id, poker_name=patron.poker_name, role=patron.role)


class Floor:
    """Every manager over one store, plus seeding helpers."""

    def __init__(self, store: MemoryStore, clock: FakeClock, feed=None):
        args = (store, feed, clock)
        self.store = store
        self.clock = clock
        self.accounts = AccountManager(*args, bcrypt_rounds=4)
        self.seats = SeatManager(*args)
        self.settlements = SettlementManager(*args, denominations=[10000, 5000, 1000, 500, 100, 25])
        self.withdrawals = WithdrawalManager(*args)
        self.orders = OrderManager(*args)
        self.waitlist = WaitlistManager(*args)
        self.catalog = CatalogManager(*args)
        self.sessions = GameSessionManager(*args)
        self.reports = ReportManager(*args, stale_after_minutes=60)
        self.announcements = AnnouncementManager(*args)
        self.ledger = ChipLedger(clock)

    async def add_patron(self, name: str, role: Role = Role.PATRON, bank_chips: int = 0) -> AuthenticatedUser:
        """Create a patron; opening chips are journaled as a purchase."""
        patron = Patron(
            id=f"{name.lower()}-id",
            poker_name=name,
            email=f"{name.lower()}@example.com",
            role=role,
            approved=True,
            created_at=self.clock(),
        )
        async with self.store.transaction() as uow:
            await uow.save_patron(patron)
            if bank_chips:
                await self.ledger.apply(uow, patron, TransactionType.PURCHASE, bank=bank_chips, note="opening chips")
        return as_actor(patron)

    async def patron(self, actor: AuthenticatedUser) -> Patron:
        async with self.store.read() as uow:
            return await uow.get_patron(actor.user_id)

    async def add_template(self, template_id: str = "nlh-1-2", name: str = "NLH 1/2") -> GameTemplate:
        template = GameTemplate(id=template_id, template_name=name, game_type="nlh", blinds_or_rate="1/2")
        async with self.store.transaction() as uow:
            await uow.save_game_template(template)
        return template

    async def add_chip_option(self, chips_amount: int = 500, price_yen: int = 1000,
                              option_id: str = "chips-500") -> ChipPurchaseOption:
        option = ChipPurchaseOption(id=option_id, name=f"{chips_amount} chips",
                                    chips_amount=chips_amount, price_yen=price_yen)
        async with self.store.transaction() as uow:
            await uow.save_chip_option(option)
        return option

    async def add_drink(self, price: int = 600, item_id: str = "cola") -> MenuItem:
        item = MenuItem(id=item_id, name=item_id.title(), price=price)
        async with self.store.transaction() as uow:
            await uow.save_menu_item(item)
        return item


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def floor(store, clock):
    return Floor(store, clock)


@pytest.fixture
def make_floor(store, clock):
    """Build a floor over the shared store with a given change feed."""
    def _make(feed=None) -> Floor:
        return Floor(store, clock, feed)
    return _make


@pytest_asyncio.fixture
async def staff(floor):
    return await floor.add_patron("Dealer", role=Role.STAFF)


@pytest_asyncio.fixture
async def admin(floor):
    return await floor.add_patron("Manager", role=Role.ADMIN)


@pytest_asyncio.fixture
async def alice(floor):
    return await floor.add_patron("Alice", bank_chips=5000)


@pytest_asyncio.fixture
async def bob(floor):
    return await floor.add_patron("Bob", bank_chips=2000)


@pytest_asyncio.fixture
async def table(floor, staff) -> Table:
    return await floor.seats.create_table(staff, "Table 1", 9, blinds_or_rate="1/2")
