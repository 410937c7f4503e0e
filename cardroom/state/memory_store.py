"""In-memory store for tests and local runs.

A single asyncio lock serializes transactions, which gives the same
read-validate-commit guarantees as row locks for a single process. Writes are
buffered in the unit of work and applied only when the block exits cleanly.
"""
import asyncio
import copy
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Hashable, Iterable, Optional

from cardroom.errors import ConflictError, NotFoundError
from cardroom.floor.announcement import Announcement
from cardroom.floor.catalog import ChipPurchaseOption, GameTemplate, MenuItem
from cardroom.floor.journal import ChipTransaction
from cardroom.floor.orders import Order, OrderStatus
from cardroom.floor.patron import Patron
from cardroom.floor.seating import Seat, Table
from cardroom.floor.session import GameSession
from cardroom.floor.waitlist import WaitingListEntry, WaitlistStatus
from cardroom.floor.withdrawal import WithdrawalRequest, WithdrawalStatus
from cardroom.state.store import Store, UnitOfWork, check_patch
from cardroom.utils.logger import get_logger

logger = get_logger(__name__)

COLLECTIONS = (
    "patrons",
    "tables",
    "seats",
    "orders",
    "withdrawal_requests",
    "waiting_list_entries",
    "game_templates",
    "chip_options",
    "menu_items",
    "announcements",
    "game_sessions",
)

_LABELS = {
    "patrons": "Patron",
    "tables": "Table",
    "seats": "Seat",
    "orders": "Order",
    "withdrawal_requests": "Withdrawal request",
    "waiting_list_entries": "Waiting list entry",
    "game_templates": "Game template",
    "chip_options": "Chip option",
    "menu_items": "Menu item",
    "announcements": "Announcement",
    "game_sessions": "Game session",
}

_DELETED = object()


def _filtered(records: Iterable, statuses: Optional[Iterable], **equals: Any) -> list:
    wanted = set(statuses) if statuses is not None else None
    result = []
    for record in records:
        if wanted is not None and record.status not in wanted:
            continue
        if any(value is not None and getattr(record, name) != value for name, value in equals.items()):
            continue
        result.append(record)
    return result


class MemoryUnitOfWork(UnitOfWork):
    """Buffered view over the committed collections."""

    def __init__(self, store: "MemoryStore", writable: bool):
        self._store = store
        self._writable = writable
        self._pending: dict[str, dict[Hashable, Any]] = {name: {} for name in COLLECTIONS}
        self._journal: list[ChipTransaction] = []

    # Generic helpers

    def _lookup(self, collection: str, key: Hashable) -> Optional[Any]:
        pending = self._pending[collection]
        if key in pending:
            record = pending[key]
            return None if record is _DELETED else copy.deepcopy(record)
        record = self._store._data[collection].get(key)
        return copy.deepcopy(record) if record is not None else None

    def _get(self, collection: str, key: Hashable) -> Any:
        record = self._lookup(collection, key)
        if record is None:
            raise NotFoundError(f"{_LABELS[collection]} {key} not found")
        return record

    def _put(self, collection: str, key: Hashable, record: Any) -> None:
        if not self._writable:
            raise RuntimeError("Read snapshots cannot be written")
        self._pending[collection][key] = copy.deepcopy(record) if record is not _DELETED else record

    def _merged(self, collection: str) -> dict[Hashable, Any]:
        merged = dict(self._store._data[collection])
        for key, record in self._pending[collection].items():
            if record is _DELETED:
                merged.pop(key, None)
            else:
                merged[key] = record
        return merged

    def _all(self, collection: str, sort_key: Optional[Callable] = None) -> list:
        records = [copy.deepcopy(r) for r in self._merged(collection).values()]
        if sort_key is not None:
            records.sort(key=sort_key)
        return records

    # Patrons

    async def get_patron(self, patron_id: str) -> Patron:
        return self._get("patrons", patron_id)

    async def find_patron_by_email(self, email: str) -> Optional[Patron]:
        needle = email.strip().lower()
        for patron in self._merged("patrons").values():
            if patron.email.lower() == needle:
                return copy.deepcopy(patron)
        return None

    async def save_patron(self, patron: Patron) -> None:
        self._put("patrons", patron.id, patron)

    async def list_patrons(self) -> list[Patron]:
        return self._all("patrons", lambda p: p.poker_name.lower())

    # Tables and seats

    async def get_table(self, table_id: str) -> Table:
        return self._get("tables", table_id)

    async def save_table(self, table: Table) -> None:
        self._put("tables", table.id, table)

    async def list_tables(self) -> list[Table]:
        return self._all("tables", lambda t: t.name)

    async def get_seat(self, table_id: str, seat_number: int) -> Seat:
        seat = self._lookup("seats", (table_id, seat_number))
        if seat is None:
            raise NotFoundError(f"Seat {seat_number} at table {table_id} not found")
        return seat

    async def find_seat_of(self, patron_id: str) -> Optional[Seat]:
        for seat in self._merged("seats").values():
            if seat.occupant_id == patron_id:
                return copy.deepcopy(seat)
        return None

    async def save_seat(self, seat: Seat) -> None:
        self._put("seats", (seat.table_id, seat.seat_number), seat)

    async def list_seats(self, table_id: str) -> list[Seat]:
        seats = [s for s in self._all("seats") if s.table_id == table_id]
        return sorted(seats, key=lambda s: s.seat_number)

    # Orders

    async def get_order(self, order_id: str) -> Order:
        return self._get("orders", order_id)

    async def save_order(self, order: Order) -> None:
        self._put("orders", order.id, order)

    async def list_orders(
        self,
        patron_id: Optional[str] = None,
        statuses: Optional[Iterable[OrderStatus]] = None,
    ) -> list[Order]:
        orders = self._all("orders", lambda o: o.ordered_at)
        return _filtered(orders, statuses, patron_id=patron_id)

    # Withdrawals

    async def get_withdrawal(self, request_id: str) -> WithdrawalRequest:
        return self._get("withdrawal_requests", request_id)

    async def save_withdrawal(self, request: WithdrawalRequest) -> None:
        self._put("withdrawal_requests", request.id, request)

    async def list_withdrawals(
        self,
        patron_id: Optional[str] = None,
        statuses: Optional[Iterable[WithdrawalStatus]] = None,
    ) -> list[WithdrawalRequest]:
        requests = self._all("withdrawal_requests", lambda r: r.requested_at)
        return _filtered(requests, statuses, patron_id=patron_id)

    # Waiting list

    async def get_waitlist_entry(self, entry_id: str) -> WaitingListEntry:
        return self._get("waiting_list_entries", entry_id)

    async def save_waitlist_entry(self, entry: WaitingListEntry) -> None:
        self._put("waiting_list_entries", entry.id, entry)

    async def list_waitlist_entries(
        self,
        game_template_id: Optional[str] = None,
        patron_id: Optional[str] = None,
        statuses: Optional[Iterable[WaitlistStatus]] = None,
    ) -> list[WaitingListEntry]:
        entries = self._all("waiting_list_entries", lambda e: (e.requested_at, e.id))
        return _filtered(entries, statuses, game_template_id=game_template_id, patron_id=patron_id)

    # Catalog

    async def get_game_template(self, template_id: str) -> GameTemplate:
        return self._get("game_templates", template_id)

    async def save_game_template(self, template: GameTemplate) -> None:
        self._put("game_templates", template.id, template)

    async def delete_game_template(self, template_id: str) -> None:
        self._get("game_templates", template_id)
        self._put("game_templates", template_id, _DELETED)

    async def list_game_templates(self) -> list[GameTemplate]:
        return self._all("game_templates", lambda t: (t.sort_order, t.template_name))

    async def get_chip_option(self, option_id: str) -> ChipPurchaseOption:
        return self._get("chip_options", option_id)

    async def save_chip_option(self, option: ChipPurchaseOption) -> None:
        self._put("chip_options", option.id, option)

    async def list_chip_options(self) -> list[ChipPurchaseOption]:
        return self._all("chip_options", lambda o: o.price_yen)

    async def get_menu_item(self, item_id: str) -> MenuItem:
        return self._get("menu_items", item_id)

    async def save_menu_item(self, item: MenuItem) -> None:
        self._put("menu_items", item.id, item)

    async def list_menu_items(self) -> list[MenuItem]:
        return self._all("menu_items", lambda m: (m.category, m.name))

    # Announcements

    async def get_announcement(self, announcement_id: str) -> Announcement:
        return self._get("announcements", announcement_id)

    async def save_announcement(self, announcement: Announcement) -> None:
        self._put("announcements", announcement.id, announcement)

    async def delete_announcement(self, announcement_id: str) -> None:
        self._get("announcements", announcement_id)
        self._put("announcements", announcement_id, _DELETED)

    async def list_announcements(self) -> list[Announcement]:
        announcements = self._all("announcements", lambda a: (a.created_at, a.id))
        announcements.reverse()
        return announcements

    # Game sessions

    async def get_game_session(self, session_id: str) -> GameSession:
        return self._get("game_sessions", session_id)

    async def save_game_session(self, session: GameSession) -> None:
        self._put("game_sessions", session.id, session)

    async def list_game_sessions(self, patron_id: Optional[str] = None) -> list[GameSession]:
        sessions = self._all("game_sessions", lambda s: s.started_at)
        return [s for s in sessions if patron_id is None or s.patron_id == patron_id]

    # Chip journal

    async def record_transaction(self, transaction: ChipTransaction) -> None:
        if not self._writable:
            raise RuntimeError("Read snapshots cannot be written")
        self._journal.append(copy.deepcopy(transaction))

    async def list_transactions(self, patron_id: Optional[str] = None) -> list[ChipTransaction]:
        journal = self._store._journal + self._journal
        return [copy.deepcopy(t) for t in journal if patron_id is None or t.patron_id == patron_id]

    # Commit

    def _check_constraints(self) -> None:
        """Mirror the unique indexes of the PostgreSQL schema."""
        if self._pending["seats"]:
            occupants: dict[str, tuple] = {}
            for key, seat in self._merged("seats").items():
                if seat.occupant_id is None:
                    continue
                if seat.occupant_id in occupants:
                    raise ConflictError(
                        f"Patron {seat.occupant_id} would occupy two seats",
                        code="ALREADY_SEATED",
                    )
                occupants[seat.occupant_id] = key
        if self._pending["waiting_list_entries"]:
            open_keys = set()
            for entry in self._merged("waiting_list_entries").values():
                if not entry.is_open:
                    continue
                key = (entry.patron_id, entry.game_template_id)
                if key in open_keys:
                    raise ConflictError(
                        "Patron already has an open entry on this waiting list",
                        code="ALREADY_WAITING",
                    )
                open_keys.add(key)
        if self._pending["patrons"]:
            emails = set()
            for patron in self._merged("patrons").values():
                email = patron.email.lower()
                if email in emails:
                    raise ConflictError(f"Email {patron.email} is already registered")
                emails.add(email)

    def _commit(self) -> None:
        self._check_constraints()
        for collection, pending in self._pending.items():
            committed = self._store._data[collection]
            for key, record in pending.items():
                if record is _DELETED:
                    committed.pop(key, None)
                else:
                    committed[key] = record
        self._store._journal.extend(self._journal)


class MemoryStore(Store):
    """Process-local store with one global transaction lock."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._data: dict[str, dict[Hashable, Any]] = {name: {} for name in COLLECTIONS}
        self._journal: list[ChipTransaction] = []

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[MemoryUnitOfWork]:
        async with self._lock:
            uow = MemoryUnitOfWork(self, writable=True)
            yield uow
            uow._commit()

    @asynccontextmanager
    async def read(self) -> AsyncIterator[MemoryUnitOfWork]:
        yield MemoryUnitOfWork(self, writable=False)

    async def patch(self, collection: str, record_id: str, changes: dict) -> None:
        coerced = check_patch(collection, changes)
        record = self._data[collection].get(record_id)
        if record is None:
            raise NotFoundError(f"{_LABELS[collection]} {record_id} not found")
        for name, value in coerced.items():
            setattr(record, name, value)
        logger.debug(f"Patched {collection}/{record_id}: {sorted(coerced)}")
