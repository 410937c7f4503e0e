"""PostgreSQL-backed store.

Inside ``transaction()`` every single-record read takes a row lock with
``SELECT ... FOR UPDATE`` so concurrent procedures touching the same patron,
seat or request serialize on the database.
"""
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Optional

import asyncpg

from cardroom.db.connection import Database, db
from cardroom.db.models import init_db
from cardroom.errors import ConflictError, NotFoundError, TransientError
from cardroom.floor.announcement import Announcement
from cardroom.floor.catalog import ChipPurchaseOption, GameTemplate, MenuItem
from cardroom.floor.journal import ChipTransaction
from cardroom.floor.orders import Order, OrderStatus
from cardroom.floor.patron import Patron
from cardroom.floor.records import record_values
from cardroom.floor.seating import Seat, Table
from cardroom.floor.session import GameSession
from cardroom.floor.waitlist import WaitingListEntry, WaitlistStatus
from cardroom.floor.withdrawal import WithdrawalRequest, WithdrawalStatus
from cardroom.state.store import Store, UnitOfWork, check_patch
from cardroom.utils.logger import get_logger

logger = get_logger(__name__)

# Columns filled by the database when the record leaves them empty
_DB_DEFAULTS = frozenset({"created_at", "updated_at"})

_TRANSIENT_ERRORS = (
    asyncpg.DeadlockDetectedError,
    asyncpg.SerializationError,
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    OSError,
)


def _statuses(statuses: Optional[Iterable]) -> Optional[list[str]]:
    if statuses is None:
        return None
    return [s.value for s in statuses]


class PostgresUnitOfWork(UnitOfWork):
    """Record access over one connection."""

    def __init__(self, conn: asyncpg.Connection, locking: bool):
        self._conn = conn
        self._lock_clause = " FOR UPDATE" if locking else ""

    # Generic helpers

    async def _fetch_one(self, table: str, where: str, *args: Any) -> Optional[asyncpg.Record]:
        return await self._conn.fetchrow(
            f"SELECT * FROM {table} WHERE {where}{self._lock_clause}", *args
        )

    async def _get(self, table: str, label: str, record_id: str) -> asyncpg.Record:
        record = await self._fetch_one(table, "id = $1", record_id)
        if record is None:
            raise NotFoundError(f"{label} {record_id} not found")
        return record

    async def _upsert(self, table: str, keys: tuple[str, ...], obj: Any) -> None:
        values = {
            column: value for column, value in record_values(obj).items()
            if not (value is None and column in _DB_DEFAULTS)
        }
        columns = list(values)
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        updates = ", ".join(f"{c} = EXCLUDED.{c}" for c in columns if c not in keys)
        await self._conn.execute(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
            f"ON CONFLICT ({', '.join(keys)}) DO UPDATE SET {updates}",
            *values.values(),
        )

    async def _list(self, table: str, order_by: str, **filters: Any) -> list[asyncpg.Record]:
        clauses, args = [], []
        for column, value in filters.items():
            if value is None:
                continue
            args.append(value)
            if column == "status":
                clauses.append(f"status = ANY(${len(args)}::text[])")
            else:
                clauses.append(f"{column} = ${len(args)}")
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return await self._conn.fetch(f"SELECT * FROM {table}{where} ORDER BY {order_by}", *args)

    # Patrons

    async def get_patron(self, patron_id: str) -> Patron:
        return Patron.from_record(await self._get("patrons", "Patron", patron_id))

    async def find_patron_by_email(self, email: str) -> Optional[Patron]:
        record = await self._fetch_one("patrons", "LOWER(email) = LOWER($1)", email.strip())
        return Patron.from_record(record) if record else None

    async def save_patron(self, patron: Patron) -> None:
        await self._upsert("patrons", ("id",), patron)

    async def list_patrons(self) -> list[Patron]:
        return [Patron.from_record(r) for r in await self._list("patrons", "LOWER(poker_name)")]

    # Tables and seats

    async def get_table(self, table_id: str) -> Table:
        return Table.from_record(await self._get("tables", "Table", table_id))

    async def save_table(self, table: Table) -> None:
        await self._upsert("tables", ("id",), table)

    async def list_tables(self) -> list[Table]:
        return [Table.from_record(r) for r in await self._list("tables", "name")]

    async def get_seat(self, table_id: str, seat_number: int) -> Seat:
        record = await self._fetch_one("seats", "table_id = $1 AND seat_number = $2", table_id, seat_number)
        if record is None:
            raise NotFoundError(f"Seat {seat_number} at table {table_id} not found")
        return Seat.from_record(record)

    async def find_seat_of(self, patron_id: str) -> Optional[Seat]:
        record = await self._fetch_one("seats", "occupant_id = $1", patron_id)
        return Seat.from_record(record) if record else None

    async def save_seat(self, seat: Seat) -> None:
        await self._upsert("seats", ("table_id", "seat_number"), seat)

    async def list_seats(self, table_id: str) -> list[Seat]:
        records = await self._list("seats", "seat_number", table_id=table_id)
        return [Seat.from_record(r) for r in records]

    # Orders

    async def get_order(self, order_id: str) -> Order:
        return Order.from_record(await self._get("orders", "Order", order_id))

    async def save_order(self, order: Order) -> None:
        await self._upsert("orders", ("id",), order)

    async def list_orders(
        self,
        patron_id: Optional[str] = None,
        statuses: Optional[Iterable[OrderStatus]] = None,
    ) -> list[Order]:
        records = await self._list("orders", "ordered_at", patron_id=patron_id, status=_statuses(statuses))
        return [Order.from_record(r) for r in records]

    # Withdrawals

    async def get_withdrawal(self, request_id: str) -> WithdrawalRequest:
        record = await self._get("withdrawal_requests", "Withdrawal request", request_id)
        return WithdrawalRequest.from_record(record)

    async def save_withdrawal(self, request: WithdrawalRequest) -> None:
        await self._upsert("withdrawal_requests", ("id",), request)

    async def list_withdrawals(
        self,
        patron_id: Optional[str] = None,
        statuses: Optional[Iterable[WithdrawalStatus]] = None,
    ) -> list[WithdrawalRequest]:
        records = await self._list(
            "withdrawal_requests", "requested_at", patron_id=patron_id, status=_statuses(statuses)
        )
        return [WithdrawalRequest.from_record(r) for r in records]

    # Waiting list

    async def get_waitlist_entry(self, entry_id: str) -> WaitingListEntry:
        record = await self._get("waiting_list_entries", "Waiting list entry", entry_id)
        return WaitingListEntry.from_record(record)

    async def save_waitlist_entry(self, entry: WaitingListEntry) -> None:
        await self._upsert("waiting_list_entries", ("id",), entry)

    async def list_waitlist_entries(
        self,
        game_template_id: Optional[str] = None,
        patron_id: Optional[str] = None,
        statuses: Optional[Iterable[WaitlistStatus]] = None,
    ) -> list[WaitingListEntry]:
        records = await self._list(
            "waiting_list_entries",
            "requested_at, id",
            game_template_id=game_template_id,
            patron_id=patron_id,
            status=_statuses(statuses),
        )
        return [WaitingListEntry.from_record(r) for r in records]

    # Catalog

    async def get_game_template(self, template_id: str) -> GameTemplate:
        return GameTemplate.from_record(await self._get("game_templates", "Game template", template_id))

    async def save_game_template(self, template: GameTemplate) -> None:
        await self._upsert("game_templates", ("id",), template)

    async def delete_game_template(self, template_id: str) -> None:
        result = await self._conn.execute("DELETE FROM game_templates WHERE id = $1", template_id)
        if result == "DELETE 0":
            raise NotFoundError(f"Game template {template_id} not found")

    async def list_game_templates(self) -> list[GameTemplate]:
        records = await self._list("game_templates", "sort_order, template_name")
        return [GameTemplate.from_record(r) for r in records]

    async def get_chip_option(self, option_id: str) -> ChipPurchaseOption:
        return ChipPurchaseOption.from_record(await self._get("chip_options", "Chip option", option_id))

    async def save_chip_option(self, option: ChipPurchaseOption) -> None:
        await self._upsert("chip_options", ("id",), option)

    async def list_chip_options(self) -> list[ChipPurchaseOption]:
        return [ChipPurchaseOption.from_record(r) for r in await self._list("chip_options", "price_yen")]

    async def get_menu_item(self, item_id: str) -> MenuItem:
        return MenuItem.from_record(await self._get("menu_items", "Menu item", item_id))

    async def save_menu_item(self, item: MenuItem) -> None:
        await self._upsert("menu_items", ("id",), item)

    async def list_menu_items(self) -> list[MenuItem]:
        return [MenuItem.from_record(r) for r in await self._list("menu_items", "category, name")]

    # Announcements

    async def get_announcement(self, announcement_id: str) -> Announcement:
        return Announcement.from_record(await self._get("announcements", "Announcement", announcement_id))

    async def save_announcement(self, announcement: Announcement) -> None:
        await self._upsert("announcements", ("id",), announcement)

    async def delete_announcement(self, announcement_id: str) -> None:
        result = await self._conn.execute("DELETE FROM announcements WHERE id = $1", announcement_id)
        if result == "DELETE 0":
            raise NotFoundError(f"Announcement {announcement_id} not found")

    async def list_announcements(self) -> list[Announcement]:
        return [Announcement.from_record(r) for r in await self._list("announcements", "created_at DESC, id DESC")]

    # Game sessions

    async def get_game_session(self, session_id: str) -> GameSession:
        return GameSession.from_record(await self._get("game_sessions", "Game session", session_id))

    async def save_game_session(self, session: GameSession) -> None:
        await self._upsert("game_sessions", ("id",), session)

    async def list_game_sessions(self, patron_id: Optional[str] = None) -> list[GameSession]:
        records = await self._list("game_sessions", "started_at", patron_id=patron_id)
        return [GameSession.from_record(r) for r in records]

    # Chip journal

    async def record_transaction(self, transaction: ChipTransaction) -> None:
        values = record_values(transaction)
        columns = list(values)
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        await self._conn.execute(
            f"INSERT INTO chip_transactions ({', '.join(columns)}) VALUES ({placeholders})",
            *values.values(),
        )

    async def list_transactions(self, patron_id: Optional[str] = None) -> list[ChipTransaction]:
        records = await self._list("chip_transactions", "created_at, id", patron_id=patron_id)
        return [ChipTransaction.from_record(r) for r in records]


class PostgresStore(Store):
    """Store over the shared asyncpg pool."""

    def __init__(self, database: Optional[Database] = None):
        self.database = database or db

    async def connect(self) -> None:
        await self.database.connect()
        await init_db()

    async def close(self) -> None:
        await self.database.disconnect()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresUnitOfWork]:
        try:
            async with self.database.transaction() as conn:
                yield PostgresUnitOfWork(conn, locking=True)
        except asyncpg.UniqueViolationError as e:
            logger.warning(f"Unique constraint rejected commit: {e.constraint_name}")
            raise ConflictError(_unique_violation_message(e.constraint_name)) from e
        except asyncpg.CheckViolationError as e:
            logger.warning(f"Check constraint rejected commit: {e.constraint_name}")
            raise ConflictError(f"Balance constraint {e.constraint_name} violated") from e
        except _TRANSIENT_ERRORS as e:
            logger.warning(f"Transaction aborted, safe to retry: {e}")
            raise TransientError("Store temporarily unavailable, please retry") from e

    @asynccontextmanager
    async def read(self) -> AsyncIterator[PostgresUnitOfWork]:
        try:
            async with self.database.connection() as conn:
                yield PostgresUnitOfWork(conn, locking=False)
        except _TRANSIENT_ERRORS as e:
            raise TransientError("Store temporarily unavailable, please retry") from e

    async def patch(self, collection: str, record_id: str, changes: dict) -> None:
        coerced = check_patch(collection, changes)
        assignments = ", ".join(f"{name} = ${i}" for i, name in enumerate(coerced, start=2))
        values = [v.value if hasattr(v, "value") else v for v in coerced.values()]
        try:
            result = await self.database.execute(
                f"UPDATE {collection} SET {assignments} WHERE id = $1", record_id, *values
            )
        except _TRANSIENT_ERRORS as e:
            raise TransientError("Store temporarily unavailable, please retry") from e
        if result == "UPDATE 0":
            raise NotFoundError(f"{collection} record {record_id} not found")


def _unique_violation_message(constraint: Optional[str]) -> str:
    return {
        "idx_seats_occupant": "Patron already occupies a seat",
        "idx_waitlist_open": "Patron already has an open entry on this waiting list",
        "idx_patrons_email": "Email is already registered",
    }.get(constraint or "", "Record already exists")
