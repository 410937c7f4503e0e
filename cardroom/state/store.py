"""Unit-of-work interface shared by the PostgreSQL and in-memory stores.

Every state change runs inside ``Store.transaction()``: the records read
through the unit of work are locked until the block exits, and all saves
commit together or not at all. ``Store.read()`` gives unlocked snapshots
for queries. ``Store.patch()`` is a plain last-writer-wins write limited to
display fields.
"""
from abc import ABC, abstractmethod
from typing import AsyncContextManager, Iterable, Optional

from cardroom.errors import ValidationError
from cardroom.floor.announcement import Announcement
from cardroom.floor.catalog import ChipPurchaseOption, GameTemplate, MenuItem
from cardroom.floor.journal import ChipTransaction
from cardroom.floor.orders import Order, OrderStatus
from cardroom.floor.patron import Patron
from cardroom.floor.seating import Seat, Table, TableStatus
from cardroom.floor.session import GameSession
from cardroom.floor.waitlist import WaitingListEntry, WaitlistStatus
from cardroom.floor.withdrawal import WithdrawalRequest, WithdrawalStatus

# collection -> fields that may be written without a transaction
PATCHABLE_FIELDS: dict[str, frozenset[str]] = {
    "waiting_list_entries": frozenset({"notes_for_staff", "admin_notes"}),
    "orders": frozenset({"notes"}),
    "withdrawal_requests": frozenset({"notes"}),
    "tables": frozenset({"name", "status", "blinds_or_rate"}),
    "patrons": frozenset({"poker_name"}),
}

_ENUM_FIELDS = {("tables", "status"): TableStatus}


def check_patch(collection: str, changes: dict) -> dict:
    """Validate a patch against the whitelist and coerce enum values.

    Raises:
        ValidationError: If the collection or any field may not be patched.
    """
    allowed = PATCHABLE_FIELDS.get(collection)
    if allowed is None:
        raise ValidationError(f"Records in {collection} cannot be patched")
    if not changes:
        raise ValidationError("Nothing to update")
    rejected = sorted(set(changes) - allowed)
    if rejected:
        raise ValidationError(f"Fields {', '.join(rejected)} of {collection} cannot be patched")
    coerced = {}
    for name, value in changes.items():
        enum_type = _ENUM_FIELDS.get((collection, name))
        if enum_type is not None:
            try:
                value = enum_type(value)
            except ValueError:
                raise ValidationError(f"Invalid {name} {value!r}") from None
        elif not isinstance(value, str):
            raise ValidationError(f"{name} must be a string")
        coerced[name] = value
    return coerced


class UnitOfWork(ABC):
    """Record access inside one transaction (or one read snapshot).

    ``get_*`` methods raise NotFoundError for unknown ids; ``find_*``
    methods return None instead.
    """

    # Patrons
    @abstractmethod
    async def get_patron(self, patron_id: str) -> Patron: ...

    @abstractmethod
    async def find_patron_by_email(self, email: str) -> Optional[Patron]: ...

    @abstractmethod
    async def save_patron(self, patron: Patron) -> None: ...

    @abstractmethod
    async def list_patrons(self) -> list[Patron]: ...

    # Tables and seats
    @abstractmethod
    async def get_table(self, table_id: str) -> Table: ...

    @abstractmethod
    async def save_table(self, table: Table) -> None: ...

    @abstractmethod
    async def list_tables(self) -> list[Table]: ...

    @abstractmethod
    async def get_seat(self, table_id: str, seat_number: int) -> Seat: ...

    @abstractmethod
    async def find_seat_of(self, patron_id: str) -> Optional[Seat]: ...

    @abstractmethod
    async def save_seat(self, seat: Seat) -> None: ...

    @abstractmethod
    async def list_seats(self, table_id: str) -> list[Seat]: ...

    # Orders
    @abstractmethod
    async def get_order(self, order_id: str) -> Order: ...

    @abstractmethod
    async def save_order(self, order: Order) -> None: ...

    @abstractmethod
    async def list_orders(
        self,
        patron_id: Optional[str] = None,
        statuses: Optional[Iterable[OrderStatus]] = None,
    ) -> list[Order]: ...

    # Withdrawals
    @abstractmethod
    async def get_withdrawal(self, request_id: str) -> WithdrawalRequest: ...

    @abstractmethod
    async def save_withdrawal(self, request: WithdrawalRequest) -> None: ...

    @abstractmethod
    async def list_withdrawals(
        self,
        patron_id: Optional[str] = None,
        statuses: Optional[Iterable[WithdrawalStatus]] = None,
    ) -> list[WithdrawalRequest]: ...

    # Waiting list
    @abstractmethod
    async def get_waitlist_entry(self, entry_id: str) -> WaitingListEntry: ...

    @abstractmethod
    async def save_waitlist_entry(self, entry: WaitingListEntry) -> None: ...

    @abstractmethod
    async def list_waitlist_entries(
        self,
        game_template_id: Optional[str] = None,
        patron_id: Optional[str] = None,
        statuses: Optional[Iterable[WaitlistStatus]] = None,
    ) -> list[WaitingListEntry]: ...

    # Catalog
    @abstractmethod
    async def get_game_template(self, template_id: str) -> GameTemplate: ...

    @abstractmethod
    async def save_game_template(self, template: GameTemplate) -> None: ...

    @abstractmethod
    async def delete_game_template(self, template_id: str) -> None: ...

    @abstractmethod
    async def list_game_templates(self) -> list[GameTemplate]: ...

    @abstractmethod
    async def get_chip_option(self, option_id: str) -> ChipPurchaseOption: ...

    @abstractmethod
    async def save_chip_option(self, option: ChipPurchaseOption) -> None: ...

    @abstractmethod
    async def list_chip_options(self) -> list[ChipPurchaseOption]: ...

    @abstractmethod
    async def get_menu_item(self, item_id: str) -> MenuItem: ...

    @abstractmethod
    async def save_menu_item(self, item: MenuItem) -> None: ...

    @abstractmethod
    async def list_menu_items(self) -> list[MenuItem]: ...

    # Announcements
    @abstractmethod
    async def get_announcement(self, announcement_id: str) -> Announcement: ...

    @abstractmethod
    async def save_announcement(self, announcement: Announcement) -> None: ...

    @abstractmethod
    async def delete_announcement(self, announcement_id: str) -> None: ...

    @abstractmethod
    async def list_announcements(self) -> list[Announcement]: ...

    # Game sessions
    @abstractmethod
    async def get_game_session(self, session_id: str) -> GameSession: ...

    @abstractmethod
    async def save_game_session(self, session: GameSession) -> None: ...

    @abstractmethod
    async def list_game_sessions(self, patron_id: Optional[str] = None) -> list[GameSession]: ...

    # Chip journal (append-only)
    @abstractmethod
    async def record_transaction(self, transaction: ChipTransaction) -> None: ...

    @abstractmethod
    async def list_transactions(self, patron_id: Optional[str] = None) -> list[ChipTransaction]: ...


class Store(ABC):
    """Factory for units of work."""

    @abstractmethod
    def transaction(self) -> AsyncContextManager[UnitOfWork]:
        """Open a locking unit of work that commits on clean exit."""

    @abstractmethod
    def read(self) -> AsyncContextManager[UnitOfWork]:
        """Open a read-only snapshot."""

    @abstractmethod
    async def patch(self, collection: str, record_id: str, changes: dict) -> None:
        """Last-writer-wins update of whitelisted display fields.

        Raises:
            ValidationError: If a field is not patchable.
            NotFoundError: If the record does not exist.
        """

    async def connect(self) -> None:
        """Acquire backing resources."""

    async def close(self) -> None:
        """Release backing resources."""
