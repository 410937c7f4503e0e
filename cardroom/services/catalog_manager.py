"""Chip purchase options and the drink menu."""
from typing import Optional

from cardroom.auth.middleware import AuthenticatedUser
from cardroom.auth.roles import Role, require_role
from cardroom.errors import ValidationError
from cardroom.floor.catalog import ChipPurchaseOption, MenuItem
from cardroom.services.base import Manager, new_id
from cardroom.utils.logger import get_logger

logger = get_logger(__name__)


class CatalogManager(Manager):
    """Staff-maintained price lists. Orders always price from here."""

    @require_role(Role.STAFF)
    async def save_chip_option(self, actor: AuthenticatedUser, name: str, chips_amount: int, price_yen: int,
                               is_available: bool = True, option_id: Optional[str] = None) -> ChipPurchaseOption:
        if chips_amount <= 0 or price_yen < 0:
            raise ValidationError("Chip options need a positive chip amount and a non-negative price")
        option = ChipPurchaseOption(
            id=option_id or new_id(),
            name=name,
            chips_amount=chips_amount,
            price_yen=price_yen,
            is_available=is_available,
        )
        async with self.store.transaction() as uow:
            await uow.save_chip_option(option)
        logger.info(f"Chip option {option.name} saved by {actor.poker_name}")
        await self._notify("chip_options", option.id, None, option.to_dict())
        return option

    @require_role(Role.STAFF)
    async def save_menu_item(self, actor: AuthenticatedUser, name: str, price: int, category: str = "drink",
                             is_available: bool = True, item_id: Optional[str] = None) -> MenuItem:
        if price < 0:
            raise ValidationError("Price cannot be negative")
        item = MenuItem(
            id=item_id or new_id(),
            name=name,
            price=price,
            category=category,
            is_available=is_available,
        )
        async with self.store.transaction() as uow:
            await uow.save_menu_item(item)
        logger.info(f"Menu item {item.name} saved by {actor.poker_name}")
        await self._notify("menu_items", item.id, None, item.to_dict())
        return item

    async def list_chip_options(self, available_only: bool = False) -> list[ChipPurchaseOption]:
        async with self.store.read() as uow:
            options = await uow.list_chip_options()
        return [o for o in options if o.is_available or not available_only]

    async def list_menu_items(self, available_only: bool = False) -> list[MenuItem]:
        async with self.store.read() as uow:
            items = await uow.list_menu_items()
        return [i for i in items if i.is_available or not available_only]
