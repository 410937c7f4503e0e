"""Order workflow with the embedded chip-purchase transaction."""
from typing import Optional

from cardroom.auth.middleware import AuthenticatedUser
from cardroom.auth.roles import Role, require_role
from cardroom.errors import CardroomError, ConflictError, TransientError, ValidationError
from cardroom.floor.journal import TransactionType
from cardroom.floor.orders import (
    CartItem,
    ChipPurchaseStatus,
    ItemType,
    Order,
    OrderEvent,
    OrderItem,
    OrderStatus,
    PaymentDetails,
    chip_lines_match,
    parse_cart,
)
from cardroom.floor.patron import Patron
from cardroom.services.base import Manager, ensure_self, ensure_self_or_staff, new_id
from cardroom.services.ledger import ChipLedger
from cardroom.state.store import UnitOfWork
from cardroom.utils.logger import get_logger

logger = get_logger(__name__)


class OrderManager(Manager):
    """Creates orders from the catalog and moves them through fulfillment."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.ledger = ChipLedger(self.clock)

    async def _price_line(self, uow: UnitOfWork, line: CartItem) -> OrderItem:
        """Build an order line from catalog prices."""
        if line.item_type == ItemType.CHIP:
            option = await uow.get_chip_option(line.item_id)
            if not option.is_available:
                raise ValidationError(f"Chip option {option.name} is not available")
            return OrderItem(
                item_id=option.id,
                item_name=option.name,
                item_type=ItemType.CHIP,
                quantity=line.quantity,
                unit_price=option.price_yen,
                total_item_price=option.price_yen * line.quantity,
                chips_amount=option.chips_amount,
            )
        item = await uow.get_menu_item(line.item_id)
        if not item.is_available:
            raise ValidationError(f"{item.name} is not available")
        return OrderItem(
            item_id=item.id,
            item_name=item.name,
            item_type=ItemType.DRINK,
            quantity=line.quantity,
            unit_price=item.price,
            total_item_price=item.price * line.quantity,
        )

    async def create_order(self, actor: AuthenticatedUser, cart_items: list,
                           patron_id: Optional[str] = None, notes: str = "") -> Order:
        """Persist a PENDING order priced from the catalog.

        Raises:
            ValidationError: For an empty or malformed cart or unavailable items.
            NotFoundError: For unknown catalog items.
        """
        patron_id = patron_id or actor.user_id
        ensure_self_or_staff(actor, patron_id, "place an order")
        cart = parse_cart(cart_items)

        async with self.store.transaction() as uow:
            await uow.get_patron(patron_id)
            items = [await self._price_line(uow, line) for line in cart]
            has_chips = any(item.item_type == ItemType.CHIP for item in items)
            order = Order(
                id=new_id(),
                patron_id=patron_id,
                items=items,
                total_price=sum(item.total_item_price for item in items),
                payment_details=PaymentDetails(
                    chip_purchase_status=ChipPurchaseStatus.PENDING if has_chips
                    else ChipPurchaseStatus.NOT_APPLICABLE,
                ),
                notes=notes,
                ordered_at=self.clock(),
            )
            await uow.save_order(order)

        logger.info(f"Order {order.id} created for {patron_id}: {len(items)} lines, total {order.total_price}")
        await self._notify("orders", order.id, patron_id, order.to_dict())
        return order

    async def purchase_chips_and_finalize_order(
        self,
        actor: AuthenticatedUser,
        order_id: str,
        cart_items: list,
        user_id: str,
    ) -> tuple[Order, Patron]:
        """Credit purchased chips and bill them, atomically with the order update.

        A chip-only order completes immediately; an order with drinks stays
        PENDING for fulfillment. Once the order is identified as the patron's
        open order, any failure marks it FAILED with the cause and re-raises,
        except a TransientError, which leaves it PENDING for a retry.

        Raises:
            ValidationError: If the cart does not match the stored order.
            ConflictError: If the order is not pending or was already credited.
        """
        ensure_self_or_staff(actor, user_id, "purchase chips")

        async with self.store.read() as uow:
            order = await uow.get_order(order_id)
        if order.patron_id != user_id:
            raise ValidationError(f"Order {order_id} does not belong to patron {user_id}")
        self._check_purchasable(order)

        try:
            cart = parse_cart(cart_items)
            if not chip_lines_match(order, cart):
                raise ValidationError("Cart chip lines do not match the order")

            async with self.store.transaction() as uow:
                order = await uow.get_order(order_id)
                self._check_purchasable(order)
                patron = await uow.get_patron(user_id)
                if order.chip_items:
                    await self.ledger.apply(
                        uow, patron, TransactionType.PURCHASE,
                        bank=order.chips_total,
                        bill=order.chips_price_total,
                        reference_id=order.id,
                        actor_id=actor.user_id,
                    )
                    order.payment_details = PaymentDetails(
                        chip_purchase_status=ChipPurchaseStatus.CREDITED,
                        chips_awarded=order.chips_total,
                        chips_price_yen=order.chips_price_total,
                    )
                    if not order.drink_items:
                        order.apply(OrderEvent.AUTO_COMPLETE)
                        order.completed_at = self.clock()
                    await uow.save_order(order)
        except (_NotPurchasable, TransientError):
            # nothing committed; the order stays PENDING and the call can be retried
            raise
        except CardroomError as e:
            await self._mark_failed(order_id, e.message)
            raise
        except Exception as e:
            await self._mark_failed(order_id, f"{type(e).__name__}: {e}")
            raise

        logger.info(
            f"Order {order.id}: credited {order.chips_total} chips to {patron.poker_name}, "
            f"bill now {patron.bill}"
        )
        await self._notify("orders", order.id, patron.id, order.to_dict())
        await self._notify("patrons", patron.id, patron.id, patron.to_dict())
        return order, patron

    def _check_purchasable(self, order: Order) -> None:
        if order.status != OrderStatus.PENDING:
            raise _NotPurchasable(
                f"Order {order.id} is {order.status.value}, not pending",
                code="ILLEGAL_TRANSITION",
            )
        if order.chips_credited:
            raise _NotPurchasable(f"Chips for order {order.id} were already credited", code="ALREADY_CREDITED")

    async def _mark_failed(self, order_id: str, cause: str) -> None:
        async with self.store.transaction() as uow:
            order = await uow.get_order(order_id)
            if order.status != OrderStatus.PENDING or order.chips_credited:
                return
            order.apply(OrderEvent.FAIL)
            order.payment_details.chip_purchase_status = ChipPurchaseStatus.FAILED
            order.payment_details.error = cause
            await uow.save_order(order)
        logger.warning(f"Order {order_id} failed: {cause}")
        await self._notify("orders", order.id, order.patron_id, order.to_dict())

    async def place_order(self, actor: AuthenticatedUser, cart_items: list,
                          patron_id: Optional[str] = None, notes: str = "") -> tuple[Order, Patron]:
        """Create an order and immediately run its chip purchase."""
        order = await self.create_order(actor, cart_items, patron_id=patron_id, notes=notes)
        return await self.purchase_chips_and_finalize_order(actor, order.id, cart_items, order.patron_id)

    @require_role(Role.STAFF)
    async def start_preparing(self, actor: AuthenticatedUser, order_id: str) -> Order:
        async with self.store.transaction() as uow:
            order = await uow.get_order(order_id)
            order.apply(OrderEvent.START_PREPARING)
            order.admin_processed_at = self.clock()
            await uow.save_order(order)

        logger.info(f"Order {order.id} preparing ({actor.poker_name})")
        await self._notify("orders", order.id, order.patron_id, order.to_dict())
        return order

    @require_role(Role.STAFF)
    async def mark_delivered(self, actor: AuthenticatedUser, order_id: str) -> Order:
        async with self.store.transaction() as uow:
            order = await uow.get_order(order_id)
            order.apply(OrderEvent.MARK_DELIVERED)
            order.admin_delivered_at = self.clock()
            await uow.save_order(order)

        logger.info(f"Order {order.id} delivered ({actor.poker_name})")
        await self._notify("orders", order.id, order.patron_id, order.to_dict())
        return order

    async def cancel(self, actor: AuthenticatedUser, order_id: str) -> Order:
        """Cancel an order before completion, reversing any chip credit.

        Patrons may cancel their own orders while still pending; staff may
        cancel any order not yet completed.

        Raises:
            ConflictError: If the order is past cancellation or the patron's
                bank no longer holds the purchased chips.
        """
        async with self.store.transaction() as uow:
            order = await uow.get_order(order_id)
            ensure_self_or_staff(actor, order.patron_id, "cancel an order")
            if not actor.is_staff and order.status != OrderStatus.PENDING:
                raise ConflictError(
                    f"Order {order.id} is already {order.status.value}; ask staff to cancel it",
                    code="ORDER_IN_PROGRESS",
                )
            order.apply(OrderEvent.CANCEL)
            patron = None
            if order.chips_credited:
                patron = await uow.get_patron(order.patron_id)
                details = order.payment_details
                await self.ledger.apply(
                    uow, patron, TransactionType.PURCHASE_REVERSAL,
                    bank=-details.chips_awarded,
                    bill=-details.chips_price_yen,
                    reference_id=order.id,
                    actor_id=actor.user_id,
                )
                details.chip_purchase_status = ChipPurchaseStatus.REVERSED
            order.cancelled_at = self.clock()
            await uow.save_order(order)

        logger.info(f"Order {order.id} cancelled by {actor.poker_name}")
        await self._notify("orders", order.id, order.patron_id, order.to_dict())
        if patron is not None:
            await self._notify("patrons", patron.id, patron.id, patron.to_dict())
        return order

    async def finalize_drink_order_and_bill(self, actor: AuthenticatedUser, order_id: str) -> tuple[Order, Patron]:
        """Patron confirms delivery; drink totals are added to the bill."""
        async with self.store.transaction() as uow:
            order = await uow.get_order(order_id)
            ensure_self(actor, order.patron_id, "confirm this order")
            order.apply(OrderEvent.CONFIRM)
            patron = await uow.get_patron(order.patron_id)
            if order.drinks_total:
                await self.ledger.apply(
                    uow, patron, TransactionType.DRINK_ORDER,
                    bill=order.drinks_total,
                    reference_id=order.id,
                    actor_id=actor.user_id,
                )
            now = self.clock()
            order.customer_confirmed_at = now
            order.completed_at = now
            await uow.save_order(order)

        logger.info(f"Order {order.id} completed; {order.drinks_total} billed to {patron.poker_name}")
        await self._notify("orders", order.id, patron.id, order.to_dict())
        await self._notify("patrons", patron.id, patron.id, patron.to_dict())
        return order, patron

    async def list_orders(
        self,
        actor: AuthenticatedUser,
        patron_id: Optional[str] = None,
        statuses: Optional[list[OrderStatus]] = None,
    ) -> list[Order]:
        if not actor.is_staff:
            patron_id = actor.user_id
        async with self.store.read() as uow:
            return await uow.list_orders(patron_id=patron_id, statuses=statuses)

    async def get_order(self, actor: AuthenticatedUser, order_id: str) -> Order:
        async with self.store.read() as uow:
            order = await uow.get_order(order_id)
        ensure_self_or_staff(actor, order.patron_id, "view this order")
        return order

    async def update_notes(self, actor: AuthenticatedUser, order_id: str, notes: str) -> None:
        """Last-writer-wins note edit."""
        await self.get_order(actor, order_id)
        await self.store.patch("orders", order_id, {"notes": notes})


class _NotPurchasable(ConflictError):
    """The order is past the purchase step; it is left as it is."""
