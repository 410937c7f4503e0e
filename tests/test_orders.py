"""Tests for orders and the chip purchase procedure."""
from unittest.mock import AsyncMock

import pytest

from cardroom.errors import AuthorizationError, ConflictError, TransientError, ValidationError
from cardroom.floor.journal import TransactionType
from cardroom.floor.orders import ChipPurchaseStatus, OrderStatus

CHIPS = {"item_id": "chips-500", "item_type": "chip", "quantity": 2}
COLA = {"itemId": "cola", "itemType": "drink", "quantity": 1}


@pytest.fixture
def catalog(floor):
    async def _seed():
        await floor.add_chip_option()
        await floor.add_drink()
    return _seed


class TestCreateOrder:
    """Test pricing orders from the catalog."""

    @pytest.mark.asyncio
    async def test_prices_come_from_catalog(self, floor, alice, catalog):
        await catalog()
        order = await floor.orders.create_order(alice, [CHIPS, COLA])

        assert order.status == OrderStatus.PENDING
        assert order.total_price == 2 * 1000 + 600
        assert order.chips_total == 1000
        assert order.payment_details.chip_purchase_status == ChipPurchaseStatus.PENDING

    @pytest.mark.asyncio
    async def test_empty_cart(self, floor, alice):
        with pytest.raises(ValidationError):
            await floor.orders.create_order(alice, [])

    @pytest.mark.asyncio
    async def test_unavailable_item(self, floor, staff, alice, catalog):
        await catalog()
        await floor.catalog.save_menu_item(staff, "Cola", 600, is_available=False, item_id="cola")
        with pytest.raises(ValidationError):
            await floor.orders.create_order(alice, [COLA])


class TestPurchaseChips:
    """Test crediting purchased chips."""

    @pytest.mark.asyncio
    async def test_chip_only_order_completes(self, floor, alice, catalog):
        """Chips land in the bank, their price on the bill, and the order completes."""
        await catalog()
        order, patron = await floor.orders.place_order(alice, [CHIPS])

        assert patron.bank_chips == 5000 + 1000
        assert patron.bill == 2000
        assert order.status == OrderStatus.COMPLETED
        assert order.payment_details.chip_purchase_status == ChipPurchaseStatus.CREDITED
        assert order.payment_details.chips_awarded == 1000

        async with floor.store.read() as uow:
            journal = await uow.list_transactions(patron_id=alice.user_id)
        assert journal[-1].type == TransactionType.PURCHASE
        assert journal[-1].reference_id == order.id

    @pytest.mark.asyncio
    async def test_mixed_order_stays_pending(self, floor, alice, catalog):
        await catalog()
        order, patron = await floor.orders.place_order(alice, [CHIPS, COLA])

        assert order.status == OrderStatus.PENDING
        assert order.chips_credited
        # drinks are billed on confirmation, not now
        assert patron.bill == 2000

    @pytest.mark.asyncio
    async def test_second_purchase_rejected(self, floor, alice, catalog):
        await catalog()
        order, _ = await floor.orders.place_order(alice, [CHIPS, COLA])
        with pytest.raises(ConflictError) as exc_info:
            await floor.orders.purchase_chips_and_finalize_order(alice, order.id, [CHIPS], alice.user_id)
        assert exc_info.value.code == "ALREADY_CREDITED"
        assert (await floor.patron(alice)).bank_chips == 6000

    @pytest.mark.asyncio
    async def test_cart_mismatch_fails_order(self, floor, alice, catalog):
        await catalog()
        order = await floor.orders.create_order(alice, [CHIPS])
        tampered = dict(CHIPS, quantity=5)

        with pytest.raises(ValidationError):
            await floor.orders.purchase_chips_and_finalize_order(alice, order.id, [tampered], alice.user_id)

        failed = await floor.orders.get_order(alice, order.id)
        assert failed.status == OrderStatus.FAILED
        assert failed.payment_details.chip_purchase_status == ChipPurchaseStatus.FAILED
        assert failed.payment_details.error
        assert (await floor.patron(alice)).bank_chips == 5000

    @pytest.mark.asyncio
    async def test_unexpected_error_fails_order(self, floor, alice, catalog, monkeypatch):
        """A crash inside the purchase still leaves the order FAILED with its cause."""
        await catalog()
        order = await floor.orders.create_order(alice, [CHIPS])
        monkeypatch.setattr(floor.orders.ledger, "apply", AsyncMock(side_effect=RuntimeError("ledger offline")))

        with pytest.raises(RuntimeError):
            await floor.orders.purchase_chips_and_finalize_order(alice, order.id, [CHIPS], alice.user_id)

        failed = await floor.orders.get_order(alice, order.id)
        assert failed.status == OrderStatus.FAILED
        assert failed.payment_details.chip_purchase_status == ChipPurchaseStatus.FAILED
        assert failed.payment_details.error == "RuntimeError: ledger offline"
        assert (await floor.patron(alice)).bank_chips == 5000

    @pytest.mark.asyncio
    async def test_store_outage_keeps_order_pending(self, floor, alice, catalog, monkeypatch):
        """A transient outage changes nothing, so the same call can simply be retried."""
        await catalog()
        order = await floor.orders.create_order(alice, [CHIPS])
        monkeypatch.setattr(floor.orders.ledger, "apply", AsyncMock(side_effect=TransientError("store unreachable")))

        with pytest.raises(TransientError):
            await floor.orders.purchase_chips_and_finalize_order(alice, order.id, [CHIPS], alice.user_id)

        pending = await floor.orders.get_order(alice, order.id)
        assert pending.status == OrderStatus.PENDING
        assert pending.payment_details.chip_purchase_status == ChipPurchaseStatus.PENDING
        assert pending.payment_details.error is None

        monkeypatch.undo()
        completed, patron = await floor.orders.purchase_chips_and_finalize_order(
            alice, order.id, [CHIPS], alice.user_id
        )
        assert completed.status == OrderStatus.COMPLETED
        assert patron.bank_chips == 6000

    @pytest.mark.asyncio
    async def test_order_of_another_patron(self, floor, alice, bob, catalog):
        """An order that is not the patron's is rejected and left untouched."""
        await catalog()
        order = await floor.orders.create_order(alice, [CHIPS])
        with pytest.raises(AuthorizationError):
            await floor.orders.purchase_chips_and_finalize_order(bob, order.id, [CHIPS], alice.user_id)
        with pytest.raises(ValidationError):
            await floor.orders.purchase_chips_and_finalize_order(bob, order.id, [CHIPS], bob.user_id)

        untouched = await floor.orders.get_order(alice, order.id)
        assert untouched.status == OrderStatus.PENDING


class TestDrinkFulfillment:
    """Test the drink delivery path."""

    @pytest.mark.asyncio
    async def test_drink_billed_on_confirmation(self, floor, staff, alice, catalog):
        await catalog()
        order, _ = await floor.orders.place_order(alice, [COLA])
        await floor.orders.start_preparing(staff, order.id)
        await floor.orders.mark_delivered(staff, order.id)

        completed, patron = await floor.orders.finalize_drink_order_and_bill(alice, order.id)

        assert completed.status == OrderStatus.COMPLETED
        assert completed.customer_confirmed_at == floor.clock()
        assert patron.bill == 600

    @pytest.mark.asyncio
    async def test_confirm_before_delivery(self, floor, staff, alice, catalog):
        await catalog()
        order, _ = await floor.orders.place_order(alice, [COLA])
        await floor.orders.start_preparing(staff, order.id)
        with pytest.raises(ConflictError):
            await floor.orders.finalize_drink_order_and_bill(alice, order.id)
        assert (await floor.patron(alice)).bill == 0

    @pytest.mark.asyncio
    async def test_only_owner_confirms(self, floor, staff, alice, catalog):
        await catalog()
        order, _ = await floor.orders.place_order(alice, [COLA])
        await floor.orders.start_preparing(staff, order.id)
        await floor.orders.mark_delivered(staff, order.id)
        with pytest.raises(AuthorizationError):
            await floor.orders.finalize_drink_order_and_bill(staff, order.id)


class TestCancel:
    """Test cancellation and chip reversal."""

    @pytest.mark.asyncio
    async def test_cancel_reverses_chip_credit(self, floor, staff, alice, catalog):
        await catalog()
        order, _ = await floor.orders.place_order(alice, [CHIPS, COLA])
        cancelled = await floor.orders.cancel(staff, order.id)

        patron = await floor.patron(alice)
        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.payment_details.chip_purchase_status == ChipPurchaseStatus.REVERSED
        assert patron.bank_chips == 5000
        assert patron.bill == 0

    @pytest.mark.asyncio
    async def test_cancel_after_chips_spent(self, floor, staff, table, catalog):
        """Chips already taken to the table cannot be reversed out of the bank."""
        await catalog()
        carol = await floor.add_patron("Carol")
        order, _ = await floor.orders.place_order(carol, [CHIPS, COLA])
        await floor.seats.check_in(staff, carol.user_id, table.id, 1, 1000)

        with pytest.raises(ConflictError) as exc_info:
            await floor.orders.cancel(staff, order.id)
        assert exc_info.value.code == "INSUFFICIENT_CHIPS"
        assert (await floor.orders.get_order(staff, order.id)).status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_patron_cancels_only_pending(self, floor, staff, alice, catalog):
        await catalog()
        order, _ = await floor.orders.place_order(alice, [COLA])
        await floor.orders.start_preparing(staff, order.id)

        with pytest.raises(ConflictError) as exc_info:
            await floor.orders.cancel(alice, order.id)
        assert exc_info.value.code == "ORDER_IN_PROGRESS"
        assert (await floor.orders.cancel(staff, order.id)).status == OrderStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_completed_order_cannot_be_cancelled(self, floor, staff, alice, catalog):
        await catalog()
        order, _ = await floor.orders.place_order(alice, [CHIPS])
        with pytest.raises(ConflictError):
            await floor.orders.cancel(staff, order.id)

    @pytest.mark.asyncio
    async def test_listing_is_scoped(self, floor, staff, alice, bob, catalog):
        await catalog()
        await floor.orders.create_order(alice, [COLA])
        await floor.orders.create_order(bob, [COLA])

        assert len(await floor.orders.list_orders(alice)) == 1
        assert len(await floor.orders.list_orders(staff)) == 2
        with pytest.raises(AuthorizationError):
            await floor.orders.get_order(
                bob, (await floor.orders.list_orders(alice))[0].id
            )
