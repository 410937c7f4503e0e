"""Floor service: FastAPI app with REST procedures and a WebSocket change feed."""
import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from redis.exceptions import RedisError

from cardroom.auth.jwt_handler import TokenError
from cardroom.auth.middleware import AuthenticatedUser, auth_middleware
from cardroom.auth.password import BCRYPT_ROUNDS
from cardroom.config import config
from cardroom.errors import CardroomError
from cardroom.floor.orders import OrderStatus
from cardroom.floor.seating import Seat, Table
from cardroom.floor.withdrawal import WithdrawalStatus
from cardroom.protocol.handlers import MessageHandler, change_message_for
from cardroom.protocol.messages import ErrorMessage, ProcedureResult, PurchaseResult
from cardroom.services import (
    AccountManager,
    AnnouncementManager,
    CatalogManager,
    GameSessionManager,
    InvalidCredentials,
    OrderManager,
    ReportManager,
    SeatManager,
    SettlementManager,
    WaitlistManager,
    WithdrawalManager,
    format_summary_table,
)
from cardroom.services.base import Clock
from cardroom.state.change_feed import ChangeFeed, LocalChangeFeed
from cardroom.state.memory_store import MemoryStore
from cardroom.state.postgres_store import PostgresStore
from cardroom.state.redis_client import redis_client
from cardroom.state.store import Store
from cardroom.utils.logger import get_logger

logger = get_logger(__name__)


# Pydantic models for HTTP API
class RegisterRequest(BaseModel):
    poker_name: str
    email: str
    password: str


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user_id: str
    poker_name: str
    role: str


class RefreshRequest(BaseModel):
    refresh_token: str


class RefreshResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class RenameRequest(BaseModel):
    poker_name: str


class ApprovalRequest(BaseModel):
    approved: bool = True


class BillPaymentRequest(BaseModel):
    amount: int
    note: Optional[str] = None


class CreateTableRequest(BaseModel):
    name: str
    max_seats: int
    game_type: str = "nlh"
    blinds_or_rate: str = ""
    game_template_id: Optional[str] = None
    min_buy_in: int = 0
    max_buy_in: int = 0


class TablePatchRequest(BaseModel):
    name: Optional[str] = None
    status: Optional[str] = None
    blinds_or_rate: Optional[str] = None


class AssignSeatRequest(BaseModel):
    patron_id: str


class CheckInRequest(BaseModel):
    patron_id: str
    table_id: str
    seat_number: int
    amount_to_play: int = 0


class WithdrawalCreateRequest(BaseModel):
    amount: int
    patron_id: Optional[str] = None
    notes: str = ""


class NotesRequest(BaseModel):
    notes: Optional[str] = None


class OrderCreateRequest(BaseModel):
    cart_items: list[dict[str, Any]]
    patron_id: Optional[str] = None
    notes: str = ""


class GameTemplateRequest(BaseModel):
    template_name: str
    game_type: str
    blinds_or_rate: str = ""
    description: str = ""
    min_players: int = 2
    max_players: int = 9
    estimated_duration_minutes: int = 0
    notes_for_user: str = ""
    is_active: bool = True
    sort_order: int = 0


class WaitlistJoinRequest(BaseModel):
    game_template_id: str
    patron_id: Optional[str] = None
    notes_for_staff: str = ""


class WaitlistNotesRequest(BaseModel):
    notes_for_staff: Optional[str] = None
    admin_notes: Optional[str] = None


class ChipOptionRequest(BaseModel):
    name: str
    chips_amount: int
    price_yen: int
    is_available: bool = True


class MenuItemRequest(BaseModel):
    name: str
    price: int
    category: str = "drink"
    is_available: bool = True


class AnnouncementRequest(BaseModel):
    title: str
    text: str = ""
    image_url: Optional[str] = None
    link: Optional[str] = None
    is_published: bool = False
    sort_order: int = 0


class AnnouncementPatchRequest(BaseModel):
    title: Optional[str] = None
    text: Optional[str] = None
    image_url: Optional[str] = None
    link: Optional[str] = None
    is_published: Optional[bool] = None
    sort_order: Optional[int] = None


# Procedure bodies accept camelCase (as the floor clients send) or snake_case
class ProcedureRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InitiateSettlementRequest(ProcedureRequest):
    user_id: str
    table_id: str
    seat_number: int
    declared_total: Optional[int] = None
    denomination_counts: dict[str, int] = Field(default_factory=dict)


class PatronProcedureRequest(ProcedureRequest):
    user_id: str


class PurchaseChipsRequest(ProcedureRequest):
    order_id: str
    cart_items: list[dict[str, Any]]
    user_id: str


class OrderProcedureRequest(ProcedureRequest):
    order_id: str


class DispenseRequest(ProcedureRequest):
    withdrawal_request_id: str


class AdminClaimRequest(ProcedureRequest):
    email: str


def _table_view(table: Table, seats: list[Seat]) -> dict:
    data = table.to_dict()
    data["seats"] = [seat.to_dict() for seat in seats]
    return data


# Global server state
class FloorServer:
    """Owns the store, the change feed and the workflow managers."""

    def __init__(self):
        self.store: Optional[Store] = None
        self.feed: Optional[ChangeFeed] = None
        self.connections: dict[str, tuple[WebSocket, AuthenticatedUser]] = {}  # user_id -> socket
        self.handler = MessageHandler()
        self._relay_task: Optional[asyncio.Task] = None

    def use_store(
        self,
        store: Store,
        feed: Optional[ChangeFeed] = None,
        clock: Optional[Clock] = None,
        bcrypt_rounds: int = BCRYPT_ROUNDS,
    ) -> None:
        """Build the managers on top of a store and change feed."""
        self.store = store
        self.feed = feed
        if isinstance(feed, LocalChangeFeed):
            feed.subscribe(self.relay)
        args = (store, feed, clock)
        self.accounts = AccountManager(*args, bcrypt_rounds=bcrypt_rounds)
        self.handler.refresh = self.accounts.refresh
        self.seats = SeatManager(*args)
        self.settlements = SettlementManager(*args)
        self.withdrawals = WithdrawalManager(*args)
        self.orders = OrderManager(*args)
        self.waitlist = WaitlistManager(*args)
        self.catalog = CatalogManager(*args)
        self.announcements = AnnouncementManager(*args)
        self.sessions = GameSessionManager(*args)
        self.reports = ReportManager(*args)

    async def initialize(self):
        """Connect the configured backend unless a store was injected."""
        if self.store is None:
            if config.store_backend == "memory":
                auth_middleware.check_revocation = False
                self.use_store(MemoryStore(), LocalChangeFeed())
            else:
                await redis_client.connect()
                self.use_store(PostgresStore(), ChangeFeed())
                self._relay_task = asyncio.create_task(self._relay_loop())

        await self.store.connect()
        logger.info(f"Floor server initialized ({type(self.store).__name__})")

    async def cleanup(self):
        """Clean up server resources."""
        if self._relay_task:
            self._relay_task.cancel()
            try:
                await self._relay_task
            except asyncio.CancelledError:
                pass

        if self.store is not None:
            await self.store.close()
        if redis_client.connected:
            await redis_client.disconnect()

        logger.info("Floor server shutdown complete")

    async def _relay_loop(self):
        """Forward change events from Redis to connected sockets."""
        while True:
            pubsub = redis_client.pubsub()
            try:
                await pubsub.subscribe(config.change_channel)
                async for message in pubsub.listen():
                    if message["type"] != "message":
                        continue
                    await self.relay(json.loads(message["data"]))
            except asyncio.CancelledError:
                break
            except (RedisError, OSError) as e:
                logger.error(f"Change feed subscription lost: {e}")
                await asyncio.sleep(1)
            finally:
                await pubsub.aclose()

    async def relay(self, event: dict) -> None:
        """Send one change event to every socket allowed to see it."""
        for user_id, (_, user) in list(self.connections.items()):
            message = change_message_for(event, user)
            if message is not None:
                await self.send_to_user(user_id, message)

    def register_connection(self, user: AuthenticatedUser, websocket: WebSocket):
        self.connections[user.user_id] = (websocket, user)
        logger.debug(f"Registered connection for {user.poker_name}")

    def unregister_connection(self, user_id: str, websocket: WebSocket):
        current = self.connections.get(user_id)
        if current is not None and current[0] is websocket:
            del self.connections[user_id]

    async def send_to_user(self, user_id: str, message: dict):
        """Send a message to a specific user."""
        entry = self.connections.get(user_id)
        if entry is None:
            return
        try:
            await entry[0].send_json(message)
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"Dropping connection for {user_id}: {e}")
            self.unregister_connection(user_id, entry[0])


# Global server instance
server = FloorServer()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    await server.initialize()
    yield
    await server.cleanup()


# Create FastAPI app
app = FastAPI(
    title="Card Room Floor Service",
    description="Seats, chip custody, settlements, withdrawals, orders and waiting lists",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware - allow local development
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"http://(localhost|127\.0\.0\.1)(:\d+)?",  # Allow any localhost port
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CardroomError)
async def cardroom_error_handler(request: Request, exc: CardroomError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(TokenError)
async def token_error_handler(request: Request, exc: TokenError):
    return JSONResponse(
        status_code=401,
        content={"status": "error", "code": "UNAUTHENTICATED", "message": str(exc)},
    )


@app.exception_handler(InvalidCredentials)
async def invalid_credentials_handler(request: Request, exc: InvalidCredentials):
    return JSONResponse(
        status_code=401,
        content={"status": "error", "code": "UNAUTHENTICATED", "message": str(exc)},
    )


@app.exception_handler(RedisError)
async def redis_error_handler(request: Request, exc: RedisError):
    logger.error(f"Redis unavailable: {exc}")
    return JSONResponse(
        status_code=503,
        content={"status": "error", "code": "UNAVAILABLE", "message": "Cache temporarily unavailable"},
    )


async def current_user(authorization: Optional[str] = Header(None)) -> AuthenticatedUser:
    """Resolve the bearer token of the request into the acting user."""
    return await auth_middleware.authenticate_header(authorization)


def _tokens_response(tokens) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        user_id=tokens.patron.id,
        poker_name=tokens.patron.poker_name,
        role=tokens.patron.role.value,
    )


# Health check
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "store": type(server.store).__name__ if server.store else None}


# Auth endpoints
@app.post("/api/register", response_model=TokenResponse)
async def register(request: RegisterRequest):
    """Register a new patron."""
    tokens = await server.accounts.register(request.poker_name, request.email, request.password)
    return _tokens_response(tokens)


@app.post("/api/login", response_model=TokenResponse)
async def login(request: LoginRequest):
    """Login and get tokens."""
    tokens = await server.accounts.login(request.email, request.password)
    return _tokens_response(tokens)


@app.post("/api/refresh", response_model=RefreshResponse)
async def refresh_token(request: RefreshRequest):
    """Refresh access token."""
    return RefreshResponse(access_token=await server.accounts.refresh(request.refresh_token))


@app.post("/api/logout")
async def logout(user: AuthenticatedUser = Depends(current_user)):
    await auth_middleware.revoke_token(user.token)
    return {"message": "Logged out"}


@app.get("/api/me")
async def me(user: AuthenticatedUser = Depends(current_user)):
    patron = await server.accounts.get_patron(user, user.user_id)
    return patron.to_dict()


# Patrons
@app.get("/api/patrons")
async def list_patrons(user: AuthenticatedUser = Depends(current_user)):
    return {"patrons": [p.to_dict() for p in await server.accounts.list_patrons(user)]}


@app.get("/api/patrons/{patron_id}")
async def get_patron(patron_id: str, user: AuthenticatedUser = Depends(current_user)):
    return (await server.accounts.get_patron(user, patron_id)).to_dict()


@app.patch("/api/patrons/{patron_id}")
async def rename_patron(patron_id: str, request: RenameRequest, user: AuthenticatedUser = Depends(current_user)):
    return (await server.accounts.rename(user, patron_id, request.poker_name)).to_dict()


@app.post("/api/patrons/{patron_id}/approval")
async def approve_patron(patron_id: str, request: ApprovalRequest, user: AuthenticatedUser = Depends(current_user)):
    return (await server.accounts.approve_patron(user, patron_id, request.approved)).to_dict()


@app.post("/api/patrons/{patron_id}/bill-payments")
async def record_bill_payment(patron_id: str, request: BillPaymentRequest,
                              user: AuthenticatedUser = Depends(current_user)):
    patron = await server.accounts.record_bill_payment(user, patron_id, request.amount, request.note)
    return patron.to_dict()


@app.get("/api/patrons/{patron_id}/sessions")
async def list_game_sessions(patron_id: str, user: AuthenticatedUser = Depends(current_user)):
    sessions = await server.sessions.list_sessions(user, patron_id)
    return {"sessions": [s.to_dict() for s in sessions]}


@app.get("/api/patrons/{patron_id}/summary")
async def patron_summary(patron_id: str, user: AuthenticatedUser = Depends(current_user)):
    return (await server.reports.patron_summary(user, patron_id)).to_dict()


# Tables and seats
@app.get("/api/tables")
async def list_tables():
    """List tables with their seats."""
    return {"tables": [_table_view(table, seats) for table, seats in await server.seats.list_tables()]}


@app.post("/api/tables")
async def create_table(request: CreateTableRequest, user: AuthenticatedUser = Depends(current_user)):
    """Create a new table (staff only)."""
    table = await server.seats.create_table(user, **request.model_dump())
    return _table_view(*await server.seats.get_table(table.id))


@app.get("/api/tables/{table_id}")
async def get_table(table_id: str):
    return _table_view(*await server.seats.get_table(table_id))


@app.patch("/api/tables/{table_id}")
async def update_table(table_id: str, request: TablePatchRequest, user: AuthenticatedUser = Depends(current_user)):
    table = await server.seats.update_table(user, table_id, **request.model_dump(exclude_none=True))
    return table.to_dict()


@app.post("/api/tables/{table_id}/seats/{seat_number}/assign")
async def assign_seat(table_id: str, seat_number: int, request: AssignSeatRequest,
                      user: AuthenticatedUser = Depends(current_user)):
    seat = await server.seats.assign(user, table_id, seat_number, request.patron_id)
    return seat.to_dict()


@app.post("/api/tables/{table_id}/seats/{seat_number}/release")
async def release_seat(table_id: str, seat_number: int, user: AuthenticatedUser = Depends(current_user)):
    seat = await server.seats.release(user, table_id, seat_number)
    return seat.to_dict()


@app.post("/api/check-in")
async def check_in(request: CheckInRequest, user: AuthenticatedUser = Depends(current_user)):
    patron = await server.seats.check_in(
        user, request.patron_id, request.table_id, request.seat_number, request.amount_to_play
    )
    return patron.to_dict()


# Privileged procedures
@app.post("/api/procedures/initiateChipSettlement", response_model=ProcedureResult)
async def initiate_chip_settlement(request: InitiateSettlementRequest, user: AuthenticatedUser = Depends(current_user)):
    patron = await server.settlements.initiate(
        user,
        request.user_id,
        request.table_id,
        request.seat_number,
        request.denomination_counts,
        declared_total=request.declared_total,
    )
    total = patron.pending_settlement.declared_total
    return ProcedureResult(message=f"Settlement of {total} chips awaiting confirmation by {patron.poker_name}")


@app.post("/api/procedures/confirmAndFinalizeChipSettlement", response_model=ProcedureResult)
async def confirm_chip_settlement(user: AuthenticatedUser = Depends(current_user)):
    patron = await server.settlements.confirm(user)
    return ProcedureResult(message=f"Settlement confirmed; bank chips now {patron.bank_chips}")


@app.post("/api/procedures/adminForceCompleteChipSettlement", response_model=ProcedureResult)
async def force_complete_chip_settlement(request: PatronProcedureRequest,
                                         user: AuthenticatedUser = Depends(current_user)):
    patron = await server.settlements.force_complete(user, request.user_id)
    return ProcedureResult(message=f"Settlement force-completed for {patron.poker_name}")


@app.post("/api/procedures/adminCancelChipSettlement", response_model=ProcedureResult)
async def cancel_chip_settlement(request: PatronProcedureRequest, user: AuthenticatedUser = Depends(current_user)):
    patron = await server.settlements.cancel(user, request.user_id)
    return ProcedureResult(message=f"Settlement cancelled for {patron.poker_name}")


@app.post("/api/procedures/purchaseChipsAndFinalizeOrder", response_model=PurchaseResult)
async def purchase_chips(request: PurchaseChipsRequest, user: AuthenticatedUser = Depends(current_user)):
    order, patron = await server.orders.purchase_chips_and_finalize_order(
        user, request.order_id, request.cart_items, request.user_id
    )
    return PurchaseResult(
        message=f"Credited {order.chips_total} chips; order {order.status.value}",
        new_bill=patron.bill,
    )


@app.post("/api/procedures/finalizeDrinkOrderAndBill", response_model=ProcedureResult)
async def finalize_drink_order(request: OrderProcedureRequest, user: AuthenticatedUser = Depends(current_user)):
    order, patron = await server.orders.finalize_drink_order_and_bill(user, request.order_id)
    return ProcedureResult(message=f"Order completed; {order.drinks_total} added to bill ({patron.bill})")


@app.post("/api/procedures/dispenseApprovedChipsAndMarkAsDelivered", response_model=ProcedureResult)
async def dispense_withdrawal(request: DispenseRequest, user: AuthenticatedUser = Depends(current_user)):
    withdrawal = await server.withdrawals.dispense(user, request.withdrawal_request_id)
    return ProcedureResult(message=f"Dispensed {withdrawal.requested_amount} chips; awaiting patron confirmation")


@app.post("/api/procedures/setAdminClaim", response_model=ProcedureResult)
async def set_admin_claim(request: AdminClaimRequest, user: AuthenticatedUser = Depends(current_user)):
    patron = await server.accounts.set_admin_claim(user, request.email)
    return ProcedureResult(message=f"{patron.poker_name} is now {patron.role.value}")


# Withdrawals
@app.post("/api/withdrawals")
async def request_withdrawal(request: WithdrawalCreateRequest, user: AuthenticatedUser = Depends(current_user)):
    withdrawal = await server.withdrawals.request(
        user, request.amount, patron_id=request.patron_id, notes=request.notes
    )
    return withdrawal.to_dict()


@app.get("/api/withdrawals")
async def list_withdrawals(patron_id: Optional[str] = None, status: Optional[WithdrawalStatus] = None,
                           user: AuthenticatedUser = Depends(current_user)):
    requests = await server.withdrawals.list_requests(
        user, patron_id=patron_id, statuses=[status] if status else None
    )
    return {"withdrawals": [r.to_dict() for r in requests]}


@app.post("/api/withdrawals/{request_id}/approve")
async def approve_withdrawal(request_id: str, user: AuthenticatedUser = Depends(current_user)):
    return (await server.withdrawals.approve(user, request_id)).to_dict()


@app.post("/api/withdrawals/{request_id}/deny")
async def deny_withdrawal(request_id: str, request: NotesRequest, user: AuthenticatedUser = Depends(current_user)):
    return (await server.withdrawals.deny(user, request_id, request.notes)).to_dict()


@app.post("/api/withdrawals/{request_id}/cancel")
async def cancel_withdrawal(request_id: str, request: NotesRequest, user: AuthenticatedUser = Depends(current_user)):
    return (await server.withdrawals.cancel(user, request_id, request.notes)).to_dict()


@app.post("/api/withdrawals/{request_id}/confirm")
async def confirm_withdrawal(request_id: str, user: AuthenticatedUser = Depends(current_user)):
    return (await server.withdrawals.confirm(user, request_id)).to_dict()


@app.patch("/api/withdrawals/{request_id}")
async def update_withdrawal_notes(request_id: str, request: NotesRequest,
                                  user: AuthenticatedUser = Depends(current_user)):
    await server.withdrawals.update_notes(user, request_id, request.notes or "")
    return {"message": "Notes updated"}


# Orders
@app.post("/api/orders")
async def create_order(request: OrderCreateRequest, user: AuthenticatedUser = Depends(current_user)):
    """Create a pending order; chips are credited by purchaseChipsAndFinalizeOrder."""
    order = await server.orders.create_order(
        user, request.cart_items, patron_id=request.patron_id, notes=request.notes
    )
    return order.to_dict()


@app.post("/api/orders/place")
async def place_order(request: OrderCreateRequest, user: AuthenticatedUser = Depends(current_user)):
    """Create an order and run its chip purchase in one call."""
    order, patron = await server.orders.place_order(
        user, request.cart_items, patron_id=request.patron_id, notes=request.notes
    )
    return {"order": order.to_dict(), "new_bill": patron.bill}


@app.get("/api/orders")
async def list_orders(patron_id: Optional[str] = None, status: Optional[OrderStatus] = None,
                      user: AuthenticatedUser = Depends(current_user)):
    orders = await server.orders.list_orders(user, patron_id=patron_id, statuses=[status] if status else None)
    return {"orders": [o.to_dict() for o in orders]}


@app.get("/api/orders/{order_id}")
async def get_order(order_id: str, user: AuthenticatedUser = Depends(current_user)):
    return (await server.orders.get_order(user, order_id)).to_dict()


@app.post("/api/orders/{order_id}/preparing")
async def start_preparing_order(order_id: str, user: AuthenticatedUser = Depends(current_user)):
    return (await server.orders.start_preparing(user, order_id)).to_dict()


@app.post("/api/orders/{order_id}/delivered")
async def mark_order_delivered(order_id: str, user: AuthenticatedUser = Depends(current_user)):
    return (await server.orders.mark_delivered(user, order_id)).to_dict()


@app.post("/api/orders/{order_id}/cancel")
async def cancel_order(order_id: str, user: AuthenticatedUser = Depends(current_user)):
    return (await server.orders.cancel(user, order_id)).to_dict()


@app.patch("/api/orders/{order_id}")
async def update_order_notes(order_id: str, request: NotesRequest, user: AuthenticatedUser = Depends(current_user)):
    await server.orders.update_notes(user, order_id, request.notes or "")
    return {"message": "Notes updated"}


# Game templates
@app.get("/api/templates")
async def list_templates(active_only: bool = False):
    templates = await server.waitlist.list_templates(active_only=active_only)
    return {"templates": [t.to_dict() for t in sorted(templates, key=lambda t: t.sort_order)]}


@app.post("/api/templates")
async def create_template(request: GameTemplateRequest, user: AuthenticatedUser = Depends(current_user)):
    return (await server.waitlist.upsert_template(user, **request.model_dump())).to_dict()


@app.put("/api/templates/{template_id}")
async def update_template(template_id: str, request: GameTemplateRequest,
                          user: AuthenticatedUser = Depends(current_user)):
    template = await server.waitlist.upsert_template(user, template_id=template_id, **request.model_dump())
    return template.to_dict()


@app.delete("/api/templates/{template_id}")
async def delete_template(template_id: str, user: AuthenticatedUser = Depends(current_user)):
    await server.waitlist.delete_template(user, template_id)
    return {"message": f"Template '{template_id}' deleted"}


@app.get("/api/templates/{template_id}/queue")
async def template_queue(template_id: str):
    queue = await server.waitlist.queue(template_id)
    return {"entries": [entry.to_dict(rank=rank) for entry, rank in queue]}


# Waiting list
@app.post("/api/waitlist")
async def join_waitlist(request: WaitlistJoinRequest, user: AuthenticatedUser = Depends(current_user)):
    entry = await server.waitlist.join(
        user, request.game_template_id, patron_id=request.patron_id, notes_for_staff=request.notes_for_staff
    )
    return entry.to_dict(rank=await server.waitlist.rank(user, entry.id))


@app.get("/api/waitlist")
async def list_waitlist(patron_id: Optional[str] = None, user: AuthenticatedUser = Depends(current_user)):
    entries = await server.waitlist.list_entries(user, patron_id=patron_id)
    return {"entries": [entry.to_dict(rank=rank) for entry, rank in entries]}


@app.get("/api/waitlist/{entry_id}/rank")
async def waitlist_rank(entry_id: str, user: AuthenticatedUser = Depends(current_user)):
    return {"id": entry_id, "rank": await server.waitlist.rank(user, entry_id)}


@app.post("/api/waitlist/{entry_id}/call")
async def call_waitlist_entry(entry_id: str, user: AuthenticatedUser = Depends(current_user)):
    return (await server.waitlist.call(user, entry_id)).to_dict()


@app.post("/api/waitlist/{entry_id}/confirm")
async def confirm_waitlist_entry(entry_id: str, user: AuthenticatedUser = Depends(current_user)):
    return (await server.waitlist.confirm(user, entry_id)).to_dict()


@app.post("/api/waitlist/{entry_id}/seat")
async def seat_waitlist_entry(entry_id: str, user: AuthenticatedUser = Depends(current_user)):
    return (await server.waitlist.seat(user, entry_id)).to_dict()


@app.post("/api/waitlist/{entry_id}/cancel")
async def cancel_waitlist_entry(entry_id: str, user: AuthenticatedUser = Depends(current_user)):
    """Staff cancellations are recorded as by-admin, a patron's own as by-user."""
    if user.is_staff:
        entry = await server.waitlist.cancel_by_admin(user, entry_id)
    else:
        entry = await server.waitlist.cancel_by_user(user, entry_id)
    return entry.to_dict()


@app.post("/api/waitlist/{entry_id}/no-show")
async def mark_waitlist_no_show(entry_id: str, user: AuthenticatedUser = Depends(current_user)):
    return (await server.waitlist.mark_no_show(user, entry_id)).to_dict()


@app.patch("/api/waitlist/{entry_id}")
async def update_waitlist_notes(entry_id: str, request: WaitlistNotesRequest,
                                user: AuthenticatedUser = Depends(current_user)):
    await server.waitlist.update_notes(
        user, entry_id, notes_for_staff=request.notes_for_staff, admin_notes=request.admin_notes
    )
    return {"message": "Notes updated"}


# Catalog
@app.get("/api/chip-options")
async def list_chip_options(available_only: bool = False):
    options = await server.catalog.list_chip_options(available_only=available_only)
    return {"chip_options": [o.to_dict() for o in options]}


@app.post("/api/chip-options")
async def create_chip_option(request: ChipOptionRequest, user: AuthenticatedUser = Depends(current_user)):
    return (await server.catalog.save_chip_option(user, **request.model_dump())).to_dict()


@app.put("/api/chip-options/{option_id}")
async def update_chip_option(option_id: str, request: ChipOptionRequest,
                             user: AuthenticatedUser = Depends(current_user)):
    option = await server.catalog.save_chip_option(user, option_id=option_id, **request.model_dump())
    return option.to_dict()


@app.get("/api/menu-items")
async def list_menu_items(available_only: bool = False):
    items = await server.catalog.list_menu_items(available_only=available_only)
    return {"menu_items": [i.to_dict() for i in items]}


@app.post("/api/menu-items")
async def create_menu_item(request: MenuItemRequest, user: AuthenticatedUser = Depends(current_user)):
    return (await server.catalog.save_menu_item(user, **request.model_dump())).to_dict()


@app.put("/api/menu-items/{item_id}")
async def update_menu_item(item_id: str, request: MenuItemRequest, user: AuthenticatedUser = Depends(current_user)):
    item = await server.catalog.save_menu_item(user, item_id=item_id, **request.model_dump())
    return item.to_dict()


# Announcements
@app.get("/api/announcements")
async def list_published_announcements():
    announcements = await server.announcements.list_published()
    return {"announcements": [a.to_dict() for a in announcements]}


@app.get("/api/announcements/all")
async def list_all_announcements(user: AuthenticatedUser = Depends(current_user)):
    announcements = await server.announcements.list_all(user)
    return {"announcements": [a.to_dict() for a in announcements]}


@app.post("/api/announcements")
async def create_announcement(request: AnnouncementRequest, user: AuthenticatedUser = Depends(current_user)):
    return (await server.announcements.create(user, **request.model_dump())).to_dict()


@app.patch("/api/announcements/{announcement_id}")
async def update_announcement(announcement_id: str, request: AnnouncementPatchRequest,
                              user: AuthenticatedUser = Depends(current_user)):
    changes = request.model_dump(exclude_unset=True)
    return (await server.announcements.update(user, announcement_id, **changes)).to_dict()


@app.delete("/api/announcements/{announcement_id}")
async def delete_announcement(announcement_id: str, user: AuthenticatedUser = Depends(current_user)):
    await server.announcements.delete(user, announcement_id)
    return {"message": "Announcement deleted"}


# Reports
@app.get("/api/reports/summary")
async def summary_report(output: str = Query("json", alias="format"),
                         user: AuthenticatedUser = Depends(current_user)):
    """Journal summary per patron; ``format=text`` returns a printable table."""
    summaries = await server.reports.floor_summary(user)
    if output == "text":
        return PlainTextResponse(format_summary_table(summaries))
    return {"patrons": [s.to_dict() for s in summaries]}


@app.get("/api/reports/stale")
async def stale_report(threshold_minutes: Optional[int] = None, user: AuthenticatedUser = Depends(current_user)):
    items = await server.reports.stale(user, threshold_minutes=threshold_minutes)
    return {"items": [item.to_dict() for item in items]}


@app.get("/api/reports/discrepancies")
async def discrepancy_report(user: AuthenticatedUser = Depends(current_user)):
    return {"discrepancies": await server.reports.discrepancies(user)}


# WebSocket endpoint
@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint streaming change notifications."""
    await websocket.accept()

    user: Optional[AuthenticatedUser] = None

    try:
        while True:
            data = await websocket.receive_text()

            response, authed = await server.handler.handle_message(data, user)
            if authed is not None and (user is None or authed.user_id != user.user_id):
                if user is not None:
                    server.unregister_connection(user.user_id, websocket)
                server.register_connection(authed, websocket)
            user = authed if authed is not None else user

            await websocket.send_json(response)

    except WebSocketDisconnect:
        logger.debug("WebSocket disconnected")
    except RedisError as e:
        logger.error(f"WebSocket error: {e}")
        await websocket.send_json(
            ErrorMessage(message="Cache temporarily unavailable", code="UNAVAILABLE").model_dump()
        )
    finally:
        if user:
            server.unregister_connection(user.user_id, websocket)


def main():
    import uvicorn
    uvicorn.run(
        "cardroom.main:app",
        host=config.host,
        port=config.port,
    )


# Entry point
if __name__ == "__main__":
    main()
