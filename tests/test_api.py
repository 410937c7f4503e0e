"""Tests for the HTTP API and WebSocket message handling."""
import json
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from cardroom.auth.jwt_handler import create_access_token, create_refresh_token, verify_token
from cardroom.auth.middleware import AuthMiddleware, AuthenticatedUser, auth_middleware
from cardroom.auth.roles import Role
from cardroom.main import app, server
from cardroom.protocol.handlers import MessageHandler, change_message_for
from cardroom.state.change_feed import LocalChangeFeed
from cardroom.state.memory_store import MemoryStore


@pytest_asyncio.fixture
async def client():
    """HTTP client against an in-memory floor."""
    server.use_store(MemoryStore(), LocalChangeFeed(), bcrypt_rounds=4)
    auth_middleware.check_revocation = False
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    auth_middleware.check_revocation = True


async def _register(client, name: str, admin: bool = False) -> dict:
    body = {"poker_name": name, "email": f"{name.lower()}@example.com", "password": "secret-pass"}
    if admin:
        with patch("cardroom.services.accounts.config") as mock_config:
            mock_config.admin_emails = [body["email"]]
            response = await client.post("/api/register", json=body)
    else:
        response = await client.post("/api/register", json=body)
    assert response.status_code == 200
    return response.json()


def _auth(tokens: dict) -> dict:
    return {"Authorization": f"Bearer {tokens['access_token']}"}


class TestAuthEndpoints:
    """Test registration, login and token handling."""

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.json() == {"status": "healthy", "store": "MemoryStore"}

    @pytest.mark.asyncio
    async def test_register_login_me(self, client):
        tokens = await _register(client, "Alice")
        assert tokens["role"] == "patron"

        login = await client.post("/api/login", json={"email": "alice@example.com", "password": "secret-pass"})
        assert login.status_code == 200

        me = await client.get("/api/me", headers=_auth(login.json()))
        assert me.json()["poker_name"] == "Alice"
        assert "password_hash" not in me.json()

    @pytest.mark.asyncio
    async def test_bad_login(self, client):
        await _register(client, "Alice")
        response = await client.post("/api/login", json={"email": "alice@example.com", "password": "nope-nope"})
        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHENTICATED"

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get("/api/me")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_refresh(self, client):
        tokens = await _register(client, "Alice")
        response = await client.post("/api/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 200
        assert response.json()["access_token"]

    @pytest.mark.asyncio
    async def test_duplicate_registration(self, client):
        await _register(client, "Alice")
        response = await client.post(
            "/api/register",
            json={"poker_name": "Other", "email": "alice@example.com", "password": "secret-pass"},
        )
        assert response.status_code == 409
        assert response.json() == {
            "status": "error",
            "code": "EMAIL_TAKEN",
            "message": "Email 'alice@example.com' is already registered",
        }


class TestErrorMapping:
    """Test that error kinds map onto HTTP statuses."""

    @pytest.mark.asyncio
    async def test_permission_denied(self, client):
        alice = await _register(client, "Alice")
        response = await client.post("/api/tables", json={"name": "T1", "max_seats": 9}, headers=_auth(alice))
        assert response.status_code == 403
        assert response.json()["code"] == "PERMISSION_DENIED"

    @pytest.mark.asyncio
    async def test_not_found(self, client):
        boss = await _register(client, "Boss", admin=True)
        response = await client.get("/api/tables/missing", headers=_auth(boss))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_argument(self, client):
        boss = await _register(client, "Boss", admin=True)
        response = await client.post("/api/tables", json={"name": "T1", "max_seats": 0}, headers=_auth(boss))
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_ARGUMENT"


class TestProcedures:
    """Test the privileged procedures end to end."""

    @pytest_asyncio.fixture
    async def seeded(self, client):
        boss = await _register(client, "Boss", admin=True)
        alice = await _register(client, "Alice")
        await client.post(f"/api/patrons/{alice['user_id']}/approval", json={"approved": True}, headers=_auth(boss))
        table = await client.post(
            "/api/tables", json={"name": "Table 1", "max_seats": 9, "blinds_or_rate": "1/2"}, headers=_auth(boss)
        )
        await client.post(
            "/api/chip-options",
            json={"name": "1000 chips", "chips_amount": 1000, "price_yen": 1000},
            headers=_auth(boss),
        )
        return boss, alice, table.json()

    @pytest.mark.asyncio
    async def test_purchase_and_settle(self, client, seeded):
        """Buy chips, sit down, settle: camelCase procedure bodies throughout."""
        boss, alice, table = seeded
        options = (await client.get("/api/chip-options")).json()["chip_options"]
        cart = [{"itemId": options[0]["id"], "itemType": "chip", "quantity": 2}]

        order = await client.post("/api/orders", json={"cart_items": cart}, headers=_auth(alice))
        purchase = await client.post(
            "/api/procedures/purchaseChipsAndFinalizeOrder",
            json={"orderId": order.json()["id"], "cartItems": cart, "userId": alice["user_id"]},
            headers=_auth(alice),
        )
        assert purchase.status_code == 200
        assert purchase.json()["success"] is True
        assert purchase.json()["newBill"] == 2000

        check_in = await client.post(
            "/api/check-in",
            json={"patron_id": alice["user_id"], "table_id": table["id"], "seat_number": 3, "amount_to_play": 2000},
            headers=_auth(boss),
        )
        assert check_in.json()["chips_in_play"] == 2000

        initiate = await client.post(
            "/api/procedures/initiateChipSettlement",
            json={
                "userId": alice["user_id"],
                "tableId": table["id"],
                "seatNumber": 3,
                "declaredTotal": 2500,
                "denominationCounts": {"1000": 2, "500": 1},
            },
            headers=_auth(boss),
        )
        assert initiate.status_code == 200
        assert initiate.json()["status"] == "success"

        confirm = await client.post("/api/procedures/confirmAndFinalizeChipSettlement", headers=_auth(alice))
        assert confirm.status_code == 200

        me = (await client.get("/api/me", headers=_auth(alice))).json()
        assert me["bank_chips"] == 2500
        assert me["chips_in_play"] == 0
        assert me["current_table_id"] is None

        again = await client.post("/api/procedures/confirmAndFinalizeChipSettlement", headers=_auth(alice))
        assert again.status_code == 409

        report = await client.get("/api/reports/discrepancies", headers=_auth(boss))
        assert report.json() == {"discrepancies": []}

    @pytest.mark.asyncio
    async def test_declared_total_mismatch(self, client, seeded):
        boss, alice, table = seeded
        await client.post(
            f"/api/tables/{table['id']}/seats/1/assign", json={"patron_id": alice["user_id"]}, headers=_auth(boss)
        )
        response = await client.post(
            "/api/procedures/initiateChipSettlement",
            json={
                "userId": alice["user_id"],
                "tableId": table["id"],
                "seatNumber": 1,
                "declaredTotal": 900,
                "denominationCounts": {"1000": 1},
            },
            headers=_auth(boss),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "DENOMINATION_MISMATCH"

    @pytest.mark.asyncio
    async def test_withdrawal_flow(self, client, seeded):
        boss, alice, _ = seeded
        options = (await client.get("/api/chip-options")).json()["chip_options"]
        await client.post(
            "/api/orders/place",
            json={"cart_items": [{"item_id": options[0]["id"], "item_type": "chip"}]},
            headers=_auth(alice),
        )

        created = await client.post("/api/withdrawals", json={"amount": 600}, headers=_auth(alice))
        request_id = created.json()["id"]
        await client.post(f"/api/withdrawals/{request_id}/approve", headers=_auth(boss))
        dispense = await client.post(
            "/api/procedures/dispenseApprovedChipsAndMarkAsDelivered",
            json={"withdrawalRequestId": request_id},
            headers=_auth(boss),
        )
        assert dispense.status_code == 200

        confirmed = await client.post(f"/api/withdrawals/{request_id}/confirm", headers=_auth(alice))
        assert confirmed.json()["status"] == "confirmed"

        me = (await client.get("/api/me", headers=_auth(alice))).json()
        assert me["bank_chips"] == 400
        assert me["chips_in_play"] == 600

    @pytest.mark.asyncio
    async def test_set_admin_claim(self, client, seeded):
        boss, alice, _ = seeded
        denied = await client.post(
            "/api/procedures/setAdminClaim", json={"email": "boss@example.com"}, headers=_auth(alice)
        )
        assert denied.status_code == 403

        granted = await client.post(
            "/api/procedures/setAdminClaim", json={"email": "alice@example.com"}, headers=_auth(boss)
        )
        assert granted.json()["message"] == "Alice is now admin"

    @pytest.mark.asyncio
    async def test_refresh_picks_up_new_role(self, client, seeded):
        """A refreshed access token carries the role granted since login."""
        boss, alice, _ = seeded
        await client.post("/api/procedures/setAdminClaim", json={"email": "alice@example.com"}, headers=_auth(boss))

        response = await client.post("/api/refresh", json={"refresh_token": alice["refresh_token"]})
        assert response.status_code == 200
        access_token = response.json()["access_token"]
        assert verify_token(access_token).role == Role.ADMIN

        tables = await client.post(
            "/api/tables", json={"name": "Table 2", "max_seats": 6}, headers={"Authorization": f"Bearer {access_token}"}
        )
        assert tables.status_code == 200

    @pytest.mark.asyncio
    async def test_announcements(self, client, seeded):
        boss, alice, _ = seeded
        denied = await client.post("/api/announcements", json={"title": "Closed"}, headers=_auth(alice))
        assert denied.status_code == 403

        draft = await client.post("/api/announcements", json={"title": "Holiday hours"}, headers=_auth(boss))
        await client.post(
            "/api/announcements", json={"title": "Friday freeroll", "is_published": True}, headers=_auth(boss)
        )
        listed = await client.get("/api/announcements")
        assert [a["title"] for a in listed.json()["announcements"]] == ["Friday freeroll"]

        published = await client.patch(
            f"/api/announcements/{draft.json()['id']}", json={"is_published": True, "sort_order": -1},
            headers=_auth(boss),
        )
        assert published.json()["title"] == "Holiday hours"
        listed = await client.get("/api/announcements")
        assert [a["title"] for a in listed.json()["announcements"]] == ["Holiday hours", "Friday freeroll"]

        deleted = await client.delete(f"/api/announcements/{draft.json()['id']}", headers=_auth(boss))
        assert deleted.json() == {"message": "Announcement deleted"}
        everything = await client.get("/api/announcements/all", headers=_auth(boss))
        assert len(everything.json()["announcements"]) == 1

    @pytest.mark.asyncio
    async def test_summary_as_text(self, client, seeded):
        boss, _, _ = seeded
        response = await client.get("/api/reports/summary", params={"format": "text"}, headers=_auth(boss))
        assert response.status_code == 200
        assert response.text == "No transactions recorded."

    @pytest.mark.asyncio
    async def test_waitlist_cancel_by_role(self, client, seeded):
        """A staff cancellation is recorded as by-admin."""
        boss, alice, _ = seeded
        template = await client.post(
            "/api/templates", json={"template_name": "NLH 1/2", "game_type": "nlh"}, headers=_auth(boss)
        )
        entry = await client.post(
            "/api/waitlist", json={"game_template_id": template.json()["id"]}, headers=_auth(alice)
        )
        assert entry.json()["rank"] == 1

        cancelled = await client.post(f"/api/waitlist/{entry.json()['id']}/cancel", headers=_auth(boss))
        assert cancelled.json()["status"] == "cancelled_by_admin"


class TestMessageHandler:
    """Test WebSocket message handling."""

    @pytest.fixture
    def handler(self):
        return MessageHandler(auth=AuthMiddleware(check_revocation=False))

    @pytest.mark.asyncio
    async def test_invalid_json(self, handler):
        response, user = await handler.handle_message("not json")
        assert response["type"] == "error"
        assert "Invalid JSON" in response["message"]
        assert user is None

    @pytest.mark.asyncio
    async def test_unknown_type(self, handler):
        response, _ = await handler.handle_message(json.dumps({"type": "join_table"}))
        assert response["message"] == "Unknown message type: join_table"

    @pytest.mark.asyncio
    async def test_ping_requires_auth(self, handler):
        response, _ = await handler.handle_message(json.dumps({"type": "ping"}))
        assert response["code"] == "AUTH_REQUIRED"

    @pytest.mark.asyncio
    async def test_auth_then_ping(self, handler):
        token = create_access_token("user1", "alice", Role.PATRON)
        response, user = await handler.handle_message(json.dumps({"type": "auth", "token": token}))
        assert response["type"] == "auth_success"
        assert response["role"] == "patron"

        pong, same_user = await handler.handle_message(json.dumps({"type": "ping"}), user)
        assert pong == {"type": "pong"}
        assert same_user is user

    @pytest.mark.asyncio
    async def test_bad_token(self, handler):
        response, user = await handler.handle_message(json.dumps({"type": "auth", "token": "bogus"}))
        assert response["code"] == "AUTH_FAILED"
        assert user is None

    @pytest.mark.asyncio
    async def test_refresh(self, handler):
        refresh = create_refresh_token("user1", "alice", Role.PATRON)
        response, _ = await handler.handle_message(json.dumps({"type": "refresh_token", "refresh_token": refresh}))
        assert response["type"] == "token_refreshed"

    @pytest.mark.asyncio
    async def test_refresh_uses_account_lookup(self):
        """With an account-backed refresher the socket gets the stored role, not the token's."""
        promoted = create_access_token("user1", "alice", Role.STAFF)
        handler = MessageHandler(auth=AuthMiddleware(check_revocation=False), refresh=AsyncMock(return_value=promoted))
        refresh = create_refresh_token("user1", "alice", Role.PATRON)

        response, _ = await handler.handle_message(json.dumps({"type": "refresh_token", "refresh_token": refresh}))
        assert response["access_token"] == promoted
        handler.refresh.assert_awaited_once_with(refresh)

    def test_change_message_visibility(self):
        event = {"collection": "orders", "id": "o1", "patron_id": "p1", "data": {}, "published_at": None}
        owner = AuthenticatedUser(user_id="p1", poker_name="alice", role=Role.PATRON)
        other = AuthenticatedUser(user_id="p2", poker_name="bob", role=Role.PATRON)
        staff = AuthenticatedUser(user_id="s1", poker_name="dealer", role=Role.STAFF)

        assert change_message_for(event, owner)["type"] == "change"
        assert change_message_for(event, other) is None
        assert change_message_for(event, staff)["id"] == "o1"
        assert change_message_for(event, None) is None
