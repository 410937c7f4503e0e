"""Patron accounts: registration, login and role changes."""
import re
from dataclasses import dataclass
from typing import Optional

from cardroom.auth.jwt_handler import TokenError, create_access_token, create_refresh_token, verify_token
from cardroom.auth.middleware import AuthenticatedUser
from cardroom.auth.password import BCRYPT_ROUNDS, check_password_policy, hash_password, verify_password
from cardroom.auth.roles import Role, require_role
from cardroom.config import config
from cardroom.errors import ConflictError, NotFoundError, ValidationError
from cardroom.floor.journal import TransactionType
from cardroom.floor.patron import Patron, validate_chip_amount
from cardroom.services.base import Manager, ensure_self_or_staff, new_id
from cardroom.services.ledger import ChipLedger
from cardroom.utils.logger import get_logger

logger = get_logger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class InvalidCredentials(Exception):
    """Login failed. Deliberately vague about which part was wrong."""


@dataclass
class AuthTokens:
    """Authentication tokens."""
    access_token: str
    refresh_token: str
    patron: Patron
    token_type: str = "bearer"


def _issue_tokens(patron: Patron) -> AuthTokens:
    return AuthTokens(
        access_token=create_access_token(patron.id, patron.poker_name, patron.role),
        refresh_token=create_refresh_token(patron.id, patron.poker_name, patron.role),
        patron=patron,
    )


class AccountManager(Manager):
    """Patron persistence and authentication."""

    def __init__(self, *args, bcrypt_rounds: int = BCRYPT_ROUNDS, **kwargs):
        super().__init__(*args, **kwargs)
        self.bcrypt_rounds = bcrypt_rounds
        self.ledger = ChipLedger(self.clock)

    async def register(self, poker_name: str, email: str, password: str) -> AuthTokens:
        """Register a new patron.

        Args:
            poker_name: Name shown on the floor.
            email: Unique email address (used for login).
            password: Plain text password.

        Returns:
            Authentication tokens.

        Raises:
            ValidationError: If a field is malformed.
            ConflictError: If the email is already registered.
        """
        poker_name = poker_name.strip()
        email = email.strip().lower()
        if not poker_name or len(poker_name) > 50:
            raise ValidationError("Poker name must be 1-50 characters")
        if not _EMAIL_RE.match(email):
            raise ValidationError(f"Invalid email address '{email}'")
        check_password_policy(password)

        role = Role.ADMIN if email in config.admin_emails else Role.PATRON
        patron = Patron(
            id=new_id(),
            poker_name=poker_name,
            email=email,
            role=role,
            approved=role != Role.PATRON,
            password_hash=hash_password(password, rounds=self.bcrypt_rounds),
            created_at=self.clock(),
        )
        async with self.store.transaction() as uow:
            if await uow.find_patron_by_email(email):
                raise ConflictError(f"Email '{email}' is already registered", code="EMAIL_TAKEN")
            await uow.save_patron(patron)

        logger.info(f"Registered new patron: {poker_name} ({email}, role: {role.value})")
        return _issue_tokens(patron)

    async def login(self, email: str, password: str) -> AuthTokens:
        """Authenticate a patron and return tokens.

        Raises:
            InvalidCredentials: If the email or password is wrong.
        """
        async with self.store.read() as uow:
            patron = await uow.find_patron_by_email(email)
        if patron is None or not verify_password(password, patron.password_hash or ""):
            logger.warning(f"Failed login for {email}")
            raise InvalidCredentials("Invalid email or password")

        logger.info(f"Patron logged in: {patron.poker_name}")
        return _issue_tokens(patron)

    async def refresh(self, refresh_token: str) -> str:
        """Issue a new access token carrying the patron's current role.

        The role is read from the store, not from the refresh token, so a
        promotion or demotion applies from the next refresh.

        Raises:
            TokenError: If the token is invalid or its patron no longer exists.
        """
        payload = verify_token(refresh_token, expected_type="refresh")
        async with self.store.read() as uow:
            try:
                patron = await uow.get_patron(payload.user_id)
            except NotFoundError:
                raise TokenError("Token subject no longer exists") from None
        return create_access_token(patron.id, patron.poker_name, patron.role)

    async def get_patron(self, actor: AuthenticatedUser, patron_id: str) -> Patron:
        ensure_self_or_staff(actor, patron_id, "view this patron")
        async with self.store.read() as uow:
            return await uow.get_patron(patron_id)

    async def rename(self, actor: AuthenticatedUser, patron_id: str, poker_name: str) -> Patron:
        """Change the name shown on the floor (last writer wins)."""
        ensure_self_or_staff(actor, patron_id, "rename this patron")
        poker_name = poker_name.strip()
        if not poker_name or len(poker_name) > 50:
            raise ValidationError("Poker name must be 1-50 characters")
        await self.store.patch("patrons", patron_id, {"poker_name": poker_name})
        async with self.store.read() as uow:
            patron = await uow.get_patron(patron_id)
        await self._notify("patrons", patron.id, patron.id, patron.to_dict())
        return patron

    @require_role(Role.STAFF)
    async def list_patrons(self, actor: AuthenticatedUser) -> list[Patron]:
        async with self.store.read() as uow:
            return await uow.list_patrons()

    @require_role(Role.ADMIN)
    async def set_admin_claim(self, actor: AuthenticatedUser, email: str, role: Role = Role.ADMIN) -> Patron:
        """Grant a role to the account registered under ``email``.

        The new role takes effect on the patron's next login or token refresh.
        """
        if not email or not email.strip():
            raise ValidationError("A valid email address is required")
        async with self.store.transaction() as uow:
            patron = await uow.find_patron_by_email(email)
            if patron is None:
                raise NotFoundError(f"No account registered for '{email}'")
            patron.role = role
            patron.approved = True
            await uow.save_patron(patron)

        logger.info(f"Granted {role.value} to {patron.poker_name} ({email}) by {actor.poker_name}")
        return patron

    @require_role(Role.STAFF)
    async def approve_patron(self, actor: AuthenticatedUser, patron_id: str, approved: bool = True) -> Patron:
        async with self.store.transaction() as uow:
            patron = await uow.get_patron(patron_id)
            patron.approved = approved
            await uow.save_patron(patron)
        logger.info(f"{patron.poker_name} approval set to {approved} by {actor.poker_name}")
        await self._notify("patrons", patron.id, patron.id, patron.to_dict())
        return patron

    @require_role(Role.STAFF)
    async def record_bill_payment(self, actor: AuthenticatedUser, patron_id: str, amount: int,
                                  note: Optional[str] = None) -> Patron:
        """Reduce a patron's bill after they pay at the counter.

        Raises:
            ValidationError: If the amount is not positive.
            ConflictError: If the payment exceeds the outstanding bill.
        """
        validate_chip_amount(amount)
        async with self.store.transaction() as uow:
            patron = await uow.get_patron(patron_id)
            await self.ledger.apply(
                uow, patron, TransactionType.BILL_PAYMENT,
                bill=-amount,
                actor_id=actor.user_id,
                note=note,
            )
        await self._notify("patrons", patron.id, patron.id, patron.to_dict())
        return patron
