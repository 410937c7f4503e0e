"""Waiting lists per game template."""
from datetime import datetime
from typing import Optional

from cardroom.auth.middleware import AuthenticatedUser
from cardroom.auth.roles import Role, ensure_role, require_role
from cardroom.errors import ConflictError, ValidationError
from cardroom.floor.catalog import GameTemplate
from cardroom.floor.waitlist import (
    OPEN_WAITLIST_STATUSES,
    WaitingListEntry,
    WaitlistEvent,
    WaitlistStatus,
    ordered_queue,
    queue_rank,
)
from cardroom.services.base import Manager, ensure_self, ensure_self_or_staff, new_id
from cardroom.state.store import UnitOfWork
from cardroom.utils.logger import get_logger

logger = get_logger(__name__)


async def seat_from_waitlist(uow: UnitOfWork, patron_id: str, game_template_id: str,
                             now: datetime) -> Optional[WaitingListEntry]:
    """Mark the patron's CONFIRMED entry for a template as SEATED, if any."""
    entries = await uow.list_waitlist_entries(
        game_template_id=game_template_id,
        patron_id=patron_id,
        statuses=[WaitlistStatus.CONFIRMED],
    )
    if not entries:
        return None
    entry = entries[0]
    entry.apply(WaitlistEvent.SEAT, now)
    await uow.save_waitlist_entry(entry)
    logger.info(f"Waiting list entry {entry.id} seated")
    return entry


class WaitlistManager(Manager):
    """Game templates and the queues that hang off them."""

    # Game templates

    @require_role(Role.STAFF)
    async def upsert_template(self, actor: AuthenticatedUser, template_name: str, game_type: str,
                              template_id: Optional[str] = None, **fields) -> GameTemplate:
        if not template_name or not game_type:
            raise ValidationError("template_name and game_type are required")
        template = GameTemplate(
            id=template_id or new_id(),
            template_name=template_name,
            game_type=game_type,
            **fields,
        )
        if template.min_players < 1 or template.max_players < template.min_players:
            raise ValidationError("Invalid player range")
        async with self.store.transaction() as uow:
            await uow.save_game_template(template)

        logger.info(f"Game template {template.template_name} saved by {actor.poker_name}")
        await self._notify("game_templates", template.id, None, template.to_dict())
        return template

    @require_role(Role.STAFF)
    async def delete_template(self, actor: AuthenticatedUser, template_id: str) -> None:
        """Delete a template that has nobody waiting on it.

        Raises:
            ConflictError: If the template still has open entries.
        """
        async with self.store.transaction() as uow:
            await uow.get_game_template(template_id)
            open_entries = await uow.list_waitlist_entries(
                game_template_id=template_id, statuses=OPEN_WAITLIST_STATUSES
            )
            if open_entries:
                raise ConflictError(
                    f"{len(open_entries)} patrons are still on this waiting list",
                    code="WAITLIST_NOT_EMPTY",
                )
            await uow.delete_game_template(template_id)

        logger.info(f"Game template {template_id} deleted by {actor.poker_name}")
        await self._notify("game_templates", template_id, None, {"deleted": True})

    async def list_templates(self, active_only: bool = False) -> list[GameTemplate]:
        async with self.store.read() as uow:
            templates = await uow.list_game_templates()
        return [t for t in templates if t.is_active or not active_only]

    # Queue

    async def join(self, actor: AuthenticatedUser, game_template_id: str,
                   patron_id: Optional[str] = None, notes_for_staff: str = "") -> WaitingListEntry:
        """Put a patron on a template's waiting list.

        Raises:
            ValidationError: If the template is not active.
            ConflictError: If the patron already has an open entry for it.
        """
        patron_id = patron_id or actor.user_id
        ensure_self_or_staff(actor, patron_id, "join a waiting list")

        async with self.store.transaction() as uow:
            patron = await uow.get_patron(patron_id)
            template = await uow.get_game_template(game_template_id)
            if not template.is_active:
                raise ValidationError(f"{template.template_name} is not currently offered")
            existing = await uow.list_waitlist_entries(
                game_template_id=game_template_id,
                patron_id=patron_id,
                statuses=OPEN_WAITLIST_STATUSES,
            )
            if existing:
                raise ConflictError(
                    f"{patron.poker_name} is already on the {template.template_name} list",
                    code="ALREADY_WAITING",
                )
            entry = WaitingListEntry(
                id=new_id(),
                patron_id=patron.id,
                poker_name=patron.poker_name,
                game_template_id=game_template_id,
                requested_at=self.clock(),
                notes_for_staff=notes_for_staff,
            )
            await uow.save_waitlist_entry(entry)

        logger.info(f"{patron.poker_name} joined waiting list {template.template_name}")
        await self._notify("waiting_list_entries", entry.id, patron.id, entry.to_dict())
        return entry

    async def _transition(self, actor: AuthenticatedUser, entry_id: str,
                          event: WaitlistEvent, owner_only: bool = False) -> WaitingListEntry:
        async with self.store.transaction() as uow:
            entry = await uow.get_waitlist_entry(entry_id)
            if owner_only:
                ensure_self(actor, entry.patron_id, f"{event.value.replace('_', ' ')} this entry")
            entry.apply(event, self.clock())
            await uow.save_waitlist_entry(entry)

        logger.info(f"Waiting list entry {entry.id} -> {entry.status.value} ({actor.poker_name})")
        await self._notify("waiting_list_entries", entry.id, entry.patron_id, entry.to_dict())
        return entry

    @require_role(Role.STAFF)
    async def call(self, actor: AuthenticatedUser, entry_id: str) -> WaitingListEntry:
        """Call (or re-call) a patron to the table."""
        return await self._transition(actor, entry_id, WaitlistEvent.CALL)

    async def confirm(self, actor: AuthenticatedUser, entry_id: str) -> WaitingListEntry:
        """The called patron confirms they are coming."""
        return await self._transition(actor, entry_id, WaitlistEvent.CONFIRM, owner_only=True)

    @require_role(Role.STAFF)
    async def seat(self, actor: AuthenticatedUser, entry_id: str) -> WaitingListEntry:
        return await self._transition(actor, entry_id, WaitlistEvent.SEAT)

    async def cancel_by_user(self, actor: AuthenticatedUser, entry_id: str) -> WaitingListEntry:
        return await self._transition(actor, entry_id, WaitlistEvent.CANCEL_BY_USER, owner_only=True)

    @require_role(Role.STAFF)
    async def cancel_by_admin(self, actor: AuthenticatedUser, entry_id: str) -> WaitingListEntry:
        return await self._transition(actor, entry_id, WaitlistEvent.CANCEL_BY_ADMIN)

    @require_role(Role.STAFF)
    async def mark_no_show(self, actor: AuthenticatedUser, entry_id: str) -> WaitingListEntry:
        return await self._transition(actor, entry_id, WaitlistEvent.MARK_NO_SHOW)

    async def update_notes(self, actor: AuthenticatedUser, entry_id: str,
                           notes_for_staff: Optional[str] = None,
                           admin_notes: Optional[str] = None) -> None:
        """Last-writer-wins note edit. Only staff may write admin notes."""
        async with self.store.read() as uow:
            entry = await uow.get_waitlist_entry(entry_id)
        ensure_self_or_staff(actor, entry.patron_id, "edit waiting list notes")
        changes = {}
        if notes_for_staff is not None:
            changes["notes_for_staff"] = notes_for_staff
        if admin_notes is not None:
            ensure_role(actor, Role.STAFF, "edit admin notes")
            changes["admin_notes"] = admin_notes
        await self.store.patch("waiting_list_entries", entry_id, changes)

    # Read-time projections

    async def rank(self, actor: AuthenticatedUser, entry_id: str) -> Optional[int]:
        """Current position of an entry; None once it is no longer WAITING."""
        async with self.store.read() as uow:
            entry = await uow.get_waitlist_entry(entry_id)
            ensure_self_or_staff(actor, entry.patron_id, "view this entry")
            peers = await uow.list_waitlist_entries(
                game_template_id=entry.game_template_id, statuses=[WaitlistStatus.WAITING]
            )
        return queue_rank(entry, peers)

    async def queue(self, game_template_id: str) -> list[tuple[WaitingListEntry, Optional[int]]]:
        """Open entries for a template in FIFO order with their ranks."""
        async with self.store.read() as uow:
            await uow.get_game_template(game_template_id)
            entries = await uow.list_waitlist_entries(
                game_template_id=game_template_id, statuses=OPEN_WAITLIST_STATUSES
            )
        return ordered_queue(entries)

    async def list_entries(self, actor: AuthenticatedUser,
                           patron_id: Optional[str] = None) -> list[tuple[WaitingListEntry, Optional[int]]]:
        """A patron's entries (or all open entries for staff) with ranks."""
        if not actor.is_staff:
            patron_id = actor.user_id
        async with self.store.read() as uow:
            entries = await uow.list_waitlist_entries(patron_id=patron_id)
            waiting = await uow.list_waitlist_entries(statuses=[WaitlistStatus.WAITING])
        return [(entry, queue_rank(entry, waiting)) for entry in entries]
