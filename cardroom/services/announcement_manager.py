"""Store announcements: staff write them, patrons read the published ones."""
from typing import Optional

from cardroom.auth.middleware import AuthenticatedUser
from cardroom.auth.roles import Role, require_role
from cardroom.errors import ValidationError
from cardroom.floor.announcement import Announcement, published_order
from cardroom.services.base import Manager, new_id
from cardroom.utils.logger import get_logger

logger = get_logger(__name__)

EDITABLE_FIELDS = frozenset({"title", "text", "image_url", "link", "is_published", "sort_order"})


def _check_title(title: Optional[str]) -> str:
    title = (title or "").strip()
    if not title or len(title) > 200:
        raise ValidationError("Announcement title must be 1-200 characters")
    return title


class AnnouncementManager(Manager):
    """Notices for the home screen."""

    @require_role(Role.STAFF)
    async def create(self, actor: AuthenticatedUser, title: str, text: str = "",
                     image_url: Optional[str] = None, link: Optional[str] = None,
                     is_published: bool = False, sort_order: int = 0) -> Announcement:
        now = self.clock()
        announcement = Announcement(
            id=new_id(),
            title=_check_title(title),
            text=text,
            image_url=image_url,
            link=link,
            is_published=is_published,
            sort_order=sort_order,
            created_at=now,
            updated_at=now,
        )
        async with self.store.transaction() as uow:
            await uow.save_announcement(announcement)

        logger.info(f"Announcement '{announcement.title}' created by {actor.poker_name}")
        await self._notify("announcements", announcement.id, None, announcement.to_dict())
        return announcement

    @require_role(Role.STAFF)
    async def update(self, actor: AuthenticatedUser, announcement_id: str, **changes) -> Announcement:
        """Apply a partial update; ``created_at`` never changes.

        Raises:
            ValidationError: For unknown fields or an empty title.
            NotFoundError: If the announcement does not exist.
        """
        unknown = sorted(set(changes) - EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update announcement fields: {', '.join(unknown)}")
        if "title" in changes:
            changes["title"] = _check_title(changes["title"])

        async with self.store.transaction() as uow:
            announcement = await uow.get_announcement(announcement_id)
            for name, value in changes.items():
                setattr(announcement, name, value)
            announcement.updated_at = self.clock()
            await uow.save_announcement(announcement)

        logger.info(f"Announcement {announcement_id} updated by {actor.poker_name}: {sorted(changes)}")
        await self._notify("announcements", announcement.id, None, announcement.to_dict())
        return announcement

    @require_role(Role.STAFF)
    async def delete(self, actor: AuthenticatedUser, announcement_id: str) -> None:
        async with self.store.transaction() as uow:
            await uow.delete_announcement(announcement_id)

        logger.info(f"Announcement {announcement_id} deleted by {actor.poker_name}")
        await self._notify("announcements", announcement_id, None, {"deleted": True})

    @require_role(Role.STAFF)
    async def list_all(self, actor: AuthenticatedUser) -> list[Announcement]:
        """Every announcement, newest first."""
        async with self.store.read() as uow:
            return await uow.list_announcements()

    async def list_published(self) -> list[Announcement]:
        async with self.store.read() as uow:
            announcements = await uow.list_announcements()
        return published_order(announcements)
