"""Store announcements shown to patrons on the home screen."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from cardroom.floor.records import record_values


@dataclass
class Announcement:
    id: str
    title: str
    text: str = ""
    image_url: Optional[str] = None
    link: Optional[str] = None
    is_published: bool = False
    sort_order: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return record_values(self, iso_dates=True)

    @classmethod
    def from_record(cls, record) -> "Announcement":
        return cls(**{key: record[key] for key in _ANNOUNCEMENT_COLUMNS})


def published_order(announcements: list[Announcement]) -> list[Announcement]:
    """Published announcements, lowest sort order first, then newest first."""
    published = [a for a in announcements if a.is_published]
    published.sort(key=lambda a: a.created_at.timestamp() if a.created_at else 0.0, reverse=True)
    published.sort(key=lambda a: a.sort_order)
    return published


_ANNOUNCEMENT_COLUMNS = (
    "id", "title", "text", "image_url", "link",
    "is_published", "sort_order", "created_at", "updated_at",
)
