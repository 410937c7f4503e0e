"""Catalog records: game templates, chip purchase options and drinks."""
from dataclasses import dataclass

from cardroom.floor.records import record_values


@dataclass
class GameTemplate:
    id: str
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

    def to_dict(self) -> dict:
        return record_values(self, iso_dates=True)

    @classmethod
    def from_record(cls, record) -> "GameTemplate":
        return cls(**{key: record[key] for key in _GAME_TEMPLATE_COLUMNS})


@dataclass
class ChipPurchaseOption:
    id: str
    name: str
    chips_amount: int
    price_yen: int
    is_available: bool = True

    def to_dict(self) -> dict:
        return record_values(self, iso_dates=True)

    @classmethod
    def from_record(cls, record) -> "ChipPurchaseOption":
        return cls(
            id=record["id"],
            name=record["name"],
            chips_amount=record["chips_amount"],
            price_yen=record["price_yen"],
            is_available=record["is_available"],
        )


@dataclass
class MenuItem:
    """A drink on the menu. Prices are in yen."""
    id: str
    name: str
    price: int
    category: str = "drink"
    is_available: bool = True

    def to_dict(self) -> dict:
        return record_values(self, iso_dates=True)

    @classmethod
    def from_record(cls, record) -> "MenuItem":
        return cls(
            id=record["id"],
            name=record["name"],
            price=record["price"],
            category=record["category"],
            is_available=record["is_available"],
        )


_GAME_TEMPLATE_COLUMNS = (
    "id", "template_name", "game_type", "blinds_or_rate", "description",
    "min_players", "max_players", "estimated_duration_minutes",
    "notes_for_user", "is_active", "sort_order",
)
