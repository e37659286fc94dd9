from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True)
class ItemRecord:
    name: str
    price: float


_ITEMS_BY_ID: dict[int, ItemRecord] = {
    1: ItemRecord(name="laptop", price=1200.0),
    2: ItemRecord(name="mouse", price=25.0),
    3: ItemRecord(name="keyboard", price=75.0),
}

# The search catalog is wider than the id-addressable items.
_CATALOG: tuple[ItemRecord, ...] = (
    ItemRecord(name="laptop", price=1200.0),
    ItemRecord(name="mouse", price=25.0),
    ItemRecord(name="keyboard", price=75.0),
    ItemRecord(name="monitor", price=300.0),
    ItemRecord(name="webcam", price=50.0),
)


class ItemStore:
    """Read-only, in-memory item data."""

    def __init__(
        self,
        items_by_id: dict[int, ItemRecord] | None = None,
        catalog: Iterable[ItemRecord] | None = None,
    ) -> None:
        self._items_by_id = dict(_ITEMS_BY_ID if items_by_id is None else items_by_id)
        self._catalog = tuple(_CATALOG if catalog is None else catalog)

    def get(self, item_id: int) -> ItemRecord | None:
        return self._items_by_id.get(item_id)

    def search(self, name: str = "", min_price: float = 0.0) -> list[ItemRecord]:
        """Case-insensitive substring match on name; an empty name matches everything."""

        needle = name.lower()
        return [
            item
            for item in self._catalog
            if (not needle or needle in item.name.lower()) and item.price >= min_price
        ]


_STORE = ItemStore()


def get_item_store() -> ItemStore:
    return _STORE
