import json
from pathlib import Path
from typing import Iterable, Optional, Protocol

from .models import ShopItem


class CatalogProvider(Protocol):
    def items(self) -> list[ShopItem]: ...
    def find(self, item_id) -> Optional[ShopItem]: ...


class StaticCatalog:
    """A fixed list of shop items; how the list is priced is decided elsewhere."""

    def __init__(self, items: Iterable[ShopItem] = ()):
        self._items = [ShopItem.model_validate(i) for i in items]

    @classmethod
    def from_file(cls, path: Path) -> "StaticCatalog":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls({**item, "id": str(item["id"])} for item in data)

    def items(self) -> list[ShopItem]:
        return [i.model_copy() for i in self._items]

    def find(self, item_id) -> Optional[ShopItem]:
        # ids arrive as ints from generated catalogs and as strings from clients
        wanted = str(item_id)
        for item in self._items:
            if item.id == wanted:
                return item.model_copy()
        return None
