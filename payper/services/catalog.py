"""Menu catalog and table registry.

Both are plain data owned by the POS admin screens; the order lifecycle only
reads them to snapshot menu items and check table ids.
"""
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, List, Optional

from ..core.exceptions import NotFoundError, PayperError, PersistenceError, ValidationError
from ..models.menu import MenuCategory, MenuItem
from ..models.table import Table

logger = logging.getLogger(__name__)


def _clean_name(name: str, what: str) -> str:
    if not name or not name.strip():
        raise ValidationError(f"{what} name cannot be empty")
    return name.strip()


class MenuCatalog(ABC):
    @abstractmethod
    def _load(self, item_id: str) -> Optional[MenuItem]:
        ...

    @abstractmethod
    def _all(self) -> List[MenuItem]:
        ...

    @abstractmethod
    def _save(self, item: MenuItem) -> MenuItem:
        ...

    @abstractmethod
    def _remove(self, item_id: str):
        ...

    @abstractmethod
    def categories(self) -> List[MenuCategory]:
        ...

    @abstractmethod
    def add_category(self, name: str) -> MenuCategory:
        ...

    def get(self, item_id: str) -> MenuItem:
        item = self._load(item_id)
        if item is None:
            raise NotFoundError(f"Menu item {item_id} not found")
        return item

    def list(self, category: str = None, available_only: bool = False) -> List[MenuItem]:
        items = self._all()
        if category is not None:
            items = [i for i in items if i.category == category]
        if available_only:
            items = [i for i in items if i.available]
        return sorted(items, key=lambda i: (i.category, i.name))

    def grouped_by_category(self) -> Dict[str, List[MenuItem]]:
        grouped: Dict[str, List[MenuItem]] = {}
        for item in self.list():
            grouped.setdefault(item.category, []).append(item)
        return grouped

    def add_item(self, name: str, price, category: str, description: str = "") -> MenuItem:
        price = Decimal(str(price))
        if price < 0:
            raise ValidationError("Menu item price cannot be negative")
        item = MenuItem(
            id=uuid.uuid4().hex,
            name=_clean_name(name, "Menu item"),
            description=description or "",
            price=price,
            category=_clean_name(category, "Category"),
            available=True,
        )
        return self._save(item)

    def update_item(self, item: MenuItem) -> MenuItem:
        self.get(item.id)
        if item.price < 0:
            raise ValidationError("Menu item price cannot be negative")
        return self._save(item.model_copy(update={"name": _clean_name(item.name, "Menu item")}))

    def delete_item(self, item_id: str):
        self.get(item_id)
        self._remove(item_id)

    def toggle_availability(self, item_id: str) -> MenuItem:
        item = self.get(item_id)
        return self._save(item.model_copy(update={"available": not item.available}))


class TableRegistry(ABC):
    @abstractmethod
    def _load(self, table_id: str) -> Optional[Table]:
        ...

    @abstractmethod
    def _all(self) -> List[Table]:
        ...

    @abstractmethod
    def _save(self, table: Table) -> Table:
        ...

    @abstractmethod
    def _remove(self, table_id: str):
        ...

    def get(self, table_id: str) -> Table:
        table = self._load(table_id)
        if table is None:
            raise NotFoundError(f"Table {table_id} not found")
        return table

    def list(self) -> List[Table]:
        """All tables in natural display order."""
        return sorted(self._all(), key=Table.sort_key)

    def names(self) -> Dict[str, str]:
        return {t.id: t.name for t in self._all()}

    def add_table(self, name: str) -> Table:
        return self._save(Table(id=uuid.uuid4().hex, name=_clean_name(name, "Table")))

    def rename_table(self, table_id: str, name: str) -> Table:
        table = self.get(table_id)
        return self._save(table.model_copy(update={"name": _clean_name(name, "Table")}))

    def delete_table(self, table_id: str):
        self.get(table_id)
        self._remove(table_id)


class InMemoryMenuCatalog(MenuCatalog):
    def __init__(self, items: List[MenuItem] = None, categories: List[str] = None):
        self._items: Dict[str, MenuItem] = {i.id: i for i in (items or [])}
        self._categories: List[MenuCategory] = [MenuCategory(id=uuid.uuid4().hex, name=n) for n in (categories or [])]
        self._lock = threading.Lock()

    def _load(self, item_id):
        return self._items.get(item_id)

    def _all(self):
        return list(self._items.values())

    def _save(self, item):
        with self._lock:
            self._items[item.id] = item
        return item

    def _remove(self, item_id):
        with self._lock:
            self._items.pop(item_id, None)

    def categories(self):
        return list(self._categories)

    def add_category(self, name):
        category = MenuCategory(id=uuid.uuid4().hex, name=_clean_name(name, "Category"))
        with self._lock:
            self._categories.append(category)
        return category


class InMemoryTableRegistry(TableRegistry):
    def __init__(self, tables: List[Table] = None):
        self._tables: Dict[str, Table] = {t.id: t for t in (tables or [])}
        self._lock = threading.Lock()

    def _load(self, table_id):
        return self._tables.get(table_id)

    def _all(self):
        return list(self._tables.values())

    def _save(self, table):
        with self._lock:
            self._tables[table.id] = table
        return table

    def _remove(self, table_id):
        with self._lock:
            self._tables.pop(table_id, None)


def _run(action: str, request):
    try:
        return request.execute()
    except PayperError:
        raise
    except Exception as e:
        logger.error("Supabase %s failed: %s", action, e)
        raise PersistenceError(f"Catalog {action} failed: {e}") from e


class SupabaseMenuCatalog(MenuCatalog):
    def __init__(self, client):
        self.client = client

    def _load(self, item_id):
        result = _run("read", self.client.table("menu_items").select("*").eq("id", item_id))
        return MenuItem.model_validate(result.data[0]) if result.data else None

    def _all(self):
        result = _run("read", self.client.table("menu_items").select("*"))
        return [MenuItem.model_validate(row) for row in result.data]

    def _save(self, item):
        _run("write", self.client.table("menu_items").upsert(item.model_dump(mode="json")))
        return item

    def _remove(self, item_id):
        _run("delete", self.client.table("menu_items").delete().eq("id", item_id))

    def categories(self):
        result = _run("read", self.client.table("menu_categories").select("*").order("name"))
        return [MenuCategory.model_validate(row) for row in result.data]

    def add_category(self, name):
        category = MenuCategory(id=uuid.uuid4().hex, name=_clean_name(name, "Category"))
        _run("write", self.client.table("menu_categories").insert(category.model_dump()))
        return category


class SupabaseTableRegistry(TableRegistry):
    def __init__(self, client):
        self.client = client

    def _load(self, table_id):
        result = _run("read", self.client.table("tables").select("*").eq("id", table_id))
        return Table.model_validate(result.data[0]) if result.data else None

    def _all(self):
        result = _run("read", self.client.table("tables").select("*"))
        return [Table.model_validate(row) for row in result.data]

    def _save(self, table):
        _run("write", self.client.table("tables").upsert(table.model_dump()))
        return table

    def _remove(self, table_id):
        _run("delete", self.client.table("tables").delete().eq("id", table_id))
