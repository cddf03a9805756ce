from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..core.exceptions import StateConflictError
from ..core.permissions import require_floor_staff, require_manager
from ..services.catalog import TableRegistry
from ..services.order_store import OrderStore
from .deps import get_engine, get_store, get_tables
from .orders_service import OrderLifecycleService
from .tables_service import table_grid, vacant_tables


class TableCreate(BaseModel):
    name: str


router = APIRouter(prefix="/tables", tags=["Tables"])


@router.get("/")
def list_tables(tables: TableRegistry = Depends(get_tables)):
    return [t.model_dump() for t in tables.list()]


@router.get("/grid")
def get_table_grid(
    tables: TableRegistry = Depends(get_tables),
    store: OrderStore = Depends(get_store),
    current_user: dict = Depends(require_floor_staff),
):
    return {"tables": table_grid(tables.list(), store.query())}


@router.get("/vacant")
def get_vacant_tables(
    exclude_order_id: Optional[str] = None,
    tables: TableRegistry = Depends(get_tables),
    store: OrderStore = Depends(get_store),
    current_user: dict = Depends(require_floor_staff),
):
    """Switch targets; pass the order being moved so its own table is not counted"""
    return [t.model_dump() for t in vacant_tables(tables.list(), store.query(), exclude_order_id)]


@router.post("/", status_code=201)
def add_table(
    payload: TableCreate,
    tables: TableRegistry = Depends(get_tables),
    current_user: dict = Depends(require_manager),
):
    return tables.add_table(payload.name).model_dump()


@router.patch("/{table_id}")
def rename_table(
    table_id: str,
    payload: TableCreate,
    tables: TableRegistry = Depends(get_tables),
    current_user: dict = Depends(require_manager),
):
    return tables.rename_table(table_id, payload.name).model_dump()


@router.delete("/{table_id}")
def delete_table(
    table_id: str,
    engine: OrderLifecycleService = Depends(get_engine),
    current_user: dict = Depends(require_manager),
):
    if engine.active_order_for_table(table_id) is not None:
        raise StateConflictError("cannot delete a table with an active order")
    engine.tables.delete_table(table_id)
    return {"message": "Table deleted"}
