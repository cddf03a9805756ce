from fastapi import Request

from ..core.activity_logger import ActivityLogger
from ..core.session import SessionManager
from ..services.catalog import MenuCatalog, TableRegistry
from ..services.order_store import OrderStore
from .orders_service import OrderLifecycleService


def get_engine(request: Request) -> OrderLifecycleService:
    return request.app.state.engine


def get_store(request: Request) -> OrderStore:
    return request.app.state.engine.store


def get_menu(request: Request) -> MenuCatalog:
    return request.app.state.engine.menu


def get_tables(request: Request) -> TableRegistry:
    return request.app.state.engine.tables


def get_activity(request: Request) -> ActivityLogger:
    return request.app.state.engine.activity


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager
