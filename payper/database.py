from functools import lru_cache

from supabase import create_client, Client

from .config import settings
from .core.exceptions import PersistenceError


@lru_cache()
def get_supabase() -> Client:
    """Public client for regular operations"""
    if not settings.SUPABASE_URL or not settings.SUPABASE_KEY:
        raise PersistenceError("SUPABASE_URL and SUPABASE_KEY must be set for the supabase backend")
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)


@lru_cache()
def get_supabase_admin() -> Client:
    """Service client for staff auth administration"""
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_KEY:
        raise PersistenceError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY)


def build_order_store():
    """Order store for the configured backend"""
    from .services.order_store import InMemoryOrderStore
    from .services.supabase_store import SupabaseOrderStore

    if settings.uses_supabase:
        return SupabaseOrderStore(get_supabase())
    return InMemoryOrderStore()


def build_catalogs():
    """Menu catalog and table registry for the configured backend"""
    from .services.catalog import (
        InMemoryMenuCatalog,
        InMemoryTableRegistry,
        SupabaseMenuCatalog,
        SupabaseTableRegistry,
    )

    if settings.uses_supabase:
        client = get_supabase()
        return SupabaseMenuCatalog(client), SupabaseTableRegistry(client)
    return InMemoryMenuCatalog(), InMemoryTableRegistry()
