import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import auth, customer, kitchen, menu, orders, sales, tables, websocket
from .api.orders_service import OrderLifecycleService
from .config import settings
from .core.activity_logger import ActivityLogger
from .core.exceptions import ConflictError, PayperError
from .core.session import SessionManager, session_manager as default_session_manager
from .database import build_catalogs, build_order_store, get_supabase
from .services.catalog import MenuCatalog, TableRegistry
from .services.order_store import OrderStore
from .utils.clock import get_local_time

logger = logging.getLogger(__name__)


def create_app(
    order_store: OrderStore = None,
    menu_catalog: MenuCatalog = None,
    table_registry: TableRegistry = None,
    session_manager: SessionManager = None,
    activity: ActivityLogger = None,
) -> FastAPI:
    app = FastAPI(title="PayPer-Suite Orders API")

    if menu_catalog is None or table_registry is None:
        default_menu, default_tables = build_catalogs()
        menu_catalog = menu_catalog or default_menu
        table_registry = table_registry or default_tables
    if activity is None:
        activity = ActivityLogger(get_supabase() if settings.uses_supabase else None)

    app.state.engine = OrderLifecycleService(
        order_store or build_order_store(), menu_catalog, table_registry, activity
    )
    app.state.session_manager = session_manager or default_session_manager
    app.state.broadcaster = websocket.OrderBroadcaster(app.state.engine, websocket.manager)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add response time header"""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        return response

    @app.exception_handler(PayperError)
    async def payper_error_handler(request: Request, exc: PayperError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        body = {"detail": exc.message}
        if isinstance(exc, ConflictError):
            body["retry"] = True
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.on_event("startup")
    async def startup_event():
        logger.info("Starting with %s order store", settings.ORDER_STORE_BACKEND)
        app.state.broadcaster.start()
        try:
            app.state.session_manager.redis.client.ping()
            logger.info("Redis connected successfully")
        except Exception as e:
            logger.warning("Redis connection failed: %s", e)

    @app.on_event("shutdown")
    async def shutdown_event():
        app.state.broadcaster.stop()
        logger.info("Order feeds stopped")

    @app.get("/")
    async def root():
        return {"message": f"{settings.RESTAURANT_NAME} orders API"}

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "backend": settings.ORDER_STORE_BACKEND,
            "timestamp": get_local_time().isoformat(),
        }

    app.include_router(auth.router)
    app.include_router(orders.router)
    app.include_router(kitchen.router)
    app.include_router(tables.router)
    app.include_router(menu.router)
    app.include_router(customer.router)
    app.include_router(sales.router)
    app.include_router(websocket.router)

    return app


app = create_app()
