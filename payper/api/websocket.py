"""Live order feeds for the captain app, the kitchen display, the POS and customers."""
import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from ..models.user import UserRole
from ..services.order_store import ALL_ORDERS, OrderQuery, Snapshot
from ..utils.clock import get_local_time
from .kitchen_service import KITCHEN_STATUSES, KitchenService
from .orders import order_response
from .orders_service import OrderLifecycleService, can_proceed_to_pay
from .tables_service import table_grid

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["WebSocket"])

CHANNEL_PERMISSIONS = {
    "captain": [UserRole.CAPTAIN.value, UserRole.MANAGER.value],
    "kitchen": [UserRole.CHEF.value, UserRole.CAPTAIN.value, UserRole.MANAGER.value],
    "pos": [UserRole.CASHIER.value, UserRole.MANAGER.value],
}


class ConnectionManager:
    def __init__(self):
        self.active_connections: Dict[str, Dict[WebSocket, Optional[str]]] = {
            "captain": {},
            "kitchen": {},
            "pos": {},
            "customer": {},  # socket -> table id
        }

    async def connect(self, websocket: WebSocket, channel: str, table_id: str = None):
        await websocket.accept()
        self.active_connections[channel][websocket] = table_id

    def disconnect(self, websocket: WebSocket, channel: str):
        self.active_connections[channel].pop(websocket, None)

    async def send_to_channel(self, message: dict, channel: str, table_id: str = None):
        dead_connections = []
        for connection, bound_table in list(self.active_connections[channel].items()):
            if table_id is not None and bound_table != table_id:
                continue
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.debug("Dropping %s socket: %s", channel, e)
                dead_connections.append(connection)

        for conn in dead_connections:
            self.disconnect(conn, channel)

    def customer_tables(self) -> List[str]:
        return sorted({t for t in self.active_connections["customer"].values() if t})


def customer_view(orders: Snapshot, table_id: str) -> dict:
    order = next((o for o in orders if o.table_id == table_id and o.is_active), None)
    if order is None:
        return {"event": "table_order", "table_id": table_id, "order": None}
    return {
        "event": "table_order",
        "table_id": table_id,
        "order": {
            "id": order.id,
            "status": order.status.value,
            "total": str(order.total),
            "payment_method": order.payment_method.value if order.payment_method else None,
            "switched_from": order.switched_from,
            "items": [
                {"name": i.menu_item.name, "quantity": i.quantity, "item_status": i.item_status.value}
                for i in order.items
            ],
        },
        "can_proceed_to_pay": can_proceed_to_pay(order),
    }


class OrderBroadcaster:
    """Bridges store subscriptions to websocket channels.

    Store listeners run synchronously in whichever thread committed the write;
    the push itself is scheduled on the server's event loop.
    """

    def __init__(self, engine: OrderLifecycleService, manager: ConnectionManager):
        self.engine = engine
        self.manager = manager
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.latest: Dict[str, dict] = {}
        self._unsubscribers: List[Callable[[], None]] = []
        self._tasks: Set[asyncio.Task] = set()

    def start(self, loop: asyncio.AbstractEventLoop = None):
        self.loop = loop or asyncio.get_running_loop()
        store = self.engine.store
        self._unsubscribers = [
            store.subscribe(OrderQuery(statuses=KITCHEN_STATUSES), self._on_kitchen_orders),
            store.subscribe(ALL_ORDERS, self._on_all_orders),
        ]

    def stop(self):
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _schedule(self, coro):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if self.loop is None or self.loop.is_closed():
                coro.close()
                return
            asyncio.run_coroutine_threadsafe(coro, self.loop)
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Websocket push failed: %s", task.exception())

    def _on_kitchen_orders(self, orders: Snapshot):
        message = {
            "event": "kitchen_board",
            "orders": KitchenService.kitchen_orders(orders, self.engine.tables.names()),
            "timestamp": get_local_time().isoformat(),
        }
        self.latest["kitchen"] = message
        self._schedule(self.manager.send_to_channel(message, "kitchen"))

    def _on_all_orders(self, orders: Snapshot):
        active = [o for o in orders if o.is_active]
        timestamp = get_local_time().isoformat()
        captain = {
            "event": "table_grid",
            "tables": table_grid(self.engine.tables.list(), orders),
            "timestamp": timestamp,
        }
        pos = {
            "event": "active_orders",
            "orders": [order_response(o) for o in active],
            "timestamp": timestamp,
        }
        self.latest["captain"] = captain
        self.latest["pos"] = pos
        self.latest["customer_orders"] = orders

        async def push():
            await self.manager.send_to_channel(captain, "captain")
            await self.manager.send_to_channel(pos, "pos")
            for table_id in self.manager.customer_tables():
                await self.manager.send_to_channel(customer_view(orders, table_id), "customer", table_id)

        self._schedule(push())

    def snapshot_for(self, channel: str, table_id: str = None) -> Optional[dict]:
        if channel == "customer":
            orders = self.latest.get("customer_orders")
            return customer_view(orders, table_id) if orders is not None else None
        return self.latest.get(channel)


manager = ConnectionManager()


async def _hold(websocket: WebSocket, channel: str):
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket, channel)


@router.websocket("/orders")
async def websocket_endpoint(
    websocket: WebSocket,
    channel: str = Query(...),
    token: str = Query(None),
    session_token: str = Query(None),
):
    """Staff connect with their bearer token, customers with their session id"""
    state = websocket.app.state
    broadcaster: Optional[OrderBroadcaster] = getattr(state, "broadcaster", None)

    if channel == "customer":
        lease = state.session_manager.get_customer_session(session_token) if session_token else None
        if not lease:
            await websocket.close(code=1008, reason="Invalid session")
            return
        await manager.connect(websocket, "customer", lease["table_id"])
        if broadcaster is not None:
            initial = broadcaster.snapshot_for("customer", lease["table_id"])
            if initial:
                await websocket.send_json(initial)
        await _hold(websocket, "customer")
        return

    if channel not in CHANNEL_PERMISSIONS:
        await websocket.close(code=1008, reason="Unknown channel")
        return
    if not token:
        await websocket.close(code=1008, reason="Token required")
        return

    user = state.session_manager.validate_token(token)
    if not user:
        await websocket.close(code=1008, reason="Invalid token")
        return
    if user.get("role") not in CHANNEL_PERMISSIONS[channel]:
        await websocket.close(code=1008, reason="Unauthorized channel")
        return

    await manager.connect(websocket, channel)
    if broadcaster is not None:
        initial = broadcaster.snapshot_for(channel)
        if initial:
            await websocket.send_json(initial)
    await _hold(websocket, channel)
