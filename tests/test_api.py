import asyncio
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

import payper.api.sales as sales_api
import payper.core.session as session_module
from conftest import auth
from payper.api.websocket import ConnectionManager, OrderBroadcaster


def line(menu_item_id, quantity=1, **extra):
    return {"menu_item_id": menu_item_id, "quantity": quantity, **extra}


def place(client, table_id="t1", items=None, headers=None):
    response = client.post(
        "/orders/dine-in",
        json={"table_id": table_id, "items": items or [line("item-a", 2), line("item-b")]},
        headers={**auth("captain"), **(headers or {})},
    )
    assert response.status_code == 201, response.text
    return response.json()


def serve(client, order_id, kot_id="KOT-1"):
    for status in ("Preparing", "Ready"):
        r = client.post(f"/kitchen/orders/{order_id}/tickets/{kot_id}/status", json={"status": status}, headers=auth("chef"))
        assert r.status_code == 200, r.text
    r = client.patch(f"/orders/{order_id}/tickets/{kot_id}", json={"status": "Served"}, headers=auth("captain"))
    assert r.status_code == 200, r.text
    return r.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Process-Time" in response.headers


def test_requires_login(client):
    assert client.get("/orders/").status_code in (401, 403)
    assert client.get("/orders/", headers=auth("stranger")).status_code == 401


def test_roles_are_enforced(client):
    response = client.post(
        "/orders/dine-in", json={"table_id": "t1", "items": [line("item-a")]}, headers=auth("chef"),
    )
    assert response.status_code == 403
    assert response.json()["detail"] == "Insufficient permissions"


def test_dine_in_flow(client):
    order = place(client)
    assert order["total"] == "130.00"
    assert order["status"] == "New"
    assert len(order["items"]) == 3
    assert order["gates"] == {"can_cancel": True, "can_generate_bill": False, "needs_kot_print": False}

    preview = client.get(f"/orders/{order['id']}/kot", headers=auth("captain")).json()
    assert "KOT 1" in preview["kot"]

    sent = client.post(f"/orders/{order['id']}/kot", headers=auth("captain")).json()
    assert sent["kot_id"] == "KOT-1"
    assert sent["order"]["status"] == "Confirmed"
    assert "KOT 1" in sent["kot"]
    reprint = client.get(f"/orders/{order['id']}/kot/KOT-1", headers=auth("captain")).json()
    assert "(REPRINT)" in reprint["kot"]

    again = client.post(f"/orders/{order['id']}/kot", headers=auth("captain")).json()
    assert again["kot_id"] is None
    assert again["kot"] is None

    cancel = client.post(f"/orders/{order['id']}/cancel", headers=auth("captain"))
    assert cancel.status_code == 409
    assert cancel.json()["detail"] == "cannot cancel: kitchen ticket already issued"

    early_bill = client.post(f"/orders/{order['id']}/bill", headers=auth("cashier"))
    assert early_bill.status_code == 409

    assert client.post(
        f"/orders/{order['id']}/discount", json={"value": 10}, headers=auth("captain"),
    ).status_code == 403
    discounted = client.post(
        f"/orders/{order['id']}/discount", json={"value": 10, "discount_type": "percentage"}, headers=auth("cashier"),
    ).json()
    assert discounted["total"] == "117.00"
    assert discounted["discount_amount"] == "13.00"

    served = serve(client, order["id"])
    assert served["gates"]["can_generate_bill"] is True

    billed = client.post(f"/orders/{order['id']}/bill", headers=auth("cashier")).json()
    assert billed["duplicate"] is False
    assert billed["order"]["status"] == "Billed"
    assert "₹117.00" in billed["bill"]
    assert client.post(f"/orders/{order['id']}/bill", headers=auth("cashier")).json()["duplicate"] is True

    paid = client.post(f"/orders/{order['id']}/paid", headers=auth("cashier")).json()
    assert paid["status"] == "Paid"

    actions = [a["action"] for a in client.get(f"/orders/{order['id']}/activity", headers=auth("manager")).json()]
    assert actions[0] == "place"
    assert actions[-1] == "paid"


def test_add_items_and_quantities(client):
    order = place(client)
    updated = client.post(
        f"/orders/{order['id']}/items", json={"items": [line("item-c")]}, headers=auth("captain"),
    ).json()
    assert updated["total"] == "150.00"

    updated = client.patch(
        f"/orders/{order['id']}/items/item-a", json={"quantity": 1}, headers=auth("captain"),
    ).json()
    assert updated["total"] == "100.00"

    updated = client.delete(f"/orders/{order['id']}/items/item-b", headers=auth("captain")).json()
    assert updated["total"] == "70.00"


def test_input_errors(client):
    empty = client.post("/orders/dine-in", json={"table_id": "t1", "items": []}, headers=auth("captain"))
    assert empty.status_code == 400
    assert empty.json()["detail"] == "cart is empty"

    zero = client.post("/orders/dine-in", json={"table_id": "t1", "items": [line("item-a", 0)]}, headers=auth("captain"))
    assert zero.status_code == 422

    assert client.get("/orders/nope", headers=auth("captain")).status_code == 404
    assert client.post(
        "/orders/dine-in", json={"table_id": "t99", "items": [line("item-a")]}, headers=auth("captain"),
    ).status_code == 404


def test_table_exclusivity_over_http(client):
    place(client, "t2")
    response = client.post(
        "/orders/dine-in", json={"table_id": "t2", "items": [line("item-c")]}, headers=auth("captain"),
    )
    assert response.status_code == 409
    assert response.json()["detail"] == "Table 2 already has an active order"


def test_idempotent_placement_header(client, store):
    first = place(client, headers={"Idempotency-Key": "tab-1-a"})
    response = client.post(
        "/orders/dine-in",
        json={"table_id": "t1", "items": [line("item-a", 2), line("item-b")]},
        headers={**auth("captain"), "Idempotency-Key": "tab-1-a"},
    )
    assert response.json()["id"] == first["id"]
    assert len(store.query()) == 1


def test_online_order_flow(client):
    response = client.post(
        "/orders/online",
        json={
            "online_platform": "Swiggy",
            "platform_order_id": "SW-12",
            "customer_details": {"name": "Ravi", "phone": "9000000000"},
            "items": [line("item-a", 3)],
        },
        headers=auth("cashier"),
    )
    assert response.status_code == 201
    order = response.json()
    assert len(order["items"]) == 1
    assert order["items"][0]["quantity"] == 3

    accepted = client.patch(f"/orders/{order['id']}/status", json={"status": "Accepted"}, headers=auth("cashier")).json()
    assert accepted["kot_counter"] == 1
    assert accepted["items"][0]["kot_status"] == "Printed"

    listed = client.get("/orders/", params={"platform": "Swiggy"}, headers=auth("cashier")).json()
    assert [o["id"] for o in listed] == [order["id"]]


def test_list_orders_filters(client):
    first = place(client, "t1")
    place(client, "t2", items=[line("item-c")])
    client.post(f"/orders/{first['id']}/kot", headers=auth("captain"))

    confirmed = client.get("/orders/", params={"status": ["Confirmed"]}, headers=auth("captain")).json()
    assert [o["id"] for o in confirmed] == [first["id"]]
    assert len(client.get("/orders/", params={"active_only": True}, headers=auth("captain")).json()) == 2


def test_switch_table_and_vacancy(client):
    order = place(client, "t1")
    vacant = client.get("/tables/vacant", params={"exclude_order_id": order["id"]}, headers=auth("captain")).json()
    assert [t["id"] for t in vacant] == ["t1", "t2", "t12"]

    moved = client.post(
        f"/orders/{order['id']}/switch-table", json={"new_table_id": "t12", "old_table_id": "t1"}, headers=auth("captain"),
    ).json()
    assert moved["table_id"] == "t12"
    assert moved["switched_from"] == "t1"

    cleared = client.delete(f"/orders/{order['id']}/switched-from", headers=auth("captain")).json()
    assert cleared["switched_from"] is None


def test_kitchen_views(client):
    order = place(client, "t2")
    client.post(f"/orders/{order['id']}/kot", headers=auth("captain"))

    board = client.get("/kitchen/board", headers=auth("chef")).json()["orders"]
    assert board[0]["table_name"] == "Table 2"
    dishes = client.get("/kitchen/dishes", headers=auth("chef")).json()["dishes"]
    assert dishes[0]["name"] == "ItemA"
    assert dishes[0]["quantity"] == 2

    skip = client.post(
        f"/kitchen/orders/{order['id']}/tickets/KOT-1/status", json={"status": "Served"}, headers=auth("chef"),
    )
    assert skip.status_code == 409
    assert client.get("/kitchen/board", headers=auth("cashier")).status_code == 403


def test_table_admin(client):
    assert [t["name"] for t in client.get("/tables/").json()] == ["Table 1", "Table 2", "Table 12"]

    created = client.post("/tables/", json={"name": "Table 3"}, headers=auth("manager"))
    assert created.status_code == 201
    assert client.post("/tables/", json={"name": "Patio"}, headers=auth("captain")).status_code == 403

    place(client, "t1")
    assert client.delete("/tables/t1", headers=auth("manager")).status_code == 409
    assert client.delete("/tables/t2", headers=auth("manager")).status_code == 200

    grid = client.get("/tables/grid", headers=auth("captain")).json()["tables"]
    assert [row["name"] for row in grid] == ["Table 1", "Table 3", "Table 12"]
    assert grid[0]["status"] == "Running"


def test_menu_admin(client):
    available = client.get("/menu/", params={"available_only": True}).json()
    assert "ItemD" not in [i["name"] for i in available]
    grouped = client.get("/menu/grouped").json()
    assert [i["name"] for i in grouped["Mains"]] == ["ItemA"]

    created = client.post(
        "/menu/", json={"name": "Paneer Tikka", "price": "240", "category": "Starters"}, headers=auth("manager"),
    )
    assert created.status_code == 201
    item_id = created.json()["id"]

    toggled = client.post(f"/menu/{item_id}/toggle", headers=auth("manager")).json()
    assert toggled["available"] is False

    unavailable = client.post(
        "/orders/dine-in", json={"table_id": "t1", "items": [line(item_id)]}, headers=auth("captain"),
    )
    assert unavailable.status_code == 400

    negative = client.post(
        "/menu/", json={"name": "Refund", "price": "-1", "category": "Mains"}, headers=auth("manager"),
    )
    assert negative.status_code == 422


def test_customer_ordering_flow(client):
    lease = client.post("/customer/sessions", json={"table_id": "t2"}).json()
    assert lease["table_name"] == "Table 2"
    session_id = lease["session_id"]

    first = client.post("/customer/orders", json={"session_id": session_id, "items": [line("item-a")]})
    assert first.status_code == 201
    second = client.post("/customer/orders", json={"session_id": session_id, "items": [line("item-b")]})
    assert second.json()["order_id"] == first.json()["order_id"]
    assert second.json()["total"] == "80.00"

    view = client.get(f"/customer/sessions/{session_id}/order").json()
    assert view["order"]["total"] == "80.00"
    assert view["can_proceed_to_pay"] is False

    intent = client.put("/customer/orders/payment-method", json={"session_id": session_id, "method": "cash_qr"})
    assert intent.json()["payment_method"] == "cash_qr"


def test_customer_follows_switched_order(client, engine):
    session_id = client.post("/customer/sessions", json={"table_id": "t1"}).json()["session_id"]
    order_id = client.post(
        "/customer/orders", json={"session_id": session_id, "items": [line("item-c")]},
    ).json()["order_id"]

    client.post(f"/orders/{order_id}/switch-table", json={"new_table_id": "t2"}, headers=auth("captain"))

    state = client.get(f"/customer/sessions/{session_id}").json()
    assert state["redirect_to"] == "t2"
    assert state["table_id"] == "t2"
    assert state["valid"] is True
    assert engine.get_order(order_id).switched_from is None


def test_customer_lease_expiry(client, monkeypatch):
    lease = client.post("/customer/sessions", json={"table_id": "t1"}).json()
    monkeypatch.setattr(session_module, "now_ms", lambda: lease["start_time"] + 20 * 60 * 1000)

    response = client.post("/customer/orders", json={"session_id": lease["session_id"], "items": [line("item-a")]})
    assert response.status_code == 400
    assert "expired" in response.json()["detail"]


def test_sales_endpoints(client, monkeypatch):
    order = place(client, "t1")
    client.post(f"/orders/{order['id']}/kot", headers=auth("captain"))
    serve(client, order["id"])
    client.post(f"/orders/{order['id']}/bill", headers=auth("cashier"))
    client.post(f"/orders/{order['id']}/paid", headers=auth("cashier"))

    analytics = client.get("/sales/analytics", headers=auth("manager")).json()
    assert analytics["summary"]["total_orders"] == 1
    assert analytics["summary"]["total_revenue"] == 130.0
    assert client.get("/sales/analytics", headers=auth("captain")).status_code == 403

    bad_range = client.get(
        "/sales/analytics", params={"date_from": "2026-02-01", "date_to": "2026-01-01"}, headers=auth("manager"),
    )
    assert bad_range.status_code == 400

    queued = []
    monkeypatch.setattr(
        sales_api, "generate_sales_report",
        SimpleNamespace(delay=lambda *args: queued.append(args) or SimpleNamespace(id="task-1")),
    )
    response = client.post("/sales/reports", json={"date_from": "2026-01-01"}, headers=auth("manager"))
    assert response.status_code == 202
    assert response.json()["task_id"] == "task-1"
    assert queued == [("2026-01-01", None, "u-manager")]


def test_kitchen_socket_gets_board_updates(app):
    with TestClient(app) as client:
        order = place(client, "t1")
        with client.websocket_connect("/ws/orders?channel=kitchen&token=chef-token") as ws:
            initial = ws.receive_json()
            assert initial["event"] == "kitchen_board"
            assert initial["orders"] == []

            client.post(f"/orders/{order['id']}/kot", headers=auth("captain"))
            update = ws.receive_json()
            assert update["event"] == "kitchen_board"
            assert update["orders"][0]["order_id"] == order["id"]


def test_customer_socket_sees_its_table(app):
    with TestClient(app) as client:
        session_id = client.post("/customer/sessions", json={"table_id": "t2"}).json()["session_id"]
        with client.websocket_connect(f"/ws/orders?channel=customer&session_token={session_id}") as ws:
            initial = ws.receive_json()
            assert initial == {"event": "table_order", "table_id": "t2", "order": None}


def test_socket_rejects_bad_credentials(app):
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/orders?channel=customer&session_token=nope"):
                pass
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/orders?channel=pos&token=chef-token"):
                pass


def test_order_writes_run_off_the_event_loop(app):
    # retry backoff sleeps the calling thread
    writers = [
        route for route in app.routes
        if getattr(route, "methods", None)
        and route.methods & {"POST", "PUT", "PATCH", "DELETE"}
        and route.path.startswith(("/orders", "/customer", "/kitchen", "/tables"))
    ]
    assert writers
    assert not [route.path for route in writers if asyncio.iscoroutinefunction(route.endpoint)]


def test_broadcaster_holds_push_tasks_until_done(engine):
    broadcaster = OrderBroadcaster(engine, ConnectionManager())

    async def scenario():
        pushed = asyncio.Event()

        async def push():
            pushed.set()

        broadcaster._schedule(push())
        pending = len(broadcaster._tasks)
        await pushed.wait()
        await asyncio.sleep(0.01)
        return pending, len(broadcaster._tasks)

    assert asyncio.run(scenario()) == (1, 0)
