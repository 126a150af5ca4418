"""
Order endpoints end to end over HTTP with the in-process store.
"""
import asyncio

import pytest
from prometheus_client import REGISTRY

from _helper import add_menu_item, place_order, register
from restaurant_ops.routes import orders as orders_routes
from restaurant_ops.store import get_store


@pytest.fixture
def staff(client):
    return {role: register(client, role) for role in ("owner", "manager", "chef", "waiter")}


@pytest.fixture
def dishes(client, staff):
    _, owner = staff["owner"]
    return {
        "burger": add_menu_item(client, owner, name="Burger", price="10.00"),
        "soda": add_menu_item(client, owner, name="Soda", price="5.00", category="beverage"),
    }


def _set_status(client, headers, order_id, status):
    return client.patch(f"/orders/{order_id}/status", json={"status": status}, headers=headers)


def test_kitchen_flow(client, staff, dishes):
    _, waiter = staff["waiter"]
    _, chef = staff["chef"]

    res = place_order(client, waiter, 5, [(dishes["burger"]["id"], 2), (dishes["soda"]["id"], 1)])
    assert res.status_code == 201, res.text
    order = res.json()["data"]["order"]
    assert order["total"] == "25.00"
    assert order["status"] == "pending"
    assert order["order_number"].startswith("ORD-")

    res = _set_status(client, chef, order["id"], "preparing")
    assert res.status_code == 200
    assert res.json()["data"]["order"]["status"] == "preparing"

    res = _set_status(client, waiter, order["id"], "cancelled")
    assert res.status_code == 409
    assert res.json()["error"]["type"] == "IllegalTransition"

    assert _set_status(client, chef, order["id"], "ready").status_code == 200
    res = _set_status(client, waiter, order["id"], "served")
    assert res.status_code == 200
    served = res.json()["data"]["order"]
    assert served["status"] == "served"
    assert served["total"] == "25.00"

    res = client.get("/metrics")
    assert res.status_code == 200
    assert "order_transitions_total" in res.text


def test_wrong_role_for_edge_is_forbidden(client, staff, dishes):
    _, waiter = staff["waiter"]
    order = place_order(client, waiter, 2, [(dishes["burger"]["id"], 1)]).json()["data"]["order"]
    res = _set_status(client, waiter, order["id"], "preparing")
    assert res.status_code == 403
    assert res.json()["error"]["type"] == "Forbidden"


def test_chef_cannot_create_orders(client, staff, dishes):
    _, chef = staff["chef"]
    res = place_order(client, chef, 2, [(dishes["burger"]["id"], 1)])
    assert res.status_code == 403


def test_requires_token(client):
    assert client.get("/orders").status_code == 401
    res = client.get("/orders", headers={"Authorization": "Bearer not-a-token"})
    assert res.status_code == 401


@pytest.mark.parametrize(
    "lines, error",
    [
        ([], "EmptyOrder"),
        ([("burger", 0)], "InvalidQuantity"),
    ],
)
def test_order_validation(client, staff, dishes, lines, error):
    _, waiter = staff["waiter"]
    res = place_order(client, waiter, 3, [(dishes[name]["id"], qty) for name, qty in lines])
    assert res.status_code == 400
    assert res.json()["error"]["type"] == error


def test_unavailable_and_unknown_items(client, staff, dishes):
    _, owner = staff["owner"]
    _, waiter = staff["waiter"]
    assert client.patch(f"/menu/{dishes['soda']['id']}/toggle", headers=owner).status_code == 200

    res = place_order(client, waiter, 3, [(dishes["soda"]["id"], 1)])
    assert res.status_code == 400
    assert res.json()["error"]["type"] == "ItemUnavailable"

    res = place_order(client, waiter, 3, [("no-such-dish", 1)])
    assert res.status_code == 404


def test_unknown_order(client, staff):
    _, chef = staff["chef"]
    assert client.get("/orders/missing", headers=chef).status_code == 404
    assert _set_status(client, chef, "missing", "preparing").status_code == 404


def test_customer_name_hidden_from_kitchen(client, staff, dishes):
    _, waiter = staff["waiter"]
    _, chef = staff["chef"]
    order = place_order(
        client, waiter, 7, [(dishes["burger"]["id"], 1)], customer_name="Ana",
    ).json()["data"]["order"]
    assert order["customer_name"] == "Ana"

    res = client.get(f"/orders/{order['id']}", headers=chef)
    assert res.status_code == 200
    assert res.json()["data"]["order"]["customer_name"] is None


def test_list_orders_pagination(client, staff, dishes):
    _, waiter = staff["waiter"]
    _, chef = staff["chef"]
    for table in (1, 1, 1, 2):
        assert place_order(client, waiter, table, [(dishes["burger"]["id"], 1)]).status_code == 201

    res = client.get("/orders", params={"table_number": 1, "limit": 2, "page": 2}, headers=chef)
    assert res.status_code == 200
    data = res.json()["data"]
    assert len(data["orders"]) == 1
    assert data["pagination"] == {
        "page": 2,
        "limit": 2,
        "total_count": 3,
        "total_pages": 2,
        "has_next_page": False,
        "has_prev_page": True,
    }

    res = client.get("/orders", params={"status": "served"}, headers=chef)
    assert res.json()["data"]["orders"] == []


def test_idempotency_key_returns_first_order(client, staff, dishes, monkeypatch):
    seen = {}

    async def claim(key, ttl_seconds=None):
        if key in seen:
            return seen[key]
        seen[key] = orders_routes.PENDING
        return None

    async def remember(key, resource_id, ttl_seconds=None):
        seen[key] = resource_id

    async def release(key):
        seen.pop(key, None)

    async def reclaim(key, ttl_seconds=None):
        seen[key] = orders_routes.PENDING

    monkeypatch.setattr(orders_routes, "claim_idempotency_key", claim)
    monkeypatch.setattr(orders_routes, "remember_idempotent_result", remember)
    monkeypatch.setattr(orders_routes, "release_idempotency_key", release)
    monkeypatch.setattr(orders_routes, "reclaim_idempotency_key", reclaim)

    _, waiter = staff["waiter"]
    headers = {**waiter, "Idempotency-Key": "table-9-round-1"}
    first = place_order(client, headers, 9, [(dishes["burger"]["id"], 1)])
    second = place_order(client, headers, 9, [(dishes["burger"]["id"], 1)])
    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["data"]["order"]["id"] == first.json()["data"]["order"]["id"]

    failed = place_order(client, {**waiter, "Idempotency-Key": "bad"}, 9, [])
    assert failed.status_code == 400
    assert not any(k.endswith(":bad") for k in seen)

    seen["idempotency:orders:busy"] = orders_routes.PENDING
    monkeypatch.setattr(orders_routes, "idempotency_redis_key", lambda scope, key: f"idempotency:orders:{key}")
    res = place_order(client, {**waiter, "Idempotency-Key": "busy"}, 9, [(dishes["burger"]["id"], 1)])
    assert res.status_code == 409
    assert res.json()["error"]["type"] == "RequestInProgress"


def test_without_idempotency_key_each_post_creates_an_order(client, staff, dishes):
    _, waiter = staff["waiter"]
    first = place_order(client, waiter, 4, [(dishes["burger"]["id"], 1)]).json()["data"]["order"]
    second = place_order(client, waiter, 4, [(dishes["burger"]["id"], 1)]).json()["data"]["order"]
    assert first["id"] != second["id"]
    assert first["order_number"] < second["order_number"]


def test_lost_idempotent_result_creates_new_order(client, staff, dishes, monkeypatch):
    seen = {"idempotency:orders:again": "order-that-is-gone"}
    reclaimed = []

    async def claim(key, ttl_seconds=None):
        return seen.get(key)

    async def reclaim(key, ttl_seconds=None):
        reclaimed.append(key)
        seen[key] = orders_routes.PENDING

    async def remember(key, resource_id, ttl_seconds=None):
        seen[key] = resource_id

    monkeypatch.setattr(orders_routes, "idempotency_redis_key", lambda scope, key: f"idempotency:orders:{key}")
    monkeypatch.setattr(orders_routes, "claim_idempotency_key", claim)
    monkeypatch.setattr(orders_routes, "reclaim_idempotency_key", reclaim)
    monkeypatch.setattr(orders_routes, "remember_idempotent_result", remember)

    _, waiter = staff["waiter"]
    res = place_order(client, {**waiter, "Idempotency-Key": "again"}, 6, [(dishes["burger"]["id"], 1)])
    assert res.status_code == 201
    assert reclaimed == ["idempotency:orders:again"]
    assert seen["idempotency:orders:again"] == res.json()["data"]["order"]["id"]


def _stale_rejections() -> float:
    return REGISTRY.get_sample_value("order_transitions_rejected_total", {"reason": "StaleState"}) or 0.0


def test_status_change_retries_once_after_stale_write(client, staff, dishes, monkeypatch):
    _, waiter = staff["waiter"]
    _, chef = staff["chef"]
    order = place_order(client, waiter, 8, [(dishes["burger"]["id"], 1)]).json()["data"]["order"]

    store = asyncio.run(get_store())
    real_cas = store.compare_and_set_status
    calls = []

    async def stale_once(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            return None
        return await real_cas(*args, **kwargs)

    monkeypatch.setattr(store, "compare_and_set_status", stale_once)
    res = _set_status(client, chef, order["id"], "preparing")
    assert res.status_code == 200
    assert res.json()["data"]["order"]["status"] == "preparing"
    assert len(calls) == 2


def test_stale_write_surfaces_after_one_retry(client, staff, dishes, monkeypatch):
    _, waiter = staff["waiter"]
    _, chef = staff["chef"]
    order = place_order(client, waiter, 8, [(dishes["burger"]["id"], 1)]).json()["data"]["order"]

    store = asyncio.run(get_store())
    calls = []

    async def always_stale(*args, **kwargs):
        calls.append(args)
        return None

    monkeypatch.setattr(store, "compare_and_set_status", always_stale)
    before = _stale_rejections()
    res = _set_status(client, chef, order["id"], "preparing")
    assert res.status_code == 409
    error = res.json()["error"]
    assert error["type"] == "StaleState"
    assert error["retryable"] is True
    assert len(calls) == 2
    assert _stale_rejections() == before + 1

    res = client.get(f"/orders/{order['id']}", headers=chef)
    assert res.json()["data"]["order"]["status"] == "pending"
