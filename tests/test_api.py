import struct

import pytest
from fastapi.testclient import TestClient

from bevpro.fastapi_app.main import create_app
from bevpro.realtime.audio import TAG_CLIENT_AUDIO, frame
from bevpro.realtime.channel import QueueChannel


@pytest.fixture
def channels():
    return []


@pytest.fixture
def app(settings, venue, channels, monkeypatch):
    for name in ("AZURE_OPENAI_API_KEY", "AZURE_OPENAI_ENDPOINT", "AZURE_OPENAI_DEPLOYMENT"):
        monkeypatch.delenv(name, raising=False)

    def factory():
        channel = QueueChannel()
        channels.append(channel)
        return channel

    return create_app(settings, venue, channel_factory=factory)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def _product_id(client, name):
    products = client.get("/api/products").json()["products"]
    return next(p["id"] for p in products if p["name"] == name)


# ─── Health & catalog ──────────────────────────────────────────────────────────
def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["time"]


def test_products_and_categories(client):
    products = client.get("/api/products").json()["products"]
    assert len(products) == 64
    bud = next(p for p in products if p["name"] == "Bud Light")
    assert bud["price"] == 550
    assert bud["stock"] == 199

    beers = client.get("/api/products", params={"category": "Beer"}).json()["products"]
    assert beers and all(p["category"] == "Beer" for p in beers)

    categories = client.get("/api/products/categories/list").json()["categories"]
    assert categories == ["Beer", "Classics", "Non-Alcoholic", "Signature", "Spirits", "Wine"]


def test_product_lookup(client):
    bud_id = _product_id(client, "Bud Light")
    assert client.get(f"/api/products/{bud_id}").json()["name"] == "Bud Light"

    missing = client.get("/api/products/nope")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "not_found"


# ─── Orders ────────────────────────────────────────────────────────────────────
def test_create_order_finalizes_and_decrements(client):
    bud_id = _product_id(client, "Bud Light")
    resp = client.post(
        "/api/orders",
        json={"items": [{"productId": bud_id, "quantity": 2}], "orderName": "Sam", "paymentMethod": "cash"},
    )
    assert resp.status_code == 201
    body = resp.json()
    order = body["order"]
    assert order["status"] == "closed"
    assert order["total"] == 1188
    assert order["orderName"] == "Sam"
    assert order["inventoryStatus"] == "applied"
    assert body["inventory"]["status"] == "applied"
    assert client.get(f"/api/products/{bud_id}").json()["stock"] == 197

    listed = client.get("/api/orders").json()["orders"]
    assert [o["id"] for o in listed] == [order["id"]]
    assert client.get(f"/api/orders/{order['id']}").json()["total"] == 1188

    retry = client.post(f"/api/orders/{order['id']}/inventory/retry").json()
    assert retry["inventory"] == {"status": "applied", "applied": []}
    assert client.get(f"/api/products/{bud_id}").json()["stock"] == 197


def test_create_order_rejects_bad_input(client):
    assert client.post("/api/orders", json={"items": []}).status_code == 422
    assert client.post("/api/orders", json={"items": [{"productId": "x", "quantity": 0}]}).status_code == 422

    missing = client.post("/api/orders", json={"items": [{"productId": "nope"}]})
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "not_found"


def test_unknown_order(client):
    assert client.get("/api/orders/nope").status_code == 404
    assert client.post("/api/orders/nope/inventory/retry").status_code == 404


# ─── Cart ──────────────────────────────────────────────────────────────────────
def test_cart_quantity_routes(client):
    assert client.get("/api/cart/till-1").json() == {"order": None}
    missing = client.patch("/api/cart/till-1/items/x", json={"quantity": 2})
    assert missing.status_code == 404
    assert missing.json()["error"]["message"] == "No active cart found"

    client.post(
        "/api/realtime/execute-tool",
        json={"name": "add_to_cart", "args": {"drink_name": "Bud Light"}, "sessionId": "till-1"},
    )
    bud = _product_id(client, "Bud Light")
    cart = client.get("/api/cart/till-1").json()["order"]
    assert [(i["productId"], i["quantity"]) for i in cart["items"]] == [(bud, 1)]

    updated = client.patch(f"/api/cart/till-1/items/{bud}", json={"quantity": 3})
    assert updated.status_code == 200
    assert updated.json()["order"]["items"][0]["quantity"] == 3
    assert updated.json()["order"]["total"] == 1782

    assert client.patch(f"/api/cart/till-1/items/{bud}", json={"quantity": -1}).status_code == 422
    unknown = client.patch("/api/cart/till-1/items/nope", json={"quantity": 1})
    assert unknown.status_code == 404
    assert unknown.json()["error"]["message"] == "Item not in cart"

    removed = client.delete(f"/api/cart/till-1/items/{bud}")
    assert removed.status_code == 200
    assert removed.json()["order"]["items"] == []
    assert removed.json()["order"]["total"] == 0
    assert client.get("/api/cart/till-2").json() == {"order": None}


# ─── Realtime REST surface ─────────────────────────────────────────────────────
def test_realtime_tools(client):
    body = client.get("/api/realtime/tools").json()
    assert len(body["tools"]) == 30
    assert body["tools"][0]["type"] == "function"
    assert "[Drink menu]" in body["instructions"]


def test_execute_tool(client):
    resp = client.post(
        "/api/realtime/execute-tool",
        json={"name": "add_to_cart", "args": {"drink_name": "bud light", "quantity": 2}, "sessionId": "till-1"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["result"]["message"] == "Added 2x Bud Light to your cart"

    cart = client.post("/api/realtime/execute-tool", json={"name": "show_cart", "sessionId": "till-1"}).json()
    assert cart["result"]["success"] is True


def test_execute_tool_error_mapping(client):
    unknown = client.post("/api/realtime/execute-tool", json={"name": "pour_free_drinks"})
    assert unknown.status_code == 404
    assert unknown.json()["error"]["message"] == "Unknown command: pour_free_drinks"

    invalid = client.post("/api/realtime/execute-tool", json={"name": "add_to_cart", "args": {}})
    assert invalid.status_code == 422
    assert invalid.json()["error"]["code"] == "validation_failed"

    no_tab = client.post("/api/realtime/execute-tool", json={"name": "close_tab", "args": {"customer_name": "Nobody"}})
    assert no_tab.status_code == 404
    assert no_tab.json()["error"]["message"] == "No open tab found for Nobody"


def test_realtime_session_requires_credentials(client):
    resp = client.post("/api/realtime/session")
    assert resp.status_code == 502
    assert resp.json()["error"]["code"] == "external_service_error"


def test_realtime_health(client, settings):
    body = client.get("/api/realtime/health").json()
    assert body["status"] == "ok"
    assert body["configured"] is False
    assert body["provider"] == "openai"
    assert body["model"] == settings.realtime_model
    assert body["tools"] == 30


# ─── Voice websocket ───────────────────────────────────────────────────────────
def test_voice_socket_handshake_and_ping(client, channels):
    with client.websocket_connect("/ws/voice?session_id=bar-3") as ws:
        assert ws.receive_json() == {"type": "session_created", "sessionId": "bar-3"}
        assert ws.receive_json() == {"type": "provider_connected"}

        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}
    assert len(channels) == 1


def test_voice_socket_forwards_microphone_audio(client, channels, settings):
    samples = settings.capture_block_samples
    chunk = struct.pack("<%dh" % samples, *([1000] * samples))
    with client.websocket_connect("/ws/voice") as ws:
        ws.receive_json()
        ws.receive_json()
        ws.send_bytes(frame(TAG_CLIENT_AUDIO, chunk))
        # the pong proves the audio frame ahead of it was handled
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}
        assert len(channels[0].sent_audio) == 1
        assert len(channels[0].sent_audio[0]) == samples * 2
