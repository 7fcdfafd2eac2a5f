import pytest

from bevpro.backend.errors import Conflict, InsufficientStock, NotFound, ValidationFailed
from bevpro.backend.models import OrderStatus


async def run(registry, ctx, name, /, **arguments):
    return await registry.execute(name, arguments, ctx)


# ─── Cart ──────────────────────────────────────────────────────────────────────
async def test_add_to_cart_reports_dollars(registry, ctx, venue):
    result = await run(registry, ctx, "add_to_cart", drink_name="bud light", quantity=2)
    assert result["success"] is True
    assert result["message"] == "Added 2x Bud Light to your cart"
    assert result["product"]["price"] == 5.5
    order = venue.orders.current_for_session(ctx.session_id)
    assert result["orderId"] == order.id
    assert order.total == 1188


async def test_add_to_cart_unknown_drink(registry, ctx):
    with pytest.raises(NotFound, match='Drink "zzz" not found in our system'):
        await run(registry, ctx, "add_to_cart", drink_name="zzz")


async def test_add_to_cart_over_stock(registry, ctx):
    with pytest.raises(InsufficientStock, match="Only 199 Bud Light available in stock"):
        await run(registry, ctx, "add_to_cart", drink_name="Bud Light", quantity=500)


async def test_add_to_cart_rejects_zero_quantity(registry, ctx):
    with pytest.raises(ValidationFailed):
        await run(registry, ctx, "add_to_cart", drink_name="Bud Light", quantity=0)


async def test_batch_add_partial_failure(registry, ctx, venue):
    result = await run(
        registry,
        ctx,
        "add_multiple_to_cart",
        items=[
            {"drink_name": "Captain Morgan", "quantity": 2},
            {"drink_name": "Jameson", "quantity": 3},
            {"drink_name": "Unicornade"},
        ],
    )
    assert result["success"] is True
    assert result["total_items"] == 2
    assert result["message"] == "Added 2 item(s) to cart, 1 failed"
    assert [a["name"] for a in result["added"]] == ["Captain Morgan", "Jameson Whiskey"]
    assert result["errors"] == ['"Unicornade" not found']
    order = venue.orders.current_for_session(ctx.session_id)
    assert order.item_count == 5


async def test_batch_add_reports_malformed_entries_per_item(registry, ctx, venue):
    result = await run(
        registry,
        ctx,
        "add_multiple_to_cart",
        items=[
            {"drink_name": "Bud Light", "quantity": 1},
            {"drink_name": "Heineken", "quantity": 0},
            {"quantity": 2},
            "  ",
        ],
    )
    assert result["success"] is True
    assert result["total_items"] == 1
    assert result["message"] == "Added 1 item(s) to cart, 3 failed"
    assert [a["name"] for a in result["added"]] == ["Bud Light"]
    assert result["errors"][0].startswith('Invalid item "Heineken": quantity')
    assert result["errors"][1:] == ["Invalid item: missing drink_name", "Invalid item: missing drink_name"]
    assert venue.orders.current_for_session(ctx.session_id).item_count == 1


async def test_batch_add_accepts_bare_names(registry, ctx):
    result = await run(registry, ctx, "add_multiple_to_cart", items=["Heineken", "Coke"])
    assert result["total_items"] == 2
    assert "errors" not in result
    assert result["message"] == "Added 2 item(s) to cart"


async def test_batch_add_all_failed(registry, ctx):
    result = await run(registry, ctx, "add_multiple_to_cart", items=[{"drink_name": "qqq"}])
    assert result["success"] is False
    assert result["total_items"] == 0


async def test_show_remove_and_clear(registry, ctx):
    empty = await run(registry, ctx, "show_cart")
    assert empty["message"] == "Your cart is empty"

    await run(registry, ctx, "add_to_cart", drink_name="Bud Light", quantity=2)
    await run(registry, ctx, "add_to_cart", drink_name="Tito's Vodka")
    shown = await run(registry, ctx, "show_cart")
    assert shown["message"] == "Cart has 3 items totaling $24.84"
    assert shown["total"] == 24.84
    assert shown["items"][0]["subtotal"] == 11.0

    removed = await run(registry, ctx, "remove_from_cart", drink_name="bud")
    assert removed["removed"] is False
    assert removed["remaining"] == 1

    cleared = await run(registry, ctx, "clear_cart")
    assert cleared["message"] == "Cleared 2 items from cart"
    assert cleared["itemsRemoved"] == 2


async def test_remove_requires_a_drink_name(registry, ctx, venue):
    await run(registry, ctx, "add_to_cart", drink_name="Bud Light", quantity=2)
    with pytest.raises(ValidationFailed):
        await run(registry, ctx, "remove_from_cart", drink_name="")
    with pytest.raises(ValidationFailed, match="Drink name is required"):
        await run(registry, ctx, "remove_from_cart", drink_name="   ")
    assert venue.orders.current_for_session(ctx.session_id).item_count == 2


# ─── Orders and tabs ───────────────────────────────────────────────────────────
async def test_process_order(registry, ctx, venue, product):
    await run(registry, ctx, "add_to_cart", drink_name="Bud Light", quantity=2)
    result = await run(registry, ctx, "process_order", customer_name="Table 5")
    assert result["message"] == "Order completed! Total: $11.88"
    assert result["total"] == 11.88
    assert result["inventory"]["status"] == "applied"
    order = venue.orders.get(result["orderId"])
    assert order.status == OrderStatus.COMPLETED
    assert order.order_name == "Table 5"
    assert venue.orders.transactions_for(order.id)[0].payment_method == "voice_simulated"
    assert product("Bud Light").inventory == 197


async def test_process_order_without_cart(registry, ctx):
    with pytest.raises(NotFound):
        await run(registry, ctx, "process_order")


async def test_tab_lifecycle(registry, ctx, venue):
    created = await run(registry, ctx, "create_tab", customer_name="John")
    assert created["message"] == "Tab created for John"

    closed = await run(registry, ctx, "close_tab", customer_name="john", payment_method="cash")
    assert closed["orderId"] == created["orderId"]
    assert closed["message"] == "Tab closed for john. Total: $0.00"
    assert venue.orders.get(created["orderId"]).status == OrderStatus.COMPLETED

    with pytest.raises(NotFound, match="No open tab found for John"):
        await run(registry, ctx, "close_tab", customer_name="John")


async def test_close_tab_rejects_unknown_payment_method(registry, ctx):
    await run(registry, ctx, "create_tab", customer_name="Ana")
    with pytest.raises(ValidationFailed):
        await run(registry, ctx, "close_tab", customer_name="Ana", payment_method="bitcoin")


async def test_void_transaction(registry, ctx, venue):
    created = await run(registry, ctx, "create_tab", customer_name="Smith")
    result = await run(registry, ctx, "void_transaction", customer_name="SMITH")
    assert result["orderId"] == created["orderId"]
    assert venue.orders.get(created["orderId"]).status == OrderStatus.CANCELLED

    with pytest.raises(NotFound):
        await run(registry, ctx, "void_transaction", customer_name="Nobody")


async def test_double_void_conflicts(registry, ctx, venue):
    created = await run(registry, ctx, "create_tab", customer_name="Ann")
    await run(registry, ctx, "void_transaction", customer_name="Ann")
    with pytest.raises(Conflict, match="Order is already cancelled"):
        await run(registry, ctx, "void_transaction", customer_name="ann")
    assert venue.orders.get(created["orderId"]).status == OrderStatus.CANCELLED


async def test_void_prefers_pending_tab(registry, ctx, venue):
    old = await run(registry, ctx, "create_tab", customer_name="Kim")
    await run(registry, ctx, "void_transaction", customer_name="Kim")
    fresh = await run(registry, ctx, "create_tab", customer_name="Kim")
    result = await run(registry, ctx, "void_transaction", customer_name="Kim")
    assert result["orderId"] == fresh["orderId"] != old["orderId"]


async def test_void_completed_order_conflicts(registry, ctx):
    await run(registry, ctx, "create_tab", customer_name="Lee")
    await run(registry, ctx, "close_tab", customer_name="Lee")
    with pytest.raises(Conflict):
        await run(registry, ctx, "void_transaction", customer_name="Lee")


async def test_orders_list(registry, ctx):
    await run(registry, ctx, "create_tab", customer_name="First")
    await run(registry, ctx, "add_to_cart", drink_name="Coke")
    result = await run(registry, ctx, "get_orders_list", limit=5)
    names = [o["name"] for o in result["orders"]]
    assert names == ["Walk-in", "First"]
    assert result["orders"][0]["status"] == "pending"
    assert result["orders"][0]["createdAt"].endswith("Z")


# ─── Lookup ────────────────────────────────────────────────────────────────────
async def test_check_inventory_single(registry, ctx, venue, product):
    result = await run(registry, ctx, "check_inventory", drink_name="bud light")
    assert result["message"] == "Bud Light: 199 in stock (IN STOCK)"

    venue.catalog.set_stock(product("Heineken").id, 3)
    low = await run(registry, ctx, "check_inventory", drink_name="heineken")
    assert low["product"]["status"] == "LOW STOCK"

    venue.catalog.set_stock(product("Heineken").id, 0)
    out = await run(registry, ctx, "check_inventory", drink_name="heineken")
    assert out["product"]["status"] == "OUT OF STOCK"


async def test_check_inventory_low_stock_list(registry, ctx, venue, product):
    healthy = await run(registry, ctx, "check_inventory")
    assert healthy["message"] == "All items are well-stocked!"

    venue.catalog.set_stock(product("Malibu").id, 2)
    low = await run(registry, ctx, "check_inventory")
    assert low["items"] == [{"name": "Malibu", "quantity": 2, "status": "LOW STOCK"}]


async def test_search_drinks_by_category_and_name(registry, ctx):
    beers = await run(registry, ctx, "search_drinks", query="Beer")
    assert beers["results"]
    assert {r["category"] for r in beers["results"]} == {"Beer"}
    assert "Bud Light" in [r["name"] for r in beers["results"]]

    found = await run(registry, ctx, "search_drinks", query="jameson")
    assert found["results"][0]["name"] == "Jameson Whiskey"
    assert found["results"][0]["price"] == 12.0

    none = await run(registry, ctx, "search_drinks", query="mead")
    assert none["results"] == []


# ─── Products and categories ───────────────────────────────────────────────────
async def test_product_crud(registry, ctx, venue):
    created = await run(registry, ctx, "create_product", name="Aperol", unit_type="bottle", price=24.5, inventory=6)
    product = venue.catalog.require(created["productId"])
    assert product.price == 2450
    assert product.unit_volume_oz == 25.36

    read = await run(registry, ctx, "read_product", product_name="aperol")
    assert read["product"]["price"] == 24.5

    await run(registry, ctx, "update_product", product_name="Aperol", updates={"price": 26})
    assert venue.catalog.require(product.id).price == 2600

    with pytest.raises(ValidationFailed):
        await run(registry, ctx, "update_product", product_name="Aperol", updates={"barcode": "123"})

    await run(registry, ctx, "archive_product", product_id=product.id, reason="seasonal")
    with pytest.raises(NotFound, match='Product "Aperol" not found'):
        await run(registry, ctx, "read_product", product_name="Aperol")


async def test_category_commands(registry, ctx, venue):
    parent = await run(registry, ctx, "create_category", name="Cocktails")
    child = await run(registry, ctx, "create_category", name="Tiki", parent_id=parent["categoryId"])
    await run(registry, ctx, "update_category", category_id=child["categoryId"], updates={"name": "Tropical"})
    assert venue.catalog.require_category(child["categoryId"]).name == "Tropical"
    await run(registry, ctx, "delete_category", category_id=child["categoryId"])
    assert venue.catalog.require_category(child["categoryId"]).is_active is False

    with pytest.raises(NotFound):
        await run(registry, ctx, "create_category", name="Orphan", parent_id="missing")


# ─── Stock commands ────────────────────────────────────────────────────────────
async def test_count_commands(registry, ctx, product):
    started = await run(registry, ctx, "start_inventory_count", location_name="Main Bar")
    session_id = started["sessionId"]
    await run(registry, ctx, "update_inventory_count", count_session_id=session_id, product_name="Bud Light", quantity=150)
    await run(
        registry, ctx, "update_inventory_count", count_session_id=session_id, product_id=product("Coke").id, quantity=20
    )
    with pytest.raises(ValidationFailed):
        await run(registry, ctx, "update_inventory_count", count_session_id=session_id, quantity=1)

    closed = await run(registry, ctx, "close_inventory_count", count_session_id=session_id)
    assert closed["items_updated"] == 2
    assert product("Bud Light").inventory == 150
    assert product("Coke").inventory == 20


async def test_adjustment_commands(registry, ctx, product):
    created = await run(
        registry,
        ctx,
        "create_adjustment",
        product_name="Bud Light",
        location_name="Main Bar",
        quantity=-2,
        adjustment_type="spillage",
    )
    assert product("Bud Light").inventory == 197

    history = await run(registry, ctx, "read_adjustment_history", product_id=product("Bud Light").id)
    assert history["count"] == 1
    assert history["adjustments"][0]["adjustment_type"] == "spillage"

    await run(registry, ctx, "void_adjustment", adjustment_id=created["adjustmentId"], reason="mistake")
    assert product("Bud Light").inventory == 199
    with pytest.raises(Conflict):
        await run(registry, ctx, "void_adjustment", adjustment_id=created["adjustmentId"])


async def test_event_commands(registry, ctx, product):
    start = product("Wycliff Champ").inventory
    await run(registry, ctx, "create_event_allocation", event_id="evt-1", product_name="Wycliff Champ", quantity=24)
    await run(registry, ctx, "update_event_consumption", event_id="evt-1", product_name="Wycliff Champ", quantity_used=10)
    assert product("Wycliff Champ").inventory == start - 10

    closed = await run(registry, ctx, "close_event_inventory", event_id="evt-1")
    assert closed["allocations_closed"] == 1
    with pytest.raises(Conflict):
        await run(registry, ctx, "update_event_consumption", event_id="evt-1", product_name="Wycliff Champ", quantity_used=12)


# ─── System ────────────────────────────────────────────────────────────────────
async def test_navigate_emits_control_message(registry, ctx, emitted):
    result = await run(registry, ctx, "navigate_to_screen", screen="inventory")
    assert result["screen"] == "inventory"
    assert emitted.messages == [{"type": "navigate", "screen": "inventory"}]

    with pytest.raises(ValidationFailed):
        await run(registry, ctx, "navigate_to_screen", screen="kitchen")


async def test_terminate_session_flags_context(registry, ctx):
    assert ctx.termination_requested is False
    result = await run(registry, ctx, "terminate_session", reason="user said goodbye")
    assert result["success"] is True
    assert ctx.termination_requested is True
    assert ctx.termination_reason == "user said goodbye"
