import json
from typing import Optional

import pytest
from pydantic import BaseModel, Field

from bevpro.agent import build_registry
from bevpro.agent.commands import cart
from bevpro.agent.registry import CommandRegistry, ToolDefinition, command, discover_tools, flatten_schema
from bevpro.backend.errors import CommandFailed, Conflict, NotFound, ValidationFailed

EXPECTED = {
    "add_to_cart", "add_multiple_to_cart", "remove_from_cart", "show_cart", "clear_cart",
    "check_inventory", "search_drinks",
    "process_order", "get_orders_list", "create_tab", "close_tab", "void_transaction",
    "create_product", "read_product", "update_product", "archive_product",
    "create_category", "update_category", "delete_category",
    "start_inventory_count", "update_inventory_count", "close_inventory_count",
    "create_adjustment", "read_adjustment_history", "void_adjustment",
    "create_event_allocation", "update_event_consumption", "close_event_inventory",
    "navigate_to_screen", "terminate_session",
}


class EchoArgs(BaseModel):
    word: str = Field(..., description="Word to echo")


@command("echo", "Echo a word back", EchoArgs)
async def echo(args, ctx):
    return {"word": args.word}


@command("explode", "Always fails")
async def explode(args, ctx):
    raise RuntimeError("boom")


@command("refuse", "Always conflicts")
async def refuse(args, ctx):
    raise Conflict("not now")


def _registry(*handlers):
    reg = CommandRegistry()
    for handler in handlers:
        reg.register(handler.__command__, handler)
    return reg


# ─── Catalog ───────────────────────────────────────────────────────────────────
def test_full_command_surface(registry):
    assert len(registry) == 30
    assert set(registry.names()) == EXPECTED


def test_discovery_keeps_source_order():
    names = [d.name for d, _ in discover_tools(cart)]
    assert names == ["add_to_cart", "add_multiple_to_cart", "remove_from_cart", "show_cart", "clear_cart"]


def test_duplicate_registration_rejected():
    reg = _registry(echo)
    with pytest.raises(ValueError):
        reg.register(echo.__command__, echo)


def test_parameters_are_flat_json_schema(registry):
    described = registry.describe()
    raw = json.dumps(described)
    assert "$ref" not in raw
    assert "$defs" not in raw
    assert '"title"' not in raw
    for entry in described:
        assert entry["parameters"]["type"] == "object"
        assert "properties" in entry["parameters"]


def test_schema_details(registry):
    by_name = {d["name"]: d["parameters"] for d in registry.describe()}

    add = by_name["add_to_cart"]
    assert add["required"] == ["drink_name"]
    assert add["properties"]["quantity"]["type"] == "integer"

    inventory = by_name["check_inventory"]["properties"]["drink_name"]
    assert inventory["type"] == "string"
    assert "anyOf" not in inventory

    screen = by_name["navigate_to_screen"]["properties"]["screen"]
    assert set(screen["enum"]) == {"menu", "tabs", "transactions", "items", "inventory"}

    items = by_name["add_multiple_to_cart"]["properties"]["items"]
    assert items["type"] == "array"
    variants = items["items"]["anyOf"]
    assert variants[0]["properties"]["drink_name"]["type"] == "string"
    assert variants[1] == {"type": "string"}

    assert by_name["show_cart"] == {"type": "object", "properties": {}}


def test_flatten_collapses_optional():
    class Args(BaseModel):
        note: Optional[str] = None

    flat = flatten_schema(Args.model_json_schema())
    assert flat["properties"]["note"] == {"type": "string"}


def test_openai_tools_and_prompt_lines(registry):
    tools = registry.to_openai_tools()
    assert len(tools) == 30
    first = tools[0]
    assert first["type"] == "function"
    assert first["name"] == "add_to_cart"
    assert set(first) == {"type", "name", "description", "parameters"}

    lines = registry.to_prompt_lines().splitlines()
    assert lines[0] == "- add_to_cart(drink_name, quantity): Add a drink to the customer's cart"
    assert len(lines) == 30


def test_definition_defaults_to_no_args():
    definition = ToolDefinition("noop", "Nothing")
    assert definition.parameters() == {"type": "object", "properties": {}}


# ─── Execution ─────────────────────────────────────────────────────────────────
async def test_execute_validates_and_runs(ctx):
    reg = _registry(echo)
    assert await reg.execute("echo", {"word": "cheers"}, ctx) == {"word": "cheers"}


async def test_unknown_command(ctx):
    reg = _registry(echo)
    with pytest.raises(NotFound, match="Unknown command: shout"):
        await reg.execute("shout", {}, ctx)


async def test_invalid_arguments_report_fields(ctx):
    reg = _registry(echo)
    with pytest.raises(ValidationFailed) as info:
        await reg.execute("echo", {}, ctx)
    errors = info.value.details["errors"]
    assert errors[0]["field"] == "word"
    assert errors[0]["type"] == "missing"


async def test_domain_errors_pass_through(ctx):
    reg = _registry(refuse)
    with pytest.raises(Conflict, match="not now"):
        await reg.execute("refuse", None, ctx)


async def test_unexpected_errors_are_wrapped(ctx):
    reg = _registry(explode)
    with pytest.raises(CommandFailed) as info:
        await reg.execute("explode", {"extra": 1}, ctx)
    payload = info.value.to_payload()
    assert payload["code"] == "command_failed"
    assert payload["details"]["command"] == "explode"
    assert payload["details"]["arguments"] == {"extra": 1}
    assert payload["details"]["cause"] == "RuntimeError"
    assert isinstance(info.value.__cause__, RuntimeError)


def test_build_registry_is_fresh_each_time():
    assert build_registry() is not build_registry()
