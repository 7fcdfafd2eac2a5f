from __future__ import annotations

from typing import Annotated, Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError, WithJsonSchema

from ...backend.errors import BevError, InsufficientStock, NotFound, PartialBatchFailure, ValidationFailed
from ...backend.models import Product, cents_to_dollars
from ..registry import ToolContext, command

logger = structlog.get_logger(__name__)


class AddToCartArgs(BaseModel):
    drink_name: str = Field(..., min_length=1, description="Name of the drink to add")
    quantity: int = Field(1, ge=1, description="Quantity to add (default: 1)")


class BatchItem(BaseModel):
    drink_name: str = Field(..., description="Name of the drink")
    quantity: int = Field(1, ge=1, description="Quantity to add")


# entries are validated one by one in the handler, so a bad entry fails alone
BatchEntries = Annotated[
    List[Any],
    WithJsonSchema(
        {
            "type": "array",
            "description": "Array of drinks to add",
            "items": {"anyOf": [BatchItem.model_json_schema(), {"type": "string"}]},
        }
    ),
]


class AddMultipleArgs(BaseModel):
    items: BatchEntries = Field(..., description="Array of drinks to add")


class RemoveFromCartArgs(BaseModel):
    drink_name: str = Field(..., min_length=1, description="Name of the drink to remove")
    quantity: int = Field(1, ge=1, description="Quantity to remove (default: 1)")


def _batch_item(raw: Any) -> BatchItem:
    """Coerce one batch entry; raises ``ValueError`` with a spoken reason."""
    if isinstance(raw, str) and raw.strip():
        return BatchItem(drink_name=raw)
    if not isinstance(raw, dict) or not str(raw.get("drink_name") or "").strip():
        raise ValueError("Invalid item: missing drink_name")
    try:
        return BatchItem.model_validate(raw)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "item"
        raise ValueError(f'Invalid item "{raw["drink_name"]}": {field} {first.get("msg", "is invalid")}') from exc


def _entry_name(raw: Any) -> Optional[Any]:
    if isinstance(raw, dict):
        return raw.get("drink_name")
    return raw


def _check_stock(product: Product, quantity: int) -> None:
    if (product.inventory or 0) < quantity:
        raise InsufficientStock(
            f"Only {product.inventory:g} {product.name} available in stock",
            details={"product": product.name, "available": product.inventory, "requested": quantity},
        )


@command("add_to_cart", "Add a drink to the customer's cart", AddToCartArgs)
async def add_to_cart(args: AddToCartArgs, ctx: ToolContext) -> Dict[str, Any]:
    venue = ctx.venue
    try:
        product = venue.catalog.resolve(args.drink_name)
    except NotFound:
        raise NotFound(f'Drink "{args.drink_name}" not found in our system', details={"query": args.drink_name})
    _check_stock(product, args.quantity)

    order = venue.orders.add_item(ctx.session_id, product, args.quantity)
    logger.info("Added to cart", product=product.name, quantity=args.quantity, session_id=ctx.session_id, order_id=order.id)
    return {
        "success": True,
        "message": f"Added {args.quantity}x {product.name} to your cart",
        "product": {
            "id": product.id,
            "name": product.name,
            "price": cents_to_dollars(product.price),
            "quantity": args.quantity,
        },
        "orderId": order.id,
    }


@command(
    "add_multiple_to_cart",
    "Add multiple drinks to cart in one operation. Use this for orders with 2+ items.",
    AddMultipleArgs,
)
async def add_multiple_to_cart(args: AddMultipleArgs, ctx: ToolContext) -> Dict[str, Any]:
    if not args.items:
        raise ValidationFailed("No items provided")

    venue = ctx.venue
    batch = PartialBatchFailure()
    for raw in args.items:
        # models sometimes send bare names instead of objects
        try:
            item = _batch_item(raw)
        except ValueError as exc:
            batch.add_failure(_entry_name(raw), str(exc))
            continue
        try:
            product = venue.catalog.resolve(item.drink_name)
            if (product.inventory or 0) < item.quantity:
                batch.add_failure(item.drink_name, f"Only {product.inventory:g} {product.name} available")
                continue
            order = venue.orders.add_item(ctx.session_id, product, item.quantity)
        except NotFound:
            batch.add_failure(item.drink_name, f'"{item.drink_name}" not found')
            continue
        except BevError as exc:
            logger.error("Error adding item in batch", item=item.drink_name, error=exc.message)
            batch.add_failure(item.drink_name, f'Failed to add "{item.drink_name}": {exc.message}')
            continue
        batch.add_success(
            {
                "name": product.name,
                "quantity": item.quantity,
                "price": cents_to_dollars(product.price),
                "orderId": order.id,
            }
        )

    message = f"Added {batch.success_count} item(s) to cart"
    if batch.failure_count:
        message += f", {batch.failure_count} failed"
    result: Dict[str, Any] = {
        "success": batch.success_count > 0,
        "message": message,
        "added": batch.succeeded,
        "total_items": batch.success_count,
    }
    if batch.failure_count:
        result["errors"] = batch.reasons()
    return result


@command("remove_from_cart", "Remove a drink from the cart", RemoveFromCartArgs)
async def remove_from_cart(args: RemoveFromCartArgs, ctx: ToolContext) -> Dict[str, Any]:
    outcome = ctx.venue.orders.remove_by_fuzzy_name(ctx.session_id, args.drink_name, args.quantity)
    if outcome["removed"]:
        return {"success": True, "message": f"Removed {outcome['item_name']} from cart", "removed": True}
    return {
        "success": True,
        "message": f"Removed {args.quantity}x {outcome['item_name']}, {outcome['remaining']} remaining in cart",
        "removed": False,
        "remaining": outcome["remaining"],
    }


@command("show_cart", "Display current cart contents with total")
async def show_cart(args: Any, ctx: ToolContext) -> Dict[str, Any]:
    order = ctx.venue.orders.current_for_session(ctx.session_id)
    if order is None or not order.items:
        return {"success": True, "message": "Your cart is empty", "items": [], "total": 0, "itemCount": 0}

    items = [
        {
            "id": it.product_id,
            "name": it.name,
            "quantity": it.quantity,
            "price": cents_to_dollars(it.price),
            "subtotal": cents_to_dollars(it.subtotal),
        }
        for it in order.items
    ]
    total = cents_to_dollars(order.total)
    return {
        "success": True,
        "message": f"Cart has {order.item_count} items totaling ${total:.2f}",
        "items": items,
        "subtotal": cents_to_dollars(order.subtotal),
        "tax": cents_to_dollars(order.tax_amount),
        "total": total,
        "itemCount": order.item_count,
    }


@command("clear_cart", "Clear all items from the cart")
async def clear_cart(args: Any, ctx: ToolContext) -> Dict[str, Any]:
    count = ctx.venue.orders.clear(ctx.session_id)
    return {"success": True, "message": f"Cleared {count} items from cart", "itemsRemoved": count}
