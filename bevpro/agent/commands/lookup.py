from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ...backend.errors import NotFound
from ...backend.models import Product, cents_to_dollars
from ..registry import ToolContext, command


class CheckInventoryArgs(BaseModel):
    drink_name: Optional[str] = Field(
        None, description="Optional: specific drink to check. If not provided, shows low stock items"
    )


class SearchDrinksArgs(BaseModel):
    query: str = Field(..., description='Search term for drinks (name or category like "beer", "wine", etc.)')


def stock_status(quantity: float, warning: float) -> str:
    if quantity <= 0:
        return "OUT OF STOCK"
    if quantity < warning:
        return "LOW STOCK"
    return "IN STOCK"


@command("check_inventory", "Check inventory levels for specific drinks or all drinks", CheckInventoryArgs)
async def check_inventory(args: CheckInventoryArgs, ctx: ToolContext) -> Dict[str, Any]:
    catalog = ctx.venue.catalog
    settings = ctx.settings
    if args.drink_name:
        try:
            product = catalog.resolve(args.drink_name)
        except NotFound:
            raise NotFound(f'Drink "{args.drink_name}" not found', details={"query": args.drink_name})
        quantity = product.inventory or 0
        status = stock_status(quantity, settings.low_stock_warning)
        return {
            "success": True,
            "message": f"{product.name}: {quantity:g} in stock ({status})",
            "product": {"name": product.name, "quantity": quantity, "status": status},
        }

    low = catalog.low_stock(settings.low_stock_threshold)
    if not low:
        return {"success": True, "message": "All items are well-stocked!", "items": []}
    return {
        "success": True,
        "message": f"{len(low)} items are low on stock",
        "items": [
            {
                "name": p.name,
                "quantity": p.inventory,
                "status": "OUT OF STOCK" if (p.inventory or 0) <= 0 else "LOW STOCK",
            }
            for p in low
        ],
    }


def _summary(product: Product) -> Dict[str, Any]:
    return {
        "name": product.name,
        "category": product.category,
        "price": cents_to_dollars(product.price),
        "quantity": product.inventory,
    }


@command("search_drinks", "Search for drinks by name or type/category", SearchDrinksArgs)
async def search_drinks(args: SearchDrinksArgs, ctx: ToolContext) -> Dict[str, Any]:
    catalog = ctx.venue.catalog
    wanted = args.query.strip().lower()
    category = next((c for c in catalog.category_names() if c.lower() == wanted), None)
    products = catalog.list(category) if category else catalog.search(args.query)

    if not products:
        return {"success": True, "message": f'No drinks found matching "{args.query}"', "results": []}
    return {
        "success": True,
        "message": f'Found {len(products)} drinks matching "{args.query}"',
        "results": [_summary(p) for p in products],
    }
