from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

from ...backend.errors import NotFound
from ...backend.models import cents_to_dollars, iso
from ..registry import ToolContext, command

PaymentMethod = Literal["card", "cash", "voice_simulated"]


class ProcessOrderArgs(BaseModel):
    customer_name: Optional[str] = Field(None, description="Optional customer/table name")


class OrdersListArgs(BaseModel):
    limit: int = Field(10, ge=1, le=100, description="Number of orders to retrieve (default: 10)")


class CreateTabArgs(BaseModel):
    customer_name: str = Field(..., description='Name of the customer for the tab (e.g., "John", "Table 5")')


class CloseTabArgs(BaseModel):
    customer_name: str = Field(..., description="Name of the customer whose tab to close")
    payment_method: PaymentMethod = Field("voice_simulated", description="Payment method (card, cash, etc.)")


class VoidTransactionArgs(BaseModel):
    customer_name: str = Field(..., description="Name of the customer whose tab/transaction to void")


@command("process_order", "Process and complete the current order", ProcessOrderArgs)
async def process_order(args: ProcessOrderArgs, ctx: ToolContext) -> Dict[str, Any]:
    result = ctx.venue.orders.finalize_for_session(
        ctx.session_id, "voice_simulated", customer_name=args.customer_name
    )
    total = cents_to_dollars(result["total"])
    return {
        "success": True,
        "message": f"Order completed! Total: ${total:.2f}",
        "orderId": result["order_id"],
        "total": total,
        "inventory": result["inventory"],
    }


@command("get_orders_list", "Get list of recent orders", OrdersListArgs)
async def get_orders_list(args: OrdersListArgs, ctx: ToolContext) -> Dict[str, Any]:
    orders = ctx.venue.orders.list_orders(args.limit)
    return {
        "success": True,
        "message": f"Retrieved {len(orders)} recent orders",
        "orders": [
            {
                "id": o.id,
                "name": o.display_name,
                "total": cents_to_dollars(o.total),
                "status": o.status.value,
                "itemCount": len(o.items),
                "createdAt": iso(o.created_at),
            }
            for o in orders
        ],
    }


@command("create_tab", "Create a new tab for a customer", CreateTabArgs)
async def create_tab(args: CreateTabArgs, ctx: ToolContext) -> Dict[str, Any]:
    order = ctx.venue.orders.create(label=args.customer_name)
    return {"success": True, "message": f"Tab created for {args.customer_name}", "orderId": order.id}


@command("close_tab", "Close and pay for a tab by customer name", CloseTabArgs)
async def close_tab(args: CloseTabArgs, ctx: ToolContext) -> Dict[str, Any]:
    orders = ctx.venue.orders
    tab = orders.find_by_name(args.customer_name, orders.list_pending())
    if tab is None:
        raise NotFound(f"No open tab found for {args.customer_name}", details={"customer_name": args.customer_name})

    result = orders.finalize(tab.id, args.payment_method, customer_name=args.customer_name)
    total = cents_to_dollars(result["total"])
    return {
        "success": True,
        "message": f"Tab closed for {args.customer_name}. Total: ${total:.2f}",
        "orderId": result["order_id"],
        "total": total,
        "inventory": result["inventory"],
    }


@command("void_transaction", "Void a transaction or tab. This cancels the order.", VoidTransactionArgs)
async def void_transaction(args: VoidTransactionArgs, ctx: ToolContext) -> Dict[str, Any]:
    orders = ctx.venue.orders
    # pending first, then the most recent closed or already voided orders
    candidates = orders.list_pending() + orders.list_orders(limit=50)
    order = orders.find_by_name(args.customer_name, candidates)
    if order is None:
        raise NotFound(f"No transaction found for {args.customer_name}", details={"customer_name": args.customer_name})

    orders.void(order.id)
    return {"success": True, "message": f"Transaction voided for {args.customer_name}", "orderId": order.id}
