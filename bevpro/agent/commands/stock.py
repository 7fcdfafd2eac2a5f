from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ...backend.errors import NotFound, ValidationFailed
from ...backend.models import Product, iso
from ..registry import ToolContext, command


class StartCountArgs(BaseModel):
    location_name: str = Field(..., description="Location name (e.g., Main Bar, Storage)")
    count_name: Optional[str] = Field(None, description="Optional name for this count")


class UpdateCountArgs(BaseModel):
    count_session_id: str = Field(..., description="Count session ID")
    product_id: Optional[str] = Field(None, description="Product ID")
    product_name: Optional[str] = Field(None, description="Product name, used when no ID is given")
    quantity: float = Field(..., ge=0, description="Quantity counted")


class CloseCountArgs(BaseModel):
    count_session_id: str = Field(..., description="Count session ID")


class CreateAdjustmentArgs(BaseModel):
    product_name: str = Field(..., description='Product name (e.g., "Bud Light", "Tito\'s Vodka")')
    location_name: str = Field(..., description="Location name")
    quantity: float = Field(..., description="Quantity (positive for add, negative for remove)")
    adjustment_type: str = Field(..., description="Type: spillage, breakage, comp, theft, expired")
    note: Optional[str] = Field(None, description="Optional note")


class AdjustmentHistoryArgs(BaseModel):
    product_id: Optional[str] = Field(None, description="Product ID (optional)")
    limit: int = Field(50, ge=1, le=200, description="Maximum number of entries")


class VoidAdjustmentArgs(BaseModel):
    adjustment_id: str = Field(..., description="Adjustment ID")
    reason: Optional[str] = Field(None, description="Reason for voiding")


class CreateAllocationArgs(BaseModel):
    event_id: str = Field(..., description="Event booking ID")
    product_name: str = Field(..., description='Product name (e.g., "Champagne")')
    quantity: float = Field(..., gt=0, description="Quantity to allocate")


class UpdateConsumptionArgs(BaseModel):
    event_id: str = Field(..., description="Event booking ID")
    product_name: str = Field(..., description='Product name (e.g., "Champagne")')
    quantity_used: float = Field(..., ge=0, description="Quantity consumed")


class CloseEventArgs(BaseModel):
    event_id: str = Field(..., description="Event booking ID")


def _product(ctx: ToolContext, name: str) -> Product:
    try:
        return ctx.venue.catalog.resolve(name, kind="Product")
    except NotFound:
        raise NotFound(f'Product "{name}" not found', details={"query": name})


# ─── Counts ───────────────────────────────────────────────────
@command("start_inventory_count", "Begin a physical inventory count session", StartCountArgs)
async def start_inventory_count(args: StartCountArgs, ctx: ToolContext) -> Dict[str, Any]:
    session = ctx.venue.counts.start(args.location_name, args.count_name)
    return {
        "success": True,
        "message": f"Inventory count started for {args.location_name}",
        "sessionId": session.id,
    }


@command(
    "update_inventory_count",
    "Record quantity counted for a product during an inventory session",
    UpdateCountArgs,
)
async def update_inventory_count(args: UpdateCountArgs, ctx: ToolContext) -> Dict[str, Any]:
    if args.product_id:
        product_id = args.product_id
    elif args.product_name:
        product_id = _product(ctx, args.product_name).id
    else:
        raise ValidationFailed("product_id or product_name is required")
    ctx.venue.counts.update(args.count_session_id, product_id, args.quantity)
    return {"success": True, "message": "Count updated successfully"}


@command("close_inventory_count", "Finalize inventory count and apply variances", CloseCountArgs)
async def close_inventory_count(args: CloseCountArgs, ctx: ToolContext) -> Dict[str, Any]:
    result = ctx.venue.counts.close(args.count_session_id)
    return {
        "success": True,
        "message": f"Inventory count closed. {result['items_updated']} items updated.",
        "items_updated": result["items_updated"],
    }


# ─── Adjustments ──────────────────────────────────────────────
@command("create_adjustment", "Log an inventory adjustment such as spillage, breakage or comps", CreateAdjustmentArgs)
async def create_adjustment(args: CreateAdjustmentArgs, ctx: ToolContext) -> Dict[str, Any]:
    product = _product(ctx, args.product_name)
    adjustment = ctx.venue.adjustments.create(
        product.id, args.location_name, args.quantity, args.adjustment_type, args.note
    )
    return {
        "success": True,
        "message": f"Adjustment recorded for {product.name}: {args.adjustment_type} ({args.quantity:g})",
        "adjustmentId": adjustment.id,
    }


@command("read_adjustment_history", "Retrieve historical adjustment logs", AdjustmentHistoryArgs)
async def read_adjustment_history(args: AdjustmentHistoryArgs, ctx: ToolContext) -> Dict[str, Any]:
    adjustments = ctx.venue.adjustments.history(args.product_id, args.limit)
    return {
        "success": True,
        "adjustments": [
            {
                "id": a.id,
                "product_id": a.product_id,
                "location_name": a.location_name,
                "quantity": a.quantity,
                "adjustment_type": a.adjustment_type,
                "note": a.note,
                "voided": a.voided,
                "createdAt": iso(a.created_at),
            }
            for a in adjustments
        ],
        "count": len(adjustments),
    }


@command("void_adjustment", "Void an incorrect or fraudulent inventory adjustment", VoidAdjustmentArgs)
async def void_adjustment(args: VoidAdjustmentArgs, ctx: ToolContext) -> Dict[str, Any]:
    ctx.venue.adjustments.void(args.adjustment_id, args.reason)
    return {"success": True, "message": "Adjustment voided successfully"}


# ─── Events ───────────────────────────────────────────────────
@command("create_event_allocation", "Allocate inventory to an event (e.g., a wedding)", CreateAllocationArgs)
async def create_event_allocation(args: CreateAllocationArgs, ctx: ToolContext) -> Dict[str, Any]:
    product = _product(ctx, args.product_name)
    allocation = ctx.venue.events.allocate(args.event_id, product.id, args.quantity)
    return {
        "success": True,
        "message": f"Allocated {args.quantity:g} units of {product.name} to event",
        "allocationId": allocation.id,
    }


@command("update_event_consumption", "Update actual consumption for an event", UpdateConsumptionArgs)
async def update_event_consumption(args: UpdateConsumptionArgs, ctx: ToolContext) -> Dict[str, Any]:
    product = _product(ctx, args.product_name)
    ctx.venue.events.record_consumption(args.event_id, product.id, args.quantity_used)
    return {"success": True, "message": f"Event consumption updated for {product.name}"}


@command("close_event_inventory", "Close an event and finalize its inventory allocations", CloseEventArgs)
async def close_event_inventory(args: CloseEventArgs, ctx: ToolContext) -> Dict[str, Any]:
    closed = ctx.venue.events.close(args.event_id)
    return {
        "success": True,
        "message": f"Event closed. {closed} allocations finalized.",
        "allocations_closed": closed,
    }
