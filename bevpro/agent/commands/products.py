from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ...backend.errors import NotFound
from ...backend.models import dollars_to_cents
from ..registry import ToolContext, command


class CreateProductArgs(BaseModel):
    name: str = Field(..., description="Product name")
    unit_type: str = Field(..., description="Unit of measure (bottle, can, glass, etc.)")
    category: Optional[str] = Field(None, description="Product category")
    subcategory: Optional[str] = Field(None, description="Product subcategory")
    price: Optional[float] = Field(None, ge=0, description="Price in dollars")
    inventory: Optional[float] = Field(None, description="Initial inventory quantity")


class ProductNameArgs(BaseModel):
    product_name: str = Field(..., description='Product name (e.g., "Bud Light")')


class UpdateProductArgs(BaseModel):
    product_name: str = Field(..., description='Product name (e.g., "Bud Light")')
    updates: Dict[str, Any] = Field(..., description="Fields to update (price, inventory, name, etc.)")


class ArchiveProductArgs(BaseModel):
    product_id: str = Field(..., description="Product ID")
    reason: Optional[str] = Field(None, description="Reason for archiving")


class CreateCategoryArgs(BaseModel):
    name: str = Field(..., description="Category name")
    parent_id: Optional[str] = Field(None, description="Parent category ID (for subcategories)")


class UpdateCategoryArgs(BaseModel):
    category_id: str = Field(..., description="Category ID")
    updates: Dict[str, Any] = Field(..., description="Fields to update")


class CategoryIdArgs(BaseModel):
    category_id: str = Field(..., description="Category ID")


def _resolve(ctx: ToolContext, name: str):
    try:
        return ctx.venue.catalog.resolve(name, kind="Product")
    except NotFound:
        raise NotFound(f'Product "{name}" not found', details={"query": name})


@command("create_product", "Create a new product/SKU in BevPro inventory system", CreateProductArgs)
async def create_product(args: CreateProductArgs, ctx: ToolContext) -> Dict[str, Any]:
    product = ctx.venue.catalog.create(
        args.name,
        category=args.category or "Uncategorized",
        subcategory=args.subcategory or "",
        unit_type=args.unit_type,
        price=dollars_to_cents(args.price) if args.price else 0,
        inventory=args.inventory or 0,
    )
    return {"success": True, "message": f'Product "{args.name}" created successfully', "productId": product.id}


@command("read_product", "Retrieve full details for a product/SKU", ProductNameArgs)
async def read_product(args: ProductNameArgs, ctx: ToolContext) -> Dict[str, Any]:
    product = _resolve(ctx, args.product_name)
    return {"success": True, "product": product.to_voice()}


@command("update_product", "Update attributes of an existing product/SKU", UpdateProductArgs)
async def update_product(args: UpdateProductArgs, ctx: ToolContext) -> Dict[str, Any]:
    product = _resolve(ctx, args.product_name)
    updates = dict(args.updates)
    if updates.get("price") is not None:
        updates["price"] = dollars_to_cents(updates["price"])
    ctx.venue.catalog.update(product.id, updates)
    return {"success": True, "message": f"{product.name} updated successfully"}


@command("archive_product", "Soft-delete a product while retaining its history", ArchiveProductArgs)
async def archive_product(args: ArchiveProductArgs, ctx: ToolContext) -> Dict[str, Any]:
    ctx.venue.catalog.archive(args.product_id, args.reason)
    return {"success": True, "message": "Product archived successfully"}


@command("create_category", "Create a new product category or subcategory", CreateCategoryArgs)
async def create_category(args: CreateCategoryArgs, ctx: ToolContext) -> Dict[str, Any]:
    category = ctx.venue.catalog.create_category(args.name, args.parent_id)
    return {"success": True, "message": f'Category "{args.name}" created successfully', "categoryId": category.id}


@command("update_category", "Rename or update an existing category", UpdateCategoryArgs)
async def update_category(args: UpdateCategoryArgs, ctx: ToolContext) -> Dict[str, Any]:
    ctx.venue.catalog.update_category(args.category_id, args.updates)
    return {"success": True, "message": "Category updated successfully"}


@command("delete_category", "Delete or archive a category (soft-delete only)", CategoryIdArgs)
async def delete_category(args: CategoryIdArgs, ctx: ToolContext) -> Dict[str, Any]:
    ctx.venue.catalog.delete_category(args.category_id)
    return {"success": True, "message": "Category deleted successfully"}
