from __future__ import annotations

import json
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog

from . import fuzzy
from .errors import NotFound, ValidationFailed
from .models import Category, Product
from .recipes import UNIT_CONVERSIONS
from .store import DocumentStore

logger = structlog.get_logger(__name__)

PRODUCTS = "products"
CATEGORIES = "categories"

PRODUCT_UPDATABLE = {"name", "category", "subcategory", "price", "inventory", "is_active", "unit_volume_oz"}
CATEGORY_UPDATABLE = {"name", "parent_id", "is_active"}


class ProductCatalog:
    """Products and categories on top of the document store.

    Voice lookups go through :meth:`rank`/:meth:`resolve` (fuzzy); recipe
    ingredients go through :meth:`find_by_name` (exact).
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._stock_lock = RLock()

    # ------------------------------------------------------------------
    def bootstrap_from_file(self, path: Path) -> int:
        """Load seed categories/products from JSON; existing names are kept."""
        if not path.exists():
            logger.warning("Seed file missing", path=str(path))
            return 0
        with path.open("r", encoding="utf-8") as fh:
            payload = json.load(fh)

        for name in payload.get("categories", []) or []:
            if not self._category_by_name(str(name)):
                self._store.insert(CATEGORIES, Category(name=str(name)).to_doc())

        added = 0
        for raw in payload.get("products", []) or []:
            product = _product_from_seed(raw)
            if not product.name or self.find_by_name(product.name):
                continue
            self._store.insert(PRODUCTS, product.to_doc())
            added += 1
        logger.info("Catalog bootstrapped", path=str(path), products=added)
        return added

    # ------------------------------------------------------------------
    def get(self, product_id: str) -> Optional[Product]:
        doc = self._store.get(PRODUCTS, product_id)
        return Product.from_doc(doc) if doc else None

    def require(self, product_id: str) -> Product:
        product = self.get(product_id)
        if product is None:
            raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
        return product

    def find_by_name(self, name: str) -> Optional[Product]:
        docs = self._store.query(PRODUCTS, "by_name", name, limit=1)
        return Product.from_doc(docs[0]) if docs else None

    def list(self, category: Optional[str] = None, *, active_only: bool = True) -> List[Product]:
        if category:
            docs = self._store.query(PRODUCTS, "by_category", category)
        else:
            docs = self._store.query(PRODUCTS)
        products = [Product.from_doc(d) for d in docs]
        if active_only:
            products = [p for p in products if p.is_active]
        return products

    def rank(self, query: str, category: Optional[str] = None) -> List[fuzzy.Match[Product]]:
        return fuzzy.rank(
            query,
            self.list(category),
            name=lambda p: p.name,
            secondary=lambda p: p.description,
        )

    def search(self, query: str, category: Optional[str] = None) -> List[Product]:
        if not (query or "").strip():
            return self.list(category)
        return [m.item for m in self.rank(query, category)]

    def resolve(self, query: str, *, kind: str = "Drink") -> Product:
        ranked = self.rank(query)
        if not ranked:
            raise NotFound(f'{kind} "{query}" not found', details={"query": query})
        return ranked[0].item

    def low_stock(self, threshold: float) -> List[Product]:
        return [p for p in self.list() if (p.inventory or 0) < threshold]

    def category_names(self) -> List[str]:
        return sorted({p.category for p in self.list() if p.category})

    # ------------------------------------------------------------------
    def create(
        self,
        name: str,
        *,
        category: str = "Uncategorized",
        subcategory: str = "",
        unit_type: str = "bottle",
        price: int = 0,
        inventory: float = 0,
        is_active: bool = True,
        unit_volume_oz: Optional[float] = None,
        description: str = "",
    ) -> Product:
        name = (name or "").strip()
        if not name:
            raise ValidationFailed("Product name required")
        if unit_volume_oz is None and unit_type == "bottle":
            unit_volume_oz = UNIT_CONVERSIONS["BOTTLE_OZ"]
        product = Product(
            name=name,
            category=category or "Uncategorized",
            subcategory=subcategory or "",
            unit_type=unit_type,
            price=int(price or 0),
            inventory=inventory or 0,
            is_active=is_active,
            unit_volume_oz=unit_volume_oz,
            description=description,
        )
        product_id = self._store.insert(PRODUCTS, product.to_doc())
        logger.info("Product created", product_id=product_id, name=name)
        return self.require(product_id)

    def update(self, product_id: str, updates: Dict[str, Any]) -> Product:
        unknown = set(updates) - PRODUCT_UPDATABLE
        if unknown:
            raise ValidationFailed(
                f"Cannot update field(s): {', '.join(sorted(unknown))}",
                details={"allowed": sorted(PRODUCT_UPDATABLE)},
            )
        self.require(product_id)
        self._store.patch(PRODUCTS, product_id, updates)
        return self.require(product_id)

    def archive(self, product_id: str, reason: Optional[str] = None) -> Product:
        self.require(product_id)
        self._store.patch(PRODUCTS, product_id, {"is_active": False})
        logger.info("Product archived", product_id=product_id, reason=reason)
        return self.require(product_id)

    # ------------------------------------------------------------------
    def adjust_stock(self, product_id: str, delta: float) -> Tuple[float, float]:
        """Add ``delta`` (may be negative) to on-hand stock. No floor is applied."""
        with self._stock_lock:
            product = self.require(product_id)
            before = product.inventory or 0
            after = before + delta
            self._store.patch(PRODUCTS, product_id, {"inventory": after})
            return before, after

    def set_stock(self, product_id: str, value: float) -> Tuple[float, float]:
        with self._stock_lock:
            product = self.require(product_id)
            before = product.inventory or 0
            self._store.patch(PRODUCTS, product_id, {"inventory": value})
            return before, value

    # ------------------------------------------------------------------
    def create_category(self, name: str, parent_id: Optional[str] = None) -> Category:
        name = (name or "").strip()
        if not name:
            raise ValidationFailed("Category name required")
        if parent_id and not self._store.get(CATEGORIES, parent_id):
            raise NotFound(f"Parent category {parent_id} not found", details={"parent_id": parent_id})
        category_id = self._store.insert(CATEGORIES, Category(name=name, parent_id=parent_id).to_doc())
        return self.require_category(category_id)

    def require_category(self, category_id: str) -> Category:
        doc = self._store.get(CATEGORIES, category_id)
        if not doc:
            raise NotFound(f"Category {category_id} not found", details={"category_id": category_id})
        return Category.from_doc(doc)

    def update_category(self, category_id: str, updates: Dict[str, Any]) -> Category:
        unknown = set(updates) - CATEGORY_UPDATABLE
        if unknown:
            raise ValidationFailed(
                f"Cannot update field(s): {', '.join(sorted(unknown))}",
                details={"allowed": sorted(CATEGORY_UPDATABLE)},
            )
        self.require_category(category_id)
        parent_id = updates.get("parent_id")
        if parent_id and not self._store.get(CATEGORIES, parent_id):
            raise NotFound(f"Parent category {parent_id} not found", details={"parent_id": parent_id})
        self._store.patch(CATEGORIES, category_id, updates)
        return self.require_category(category_id)

    def delete_category(self, category_id: str) -> Category:
        self.require_category(category_id)
        self._store.patch(CATEGORIES, category_id, {"is_active": False})
        return self.require_category(category_id)

    def list_categories(self) -> List[Category]:
        return [Category.from_doc(d) for d in self._store.query(CATEGORIES, where=lambda d: d.get("is_active", True))]

    def _category_by_name(self, name: str) -> Optional[Category]:
        docs = self._store.query(CATEGORIES, where=lambda d: d.get("name") == name, limit=1)
        return Category.from_doc(docs[0]) if docs else None


def _product_from_seed(raw: Dict[str, Any]) -> Product:
    return Product(
        name=str(raw.get("name", "")).strip(),
        category=str(raw.get("category") or "Uncategorized"),
        subcategory=str(raw.get("subcategory") or ""),
        price=int(raw.get("price", 0) or 0),
        inventory=raw.get("inventory", 0) or 0,
        unit_type=str(raw.get("unit_type") or "bottle"),
        unit_volume_oz=raw.get("unit_volume_oz"),
        description=str(raw.get("description") or raw.get("desc") or ""),
        image_url=raw.get("image_url") or raw.get("image") or None,
        is_active=bool(raw.get("is_active", True)),
    )


def seed_products(catalog: ProductCatalog, products: Iterable[Dict[str, Any]]) -> List[Product]:
    """Insert products from plain dicts; used by fixtures and the REST importer."""
    out: List[Product] = []
    for raw in products:
        p = _product_from_seed(raw)
        out.append(
            catalog.create(
                p.name,
                category=p.category,
                subcategory=p.subcategory,
                unit_type=p.unit_type,
                price=p.price,
                inventory=p.inventory,
                is_active=p.is_active,
                unit_volume_oz=p.unit_volume_oz,
                description=p.description,
            )
        )
    return out


__all__ = ["ProductCatalog", "seed_products", "PRODUCT_UPDATABLE", "CATEGORY_UPDATABLE"]
