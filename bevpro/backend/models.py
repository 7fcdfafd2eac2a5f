from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

T = TypeVar("T")


class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class InventoryStatus(str, Enum):
    NOT_APPLIED = "not_applied"
    APPLIED = "applied"
    PARTIAL = "partial"


class MovementType(str, Enum):
    SALE = "sale"
    RESTOCK = "restock"
    ADJUSTMENT = "adjustment"
    ADJUSTMENT_VOID = "adjustment_void"
    COUNT = "count"
    EVENT = "event"


def iso(ms: Optional[int]) -> Optional[str]:
    if not ms:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def cents_to_dollars(cents: float) -> float:
    return round((cents or 0) / 100, 2)


def dollars_to_cents(dollars: float) -> int:
    return int(round(float(dollars) * 100))


def _from_doc(cls: Type[T], doc: Dict[str, Any]) -> T:
    names = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    return cls(**{k: v for k, v in doc.items() if k in names})


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


@dataclass
class Product:
    """A sellable or stocked catalog entry (a drink, a bottle, a keg...)."""

    name: str
    category: str = "Uncategorized"
    price: int = 0
    inventory: float = 0
    subcategory: str = ""
    unit_type: str = "bottle"
    unit_volume_oz: Optional[float] = None
    description: str = ""
    image_url: Optional[str] = None
    is_active: bool = True
    id: str = ""
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Product":
        return _from_doc(cls, doc)

    def to_doc(self) -> Dict[str, Any]:
        return asdict(self)

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "price": self.price,
            "imageUrl": self.image_url,
            "stock": self.inventory,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }

    def to_voice(self) -> Dict[str, Any]:
        data = self.to_doc()
        data["price"] = cents_to_dollars(self.price)
        return data


@dataclass
class Category:
    name: str
    parent_id: Optional[str] = None
    is_active: bool = True
    id: str = ""
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Category":
        return _from_doc(cls, doc)

    def to_doc(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LineItem:
    product_id: str
    name: str
    price: int
    quantity: int

    @property
    def subtotal(self) -> int:
        return self.price * self.quantity

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "LineItem":
        return cls(
            product_id=str(doc.get("product_id", "")),
            name=str(doc.get("name", "")),
            price=int(doc.get("price", 0) or 0),
            quantity=int(doc.get("quantity", 0) or 0),
        )

    def to_doc(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Order:
    items: List[LineItem] = field(default_factory=list)
    subtotal: int = 0
    tax_amount: int = 0
    total: int = 0
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    session_id: Optional[str] = None
    order_name: Optional[str] = None
    table_number: Optional[str] = None
    inventory_status: InventoryStatus = InventoryStatus.NOT_APPLIED
    inventory_saga: List[Dict[str, Any]] = field(default_factory=list)
    discount_amount: int = 0
    tip_amount: int = 0
    id: str = ""
    created_at: int = 0
    updated_at: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status != OrderStatus.PENDING

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def display_name(self) -> str:
        return self.order_name or self.table_number or "Walk-in"

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Order":
        order = _from_doc(cls, {k: v for k, v in doc.items() if k != "items"})
        order.items = [LineItem.from_doc(it) for it in doc.get("items") or []]
        order.status = OrderStatus(order.status)
        order.payment_status = PaymentStatus(order.payment_status)
        order.inventory_status = InventoryStatus(order.inventory_status)
        return order

    def to_doc(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("status", "payment_status", "inventory_status"):
            data[key] = _enum_value(data[key])
        return data

    def to_api(self) -> Dict[str, Any]:
        created = iso(self.created_at)
        return {
            "id": self.id,
            "orderName": self.order_name,
            "status": "closed" if self.status == OrderStatus.COMPLETED else "open",
            "total": self.total,
            "customCharges": 0,
            "items": [
                {
                    "id": item.product_id,
                    "orderId": self.id,
                    "productId": item.product_id,
                    "product": {"name": item.name, "price": item.price},
                    "quantity": item.quantity,
                    "price": item.price,
                    "createdAt": created,
                }
                for item in self.items
            ],
            "inventoryStatus": _enum_value(self.inventory_status),
            "createdAt": created,
            "updatedAt": iso(self.updated_at),
            "closedAt": iso(self.updated_at) if self.payment_status == PaymentStatus.COMPLETED else None,
        }


@dataclass
class Transaction:
    order_id: str
    amount: int
    payment_method: str
    transaction_type: str = "sale"
    status: str = "completed"
    fees: int = 0
    refund_amount: int = 0
    id: str = ""
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Transaction":
        return _from_doc(cls, doc)

    def to_doc(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class InventoryMovement:
    product_id: str
    quantity_change: float
    movement_type: MovementType
    reason: Optional[str] = None
    reference_id: Optional[str] = None
    id: str = ""
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "InventoryMovement":
        movement = _from_doc(cls, doc)
        movement.movement_type = MovementType(movement.movement_type)
        return movement

    def to_doc(self) -> Dict[str, Any]:
        data = asdict(self)
        data["movement_type"] = _enum_value(data["movement_type"])
        return data


@dataclass
class Adjustment:
    product_id: str
    location_name: str
    quantity: float
    adjustment_type: str
    note: Optional[str] = None
    voided: bool = False
    void_reason: Optional[str] = None
    id: str = ""
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Adjustment":
        return _from_doc(cls, doc)

    def to_doc(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CountSession:
    location_name: str
    count_name: Optional[str] = None
    status: str = "in_progress"
    completed_at: Optional[int] = None
    id: str = ""
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "CountSession":
        return _from_doc(cls, doc)

    def to_doc(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CountItem:
    count_session_id: str
    product_id: str
    quantity: float
    id: str = ""
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "CountItem":
        return _from_doc(cls, doc)

    def to_doc(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EventAllocation:
    event_id: str
    product_id: str
    allocated_quantity: float
    consumed_quantity: float = 0
    is_closed: bool = False
    id: str = ""
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "EventAllocation":
        return _from_doc(cls, doc)

    def to_doc(self) -> Dict[str, Any]:
        return asdict(self)


__all__ = [
    "OrderStatus",
    "PaymentStatus",
    "InventoryStatus",
    "MovementType",
    "Product",
    "Category",
    "LineItem",
    "Order",
    "Transaction",
    "InventoryMovement",
    "Adjustment",
    "CountSession",
    "CountItem",
    "EventAllocation",
    "iso",
    "cents_to_dollars",
    "dollars_to_cents",
]
