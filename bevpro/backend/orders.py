from __future__ import annotations

import threading
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

import structlog

from ..config import Settings
from .catalog import ProductCatalog
from .errors import Conflict, NotFound, ValidationFailed
from .inventory import DecrementEngine, DecrementStep
from .models import (
    InventoryStatus,
    LineItem,
    Order,
    OrderStatus,
    PaymentStatus,
    Product,
    Transaction,
)
from .store import DocumentStore

logger = structlog.get_logger(__name__)

ORDERS = "orders"
TRANSACTIONS = "transactions"


def compute_tax(subtotal: int, tax_rate: float) -> int:
    """``round(subtotal * tax_rate)`` with halves rounded away from zero."""
    raw = Decimal(subtotal) * Decimal(str(tax_rate))
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class OrderAggregate:
    """Pure state transitions on a single :class:`Order`.

    Totals are only ever derived from the lines; nothing writes them directly.
    """

    def __init__(self, order: Order, tax_rate: float) -> None:
        self.order = order
        self.tax_rate = tax_rate

    @classmethod
    def create(
        cls,
        tax_rate: float,
        items: Optional[Iterable[LineItem]] = None,
        label: Optional[str] = None,
        session_id: Optional[str] = None,
        table_number: Optional[str] = None,
    ) -> "OrderAggregate":
        agg = cls(Order(session_id=session_id, order_name=label, table_number=table_number), tax_rate)
        for item in items or []:
            agg.add_or_merge_item(item.product_id, item.quantity, item.price, item.name)
        agg.recompute()
        return agg

    # ------------------------------------------------------------------
    def ensure_mutable(self) -> None:
        if self.order.is_terminal:
            raise Conflict(
                f"Order is already {self.order.status.value}",
                details={"order_id": self.order.id, "status": self.order.status.value},
            )

    def _line(self, product_id: str) -> Optional[LineItem]:
        for item in self.order.items:
            if item.product_id == product_id:
                return item
        return None

    def recompute(self) -> None:
        subtotal = sum(item.subtotal for item in self.order.items)
        tax = compute_tax(subtotal, self.tax_rate)
        self.order.subtotal = subtotal
        self.order.tax_amount = tax
        self.order.total = subtotal + tax

    # ------------------------------------------------------------------
    def add_or_merge_item(self, product_id: str, quantity: int, unit_price: int, name: str) -> LineItem:
        self.ensure_mutable()
        if quantity <= 0:
            raise ValidationFailed("Quantity must be positive", details={"quantity": quantity})
        line = self._line(product_id)
        if line is not None:
            line.quantity += quantity
        else:
            line = LineItem(product_id=product_id, name=name, price=unit_price, quantity=quantity)
            self.order.items.append(line)
        self.recompute()
        return line

    def set_quantity(self, product_id: str, quantity: int) -> None:
        self.ensure_mutable()
        line = self._line(product_id)
        if line is None:
            raise NotFound("Item not in cart", details={"product_id": product_id})
        if quantity <= 0:
            self.order.items.remove(line)
        else:
            line.quantity = quantity
        self.recompute()

    def remove_by_fuzzy_name(self, query: str, quantity: int = 1) -> Dict[str, Any]:
        self.ensure_mutable()
        needle = (query or "").strip().lower()
        if not needle:
            raise ValidationFailed("Drink name is required", details={"query": query})
        line = next((it for it in self.order.items if needle in it.name.lower()), None)
        if line is None:
            raise NotFound(f'Item "{query}" not found in cart', details={"query": query})
        if line.quantity <= quantity:
            self.order.items.remove(line)
            result = {"removed": True, "remaining": 0, "item_name": line.name}
        else:
            line.quantity -= quantity
            result = {"removed": False, "remaining": line.quantity, "item_name": line.name}
        self.recompute()
        return result

    def complete(self, customer_name: Optional[str] = None) -> None:
        self.ensure_mutable()
        self.order.status = OrderStatus.COMPLETED
        self.order.payment_status = PaymentStatus.COMPLETED
        if customer_name:
            self.order.order_name = customer_name

    def cancel(self) -> None:
        self.ensure_mutable()
        self.order.status = OrderStatus.CANCELLED


class OrderService:
    """Persistence and session ownership for orders.

    Each session has at most one pending order; a per-session lock keeps the
    find-or-create in :meth:`current_or_create` idempotent.
    """

    def __init__(
        self,
        store: DocumentStore,
        catalog: ProductCatalog,
        engine: DecrementEngine,
        settings: Settings,
    ) -> None:
        self._store = store
        self._catalog = catalog
        self._engine = engine
        self._settings = settings
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _lock(self, key: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    def _session_lock(self, session_id: str) -> threading.RLock:
        return self._lock(f"session:{session_id}")

    def _order_lock(self, order_id: str) -> threading.RLock:
        return self._lock(f"order:{order_id}")

    def _aggregate(self, order: Order) -> OrderAggregate:
        return OrderAggregate(order, self._settings.tax_rate)

    def _save(self, order: Order) -> Order:
        doc = order.to_doc()
        if order.id:
            self._store.patch(ORDERS, order.id, doc)
        else:
            order.id = self._store.insert(ORDERS, doc)
        return self.get(order.id)

    # ------------------------------------------------------------------
    def get(self, order_id: str) -> Order:
        doc = self._store.get(ORDERS, order_id)
        if not doc:
            raise NotFound("Order not found", details={"order_id": order_id})
        return Order.from_doc(doc)

    def create(
        self,
        items: Optional[Iterable[LineItem]] = None,
        label: Optional[str] = None,
        session_id: Optional[str] = None,
        table_number: Optional[str] = None,
    ) -> Order:
        agg = OrderAggregate.create(self._settings.tax_rate, items, label, session_id, table_number)
        order = self._save(agg.order)
        logger.info("Order created", order_id=order.id, session_id=session_id, label=label)
        return order

    def current_for_session(self, session_id: str) -> Optional[Order]:
        docs = self._store.query(
            ORDERS,
            "by_session",
            session_id,
            where=lambda d: d.get("status") == OrderStatus.PENDING.value,
            order="desc",
            limit=1,
        )
        return Order.from_doc(docs[0]) if docs else None

    def current_or_create(self, session_id: str) -> Order:
        with self._session_lock(session_id):
            order = self.current_for_session(session_id)
            if order is None:
                order = self.create(session_id=session_id)
            return order

    # ------------------------------------------------------------------
    def add_item(self, session_id: str, product: Product, quantity: int = 1) -> Order:
        with self._session_lock(session_id):
            agg = self._aggregate(self.current_or_create(session_id))
            agg.add_or_merge_item(product.id, quantity, product.price, product.name)
            return self._save(agg.order)

    def set_quantity(self, session_id: str, product_id: str, quantity: int) -> Order:
        with self._session_lock(session_id):
            order = self.current_for_session(session_id)
            if order is None:
                raise NotFound("No active cart found", details={"session_id": session_id})
            agg = self._aggregate(order)
            agg.set_quantity(product_id, quantity)
            return self._save(agg.order)

    def remove_by_fuzzy_name(self, session_id: str, query: str, quantity: int = 1) -> Dict[str, Any]:
        with self._session_lock(session_id):
            order = self.current_for_session(session_id)
            if order is None:
                raise NotFound("No active cart found", details={"session_id": session_id})
            agg = self._aggregate(order)
            result = agg.remove_by_fuzzy_name(query, quantity)
            self._save(agg.order)
            return result

    def clear(self, session_id: str) -> int:
        """Delete the session's pending order; returns how many lines it had."""
        with self._session_lock(session_id):
            order = self.current_for_session(session_id)
            if order is None:
                return 0
            self._store.delete(ORDERS, order.id)
            logger.info("Cart cleared", order_id=order.id, session_id=session_id, lines=len(order.items))
            return len(order.items)

    # ------------------------------------------------------------------
    def finalize(
        self,
        order_id: str,
        payment_method: str,
        amount: Optional[int] = None,
        customer_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        with self._order_lock(order_id):
            order = self.get(order_id)
            agg = self._aggregate(order)
            agg.ensure_mutable()

            steps, skipped = self._engine.plan(order.items)
            self._engine.check_stock(steps)

            agg.complete(customer_name)
            order = self._save(agg.order)

            charged = amount if amount else order.total
            txn = Transaction(order_id=order.id, amount=charged, payment_method=payment_method)
            self._store.insert(TRANSACTIONS, txn.to_doc())

            saga = self._engine.run(order.id, steps, self._saga_writer(order.id), skipped)
            self._store.patch(ORDERS, order.id, {"inventory_status": saga.status.value})
        logger.info(
            "Order finalized",
            order_id=order.id,
            amount=charged,
            payment_method=payment_method,
            inventory_status=saga.status.value,
        )
        return {"order_id": order.id, "amount": charged, "total": order.total, "inventory": saga.summary()}

    def finalize_for_session(
        self,
        session_id: str,
        payment_method: str,
        amount: Optional[int] = None,
        customer_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        with self._session_lock(session_id):
            order = self.current_for_session(session_id)
            if order is None:
                raise NotFound("Order not found", details={"session_id": session_id})
            return self.finalize(order.id, payment_method, amount, customer_name)

    def resume_inventory(self, order_id: str) -> Dict[str, Any]:
        """Re-run the decrement steps of ``order_id`` that did not complete.

        Runs under the order lock, so a step logged COMPLETED is never applied twice.
        """
        with self._order_lock(order_id):
            order = self.get(order_id)
            if order.status != OrderStatus.COMPLETED:
                raise Conflict("Only completed orders carry inventory", details={"order_id": order_id})
            if order.inventory_status == InventoryStatus.APPLIED:
                return {"order_id": order_id, "inventory": {"status": InventoryStatus.APPLIED.value, "applied": []}}
            steps = [DecrementStep.from_doc(d) for d in order.inventory_saga]
            saga = self._engine.run(order.id, steps, self._saga_writer(order.id))
            self._store.patch(ORDERS, order.id, {"inventory_status": saga.status.value})
        logger.info("Inventory saga resumed", order_id=order_id, inventory_status=saga.status.value)
        return {"order_id": order_id, "inventory": saga.summary()}

    def _saga_writer(self, order_id: str):
        def persist(log: List[Dict[str, Any]]) -> None:
            self._store.patch(ORDERS, order_id, {"inventory_saga": log})

        return persist

    def void(self, order_id: str) -> Order:
        with self._order_lock(order_id):
            agg = self._aggregate(self.get(order_id))
            agg.cancel()
            order = self._save(agg.order)
        logger.info("Order voided", order_id=order_id)
        return order

    # ------------------------------------------------------------------
    def list_orders(self, limit: Optional[int] = None) -> List[Order]:
        return [Order.from_doc(d) for d in self._store.query(ORDERS, order="desc", limit=limit)]

    def list_pending(self) -> List[Order]:
        return [
            Order.from_doc(d)
            for d in self._store.query(ORDERS, "by_status", OrderStatus.PENDING.value, order="desc")
        ]

    def find_by_name(self, name: str, orders: Iterable[Order]) -> Optional[Order]:
        wanted = (name or "").lower()
        for order in orders:
            if order.order_name and order.order_name.lower() == wanted:
                return order
        return None

    def transactions_for(self, order_id: str) -> List[Transaction]:
        return [Transaction.from_doc(d) for d in self._store.query(TRANSACTIONS, "by_order", order_id)]


__all__ = ["OrderAggregate", "OrderService", "compute_tax"]
