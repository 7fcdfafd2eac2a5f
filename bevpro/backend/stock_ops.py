"""Manual stock operations: adjustments, physical counts and event allocations.

Each one changes ``products.inventory`` and appends to the movement ledger in
the same way the sale decrement does.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import structlog

from .catalog import ProductCatalog
from .errors import Conflict, NotFound
from .inventory import MovementLedger
from .models import Adjustment, CountItem, CountSession, EventAllocation, MovementType
from .store import DocumentStore, now_ms

logger = structlog.get_logger(__name__)

ADJUSTMENTS = "inventory_adjustments"
COUNT_SESSIONS = "inventory_count_sessions"
COUNT_ITEMS = "inventory_count_items"
ALLOCATIONS = "event_allocations"

COUNT_IN_PROGRESS = "in_progress"
COUNT_COMPLETED = "completed"


class AdjustmentService:
    def __init__(self, store: DocumentStore, catalog: ProductCatalog, ledger: MovementLedger) -> None:
        self._store = store
        self._catalog = catalog
        self._ledger = ledger

    def get(self, adjustment_id: str) -> Adjustment:
        doc = self._store.get(ADJUSTMENTS, adjustment_id)
        if not doc:
            raise NotFound("Adjustment not found", details={"adjustment_id": adjustment_id})
        return Adjustment.from_doc(doc)

    def create(
        self,
        product_id: str,
        location_name: str,
        quantity: float,
        adjustment_type: str,
        note: Optional[str] = None,
    ) -> Adjustment:
        self._catalog.require(product_id)
        adjustment = Adjustment(
            product_id=product_id,
            location_name=location_name,
            quantity=quantity,
            adjustment_type=adjustment_type,
            note=note,
        )
        adjustment.id = self._store.insert(ADJUSTMENTS, adjustment.to_doc())
        self._catalog.adjust_stock(product_id, quantity)
        self._ledger.record(
            product_id,
            quantity,
            MovementType.ADJUSTMENT,
            reason=adjustment_type,
            reference_id=adjustment.id,
        )
        logger.info("Adjustment recorded", adjustment_id=adjustment.id, product_id=product_id, quantity=quantity)
        return self.get(adjustment.id)

    def history(self, product_id: Optional[str] = None, limit: int = 50) -> List[Adjustment]:
        if product_id:
            docs = self._store.query(ADJUSTMENTS, "by_product", product_id, order="desc", limit=limit)
        else:
            docs = self._store.query(ADJUSTMENTS, order="desc", limit=limit)
        return [Adjustment.from_doc(d) for d in docs]

    def void(self, adjustment_id: str, reason: Optional[str] = None) -> Adjustment:
        adjustment = self.get(adjustment_id)
        if adjustment.voided:
            raise Conflict("Adjustment already voided", details={"adjustment_id": adjustment_id})
        self._catalog.adjust_stock(adjustment.product_id, -adjustment.quantity)
        self._ledger.record(
            adjustment.product_id,
            -adjustment.quantity,
            MovementType.ADJUSTMENT_VOID,
            reason=reason or "void",
            reference_id=adjustment_id,
        )
        self._store.patch(ADJUSTMENTS, adjustment_id, {"voided": True, "void_reason": reason})
        logger.info("Adjustment voided", adjustment_id=adjustment_id, reason=reason)
        return self.get(adjustment_id)


class CountService:
    """Physical counts: record counted quantities, then overwrite stock on close."""

    def __init__(self, store: DocumentStore, catalog: ProductCatalog, ledger: MovementLedger) -> None:
        self._store = store
        self._catalog = catalog
        self._ledger = ledger

    def get(self, count_session_id: str) -> CountSession:
        doc = self._store.get(COUNT_SESSIONS, count_session_id)
        if not doc:
            raise NotFound("Count session not found", details={"count_session_id": count_session_id})
        return CountSession.from_doc(doc)

    def _open(self, count_session_id: str) -> CountSession:
        session = self.get(count_session_id)
        if session.status == COUNT_COMPLETED:
            raise Conflict("Count session is already closed", details={"count_session_id": count_session_id})
        return session

    def start(self, location_name: str, count_name: Optional[str] = None) -> CountSession:
        session = CountSession(location_name=location_name, count_name=count_name)
        session_id = self._store.insert(COUNT_SESSIONS, session.to_doc())
        logger.info("Inventory count started", count_session_id=session_id, location=location_name)
        return self.get(session_id)

    def items(self, count_session_id: str) -> List[CountItem]:
        return [CountItem.from_doc(d) for d in self._store.query(COUNT_ITEMS, "by_session", count_session_id)]

    def update(self, count_session_id: str, product_id: str, quantity: float) -> CountItem:
        self._open(count_session_id)
        self._catalog.require(product_id)
        existing = next((it for it in self.items(count_session_id) if it.product_id == product_id), None)
        if existing is not None:
            self._store.patch(COUNT_ITEMS, existing.id, {"quantity": quantity})
            item_id = existing.id
        else:
            item = CountItem(count_session_id=count_session_id, product_id=product_id, quantity=quantity)
            item_id = self._store.insert(COUNT_ITEMS, item.to_doc())
        return CountItem.from_doc(self._store.get(COUNT_ITEMS, item_id) or {})

    def close(self, count_session_id: str) -> Dict[str, Any]:
        self._open(count_session_id)
        updated = 0
        for item in self.items(count_session_id):
            before, after = self._catalog.set_stock(item.product_id, item.quantity)
            self._ledger.record(
                item.product_id,
                after - before,
                MovementType.COUNT,
                reason="inventory_count",
                reference_id=count_session_id,
            )
            updated += 1
        self._store.patch(COUNT_SESSIONS, count_session_id, {"status": COUNT_COMPLETED, "completed_at": now_ms()})
        logger.info("Inventory count closed", count_session_id=count_session_id, items_updated=updated)
        return {"count_session_id": count_session_id, "items_updated": updated}


class EventAllocationService:
    """Stock set aside for a booked event and drawn down as it is consumed."""

    def __init__(self, store: DocumentStore, catalog: ProductCatalog, ledger: MovementLedger) -> None:
        self._store = store
        self._catalog = catalog
        self._ledger = ledger

    def for_event(self, event_id: str) -> List[EventAllocation]:
        return [EventAllocation.from_doc(d) for d in self._store.query(ALLOCATIONS, "by_event", event_id)]

    def _find(self, event_id: str, product_id: str) -> Optional[EventAllocation]:
        return next((a for a in self.for_event(event_id) if a.product_id == product_id), None)

    def allocate(self, event_id: str, product_id: str, quantity: float) -> EventAllocation:
        self._catalog.require(product_id)
        allocation = EventAllocation(event_id=event_id, product_id=product_id, allocated_quantity=quantity)
        allocation_id = self._store.insert(ALLOCATIONS, allocation.to_doc())
        logger.info("Event allocation created", event_id=event_id, product_id=product_id, quantity=quantity)
        return EventAllocation.from_doc(self._store.get(ALLOCATIONS, allocation_id) or {})

    def record_consumption(self, event_id: str, product_id: str, used: float) -> EventAllocation:
        allocation = self._find(event_id, product_id)
        if allocation is None:
            raise NotFound(
                "No allocation for this product at this event",
                details={"event_id": event_id, "product_id": product_id},
            )
        if allocation.is_closed:
            raise Conflict("Event allocation is closed", details={"event_id": event_id, "product_id": product_id})
        delta = used - (allocation.consumed_quantity or 0)
        if delta:
            self._catalog.adjust_stock(product_id, -delta)
            self._ledger.record(
                product_id,
                -delta,
                MovementType.EVENT,
                reason="event_consumption",
                reference_id=event_id,
            )
        self._store.patch(ALLOCATIONS, allocation.id, {"consumed_quantity": used})
        return EventAllocation.from_doc(self._store.get(ALLOCATIONS, allocation.id) or {})

    def close(self, event_id: str) -> int:
        closed = 0
        for allocation in self.for_event(event_id):
            if allocation.is_closed:
                continue
            self._store.patch(ALLOCATIONS, allocation.id, {"is_closed": True})
            closed += 1
        logger.info("Event inventory closed", event_id=event_id, allocations_closed=closed)
        return closed


__all__ = ["AdjustmentService", "CountService", "EventAllocationService"]
