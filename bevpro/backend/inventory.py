"""Recipe-driven stock decrement and the inventory movement ledger.

A finalized order is turned into a list of :class:`DecrementStep` (one per
product touched), which :meth:`DecrementEngine.run` applies as a small saga:
each step is logged on the order as EXECUTING then COMPLETED or FAILED, and a
failed step can be resumed later without re-applying the completed ones.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import structlog

from ..config import Settings
from .catalog import ProductCatalog
from .errors import InsufficientStock
from .models import InventoryMovement, InventoryStatus, LineItem, MovementType
from .recipes import RecipeBook
from .store import DocumentStore

logger = structlog.get_logger(__name__)

MOVEMENTS = "inventory_movements"
SALE_REASON = "order_sale"


class StepStatus(str, Enum):
    PENDING = "PENDING"
    EXECUTING = "EXECUTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class MovementLedger:
    """Append-only ``inventory_movements`` table."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def record(
        self,
        product_id: str,
        quantity_change: float,
        movement_type: MovementType,
        *,
        reason: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> InventoryMovement:
        movement = InventoryMovement(
            product_id=product_id,
            quantity_change=quantity_change,
            movement_type=movement_type,
            reason=reason,
            reference_id=reference_id,
        )
        movement.id = self._store.insert(MOVEMENTS, movement.to_doc())
        return movement

    def for_product(self, product_id: str) -> List[InventoryMovement]:
        return [InventoryMovement.from_doc(d) for d in self._store.query(MOVEMENTS, "by_product", product_id)]

    def for_reference(self, reference_id: str) -> List[InventoryMovement]:
        return [InventoryMovement.from_doc(d) for d in self._store.query(MOVEMENTS, "by_reference", reference_id)]


@dataclass
class DecrementStep:
    step: int
    product_id: str
    product_name: str
    quantity: float
    source: str
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    error: Optional[str] = None
    timestamp: Optional[str] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "DecrementStep":
        return cls(
            step=int(doc["step"]),
            product_id=str(doc["product_id"]),
            product_name=str(doc.get("product_name", "")),
            quantity=float(doc["quantity"]),
            source=str(doc.get("source", "")),
            status=StepStatus(doc.get("status", StepStatus.PENDING.value)),
            attempts=int(doc.get("attempts", 0)),
            error=doc.get("error"),
            timestamp=doc.get("timestamp"),
        )

    def to_doc(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["action"] = "DecrementInventory"
        return data


@dataclass
class SagaResult:
    status: InventoryStatus
    steps: List[DecrementStep]
    skipped: List[Dict[str, Any]]

    @property
    def completed(self) -> List[DecrementStep]:
        return [s for s in self.steps if s.status == StepStatus.COMPLETED]

    @property
    def failed(self) -> List[DecrementStep]:
        return [s for s in self.steps if s.status == StepStatus.FAILED]

    def summary(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "applied": [{"product": s.product_name, "quantity": round(s.quantity, 4)} for s in self.completed],
            "failed": [{"product": s.product_name, "error": s.error} for s in self.failed],
            "skipped": self.skipped,
        }


def _stamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class DecrementEngine:
    def __init__(
        self,
        catalog: ProductCatalog,
        ledger: MovementLedger,
        settings: Settings,
        recipes: Optional[RecipeBook] = None,
    ) -> None:
        self._catalog = catalog
        self._ledger = ledger
        self._settings = settings
        self._recipes = recipes or RecipeBook()

    # ------------------------------------------------------------------
    def plan(self, lines: Iterable[LineItem]) -> Tuple[List[DecrementStep], List[Dict[str, Any]]]:
        """Expand sold lines into decrement steps.

        Returns ``(steps, skipped)``; ingredients or products that cannot be
        resolved end up in ``skipped`` instead of failing the plan.
        """
        steps: List[DecrementStep] = []
        skipped: List[Dict[str, Any]] = []

        def add(product_id: str, product_name: str, quantity: float, source: str) -> None:
            steps.append(DecrementStep(len(steps) + 1, product_id, product_name, quantity, source))

        for line in lines:
            recipe = self._recipes.lookup(line.name)
            if recipe is None:
                product = self._catalog.get(line.product_id) or self._catalog.find_by_name(line.name)
                if product is None:
                    logger.warning("Sold product missing, skipping decrement", product=line.name)
                    skipped.append({"item": line.name, "reason": "product not found"})
                    continue
                add(product.id, product.name, float(line.quantity), line.name)
                continue

            for ingredient in recipe.ingredients:
                product = self._catalog.find_by_name(ingredient.name)
                if product is None:
                    logger.warning("Recipe ingredient missing, skipping", recipe=recipe.name, ingredient=ingredient.name)
                    skipped.append({"item": line.name, "ingredient": ingredient.name, "reason": "ingredient not found"})
                    continue
                used = ingredient.containers_used(
                    line.quantity, product.unit_volume_oz, self._settings.default_container_oz
                )
                add(product.id, product.name, used, line.name)
        return steps, skipped

    def check_stock(self, steps: Iterable[DecrementStep]) -> None:
        """Raise :class:`InsufficientStock` when negative stock is disallowed and a step would overdraw."""
        if self._settings.allow_negative_stock:
            return
        needed: Dict[str, float] = {}
        for step in steps:
            if step.status != StepStatus.COMPLETED:
                needed[step.product_id] = needed.get(step.product_id, 0) + step.quantity
        for product_id, quantity in needed.items():
            product = self._catalog.require(product_id)
            if (product.inventory or 0) < quantity:
                raise InsufficientStock(
                    f"Only {product.inventory:g} {product.name} available in stock",
                    details={"product_id": product_id, "available": product.inventory, "requested": quantity},
                )

    # ------------------------------------------------------------------
    def apply_step(self, step: DecrementStep, reference_id: str) -> None:
        self._catalog.adjust_stock(step.product_id, -step.quantity)
        self._ledger.record(
            step.product_id,
            -step.quantity,
            MovementType.SALE,
            reason=SALE_REASON,
            reference_id=reference_id,
        )

    def run(
        self,
        reference_id: str,
        steps: List[DecrementStep],
        persist: Callable[[List[Dict[str, Any]]], None],
        skipped: Optional[List[Dict[str, Any]]] = None,
    ) -> SagaResult:
        """Apply every step that is not COMPLETED, persisting the log after each transition."""
        max_attempts = max(1, self._settings.decrement_max_attempts)

        def save() -> None:
            persist([s.to_doc() for s in steps])

        for step in steps:
            if step.status == StepStatus.COMPLETED:
                continue
            step.status = StepStatus.EXECUTING
            step.error = None
            step.timestamp = _stamp()
            save()

            for attempt in range(1, max_attempts + 1):
                step.attempts += 1
                try:
                    self.apply_step(step, reference_id)
                except Exception as exc:
                    step.error = str(exc) or type(exc).__name__
                    if attempt == max_attempts:
                        step.status = StepStatus.FAILED
                        logger.error(
                            "Decrement step failed",
                            reference_id=reference_id,
                            step=step.step,
                            product=step.product_name,
                            attempts=step.attempts,
                            error=step.error,
                        )
                        break
                    logger.warning(
                        "Decrement step retry",
                        reference_id=reference_id,
                        step=step.step,
                        attempt=attempt,
                        max_attempts=max_attempts,
                    )
                    continue
                step.status = StepStatus.COMPLETED
                step.error = None
                break
            step.timestamp = _stamp()
            save()

        status = InventoryStatus.APPLIED
        if any(s.status != StepStatus.COMPLETED for s in steps):
            status = InventoryStatus.PARTIAL
        return SagaResult(status=status, steps=steps, skipped=list(skipped or []))

    def decrement_for_lines(
        self,
        reference_id: str,
        lines: Iterable[LineItem],
        persist: Callable[[List[Dict[str, Any]]], None],
    ) -> SagaResult:
        steps, skipped = self.plan(lines)
        self.check_stock(steps)
        return self.run(reference_id, steps, persist, skipped)


__all__ = [
    "DecrementEngine",
    "DecrementStep",
    "MovementLedger",
    "SagaResult",
    "StepStatus",
    "SALE_REASON",
]
