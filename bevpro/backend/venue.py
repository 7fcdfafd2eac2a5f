from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog

from ..config import Settings
from .catalog import ProductCatalog
from .inventory import DecrementEngine, MovementLedger
from .orders import OrderService
from .recipes import RecipeBook
from .stock_ops import AdjustmentService, CountService, EventAllocationService
from .store import DocumentStore, InMemoryDocumentStore

logger = structlog.get_logger(__name__)


@dataclass
class Venue:
    """Every backend service for one venue, wired to a shared store."""

    settings: Settings
    store: DocumentStore
    catalog: ProductCatalog
    ledger: MovementLedger
    engine: DecrementEngine
    orders: OrderService
    adjustments: AdjustmentService
    counts: CountService
    events: EventAllocationService


def build_venue(
    settings: Settings,
    store: Optional[DocumentStore] = None,
    recipes: Optional[RecipeBook] = None,
    seed: bool = True,
) -> Venue:
    store = store if store is not None else InMemoryDocumentStore()
    catalog = ProductCatalog(store)
    if seed and settings.seed_path:
        catalog.bootstrap_from_file(Path(settings.seed_path))
    ledger = MovementLedger(store)
    engine = DecrementEngine(catalog, ledger, settings, recipes)
    venue = Venue(
        settings=settings,
        store=store,
        catalog=catalog,
        ledger=ledger,
        engine=engine,
        orders=OrderService(store, catalog, engine, settings),
        adjustments=AdjustmentService(store, catalog, ledger),
        counts=CountService(store, catalog, ledger),
        events=EventAllocationService(store, catalog, ledger),
    )
    logger.info("Venue ready", venue_id=settings.venue_id, venue_name=settings.venue_name)
    return venue


__all__ = ["Venue", "build_venue"]
