"""Domain services for the venue point-of-sale backend."""

from .catalog import ProductCatalog
from .errors import BevError, CommandFailed, Conflict, InsufficientStock, NotFound, ValidationFailed
from .inventory import DecrementEngine, MovementLedger
from .orders import OrderAggregate, OrderService
from .recipes import RecipeBook
from .stock_ops import AdjustmentService, CountService, EventAllocationService
from .store import DocumentStore, InMemoryDocumentStore
from .venue import Venue, build_venue

__all__ = [
    "ProductCatalog",
    "BevError",
    "CommandFailed",
    "Conflict",
    "InsufficientStock",
    "NotFound",
    "ValidationFailed",
    "DecrementEngine",
    "MovementLedger",
    "OrderAggregate",
    "OrderService",
    "RecipeBook",
    "AdjustmentService",
    "CountService",
    "EventAllocationService",
    "DocumentStore",
    "InMemoryDocumentStore",
    "Venue",
    "build_venue",
]
