from __future__ import annotations

import copy
import time
import uuid
from threading import RLock
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from .errors import NotFound

Document = Dict[str, Any]

# table -> index name -> field
INDEXES: Dict[str, Dict[str, str]] = {
    "products": {"by_name": "name", "by_category": "category"},
    "categories": {"by_parent": "parent_id"},
    "orders": {"by_session": "session_id", "by_status": "status"},
    "transactions": {"by_order": "order_id"},
    "inventory_movements": {"by_product": "product_id", "by_reference": "reference_id"},
    "inventory_adjustments": {"by_product": "product_id"},
    "inventory_count_sessions": {"by_status": "status"},
    "inventory_count_items": {"by_session": "count_session_id"},
    "event_allocations": {"by_event": "event_id"},
}


def now_ms() -> int:
    return int(time.time() * 1000)


class DocumentStore(Protocol):
    """Key/value document store with secondary-index range queries.

    Only single-document operations are atomic.
    """

    def get(self, table: str, doc_id: str) -> Optional[Document]: ...

    def insert(self, table: str, doc: Document) -> str: ...

    def patch(self, table: str, doc_id: str, fields: Document) -> Document: ...

    def delete(self, table: str, doc_id: str) -> None: ...

    def query(
        self,
        table: str,
        index: Optional[str] = None,
        value: Any = None,
        *,
        where: Optional[Callable[[Document], bool]] = None,
        order: str = "asc",
        limit: Optional[int] = None,
    ) -> List[Document]: ...


class InMemoryDocumentStore:
    """Thread-safe in-memory implementation of :class:`DocumentStore`.

    Documents are copied on the way in and out so callers never hold a live
    reference into the store. Insertion order is preserved and doubles as the
    creation order for ``order="desc"`` queries.
    """

    def __init__(self, indexes: Optional[Dict[str, Dict[str, str]]] = None) -> None:
        self._tables: Dict[str, Dict[str, Document]] = {}
        self._indexes = indexes if indexes is not None else INDEXES
        self._lock = RLock()

    # ------------------------------------------------------------------
    def get(self, table: str, doc_id: str) -> Optional[Document]:
        with self._lock:
            doc = self._tables.get(table, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def insert(self, table: str, doc: Document) -> str:
        stamp = now_ms()
        with self._lock:
            doc_id = str(doc.get("id") or f"{table[:4]}_{uuid.uuid4().hex[:12]}")
            record = copy.deepcopy(doc)
            record["id"] = doc_id
            if not record.get("created_at"):
                record["created_at"] = stamp
            if not record.get("updated_at"):
                record["updated_at"] = stamp
            self._tables.setdefault(table, {})[doc_id] = record
            return doc_id

    def patch(self, table: str, doc_id: str, fields: Document) -> Document:
        with self._lock:
            current = self._tables.get(table, {}).get(doc_id)
            if current is None:
                raise NotFound(f"{table} document {doc_id} not found", details={"table": table, "id": doc_id})
            current.update(copy.deepcopy({k: v for k, v in fields.items() if k != "id"}))
            current["updated_at"] = now_ms()
            return copy.deepcopy(current)

    def delete(self, table: str, doc_id: str) -> None:
        with self._lock:
            self._tables.get(table, {}).pop(doc_id, None)

    # ------------------------------------------------------------------
    def query(
        self,
        table: str,
        index: Optional[str] = None,
        value: Any = None,
        *,
        where: Optional[Callable[[Document], bool]] = None,
        order: str = "asc",
        limit: Optional[int] = None,
    ) -> List[Document]:
        field_name = None
        if index is not None:
            field_name = self._indexes.get(table, {}).get(index)
            if field_name is None:
                raise ValueError(f"unknown index {index!r} on {table!r}")
        with self._lock:
            rows: Iterable[Document] = list(self._tables.get(table, {}).values())
            if order == "desc":
                rows = reversed(list(rows))
            out: List[Document] = []
            for doc in rows:
                if field_name is not None and doc.get(field_name) != value:
                    continue
                if where is not None and not where(doc):
                    continue
                out.append(copy.deepcopy(doc))
                if limit is not None and len(out) >= limit:
                    break
            return out


__all__ = ["Document", "DocumentStore", "InMemoryDocumentStore", "INDEXES", "now_ms"]
