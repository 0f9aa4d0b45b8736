# infrastructure/storage/memory_document_store.py
import copy
import uuid
from functools import cmp_to_key
from typing import Dict, Any, Optional, List, Tuple, Sequence

from infrastructure.storage.document_store import (
    DocumentStore,
    FieldFilter,
    FieldOrder,
    DESCENDING,
    DocumentNotFoundError,
    lookup_field,
    matches_filter,
    MISSING,
)
from shared.logging import logger

class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store for development runs and tests"""

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        # Insertion sequence keeps unordered queries deterministic
        self._sequence: Dict[Tuple[str, str], int] = {}
        self._counter = 0

    async def initialize(self):
        logger.info("In-memory document store ready")

    async def add_document(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        await self.set_document(collection, doc_id, data)
        return doc_id

    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        document = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    async def set_document(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        documents = self._collections.setdefault(collection, {})
        if doc_id not in documents:
            self._counter += 1
            self._sequence[(collection, doc_id)] = self._counter
        documents[doc_id] = copy.deepcopy(data)

    async def update_document(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        document = self._collections.get(collection, {}).get(doc_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {collection}/{doc_id} not found")
        document.update(copy.deepcopy(fields))

    async def delete_document(self, collection: str, doc_id: str) -> bool:
        removed = self._collections.get(collection, {}).pop(doc_id, None)
        self._sequence.pop((collection, doc_id), None)
        return removed is not None

    async def run_query(self, collection: str, filters: Sequence[FieldFilter],
                        orders: Sequence[FieldOrder],
                        limit: Optional[int]) -> List[Tuple[str, Dict[str, Any]]]:
        rows = [
            (doc_id, data)
            for doc_id, data in self._collections.get(collection, {}).items()
            if all(matches_filter(data, flt) for flt in filters)
        ]
        rows.sort(key=lambda row: self._sequence[(collection, row[0])])

        if orders:
            # Documents without an ordered field are left out
            rows = [row for row in rows
                    if all(lookup_field(row[1], order.field) is not MISSING for order in orders)]
            rows.sort(key=cmp_to_key(lambda a, b: _compare_rows(a[1], b[1], orders)))

        if limit is not None:
            rows = rows[:limit]
        return [(doc_id, copy.deepcopy(data)) for doc_id, data in rows]


def _compare_rows(left: Dict[str, Any], right: Dict[str, Any], orders: Sequence[FieldOrder]) -> int:
    for order in orders:
        a = lookup_field(left, order.field)
        b = lookup_field(right, order.field)
        result = _compare_values(a, b)
        if result:
            return -result if order.direction == DESCENDING else result
    return 0

def _compare_values(a: Any, b: Any) -> int:
    if a is None and b is None:
        return 0
    if a is None:
        return -1
    if b is None:
        return 1
    try:
        return (a > b) - (a < b)
    except TypeError:
        return (type(a).__name__ > type(b).__name__) - (type(a).__name__ < type(b).__name__)
