# infrastructure/storage/document_store.py
"""
Collection-oriented document store adapter.

Callers work against a small reference API (collections, documents and
chained queries); backends only implement the primitive operations at
the bottom of ``DocumentStore``.
"""
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any, Optional, List, Tuple, Sequence

ASCENDING = "ASCENDING"
DESCENDING = "DESCENDING"

FILTER_OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in")

MISSING = object()


@dataclass(frozen=True)
class FieldFilter:
    field: str
    op: str
    value: Any

@dataclass(frozen=True)
class FieldOrder:
    field: str
    direction: str = ASCENDING

@dataclass(frozen=True)
class DocumentSnapshot:
    """Point-in-time read of a single document"""
    id: str
    collection: str
    data: Optional[Dict[str, Any]]

    @property
    def exists(self) -> bool:
        return self.data is not None

    def to_dict(self) -> Optional[Dict[str, Any]]:
        return self.data

    def get(self, field: str, default: Any = None) -> Any:
        if self.data is None:
            return default
        value = lookup_field(self.data, field)
        return default if value is MISSING else value


def lookup_field(data: Dict[str, Any], field: str) -> Any:
    """Resolve a dotted field path, returning MISSING when absent"""
    current: Any = data
    for part in field.split("."):
        if not isinstance(current, dict) or part not in current:
            return MISSING
        current = current[part]
    return current

def matches_filter(data: Dict[str, Any], flt: FieldFilter) -> bool:
    """Evaluate one filter against a document; a missing field never matches"""
    value = lookup_field(data, flt.field)
    if value is MISSING:
        return False
    try:
        if flt.op == "==":
            return value == flt.value
        if flt.op == "!=":
            return value != flt.value
        if flt.op == "in":
            return value in flt.value
        if value is None or flt.value is None:
            return False
        if flt.op == "<":
            return value < flt.value
        if flt.op == "<=":
            return value <= flt.value
        if flt.op == ">":
            return value > flt.value
        if flt.op == ">=":
            return value >= flt.value
    except TypeError:
        # Incomparable types behave like a type-mismatched index lookup
        return False
    raise ValueError(f"Unsupported filter operator: {flt.op}")


class Query:
    """Immutable chained query over one collection"""

    def __init__(self, store: "DocumentStore", collection: str,
                 filters: Tuple[FieldFilter, ...] = (),
                 orders: Tuple[FieldOrder, ...] = (),
                 limit_count: Optional[int] = None):
        self._store = store
        self._collection = collection
        self._filters = filters
        self._orders = orders
        self._limit = limit_count

    def where(self, field: str, op: str, value: Any) -> "Query":
        if op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {op}")
        if op == "in" and not isinstance(value, (list, tuple, set, frozenset)):
            raise ValueError("'in' filter requires a sequence value")
        if op == "in":
            value = list(value)
        return Query(self._store, self._collection,
                     self._filters + (FieldFilter(field, op, value),),
                     self._orders, self._limit)

    def order_by(self, field: str, direction: str = ASCENDING) -> "Query":
        if direction not in (ASCENDING, DESCENDING):
            raise ValueError(f"Unsupported order direction: {direction}")
        return Query(self._store, self._collection, self._filters,
                     self._orders + (FieldOrder(field, direction),), self._limit)

    def limit(self, count: int) -> "Query":
        if count < 0:
            raise ValueError("limit must be non-negative")
        return Query(self._store, self._collection, self._filters, self._orders, count)

    async def get(self) -> List[DocumentSnapshot]:
        rows = await self._store.run_query(self._collection, self._filters, self._orders, self._limit)
        return [DocumentSnapshot(id=doc_id, collection=self._collection, data=data)
                for doc_id, data in rows]

    async def stream(self):
        for snapshot in await self.get():
            yield snapshot


class CollectionReference(Query):
    def __init__(self, store: "DocumentStore", path: str):
        super().__init__(store, path)
        self.path = path

    def doc(self, doc_id: Optional[str] = None) -> "DocumentReference":
        return DocumentReference(self._store, self.path, doc_id or uuid.uuid4().hex)

    async def add(self, data: Dict[str, Any]) -> str:
        return await self._store.add_document(self.path, data)


class DocumentReference:
    def __init__(self, store: "DocumentStore", collection: str, doc_id: str):
        self._store = store
        self.collection_path = collection
        self.id = doc_id

    @property
    def path(self) -> str:
        return f"{self.collection_path}/{self.id}"

    def collection(self, name: str) -> CollectionReference:
        return CollectionReference(self._store, f"{self.path}/{name}")

    async def get(self) -> DocumentSnapshot:
        data = await self._store.get_document(self.collection_path, self.id)
        return DocumentSnapshot(id=self.id, collection=self.collection_path, data=data)

    async def set(self, data: Dict[str, Any]) -> None:
        await self._store.set_document(self.collection_path, self.id, data)

    async def update(self, fields: Dict[str, Any]) -> None:
        await self._store.update_document(self.collection_path, self.id, fields)

    async def delete(self) -> bool:
        return await self._store.delete_document(self.collection_path, self.id)


class DocumentStore(ABC):
    """Backend contract for the document store adapter"""

    def collection(self, path: str) -> CollectionReference:
        if not path or path.startswith("/") or path.endswith("/"):
            raise ValueError(f"Invalid collection path: {path!r}")
        return CollectionReference(self, path)

    async def initialize(self) -> None:
        """Open connections; called once at process startup"""

    async def close(self) -> None:
        """Release connections"""

    async def ping(self) -> bool:
        return True

    @abstractmethod
    async def add_document(self, collection: str, data: Dict[str, Any]) -> str:
        ...

    @abstractmethod
    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def set_document(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def update_document(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def delete_document(self, collection: str, doc_id: str) -> bool:
        ...

    @abstractmethod
    async def run_query(self, collection: str, filters: Sequence[FieldFilter],
                        orders: Sequence[FieldOrder],
                        limit: Optional[int]) -> List[Tuple[str, Dict[str, Any]]]:
        ...


class DocumentStoreError(Exception):
    pass

class StoreWriteError(DocumentStoreError):
    pass

class StoreReadError(DocumentStoreError):
    pass

class DocumentNotFoundError(DocumentStoreError):
    pass
