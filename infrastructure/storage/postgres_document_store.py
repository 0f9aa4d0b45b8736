# infrastructure/storage/postgres_document_store.py
import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional, List, Tuple, Sequence
import asyncpg

from infrastructure.storage.document_store import (
    DocumentStore,
    FieldFilter,
    FieldOrder,
    DESCENDING,
    DocumentNotFoundError,
    StoreReadError,
    StoreWriteError,
)
from shared.logging import logger

CONNECTION_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

def encode_value(value: Any) -> Any:
    """JSON encoder hook: UTC timestamps as fixed-width ISO strings"""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")

def dumps(data: Any) -> str:
    return json.dumps(data, default=encode_value)


class PostgresDocumentStore(DocumentStore):
    """Document collections kept as JSONB rows in a single table"""

    def __init__(self, database_url: str, min_size: int = 5, max_size: int = 20):
        self.database_url = database_url
        self.min_size = min_size
        self.max_size = max_size
        self.connection_pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        """Initialize database connection pool and create tables"""
        self.connection_pool = await asyncpg.create_pool(
            self.database_url,
            min_size=self.min_size,
            max_size=self.max_size,
            command_timeout=60
        )
        await self._create_tables()
        await self._create_indexes()
        logger.info("Document store initialized", backend="postgres")

    async def _create_tables(self):
        async with self.connection_pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    doc_id VARCHAR(64) NOT NULL,
                    data JSONB NOT NULL DEFAULT '{}',
                    seq BIGSERIAL,
                    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (collection, doc_id)
                )
            """)

    async def _create_indexes(self):
        async with self.connection_pool.acquire() as conn:
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection, seq)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_documents_data ON documents USING GIN (data jsonb_path_ops)")
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_agent_tasks_status
                ON documents ((data->>'status'))
                WHERE collection = 'agent_tasks'
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_agent_tasks_user
                ON documents ((data->>'userId'), (data->>'createdAt'))
                WHERE collection = 'agent_tasks'
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_agent_decisions_agent
                ON documents ((data->>'agentName'))
                WHERE collection = 'agent_decisions'
            """)

    async def ping(self) -> bool:
        async with self.connection_pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        return True

    async def add_document(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        try:
            async with self.connection_pool.acquire() as conn:
                await conn.execute("""
                    INSERT INTO documents (collection, doc_id, data)
                    VALUES ($1, $2, $3::jsonb)
                """, collection, doc_id, dumps(data))
        except CONNECTION_ERRORS as e:
            raise StoreWriteError(f"Failed to add document to {collection}: {e}") from e
        return doc_id

    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        try:
            async with self.connection_pool.acquire() as conn:
                row = await conn.fetchrow("""
                    SELECT data FROM documents WHERE collection = $1 AND doc_id = $2
                """, collection, doc_id)
        except CONNECTION_ERRORS as e:
            raise StoreReadError(f"Failed to read {collection}/{doc_id}: {e}") from e
        return json.loads(row["data"]) if row else None

    async def set_document(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        try:
            async with self.connection_pool.acquire() as conn:
                await conn.execute("""
                    INSERT INTO documents (collection, doc_id, data)
                    VALUES ($1, $2, $3::jsonb)
                    ON CONFLICT (collection, doc_id) DO UPDATE SET
                    data = $3::jsonb, updated_at = CURRENT_TIMESTAMP
                """, collection, doc_id, dumps(data))
        except CONNECTION_ERRORS as e:
            raise StoreWriteError(f"Failed to write {collection}/{doc_id}: {e}") from e

    async def update_document(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        try:
            async with self.connection_pool.acquire() as conn:
                result = await conn.execute("""
                    UPDATE documents
                    SET data = data || $3::jsonb, updated_at = CURRENT_TIMESTAMP
                    WHERE collection = $1 AND doc_id = $2
                """, collection, doc_id, dumps(fields))
        except CONNECTION_ERRORS as e:
            raise StoreWriteError(f"Failed to update {collection}/{doc_id}: {e}") from e

        if int(result.split()[-1]) == 0:
            raise DocumentNotFoundError(f"Document {collection}/{doc_id} not found")

    async def delete_document(self, collection: str, doc_id: str) -> bool:
        try:
            async with self.connection_pool.acquire() as conn:
                result = await conn.execute("""
                    DELETE FROM documents WHERE collection = $1 AND doc_id = $2
                """, collection, doc_id)
        except CONNECTION_ERRORS as e:
            raise StoreWriteError(f"Failed to delete {collection}/{doc_id}: {e}") from e
        return int(result.split()[-1]) > 0

    async def run_query(self, collection: str, filters: Sequence[FieldFilter],
                        orders: Sequence[FieldOrder],
                        limit: Optional[int]) -> List[Tuple[str, Dict[str, Any]]]:
        sql, params = compile_query(collection, filters, orders, limit)
        try:
            async with self.connection_pool.acquire() as conn:
                rows = await conn.fetch(sql, *params)
        except CONNECTION_ERRORS as e:
            raise StoreReadError(f"Failed to query {collection}: {e}") from e
        return [(row["doc_id"], json.loads(row["data"])) for row in rows]

    async def close(self):
        """Close database connection pool"""
        if self.connection_pool:
            await self.connection_pool.close()
            logger.info("Database connection pool closed")


def compile_query(collection: str, filters: Sequence[FieldFilter],
                  orders: Sequence[FieldOrder],
                  limit: Optional[int]) -> Tuple[str, List[Any]]:
    """Translate a chained query into parameterised SQL"""
    params: List[Any] = [collection]
    clauses = ["collection = $1"]

    def bind(value: Any) -> str:
        params.append(value)
        return f"${len(params)}"

    for flt in filters:
        path = bind(flt.field.split("."))
        node = f"(data #> {path}::text[])"
        text = f"(data #>> {path}::text[])"

        if flt.op == "in":
            clauses.append(f"{node} IN (SELECT jsonb_array_elements({bind(dumps(flt.value))}::jsonb))")
        elif flt.op in ("==", "!="):
            operator = "=" if flt.op == "==" else "<>"
            clauses.append(f"{node} {operator} {bind(dumps(flt.value))}::jsonb")
        elif isinstance(flt.value, bool) or flt.value is None:
            raise ValueError(f"Operator {flt.op} is not supported for {flt.value!r}")
        elif isinstance(flt.value, (int, float)):
            clauses.append(
                f"(CASE WHEN jsonb_typeof({node}) = 'number' THEN {text}::float8 END) "
                f"{flt.op} {bind(float(flt.value))}::float8"
            )
        else:
            value = encode_value(flt.value) if isinstance(flt.value, (datetime, Enum)) else str(flt.value)
            clauses.append(
                f"jsonb_typeof({node}) = 'string' AND {text} COLLATE \"C\" {flt.op} {bind(value)}"
            )

    order_terms = []
    for order in orders:
        path = bind(order.field.split("."))
        direction = "DESC" if order.direction == DESCENDING else "ASC"
        clauses.append(f"(data #> {path}::text[]) IS NOT NULL")
        order_terms.append(
            f"CASE WHEN jsonb_typeof(data #> {path}::text[]) = 'number' "
            f"THEN (data #>> {path}::text[])::float8 END {direction} NULLS LAST"
        )
        order_terms.append(f"(data #>> {path}::text[]) COLLATE \"C\" {direction} NULLS LAST")
    order_terms.append("seq ASC")

    sql = (
        "SELECT doc_id, data FROM documents WHERE "
        + " AND ".join(clauses)
        + " ORDER BY " + ", ".join(order_terms)
    )
    if limit is not None:
        sql += f" LIMIT {bind(limit)}"
    return sql, params
