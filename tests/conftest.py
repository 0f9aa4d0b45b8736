# tests/conftest.py
import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from application.orchestrators.coordinator import Coordinator
from application.services.retry_scheduler import RetryScheduler
from domain.models.agent_task import AgentType
from infrastructure.storage.document_store import StoreWriteError
from infrastructure.storage.memory_document_store import InMemoryDocumentStore

class FakeClock:
    """Manually advanced UTC clock"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)

class RecordingSleep:
    """Stands in for asyncio.sleep: records requested delays and yields once"""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float):
        self.delays.append(delay)
        await asyncio.sleep(0)

class FlakyDocumentStore(InMemoryDocumentStore):
    """In-memory store whose writes can be made to fail per collection or document"""

    def __init__(self):
        super().__init__()
        self.failing_collections = set()
        self.failing_updates = {}

    async def add_document(self, collection, data):
        if collection in self.failing_collections:
            raise StoreWriteError(f"write to {collection} refused")
        return await super().add_document(collection, data)

    async def update_document(self, collection, doc_id, fields):
        status = self.failing_updates.get(doc_id)
        if status is not None and (status == "*" or fields.get("status") == status):
            raise StoreWriteError(f"update of {doc_id} refused")
        await super().update_document(collection, doc_id, fields)

@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc))

@pytest.fixture
def store():
    return FlakyDocumentStore()

@pytest.fixture
def fake_sleep():
    return RecordingSleep()

@pytest.fixture
def retry_scheduler(fake_sleep):
    return RetryScheduler(base_delay=1.0, max_delay=300.0, sleep=fake_sleep)

@pytest.fixture
def executors():
    """One AsyncMock executor per agent type, succeeding by default"""
    registry = {}
    for agent_type in AgentType:
        executor = AsyncMock()
        executor.execute.return_value = {"agent": agent_type.value, "ok": True}
        registry[agent_type] = executor
    return registry

@pytest.fixture
def coordinator(store, executors, retry_scheduler, clock):
    return Coordinator(store, executors, retry_scheduler=retry_scheduler, clock=clock)
