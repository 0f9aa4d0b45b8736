# tests/unit/infrastructure/storage/test_task_store.py
import pytest
from datetime import datetime, timedelta, timezone

from domain.models.agent_decision import AgentDecision, DecisionStatus
from domain.models.agent_task import AgentType, TaskPriority, TaskSpec, TaskStatus
from infrastructure.storage.decision_log import DecisionLog
from infrastructure.storage.memory_document_store import InMemoryDocumentStore
from infrastructure.storage.task_store import TaskStore

NOW = datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc)

@pytest.fixture
def store():
    return InMemoryDocumentStore()

@pytest.fixture
def task_store(store, clock):
    return TaskStore(store, clock)

def spec(**overrides):
    fields = {"agent_type": AgentType.MARKETPLACE, "payload": {"query": "urea"}, "user_id": "farmer-1"}
    fields.update(overrides)
    return TaskSpec(**fields)

class TestTaskStore:
    """AgentTask persistence"""

    @pytest.mark.asyncio
    async def test_create_writes_camel_case_document(self, task_store, store, clock):
        task_id = await task_store.create(spec(scheduled_for=NOW), default_max_retries=4)

        data = (await store.collection("agent_tasks").doc(task_id).get()).to_dict()

        assert data["agentType"] == "marketplace"
        assert data["priority"] == "medium"
        assert data["status"] == "pending"
        assert data["retryCount"] == 0
        assert data["maxRetries"] == 4
        assert data["scheduledFor"] == NOW
        assert data["completedAt"] is None
        assert data["createdAt"] == clock.now

    @pytest.mark.asyncio
    async def test_get_round_trips(self, task_store):
        task_id = await task_store.create(spec(report_id="r1"))

        task = await task_store.get(task_id)

        assert task.id == task_id
        assert task.agent_type == AgentType.MARKETPLACE
        assert task.report_id == "r1"
        assert task.payload == {"query": "urea"}

    @pytest.mark.asyncio
    async def test_get_missing(self, task_store):
        assert await task_store.get("missing") is None

    @pytest.mark.asyncio
    async def test_update_converts_enums_and_stamps(self, task_store, store, clock):
        task_id = await task_store.create(spec())
        clock.advance(seconds=30)

        await task_store.update(task_id, {"status": TaskStatus.IN_PROGRESS, "started_at": clock.now})

        data = (await store.collection("agent_tasks").doc(task_id).get()).to_dict()
        assert data["status"] == "in_progress"
        assert data["startedAt"] == clock.now
        assert data["updatedAt"] == clock.now

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_field(self, task_store):
        task_id = await task_store.create(spec())

        with pytest.raises(KeyError):
            await task_store.update(task_id, {"owner": "someone"})

    @pytest.mark.asyncio
    async def test_query_by_user_newest_first_with_limit(self, task_store, clock):
        ids = []
        for _ in range(3):
            ids.append(await task_store.create(spec()))
            clock.advance(minutes=1)
        await task_store.create(spec(user_id="farmer-2"))

        tasks = await task_store.query_by_user("farmer-1", limit=2)

        assert [task.id for task in tasks] == [ids[2], ids[1]]

    @pytest.mark.asyncio
    async def test_query_pending_selects_due_work(self, task_store, clock):
        unscheduled = await task_store.create(spec())
        clock.advance(minutes=1)
        due = await task_store.create(spec(scheduled_for=clock.now - timedelta(minutes=5)))
        clock.advance(minutes=1)
        future = await task_store.create(spec(scheduled_for=clock.now + timedelta(hours=1)))
        clock.advance(minutes=1)
        running = await task_store.create(spec())
        await task_store.update(running, {"status": TaskStatus.IN_PROGRESS})
        clock.advance(minutes=1)
        assigned = await task_store.create(spec())
        await task_store.update(assigned, {"status": TaskStatus.ASSIGNED})

        tasks = await task_store.query_pending(clock.now)

        assert [task.id for task in tasks] == [unscheduled, due, assigned]
        assert future not in [task.id for task in tasks]

    @pytest.mark.asyncio
    async def test_query_pending_caps_merged_results(self, task_store, clock):
        ids = []
        for index in range(4):
            scheduled_for = clock.now if index % 2 else None
            ids.append(await task_store.create(spec(scheduled_for=scheduled_for)))
            clock.advance(minutes=1)

        tasks = await task_store.query_pending(clock.now, cap=3)

        assert [task.id for task in tasks] == ids[:3]

    @pytest.mark.asyncio
    async def test_query_stale_uses_last_write_time(self, task_store, clock):
        stuck = await task_store.create(spec())
        await task_store.update(stuck, {"status": TaskStatus.IN_PROGRESS})
        clock.advance(minutes=10)
        recent = await task_store.create(spec())
        await task_store.update(recent, {"status": TaskStatus.IN_PROGRESS})
        waiting = await task_store.create(spec())
        await task_store.update(waiting, {"status": TaskStatus.RETRY})

        tasks = await task_store.query_stale(TaskStatus.IN_PROGRESS, clock.now - timedelta(minutes=5))

        assert [task.id for task in tasks] == [stuck]

    @pytest.mark.asyncio
    async def test_malformed_documents_are_skipped(self, task_store, store, clock):
        valid = await task_store.create(spec())
        tasks = store.collection("agent_tasks")
        await tasks.add({"status": "pending", "scheduledFor": None, "createdAt": clock.now, "userId": "farmer-1"})
        await tasks.add({"agentType": "marketplace", "priority": "asap", "status": "pending",
                         "scheduledFor": None, "createdAt": clock.now, "userId": "farmer-1"})

        assert [task.id for task in await task_store.query_pending(clock.now)] == [valid]
        assert [task.id for task in await task_store.query_by_user("farmer-1")] == [valid]

    @pytest.mark.asyncio
    async def test_delete(self, task_store):
        task_id = await task_store.create(spec())

        assert await task_store.delete(task_id) is True
        assert await task_store.get(task_id) is None

class TestDecisionLog:
    """Audit trail writes and reads"""

    @pytest.mark.asyncio
    async def test_log_stamps_timestamp(self, store, clock):
        log = DecisionLog(store, clock)

        decision_id = await log.log(AgentDecision(
            agent_name="coordinator", action="task_created", status=DecisionStatus.SUCCESS, task_id="t1"))

        data = (await store.collection("agent_decisions").doc(decision_id).get()).to_dict()
        assert data["timestamp"] == clock.now
        assert data["agentName"] == "coordinator"
        assert "duration" not in data

    @pytest.mark.asyncio
    async def test_log_requires_agent_and_action(self, store, clock):
        log = DecisionLog(store, clock)

        with pytest.raises(ValueError):
            await log.log(AgentDecision(agent_name="", action="task_created", status=DecisionStatus.SUCCESS))

    @pytest.mark.asyncio
    async def test_for_task_oldest_first(self, store, clock):
        log = DecisionLog(store, clock)
        for action in ("task_created", "task_retry", "task_completed"):
            await log.log(AgentDecision(agent_name="diagnostic", action=action,
                                        status=DecisionStatus.SUCCESS, task_id="t1"))
            clock.advance(seconds=1)
        await log.log(AgentDecision(agent_name="diagnostic", action="task_created",
                                    status=DecisionStatus.SUCCESS, task_id="t2"))

        actions = [decision.action for decision in await log.for_task("t1")]

        assert actions == ["task_created", "task_retry", "task_completed"]

    @pytest.mark.asyncio
    async def test_recent_newest_first(self, store, clock):
        log = DecisionLog(store, clock)
        for action in ("first", "second"):
            await log.log(AgentDecision(agent_name="diagnostic", action=action, status=DecisionStatus.SUCCESS))
            clock.advance(seconds=1)

        assert [decision.action for decision in await log.recent()] == ["second", "first"]
