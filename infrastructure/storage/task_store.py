# infrastructure/storage/task_store.py
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, List, Callable

from domain.models.agent_task import (
    AgentTask,
    TaskSpec,
    TaskStatus,
    SWEEPABLE_STATUSES,
    TASKS_COLLECTION,
    DEFAULT_MAX_RETRIES,
    utcnow,
)
from infrastructure.storage.document_store import DocumentStore, ASCENDING, DESCENDING
from shared.logging import logger

# AgentTask attribute -> stored field name
FIELD_NAMES = {
    "agent_type": "agentType",
    "priority": "priority",
    "status": "status",
    "user_id": "userId",
    "report_id": "reportId",
    "payload": "payload",
    "retry_count": "retryCount",
    "max_retries": "maxRetries",
    "scheduled_for": "scheduledFor",
    "assigned_at": "assignedAt",
    "started_at": "startedAt",
    "completed_at": "completedAt",
    "error_message": "errorMessage",
    "result": "result",
}

class TaskStore:
    """Persistence for AgentTask records on top of the document store"""

    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    @property
    def _tasks(self):
        return self.store.collection(TASKS_COLLECTION)

    async def create(self, spec: TaskSpec, default_max_retries: int = DEFAULT_MAX_RETRIES) -> str:
        """Insert a new pending task and return its id"""
        now = self.clock()
        max_retries = spec.max_retries if spec.max_retries is not None else default_max_retries
        task = AgentTask(
            id="",
            agent_type=spec.agent_type,
            priority=spec.priority,
            status=TaskStatus.PENDING,
            payload=spec.payload,
            retry_count=0,
            max_retries=max_retries,
            user_id=spec.user_id,
            report_id=spec.report_id,
            scheduled_for=spec.scheduled_for,
            created_at=now,
            updated_at=now,
        )
        task_id = await self._tasks.add(task.to_document())
        logger.info("Task persisted",
                   task_id=task_id,
                   agent_type=spec.agent_type.value,
                   priority=spec.priority.value)
        return task_id

    async def get(self, task_id: str) -> Optional[AgentTask]:
        snapshot = await self._tasks.doc(task_id).get()
        if not snapshot.exists:
            return None
        return AgentTask.from_document(snapshot.id, snapshot.to_dict())

    async def update(self, task_id: str, changes: Dict[str, Any]) -> None:
        """Merge changed fields and re-stamp updatedAt"""
        fields = {}
        for name, value in changes.items():
            if name not in FIELD_NAMES:
                raise KeyError(f"Unknown task field: {name}")
            fields[FIELD_NAMES[name]] = value.value if isinstance(value, Enum) else value
        fields["updatedAt"] = self.clock()
        await self._tasks.doc(task_id).update(fields)

    async def delete(self, task_id: str) -> bool:
        return await self._tasks.doc(task_id).delete()

    async def query_by_user(self, user_id: str, limit: int = 20) -> List[AgentTask]:
        snapshots = await (self._tasks
                           .where("userId", "==", user_id)
                           .order_by("createdAt", DESCENDING)
                           .limit(limit)
                           .get())
        return self._decode(snapshots)

    async def query_pending(self, now: datetime, cap: int = 10) -> List[AgentTask]:
        """Pending/assigned tasks that are due, oldest first"""
        statuses = [status.value for status in SWEEPABLE_STATUSES]
        base = self._tasks.where("status", "in", statuses)

        due = await base.where("scheduledFor", "<=", now).order_by("createdAt", ASCENDING).limit(cap).get()
        unscheduled = await base.where("scheduledFor", "==", None).order_by("createdAt", ASCENDING).limit(cap).get()

        tasks = self._decode(due + unscheduled)
        tasks.sort(key=lambda task: task.created_at or now)
        return tasks[:cap]

    async def query_stale(self, status: TaskStatus, cutoff: datetime, cap: int = 10) -> List[AgentTask]:
        """Tasks stuck in status whose last write is at or before cutoff, oldest first"""
        snapshots = await (self._tasks
                           .where("status", "==", status.value)
                           .where("updatedAt", "<=", cutoff)
                           .order_by("createdAt", ASCENDING)
                           .limit(cap)
                           .get())
        return self._decode(snapshots)

    def _decode(self, snapshots) -> List[AgentTask]:
        # Malformed records are logged and skipped
        tasks = []
        for snapshot in snapshots:
            try:
                tasks.append(AgentTask.from_document(snapshot.id, snapshot.to_dict()))
            except (KeyError, ValueError, TypeError) as e:
                logger.error("Skipping malformed task document", task_id=snapshot.id, error=str(e))
        return tasks
