# infrastructure/storage/decision_log.py
from datetime import datetime
from typing import Optional, List, Callable

from domain.models.agent_decision import AgentDecision, AgentMetrics, DECISIONS_COLLECTION
from domain.models.agent_task import utcnow
from infrastructure.storage.document_store import DocumentStore, ASCENDING, DESCENDING
from shared.logging import logger

METRICS_SCAN_LIMIT = 1000

class DecisionLog:
    """Append-only audit trail of coordinator and executor actions"""

    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    @property
    def _decisions(self):
        return self.store.collection(DECISIONS_COLLECTION)

    async def log(self, decision: AgentDecision) -> Optional[str]:
        """Append a decision. Write failures are reported, never raised."""
        if not decision.agent_name or not decision.action or decision.status is None:
            raise ValueError("Decision requires agent_name, action and status")

        document = decision.to_document()
        document["timestamp"] = self.clock()
        try:
            return await self._decisions.add(document)
        except Exception as e:
            logger.warning("Decision log write failed",
                          agent_name=decision.agent_name,
                          action=decision.action,
                          task_id=decision.task_id,
                          error=str(e))
            return None

    async def recent(self, limit: int = METRICS_SCAN_LIMIT,
                     agent_name: Optional[str] = None) -> List[AgentDecision]:
        query = self._decisions
        if agent_name:
            query = query.where("agentName", "==", agent_name)
        snapshots = await query.order_by("timestamp", DESCENDING).limit(limit).get()
        return [AgentDecision.from_document(s.id, s.to_dict()) for s in snapshots]

    async def for_task(self, task_id: str) -> List[AgentDecision]:
        """Causal trace for one task, oldest first"""
        snapshots = await (self._decisions
                           .where("taskId", "==", task_id)
                           .order_by("timestamp", ASCENDING)
                           .get())
        return [AgentDecision.from_document(s.id, s.to_dict()) for s in snapshots]

    async def metrics(self, agent_name: Optional[str] = None) -> AgentMetrics:
        return AgentMetrics.from_decisions(await self.recent(METRICS_SCAN_LIMIT, agent_name))
