# domain/models/agent_decision.py
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Iterable
from datetime import datetime
from enum import Enum

from domain.models.agent_task import parse_timestamp

DECISIONS_COLLECTION = "agent_decisions"
COORDINATOR_AGENT = "coordinator"

class DecisionStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    RETRY = "retry"

@dataclass(frozen=True)
class AgentDecision:
    """Immutable audit record of one coordinator or executor action"""
    agent_name: str
    action: str
    status: DecisionStatus
    task_id: Optional[str] = None
    report_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    duration: Optional[float] = None
    timestamp: Optional[datetime] = None
    id: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        document = {
            "agentName": self.agent_name,
            "action": self.action,
            "status": self.status.value,
            "taskId": self.task_id,
            "reportId": self.report_id,
            "payload": self.payload,
        }
        if self.duration is not None:
            document["duration"] = self.duration
        return document

    @classmethod
    def from_document(cls, decision_id: str, data: Dict[str, Any]) -> "AgentDecision":
        return cls(
            id=decision_id,
            agent_name=data["agentName"],
            action=data["action"],
            status=DecisionStatus(data["status"]),
            task_id=data.get("taskId"),
            report_id=data.get("reportId"),
            payload=data.get("payload") or {},
            duration=data.get("duration"),
            timestamp=parse_timestamp(data.get("timestamp")),
        )

@dataclass(frozen=True)
class AgentMetrics:
    """Aggregated decision counts for one agent (or all agents)"""
    total_tasks: int
    success_count: int
    error_count: int
    retry_count: int
    avg_duration: float

    @classmethod
    def from_decisions(cls, decisions: Iterable[AgentDecision]) -> "AgentMetrics":
        total = success = error = retry = 0
        durations = []
        for decision in decisions:
            total += 1
            if decision.status == DecisionStatus.SUCCESS:
                success += 1
            elif decision.status == DecisionStatus.ERROR:
                error += 1
            elif decision.status == DecisionStatus.RETRY:
                retry += 1
            if isinstance(decision.duration, (int, float)) and not isinstance(decision.duration, bool):
                durations.append(float(decision.duration))

        avg_duration = sum(durations) / len(durations) if durations else 0.0
        return cls(
            total_tasks=total,
            success_count=success,
            error_count=error,
            retry_count=retry,
            avg_duration=avg_duration,
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "totalTasks": self.total_tasks,
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "retryCount": self.retry_count,
            "avgDuration": self.avg_duration,
        }
