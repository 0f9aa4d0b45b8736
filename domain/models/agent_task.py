# domain/models/agent_task.py
from dataclasses import dataclass, replace
from typing import Dict, Any, Optional
from datetime import datetime, timezone
from enum import Enum

class AgentType(str, Enum):
    DIAGNOSTIC = "diagnostic"
    TREATMENT_PLAN = "treatment_plan"
    WEATHER_ALERT = "weather_alert"
    MARKETPLACE = "marketplace"
    IMAGE_PROCESSING = "image_processing"

class TaskStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRY = "retry"

class TaskPriority(str, Enum):
    URGENT = "urgent"        # dispatched on creation
    HIGH = "high"            # dispatched on creation
    MEDIUM = "medium"
    LOW = "low"
    SCHEDULED = "scheduled"  # picked up by the sweep once scheduled_for has passed

TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})
SWEEPABLE_STATUSES = (TaskStatus.PENDING, TaskStatus.ASSIGNED)
IMMEDIATE_PRIORITIES = frozenset({TaskPriority.URGENT, TaskPriority.HIGH})

DEFAULT_MAX_RETRIES = 3

TASKS_COLLECTION = "agent_tasks"

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept stored datetimes or ISO-8601 strings"""
    if value is None or isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

@dataclass(frozen=True)
class TaskSpec:
    """Caller-supplied fields for a new task"""
    agent_type: AgentType
    payload: Dict[str, Any]
    priority: TaskPriority = TaskPriority.MEDIUM
    user_id: Optional[str] = None
    report_id: Optional[str] = None
    max_retries: Optional[int] = None
    scheduled_for: Optional[datetime] = None

@dataclass(frozen=True)
class AgentTask:
    """Immutable snapshot of a persisted agent task"""
    id: str
    agent_type: AgentType
    priority: TaskPriority
    status: TaskStatus
    payload: Dict[str, Any]
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    user_id: Optional[str] = None
    report_id: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    result: Any = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries

    def with_changes(self, **changes) -> "AgentTask":
        return replace(self, **changes)

    def to_document(self) -> Dict[str, Any]:
        """Store representation (camelCase field names, id excluded)"""
        return {
            "agentType": self.agent_type.value,
            "priority": self.priority.value,
            "status": self.status.value,
            "userId": self.user_id,
            "reportId": self.report_id,
            "payload": self.payload,
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
            "scheduledFor": self.scheduled_for,
            "assignedAt": self.assigned_at,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "errorMessage": self.error_message,
            "result": self.result,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_document(cls, task_id: str, data: Dict[str, Any]) -> "AgentTask":
        return cls(
            id=task_id,
            agent_type=AgentType(data["agentType"]),
            priority=TaskPriority(data.get("priority", TaskPriority.MEDIUM.value)),
            status=TaskStatus(data["status"]),
            payload=data.get("payload") or {},
            retry_count=int(data.get("retryCount", 0)),
            max_retries=int(data.get("maxRetries", DEFAULT_MAX_RETRIES)),
            user_id=data.get("userId"),
            report_id=data.get("reportId"),
            scheduled_for=parse_timestamp(data.get("scheduledFor")),
            assigned_at=parse_timestamp(data.get("assignedAt")),
            started_at=parse_timestamp(data.get("startedAt")),
            completed_at=parse_timestamp(data.get("completedAt")),
            error_message=data.get("errorMessage"),
            result=data.get("result"),
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
        )

    def to_api(self) -> Dict[str, Any]:
        """JSON-friendly view for the HTTP boundary"""
        body = {"id": self.id}
        for key, value in self.to_document().items():
            body[key] = value.isoformat() if isinstance(value, datetime) else value
        return body
