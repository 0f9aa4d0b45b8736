# application/orchestrators/coordinator.py
import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional, List, Mapping, Callable, Set, Union

from domain.models.agent_task import (
    AgentTask,
    AgentType,
    TaskPriority,
    TaskSpec,
    TaskStatus,
    IMMEDIATE_PRIORITIES,
    DEFAULT_MAX_RETRIES,
    utcnow,
)
from domain.models.agent_decision import AgentDecision, AgentMetrics, DecisionStatus, COORDINATOR_AGENT
from application.services.retry_scheduler import RetryScheduler
from infrastructure.agents.executors import AgentExecutor
from infrastructure.resilience.circuit_breaker import CircuitBreakerRegistry, CircuitBreakerConfig
from infrastructure.storage.decision_log import DecisionLog
from infrastructure.storage.document_store import DocumentStore
from infrastructure.storage.task_store import TaskStore
from shared.logging import logger, log_task_transition, log_agent_execution, log_sweep_summary

PROFILES_COLLECTION = "profiles"
WEATHER_TASK_MAX_RETRIES = 2

# Slack on top of the executor timeout (or the longest backoff) before a
# task left in_progress (or retry) by a dead attempt is reclaimed
LEASE_GRACE = timedelta(minutes=1)
ABANDONED_ATTEMPT_MESSAGE = "Processing attempt abandoned before completion"

class Coordinator:
    """Owns the agent task lifecycle: creation, dispatch, retry and audit"""

    def __init__(self,
                 store: DocumentStore,
                 executors: Mapping[AgentType, AgentExecutor],
                 retry_scheduler: Optional[RetryScheduler] = None,
                 breakers: Optional[CircuitBreakerRegistry] = None,
                 breaker_config: Optional[CircuitBreakerConfig] = None,
                 executor_timeout: Optional[float] = None,
                 default_max_retries: int = DEFAULT_MAX_RETRIES,
                 sweep_batch_size: int = 10,
                 weather_check_delay: timedelta = timedelta(hours=1),
                 in_progress_lease: Optional[timedelta] = None,
                 clock: Callable[[], datetime] = utcnow):
        missing = [agent_type.value for agent_type in AgentType if agent_type not in executors]
        if missing:
            raise ExecutorRegistryError(f"No executor registered for: {', '.join(missing)}")

        self.store = store
        self.executors = dict(executors)
        self.task_store = TaskStore(store, clock)
        self.decision_log = DecisionLog(store, clock)
        self.retry_scheduler = retry_scheduler or RetryScheduler()
        self.breakers = breakers
        self.breaker_config = breaker_config or CircuitBreakerConfig()
        self.executor_timeout = executor_timeout
        self.default_max_retries = default_max_retries
        self.sweep_batch_size = sweep_batch_size
        self.weather_check_delay = weather_check_delay
        self.clock = clock

        timeout = executor_timeout if executor_timeout is not None else self.breaker_config.timeout_seconds
        self.in_progress_lease = in_progress_lease or timedelta(seconds=timeout) + LEASE_GRACE
        self.retry_lease = timedelta(seconds=self.retry_scheduler.max_delay) + LEASE_GRACE

        # Task ids with a processTask currently running in this process
        self._in_flight: Set[str] = set()

    # ==================== Creation ====================

    async def create_task(self, spec: TaskSpec) -> str:
        """Persist a new task; urgent/high priority tasks are processed before returning"""
        spec = self._validate_spec(spec)
        task_id = await self.task_store.create(spec, self.default_max_retries)
        log_task_transition(task_id, spec.agent_type.value, None, TaskStatus.PENDING.value)

        await self.log_agent_decision(AgentDecision(
            agent_name=COORDINATOR_AGENT,
            action="task_created",
            status=DecisionStatus.SUCCESS,
            task_id=task_id,
            report_id=spec.report_id,
            payload={"agentType": spec.agent_type.value, "priority": spec.priority.value},
        ))

        if spec.priority in IMMEDIATE_PRIORITIES:
            try:
                await self.process_task(task_id)
            except AlreadyProcessingError:
                logger.info("Immediate dispatch skipped, task already in flight", task_id=task_id)

        return task_id

    def _validate_spec(self, spec: TaskSpec) -> TaskSpec:
        if spec.agent_type is None or spec.payload is None:
            raise TaskValidationError("Missing required fields: agentType, payload")
        if not isinstance(spec.payload, dict):
            raise TaskValidationError("payload must be an object")
        try:
            agent_type = AgentType(spec.agent_type)
            priority = TaskPriority(spec.priority or TaskPriority.MEDIUM)
        except ValueError as e:
            raise TaskValidationError(str(e)) from e
        if spec.max_retries is not None and spec.max_retries < 0:
            raise TaskValidationError("maxRetries must be non-negative")
        scheduled_for = spec.scheduled_for
        if scheduled_for is not None:
            if not isinstance(scheduled_for, datetime):
                raise TaskValidationError("scheduledFor must be a datetime")
            # Naive times are taken as UTC, matching the HTTP boundary
            if scheduled_for.tzinfo is None:
                scheduled_for = scheduled_for.replace(tzinfo=timezone.utc)
        return TaskSpec(
            agent_type=agent_type,
            payload=spec.payload,
            priority=priority,
            user_id=spec.user_id,
            report_id=spec.report_id,
            max_retries=spec.max_retries,
            scheduled_for=scheduled_for,
        )

    async def assign_task(self, task_id: str, agent_type: Union[AgentType, str]) -> AgentTask:
        """Explicitly hand a task to an agent type ahead of the sweep"""
        try:
            agent_type = AgentType(agent_type)
        except ValueError as e:
            raise TaskValidationError(str(e)) from e

        task = await self._load(task_id)
        if task.is_terminal or task.status == TaskStatus.IN_PROGRESS or task_id in self._in_flight:
            raise InvalidTransitionError(f"Task {task_id} cannot be assigned from status {task.status.value}")

        assigned_at = task.assigned_at or self.clock()
        await self.task_store.update(task_id, {
            "status": TaskStatus.ASSIGNED,
            "agent_type": agent_type,
            "assigned_at": assigned_at,
        })
        log_task_transition(task_id, agent_type.value, task.status.value, TaskStatus.ASSIGNED.value,
                            retry_count=task.retry_count)

        await self.log_agent_decision(AgentDecision(
            agent_name=COORDINATOR_AGENT,
            action="task_assigned",
            status=DecisionStatus.SUCCESS,
            task_id=task_id,
            report_id=task.report_id,
            payload={"agentType": agent_type.value},
        ))
        return task.with_changes(status=TaskStatus.ASSIGNED, agent_type=agent_type, assigned_at=assigned_at)

    async def delete_task(self, task_id: str) -> bool:
        """Remove a task and cancel any retry still pending for it"""
        if task_id in self._in_flight:
            raise AlreadyProcessingError(f"Task {task_id} is being processed")

        cancelled = self.retry_scheduler.cancel(task_id)
        deleted = await self.task_store.delete(task_id)
        if deleted:
            await self.log_agent_decision(AgentDecision(
                agent_name=COORDINATOR_AGENT,
                action="task_deleted",
                status=DecisionStatus.SUCCESS,
                task_id=task_id,
                payload={"retryCancelled": cancelled},
            ))
        return deleted

    # ==================== Processing ====================

    async def process_task(self, task_id: str) -> AgentTask:
        """Run one attempt of a task and record the resulting transition"""
        if task_id in self._in_flight:
            raise AlreadyProcessingError(f"Task {task_id} is already being processed")
        self._in_flight.add(task_id)
        try:
            return await self._process(task_id)
        finally:
            self._in_flight.discard(task_id)

    async def _process(self, task_id: str) -> AgentTask:
        task = await self._load(task_id)

        if task.is_terminal:
            logger.info("Task already finished, nothing to do", task_id=task_id, status=task.status.value)
            return task
        if task.status == TaskStatus.IN_PROGRESS:
            if not self._lease_expired(task, self.in_progress_lease):
                raise AlreadyProcessingError(f"Task {task_id} is already in progress")
            # The attempt holding the task died; it counts as a failed attempt
            logger.warning("Reclaiming abandoned task", task_id=task_id,
                           last_update=task.updated_at.isoformat() if task.updated_at else None)
            return await self._handle_failure(task, ABANDONED_ATTEMPT_MESSAGE, None)

        started_at = task.started_at or self.clock()
        await self.task_store.update(task_id, {
            "status": TaskStatus.IN_PROGRESS,
            "started_at": started_at,
        })
        log_task_transition(task_id, task.agent_type.value, task.status.value,
                            TaskStatus.IN_PROGRESS.value, retry_count=task.retry_count)
        task = task.with_changes(status=TaskStatus.IN_PROGRESS, started_at=started_at)

        # Only the executor call is classified as retryable; store errors propagate
        start = time.monotonic()
        try:
            result = await self._run_executor(task)
        except Exception as e:
            duration_ms = int((time.monotonic() - start) * 1000)
            error_message = str(e) or type(e).__name__
            log_agent_execution(task.agent_type.value, task_id, duration_ms, False, error_message)
            return await self._handle_failure(task, error_message, duration_ms)

        duration_ms = int((time.monotonic() - start) * 1000)
        log_agent_execution(task.agent_type.value, task_id, duration_ms, True)
        return await self._complete(task, result, duration_ms)

    async def _run_executor(self, task: AgentTask) -> Any:
        executor = self.executors[task.agent_type]
        if self.breakers is not None:
            breaker = await self.breakers.get_breaker(task.agent_type.value, self.breaker_config)
            return await breaker.call(executor.execute, task)
        if self.executor_timeout is not None:
            return await asyncio.wait_for(executor.execute(task), timeout=self.executor_timeout)
        return await executor.execute(task)

    async def _complete(self, task: AgentTask, result: Any, duration_ms: int) -> AgentTask:
        completed_at = self.clock()
        await self.task_store.update(task.id, {
            "status": TaskStatus.COMPLETED,
            "result": result,
            "completed_at": completed_at,
        })
        log_task_transition(task.id, task.agent_type.value, TaskStatus.IN_PROGRESS.value,
                            TaskStatus.COMPLETED.value, retry_count=task.retry_count)

        await self.log_agent_decision(AgentDecision(
            agent_name=task.agent_type.value,
            action="task_completed",
            status=DecisionStatus.SUCCESS,
            task_id=task.id,
            report_id=task.report_id,
            payload={"result": result},
            duration=duration_ms,
        ))
        return task.with_changes(status=TaskStatus.COMPLETED, result=result, completed_at=completed_at)

    async def _handle_failure(self, task: AgentTask, error_message: str, duration_ms: Optional[int]) -> AgentTask:
        if task.can_retry:
            retry_count = task.retry_count + 1
            await self.task_store.update(task.id, {
                "status": TaskStatus.RETRY,
                "retry_count": retry_count,
                "error_message": error_message,
            })
            log_task_transition(task.id, task.agent_type.value, TaskStatus.IN_PROGRESS.value,
                                TaskStatus.RETRY.value, retry_count=retry_count, error_message=error_message)

            delay = self.retry_scheduler.backoff_delay(task.retry_count)
            await self.log_agent_decision(AgentDecision(
                agent_name=task.agent_type.value,
                action="task_retry",
                status=DecisionStatus.RETRY,
                task_id=task.id,
                report_id=task.report_id,
                payload={"error": error_message, "retryCount": retry_count, "delaySeconds": delay},
                duration=duration_ms,
            ))
            task_id = task.id
            self.retry_scheduler.schedule(task_id, delay, lambda: self.process_task(task_id))
            return task.with_changes(status=TaskStatus.RETRY, retry_count=retry_count, error_message=error_message)

        completed_at = self.clock()
        await self.task_store.update(task.id, {
            "status": TaskStatus.FAILED,
            "error_message": error_message,
            "completed_at": completed_at,
        })
        log_task_transition(task.id, task.agent_type.value, TaskStatus.IN_PROGRESS.value,
                            TaskStatus.FAILED.value, retry_count=task.retry_count, error_message=error_message)

        await self.log_agent_decision(AgentDecision(
            agent_name=task.agent_type.value,
            action="task_failed",
            status=DecisionStatus.ERROR,
            task_id=task.id,
            report_id=task.report_id,
            payload={"error": error_message, "retryCount": task.retry_count},
            duration=duration_ms,
        ))
        return task.with_changes(status=TaskStatus.FAILED, error_message=error_message, completed_at=completed_at)

    # ==================== Scheduled work ====================

    async def process_pending_tasks(self) -> Dict[str, int]:
        """Sweep: run every eligible task concurrently, isolating failures"""
        start = time.monotonic()
        tasks = await self._sweep_candidates(self.clock())
        outcomes = await asyncio.gather(*(self._sweep_one(task.id) for task in tasks))

        summary = {
            "selected": len(tasks),
            "processed": sum(1 for ok in outcomes if ok),
            "errored": sum(1 for ok in outcomes if not ok),
        }
        log_sweep_summary(summary["selected"], summary["processed"], summary["errored"],
                          int((time.monotonic() - start) * 1000))
        return summary

    async def _sweep_candidates(self, now: datetime) -> List[AgentTask]:
        """Due pending/assigned tasks plus tasks whose last attempt or retry timer was lost"""
        cap = self.sweep_batch_size
        candidates = await self.task_store.query_pending(now, cap)
        candidates += await self.task_store.query_stale(TaskStatus.IN_PROGRESS, now - self.in_progress_lease, cap)
        candidates += await self.task_store.query_stale(TaskStatus.RETRY, now - self.retry_lease, cap)

        selected = {}
        for task in candidates:
            if task.id in self._in_flight or self.retry_scheduler.is_pending(task.id):
                continue
            selected.setdefault(task.id, task)
        tasks = sorted(selected.values(), key=lambda task: task.created_at or now)
        return tasks[:cap]

    async def _sweep_one(self, task_id: str) -> bool:
        try:
            await self.process_task(task_id)
            return True
        except Exception as e:
            logger.error("Error processing task", task_id=task_id, error=str(e))
            return False

    async def schedule_weather_checks(self) -> List[str]:
        """Create a deferred weather_alert task for every profile with coordinates"""
        profiles = await self.store.collection(PROFILES_COLLECTION).get()
        scheduled_for = self.clock() + self.weather_check_delay

        task_ids = []
        for profile in profiles:
            data = profile.to_dict() or {}
            lat, lon = data.get("lat"), data.get("lon")
            if lat is None or lon is None:
                continue
            task_ids.append(await self.create_task(TaskSpec(
                agent_type=AgentType.WEATHER_ALERT,
                priority=TaskPriority.SCHEDULED,
                user_id=profile.id,
                payload={"lat": lat, "lon": lon, "crops": data.get("crops") or []},
                max_retries=WEATHER_TASK_MAX_RETRIES,
                scheduled_for=scheduled_for,
            )))

        await self.log_agent_decision(AgentDecision(
            agent_name=COORDINATOR_AGENT,
            action="weather_checks_scheduled",
            status=DecisionStatus.SUCCESS,
            payload={"profilesScanned": len(profiles), "tasksCreated": len(task_ids)},
        ))
        logger.info("Weather checks scheduled", profiles=len(profiles), tasks=len(task_ids))
        return task_ids

    # ==================== Queries ====================

    async def get_task_status(self, task_id: str) -> Optional[AgentTask]:
        return await self.task_store.get(task_id)

    async def get_user_tasks(self, user_id: str, limit: int = 20) -> List[AgentTask]:
        return await self.task_store.query_by_user(user_id, limit)

    async def get_agent_metrics(self, agent_type: Optional[Union[AgentType, str]] = None) -> AgentMetrics:
        agent_name = None
        if agent_type:
            agent_name = agent_type.value if isinstance(agent_type, AgentType) else str(agent_type)
        return await self.decision_log.metrics(agent_name)

    async def log_agent_decision(self, decision: AgentDecision) -> Optional[str]:
        return await self.decision_log.log(decision)

    def _lease_expired(self, task: AgentTask, lease: timedelta) -> bool:
        if task.updated_at is None:
            return False
        return self.clock() - task.updated_at >= lease

    async def _load(self, task_id: str) -> AgentTask:
        task = await self.task_store.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task {task_id} not found")
        return task

    async def shutdown(self):
        await self.retry_scheduler.shutdown()
        logger.info("Coordinator stopped")


class TaskNotFoundError(Exception):
    pass

class TaskValidationError(ValueError):
    pass

class AlreadyProcessingError(Exception):
    pass

class InvalidTransitionError(Exception):
    pass

class ExecutorRegistryError(Exception):
    pass
