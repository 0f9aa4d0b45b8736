# infrastructure/resilience/circuit_breaker.py
from enum import Enum
from datetime import datetime, timedelta
from typing import Callable, Any, Optional, Dict
import asyncio
from dataclasses import dataclass

from domain.models.agent_task import utcnow, parse_timestamp
from infrastructure.storage.document_store import DocumentStore
from shared.logging import logger, log_circuit_breaker_event

BREAKERS_COLLECTION = "circuit_breakers"

class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_timeout: timedelta = timedelta(minutes=2)
    success_threshold: int = 3
    timeout_seconds: float = 90.0

class CircuitBreakerRegistry:
    """One breaker per agent type, state persisted in the document store"""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.breakers: Dict[str, 'CircuitBreaker'] = {}

    async def get_breaker(self, agent_name: str, config: CircuitBreakerConfig) -> 'CircuitBreaker':
        if agent_name not in self.breakers:
            breaker = CircuitBreaker(agent_name, config, self.store)
            await breaker.initialize()
            self.breakers[agent_name] = breaker
        return self.breakers[agent_name]

    async def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        status = {}
        for name, breaker in self.breakers.items():
            status[name] = await breaker.get_status()
        return status

class CircuitBreaker:
    def __init__(self, agent_name: str, config: CircuitBreakerConfig, store: DocumentStore):
        self.agent_name = agent_name
        self.config = config
        self.store = store
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.success_count = 0

    async def initialize(self):
        """Load state from the store"""
        try:
            snapshot = await self.store.collection(BREAKERS_COLLECTION).doc(self.agent_name).get()
            if snapshot.exists:
                data = snapshot.to_dict()
                self.state = CircuitState(data["state"])
                self.failure_count = data.get("failureCount", 0)
                self.last_failure_time = parse_timestamp(data.get("lastFailureTime"))
                self.success_count = data.get("successCount", 0)
        except Exception as e:
            logger.warning("Failed to load circuit breaker state", agent_name=self.agent_name, error=str(e))

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == CircuitState.OPEN:
            if await self._should_attempt_reset():
                await self._transition(CircuitState.HALF_OPEN)
                self.success_count = 0
                await self._persist_state()
            else:
                raise CircuitOpenError(f"Circuit breaker for {self.agent_name} is OPEN")

        try:
            result = await asyncio.wait_for(
                func(*args, **kwargs),
                timeout=self.config.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            await self._on_failure()
            raise ExecutorTimeoutError(
                f"{self.agent_name} call exceeded {self.config.timeout_seconds}s"
            ) from e
        except Exception:
            await self._on_failure()
            raise
        await self._on_success()
        return result

    async def _should_attempt_reset(self) -> bool:
        if not self.last_failure_time:
            return False
        return utcnow() - self.last_failure_time > self.config.recovery_timeout

    async def _on_success(self):
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.success_threshold:
                await self._transition(CircuitState.CLOSED)
                self.failure_count = 0
            await self._persist_state()
        elif self.state == CircuitState.CLOSED and self.failure_count > 0:
            self.failure_count = 0
            await self._persist_state()

    async def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = utcnow()

        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.config.failure_threshold:
            await self._transition(CircuitState.OPEN)

        await self._persist_state()

    async def _transition(self, state: CircuitState):
        if state != self.state:
            log_circuit_breaker_event(
                agent_name=self.agent_name,
                event_type=f"{self.state.value}_to_{state.value}",
                state=state.value,
                failure_count=self.failure_count
            )
        self.state = state

    async def _persist_state(self):
        try:
            await self.store.collection(BREAKERS_COLLECTION).doc(self.agent_name).set({
                "state": self.state.value,
                "failureCount": self.failure_count,
                "lastFailureTime": self.last_failure_time,
                "successCount": self.success_count,
                "updatedAt": utcnow(),
            })
        except Exception as e:
            logger.error("Failed to persist circuit breaker state", agent_name=self.agent_name, error=str(e))

    async def get_status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "last_failure_time": self.last_failure_time.isoformat() if self.last_failure_time else None,
            "success_count": self.success_count
        }

class CircuitOpenError(Exception):
    pass

class ExecutorTimeoutError(asyncio.TimeoutError):
    pass
