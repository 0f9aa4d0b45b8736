# main.py
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI

# Internal imports
from application.orchestrators.coordinator import Coordinator
from application.services.periodic_trigger import PeriodicTrigger
from application.services.retry_scheduler import RetryScheduler
from infrastructure.agents.executors import build_executor_registry
from infrastructure.agents.inference_client import HttpInferenceService, MockInferenceService
from infrastructure.notifications.notification_service import NotificationService
from infrastructure.resilience.circuit_breaker import CircuitBreakerRegistry, CircuitBreakerConfig
from infrastructure.storage.memory_document_store import InMemoryDocumentStore
from infrastructure.storage.postgres_document_store import PostgresDocumentStore
from infrastructure.web.coordinator_api import router as coordinator_router
from shared.config import Settings, get_settings
from shared.logging import logger, setup_logging

VERSION = "1.0.0"

def build_store(settings: Settings):
    if settings.document_store == "memory":
        return InMemoryDocumentStore()
    return PostgresDocumentStore(settings.database_url)

def build_inference(settings: Settings):
    if settings.inference_base_url:
        return HttpInferenceService(settings.inference_base_url,
                                    timeout=settings.inference_timeout_seconds,
                                    api_key=settings.inference_api_key)
    logger.warning("INFERENCE_BASE_URL not set, using mock inference results")
    return MockInferenceService()

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    settings = Settings()

    # Setup logging
    setup_logging(level=settings.log_level, json_logs=settings.json_logs)
    logger.info("Starting Crop Advisory Coordinator", version=VERSION, document_store=settings.document_store)

    store = build_store(settings)
    inference = build_inference(settings)
    triggers = []

    try:
        await store.initialize()

        breaker_config = CircuitBreakerConfig(
            failure_threshold=settings.circuit_failure_threshold,
            recovery_timeout=timedelta(seconds=settings.circuit_recovery_seconds),
            timeout_seconds=settings.executor_timeout_seconds,
        )
        breakers = CircuitBreakerRegistry(store)

        coordinator = Coordinator(
            store,
            build_executor_registry(inference, store, NotificationService(store)),
            retry_scheduler=RetryScheduler(
                base_delay=settings.retry_base_delay_seconds,
                max_delay=settings.retry_max_delay_seconds,
            ),
            breakers=breakers,
            breaker_config=breaker_config,
            default_max_retries=settings.default_max_retries,
            sweep_batch_size=settings.sweep_batch_size,
            weather_check_delay=timedelta(seconds=settings.weather_check_delay_seconds),
        )

        if settings.enable_scheduler:
            triggers = [
                PeriodicTrigger("process_pending_tasks", settings.sweep_interval_seconds,
                                coordinator.process_pending_tasks),
                PeriodicTrigger("schedule_weather_checks", settings.weather_check_interval_seconds,
                                coordinator.schedule_weather_checks),
            ]
            for trigger in triggers:
                trigger.start()

        app.state.settings = settings
        app.state.store = store
        app.state.breakers = breakers
        app.state.coordinator = coordinator

        logger.info("Application initialized successfully")

    except Exception as e:
        logger.error("Failed to initialize application", error=str(e))
        await inference.close()
        await store.close()
        raise

    yield

    # Shutdown
    logger.info("Shutting down Crop Advisory Coordinator")

    for trigger in triggers:
        await trigger.stop()
    await coordinator.shutdown()
    await inference.close()
    await store.close()

# Create FastAPI app
app = FastAPI(
    title="Crop Advisory Coordinator",
    description="Agent task coordinator for the farmer crop-advisory app",
    version=VERSION,
    lifespan=lifespan
)

@app.get("/health")
async def health_check():
    """System health check"""
    now = datetime.now(timezone.utc).isoformat()
    try:
        await app.state.store.ping()

        # Get circuit breaker status
        circuit_status = await app.state.breakers.get_all_status()

        # Check for any open circuit breakers
        open_circuits = [name for name, status in circuit_status.items()
                         if status["state"] == "open"]

        return {
            "status": "healthy" if not open_circuits else "degraded",
            "database": "connected",
            "circuit_breakers": circuit_status,
            "open_circuits": open_circuits,
            "pending_retries": app.state.coordinator.retry_scheduler.pending_count,
            "version": VERSION,
            "timestamp": now
        }

    except Exception as e:
        logger.error("Health check failed", error=str(e))
        return {
            "status": "unhealthy",
            "error": str(e),
            "timestamp": now
        }

@app.get("/")
async def root():
    """API root endpoint"""
    return {
        "service": "Crop Advisory Coordinator",
        "version": VERSION,
        "agents": ["diagnostic", "treatment_plan", "weather_alert", "marketplace", "image_processing"],
        "endpoints": {
            "create_task": "POST /coordinator/tasks",
            "task_status": "GET /coordinator/tasks?taskId=...",
            "user_tasks": "GET /coordinator/tasks?userId=...",
            "delete_task": "DELETE /coordinator/tasks/{taskId}",
            "assign_task": "POST /coordinator/tasks/{taskId}/assign",
            "process_pending": "POST /coordinator/process/pending",
            "schedule_weather": "POST /coordinator/schedule/weather",
            "metrics": "GET /coordinator/metrics",
            "health_check": "GET /health"
        }
    }

app.include_router(coordinator_router)

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload
    )
