# infrastructure/web/coordinator_api.py
from fastapi import APIRouter, HTTPException, Depends, Request, Query
from typing import Dict, Any, Optional
from datetime import datetime, timezone
from pydantic import BaseModel, Field

from application.orchestrators.coordinator import (
    Coordinator,
    TaskNotFoundError,
    TaskValidationError,
    AlreadyProcessingError,
    InvalidTransitionError,
)
from domain.models.agent_task import AgentType, TaskPriority, TaskSpec
from shared.logging import logger

router = APIRouter(prefix="/coordinator", tags=["coordinator"])

def get_coordinator(request: Request) -> Coordinator:
    return request.app.state.coordinator

class CreateTaskRequest(BaseModel):
    agentType: Optional[str] = Field(None, description="diagnostic | treatment_plan | weather_alert | marketplace | image_processing")
    priority: Optional[str] = Field(None, description="urgent | high | medium | low | scheduled")
    userId: Optional[str] = None
    reportId: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    maxRetries: Optional[int] = Field(None, ge=0, le=10)
    scheduledFor: Optional[datetime] = None

class AssignTaskRequest(BaseModel):
    agentType: str

def _to_spec(body: CreateTaskRequest) -> TaskSpec:
    if not body.agentType or body.payload is None:
        raise TaskValidationError("Missing required fields: agentType, payload")
    try:
        agent_type = AgentType(body.agentType)
        priority = TaskPriority(body.priority) if body.priority else TaskPriority.MEDIUM
    except ValueError as e:
        raise TaskValidationError(str(e)) from e

    scheduled_for = body.scheduledFor
    if scheduled_for is not None and scheduled_for.tzinfo is None:
        scheduled_for = scheduled_for.replace(tzinfo=timezone.utc)

    return TaskSpec(
        agent_type=agent_type,
        priority=priority,
        user_id=body.userId,
        report_id=body.reportId,
        payload=body.payload,
        max_retries=body.maxRetries,
        scheduled_for=scheduled_for,
    )

def _http_error(action: str, error: Exception, **context) -> HTTPException:
    if isinstance(error, TaskValidationError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, TaskNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, (AlreadyProcessingError, InvalidTransitionError)):
        return HTTPException(status_code=409, detail=str(error))
    logger.error(f"Failed to {action}", error=str(error), **context)
    return HTTPException(status_code=500, detail=f"Failed to {action}: {str(error)}")

@router.post("/tasks")
async def create_task(
    body: CreateTaskRequest,
    coordinator: Coordinator = Depends(get_coordinator)
):
    """Create a new agent task"""
    try:
        task_id = await coordinator.create_task(_to_spec(body))
        return {"success": True, "taskId": task_id, "message": "Task created successfully"}
    except Exception as e:
        raise _http_error("create task", e, agent_type=body.agentType)

@router.get("/tasks")
async def get_tasks(
    taskId: Optional[str] = None,
    userId: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    coordinator: Coordinator = Depends(get_coordinator)
):
    """Get one task's status, or a user's most recent tasks"""
    if not taskId and not userId:
        raise HTTPException(status_code=400, detail="Missing required parameter: taskId or userId")
    try:
        if taskId:
            task = await coordinator.get_task_status(taskId)
            if task is None:
                raise HTTPException(status_code=404, detail="Task not found")
            return {"success": True, "task": task.to_api()}

        tasks = await coordinator.get_user_tasks(userId, limit)
        return {"success": True, "tasks": [task.to_api() for task in tasks], "count": len(tasks)}
    except HTTPException:
        raise
    except Exception as e:
        raise _http_error("get tasks", e, task_id=taskId, user_id=userId)

@router.delete("/tasks/{task_id}")
async def delete_task(
    task_id: str,
    coordinator: Coordinator = Depends(get_coordinator)
):
    """Delete a task and cancel its pending retry"""
    try:
        deleted = await coordinator.delete_task(task_id)
    except Exception as e:
        raise _http_error("delete task", e, task_id=task_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Task not found")
    return {"success": True, "taskId": task_id}

@router.post("/tasks/{task_id}/assign")
async def assign_task(
    task_id: str,
    body: AssignTaskRequest,
    coordinator: Coordinator = Depends(get_coordinator)
):
    """Assign a task to an agent type"""
    try:
        task = await coordinator.assign_task(task_id, body.agentType)
        return {"success": True, "task": task.to_api()}
    except Exception as e:
        raise _http_error("assign task", e, task_id=task_id)

@router.post("/process/pending")
async def process_pending(coordinator: Coordinator = Depends(get_coordinator)):
    """Manually trigger processing of pending tasks"""
    try:
        summary = await coordinator.process_pending_tasks()
        return {"success": True, "message": "Pending tasks processed successfully", **summary}
    except Exception as e:
        raise _http_error("process pending tasks", e)

@router.post("/schedule/weather")
async def schedule_weather(coordinator: Coordinator = Depends(get_coordinator)):
    """Manually trigger weather check scheduling"""
    try:
        task_ids = await coordinator.schedule_weather_checks()
        return {"success": True, "message": "Weather checks scheduled successfully", "taskIds": task_ids}
    except Exception as e:
        raise _http_error("schedule weather checks", e)

@router.get("/metrics")
async def get_metrics(
    agentType: Optional[str] = None,
    coordinator: Coordinator = Depends(get_coordinator)
):
    """Agent performance metrics from the decision log"""
    try:
        metrics = await coordinator.get_agent_metrics(agentType)
        return {"success": True, "agentType": agentType or "all", "metrics": metrics.to_api()}
    except Exception as e:
        raise _http_error("get metrics", e, agent_type=agentType)
