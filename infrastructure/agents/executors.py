# infrastructure/agents/executors.py
from typing import Dict, Any, Optional, Type

from pydantic import BaseModel, ValidationError

from domain.models.agent_task import AgentTask, AgentType, utcnow
from domain.models.inference import (
    DiagnosisResult,
    TreatmentPlan,
    WeatherAlertResult,
    MarketplaceResult,
    ImageAnalysisResult,
)
from infrastructure.agents.inference_client import InferenceService, InferenceError
from infrastructure.notifications.notification_service import NotificationService, NoTokenError
from infrastructure.storage.document_store import DocumentStore
from shared.logging import logger

class AgentExecutor:
    """Runs one kind of inference call for a task payload"""

    agent_type: AgentType

    def __init__(self, inference: InferenceService):
        self.inference = inference

    async def execute(self, task: AgentTask) -> Dict[str, Any]:
        raise NotImplementedError

    @staticmethod
    def _require(payload: Dict[str, Any], key: str) -> Any:
        value = payload.get(key)
        if value in (None, ""):
            raise ValueError(f"Task payload is missing '{key}'")
        return value

    @staticmethod
    def _validate(schema: Type[BaseModel], raw: Any) -> Any:
        """Model output that does not fit the result schema is an inference failure"""
        try:
            return schema.model_validate(raw)
        except ValidationError as e:
            raise InferenceError(f"{schema.__name__} schema mismatch: {e.error_count()} invalid field(s)") from e


class ReportExecutor(AgentExecutor):
    """Executor that may write its outcome onto the linked diagnosis report"""

    def __init__(self, inference: InferenceService, store: DocumentStore):
        super().__init__(inference)
        self.store = store

    async def _update_report(self, task: AgentTask, fields: Dict[str, Any]) -> bool:
        if not (task.report_id and task.user_id):
            return False
        report = self.store.collection("users").doc(task.user_id).collection("reports").doc(task.report_id)
        await report.update({**fields, "updatedAt": utcnow()})
        logger.info("Report updated", task_id=task.id, report_id=task.report_id, fields=sorted(fields))
        return True


class DiagnosticExecutor(ReportExecutor):
    agent_type = AgentType.DIAGNOSTIC

    async def execute(self, task: AgentTask) -> Dict[str, Any]:
        raw = await self.inference.diagnose(
            photo_data_uri=self._require(task.payload, "photoDataUri"),
            symptoms=task.payload.get("symptoms") or "",
        )
        diagnosis = self._validate(DiagnosisResult, raw)
        result = diagnosis.model_dump(mode="json")

        await self._update_report(task, {
            "disease": diagnosis.disease,
            "confidence": diagnosis.confidence,
            "affectedParts": diagnosis.affectedParts,
            "severity": diagnosis.severity.value,
            "description": diagnosis.description,
            "crop": diagnosis.crop,
            "status": "Complete",
        })
        return result


class TreatmentPlanExecutor(ReportExecutor):
    agent_type = AgentType.TREATMENT_PLAN

    async def execute(self, task: AgentTask) -> Dict[str, Any]:
        raw = await self.inference.treatment_plan(
            disease=self._require(task.payload, "disease"),
            crop=task.payload.get("crop") or "Unknown",
        )
        plan = self._validate(TreatmentPlan, raw).model_dump(mode="json")
        await self._update_report(task, {"plan": plan})
        return plan


class WeatherAlertExecutor(AgentExecutor):
    agent_type = AgentType.WEATHER_ALERT

    def __init__(self, inference: InferenceService, notifications: NotificationService):
        super().__init__(inference)
        self.notifications = notifications

    async def execute(self, task: AgentTask) -> Dict[str, Any]:
        lat = self._require(task.payload, "lat")
        lon = self._require(task.payload, "lon")
        raw = await self.inference.weather_alert(
            location=f"{lat},{lon}",
            crops=task.payload.get("crops") or [],
            weather_conditions=task.payload.get("weatherType") or "current weather",
        )
        alert = self._validate(WeatherAlertResult, raw)
        result = alert.model_dump(mode="json", exclude_none=True)

        if task.user_id and alert.alert:
            await self._notify(task, alert)
        return result

    async def _notify(self, task: AgentTask, alert: WeatherAlertResult):
        # Delivery problems never fail an otherwise successful alert
        title = alert.title or "Weather Alert"
        try:
            await self.notifications.record(
                user_id=task.user_id,
                notification_type="weather_alert",
                title=title,
                message=alert.alert,
                severity=alert.severity or "medium",
                data={"taskId": task.id, "advice": alert.advice},
            )
            await self.notifications.send(task.user_id, title, alert.alert,
                                          {"type": "weather_alert", "taskId": task.id})
        except NoTokenError:
            logger.info("Push skipped, no device token", task_id=task.id, user_id=task.user_id)
        except Exception as e:
            logger.warning("Weather notification failed", task_id=task.id, user_id=task.user_id, error=str(e))


class MarketplaceExecutor(AgentExecutor):
    agent_type = AgentType.MARKETPLACE

    async def execute(self, task: AgentTask) -> Dict[str, Any]:
        raw = await self.inference.marketplace_search(
            query=self._require(task.payload, "query"),
            location=task.payload.get("location"),
            filters=task.payload.get("filters"),
        )
        return self._validate(MarketplaceResult, raw).model_dump(mode="json")


class ImageProcessingExecutor(AgentExecutor):
    agent_type = AgentType.IMAGE_PROCESSING

    async def execute(self, task: AgentTask) -> Dict[str, Any]:
        image = task.payload.get("imageData") or task.payload.get("photoDataUri")
        if not image:
            raise ValueError("Task payload is missing 'imageData'")
        raw = await self.inference.process_image(
            image_data=image,
            location=task.payload.get("location"),
            farmer_text=task.payload.get("farmerText"),
        )
        return self._validate(ImageAnalysisResult, raw).model_dump(mode="json")


def build_executor_registry(inference: InferenceService, store: DocumentStore,
                            notifications: Optional[NotificationService] = None) -> Dict[AgentType, AgentExecutor]:
    """One executor per agent type"""
    notifications = notifications or NotificationService(store)
    return {
        AgentType.DIAGNOSTIC: DiagnosticExecutor(inference, store),
        AgentType.TREATMENT_PLAN: TreatmentPlanExecutor(inference, store),
        AgentType.WEATHER_ALERT: WeatherAlertExecutor(inference, notifications),
        AgentType.MARKETPLACE: MarketplaceExecutor(inference),
        AgentType.IMAGE_PROCESSING: ImageProcessingExecutor(inference),
    }
