# infrastructure/agents/inference_client.py
"""
Inference Service client.

Each model call is exposed by the inference service as a named flow that
accepts ``{"data": <input>}`` over HTTP POST and answers ``{"result": <output>}``.
"""
import asyncio
from typing import Dict, Any, Optional, List
import httpx

from shared.logging import logger

DIAGNOSIS_FLOW = "instantDiagnosisFromImageAndSymptomsFlow"
TREATMENT_PLAN_FLOW = "localizedTreatmentPlanFlow"
WEATHER_ALERT_FLOW = "proactiveWeatherAlertsWithRecommendationsFlow"
MARKETPLACE_FLOW = "marketplaceAgent"
IMAGE_PROCESSING_FLOW = "imageProcessingAgent"

class InferenceError(Exception):
    pass

class InferenceService:
    """Typed entry points onto the named inference flows"""

    async def run_flow(self, flow: str, data: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def diagnose(self, photo_data_uri: str, symptoms: str = "") -> Dict[str, Any]:
        return await self.run_flow(DIAGNOSIS_FLOW, {
            "photoDataUri": photo_data_uri,
            "symptoms": symptoms,
        })

    async def treatment_plan(self, disease: str, crop: str) -> Dict[str, Any]:
        return await self.run_flow(TREATMENT_PLAN_FLOW, {"disease": disease, "crop": crop})

    async def weather_alert(self, location: str, crops: List[str], weather_conditions: str) -> Dict[str, Any]:
        return await self.run_flow(WEATHER_ALERT_FLOW, {
            "location": location,
            "crops": crops,
            "weatherConditions": weather_conditions,
        })

    async def marketplace_search(self, query: str, location: Optional[Dict[str, Any]] = None,
                                 filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        data: Dict[str, Any] = {"query": query}
        if location is not None:
            data["location"] = location
        if filters is not None:
            data["filters"] = filters
        return await self.run_flow(MARKETPLACE_FLOW, data)

    async def process_image(self, image_data: str, location: Optional[str] = None,
                            farmer_text: Optional[str] = None) -> Dict[str, Any]:
        data: Dict[str, Any] = {"imageData": image_data}
        if location is not None:
            data["location"] = location
        if farmer_text is not None:
            data["farmerText"] = farmer_text
        return await self.run_flow(IMAGE_PROCESSING_FLOW, data)

    async def close(self):
        pass


class HttpInferenceService(InferenceService):
    """Async client for the hosted inference flows"""

    def __init__(self, base_url: str, timeout: float = 60.0, api_key: str = "",
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(base_url=self.base_url, headers=headers,
                                         timeout=timeout, transport=transport)

    async def run_flow(self, flow: str, data: Dict[str, Any]) -> Dict[str, Any]:
        logger.info("Inference request", flow=flow)
        try:
            response = await self._client.post(f"/{flow}", json={"data": data})
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            raise InferenceError(
                f"{flow} returned HTTP {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise InferenceError(f"{flow} request failed: {e}") from e
        except ValueError as e:
            raise InferenceError(f"{flow} returned a non-JSON body") from e

        if not isinstance(body, dict) or "result" not in body:
            raise InferenceError(f"{flow} response has no result")
        return body["result"]

    async def close(self):
        await self._client.aclose()


class MockInferenceService(InferenceService):
    """Canned inference results for development without a model backend"""

    def __init__(self, latency_seconds: float = 0.1):
        self.latency_seconds = latency_seconds

    async def run_flow(self, flow: str, data: Dict[str, Any]) -> Dict[str, Any]:
        # Simulate model latency
        await asyncio.sleep(self.latency_seconds)

        if flow == DIAGNOSIS_FLOW:
            return {
                "crop": "Wheat",
                "disease": "Leaf Rust",
                "confidence": 87,
                "affectedParts": ["leaves"],
                "severity": "Medium",
                "description": "Orange-brown pustules scattered on the upper leaf surface.",
            }
        if flow == TREATMENT_PLAN_FLOW:
            return {
                "steps": [
                    {
                        "stepNumber": 1,
                        "title": "Remove infected leaves",
                        "description": f"Cut and burn leaves showing {data.get('disease', 'disease')} symptoms.",
                        "materials": ["pruning shears", "gloves"],
                        "cost": 500,
                        "timing": "immediate",
                        "safetyNotes": "Wash hands after handling infected material.",
                    },
                    {
                        "stepNumber": 2,
                        "title": "Apply fungicide",
                        "description": "Spray a triazole fungicide across the field.",
                        "materials": ["propiconazole", "knapsack sprayer"],
                        "cost": 2500,
                        "timing": "within 3 days",
                        "safetyNotes": "Wear a mask and avoid spraying in wind.",
                    },
                ],
                "totalCost": 3000,
                "timeline": "2 weeks",
                "preventionTips": ["Use resistant varieties", "Avoid excess nitrogen"],
            }
        if flow == WEATHER_ALERT_FLOW:
            crops = ", ".join(data.get("crops") or []) or "your crops"
            return {
                "alert": "Heavy rain expected in the next 24 hours.",
                "advice": f"Delay spraying and clear field drainage for {crops}.",
            }
        if flow == MARKETPLACE_FLOW:
            return {
                "suppliers": [],
                "totalCount": 0,
                "searchRadius": (data.get("location") or {}).get("radius", 50),
                "recommendations": ["Compare prices from at least three suppliers"],
                "marketInsights": {"averagePricing": "stable", "availability": "good", "trends": []},
            }
        if flow == IMAGE_PROCESSING_FLOW:
            return {
                "processedImage": data.get("imageData", ""),
                "metadata": {},
                "embeddings": [],
                "cropDetection": {
                    "cropType": "Unknown",
                    "confidence": 0,
                    "plantParts": [],
                    "growthStage": "unknown",
                },
                "imageAnalysis": {
                    "healthIndicators": [],
                    "visibleSymptoms": [],
                    "environmentalFactors": [],
                    "recommendations": [],
                },
            }
        raise InferenceError(f"Unknown inference flow: {flow}")
