# tests/unit/infrastructure/agents/test_inference_client.py
import json
import pytest
import httpx

from domain.models.inference import DiagnosisResult, TreatmentPlan, ImageAnalysisResult
from infrastructure.agents.inference_client import (
    HttpInferenceService,
    MockInferenceService,
    InferenceError,
    DIAGNOSIS_FLOW,
    WEATHER_ALERT_FLOW,
)

def service_with(handler, **kwargs):
    return HttpInferenceService("http://inference.local/api/", transport=httpx.MockTransport(handler), **kwargs)

class TestHttpInferenceService:
    """Flow invocation over HTTP"""

    @pytest.mark.asyncio
    async def test_posts_data_envelope_and_unwraps_result(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"result": {"alert": "Rain", "advice": "Wait"}})

        service = service_with(handler, api_key="secret")
        result = await service.weather_alert("31.5,74.3", ["wheat"], "current weather")
        await service.close()

        assert result == {"alert": "Rain", "advice": "Wait"}
        assert seen["url"] == f"http://inference.local/api/{WEATHER_ALERT_FLOW}"
        assert seen["body"] == {"data": {"location": "31.5,74.3", "crops": ["wheat"],
                                         "weatherConditions": "current weather"}}
        assert seen["auth"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_optional_fields_omitted(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"result": {}})

        service = service_with(handler)
        await service.marketplace_search("urea")
        await service.close()

        assert bodies == [{"data": {"query": "urea"}}]

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        service = service_with(lambda request: httpx.Response(503, text="model overloaded"))

        with pytest.raises(InferenceError, match="HTTP 503"):
            await service.run_flow(DIAGNOSIS_FLOW, {})
        await service.close()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        service = service_with(handler)

        with pytest.raises(InferenceError, match="request failed"):
            await service.run_flow(DIAGNOSIS_FLOW, {})
        await service.close()

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        service = service_with(lambda request: httpx.Response(200, text="<html>oops</html>"))

        with pytest.raises(InferenceError, match="non-JSON"):
            await service.run_flow(DIAGNOSIS_FLOW, {})
        await service.close()

    @pytest.mark.asyncio
    async def test_missing_result_key(self):
        service = service_with(lambda request: httpx.Response(200, json={"output": {}}))

        with pytest.raises(InferenceError, match="no result"):
            await service.run_flow(DIAGNOSIS_FLOW, {})
        await service.close()

class TestMockInferenceService:
    """Canned results match the result schemas"""

    @pytest.mark.asyncio
    async def test_canned_results_validate(self):
        service = MockInferenceService(latency_seconds=0)

        DiagnosisResult.model_validate(await service.diagnose("data:x", "spots"))
        TreatmentPlan.model_validate(await service.treatment_plan("Leaf Rust", "Wheat"))
        ImageAnalysisResult.model_validate(await service.process_image("data:x"))

    @pytest.mark.asyncio
    async def test_unknown_flow(self):
        with pytest.raises(InferenceError):
            await MockInferenceService(latency_seconds=0).run_flow("soilAgent", {})
