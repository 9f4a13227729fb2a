"""
Tests for the detection provider client and payload parsing.
"""

import json

import httpx
import pytest

from core.errors import ProviderError
from detection.provider import RoboflowProvider, parse_predictions

URL = "https://provider.test/workflows/detect"

PREDICTION = {"x": 50, "y": 40, "width": 20, "height": 10, "confidence": 0.97, "class": "Cola 330ml"}


def _provider(handler) -> RoboflowProvider:
    return RoboflowProvider(url=URL, api_key="test-key", timeout=5, transport=httpx.MockTransport(handler))


# ── Parsing ───────────────────────────────────────────────────────────


class TestParsePredictions:
    def test_bare_predictions(self):
        [detection] = parse_predictions({"predictions": [PREDICTION]})
        assert detection.label == "Cola 330ml"
        assert detection.confidence == 0.97
        # centre-based box converted to top-left origin
        assert (detection.bounding_box.x, detection.bounding_box.y) == (40, 35)
        assert detection.bounding_box.area == 200

    def test_workflow_outputs(self):
        payload = {"outputs": [{"predictions": {"image": {"width": 640}, "predictions": [PREDICTION, PREDICTION]}}]}
        assert len(parse_predictions(payload)) == 2

    def test_label_key_fallback(self):
        pred = {**PREDICTION, "label": "Juice"}
        del pred["class"]
        assert parse_predictions([pred])[0].label == "Juice"

    def test_confidence_clamped(self):
        assert parse_predictions([{**PREDICTION, "confidence": 1.4}])[0].confidence == 1.0

    def test_empty_list_is_not_an_error(self):
        assert parse_predictions({"predictions": []}) == []

    def test_missing_predictions_raises(self):
        with pytest.raises(ProviderError):
            parse_predictions({"status": "ok"})

    def test_malformed_prediction_raises(self):
        with pytest.raises(ProviderError):
            parse_predictions([{"class": "Cola", "confidence": 0.9}])


# ── HTTP Client ───────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestRoboflowProvider:
    async def test_detect_posts_image_reference(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"predictions": [PREDICTION]})

        detections = await _provider(handler).detect("https://cdn.test/shelf.jpg")

        assert len(detections) == 1
        assert seen["body"] == {
            "api_key": "test-key",
            "inputs": {"image": {"type": "url", "value": "https://cdn.test/shelf.jpg"}},
        }

    async def test_error_status_raises_provider_error(self):
        provider = _provider(lambda request: httpx.Response(500, text="model crashed"))

        with pytest.raises(ProviderError) as exc_info:
            await provider.detect("img")

        assert exc_info.value.provider_status == 500
        assert exc_info.value.status_code == 502
        assert exc_info.value.unavailable is False

    async def test_timeout_is_unavailable(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ProviderError) as exc_info:
            await _provider(handler).detect("img")

        assert exc_info.value.unavailable is True
        assert exc_info.value.status_code == 503

    async def test_connection_error_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ProviderError) as exc_info:
            await _provider(handler).detect("img")

        assert exc_info.value.kind == "PROVIDER_ERROR"
        assert exc_info.value.unavailable is True

    async def test_invalid_json(self):
        provider = _provider(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(ProviderError):
            await provider.detect("img")
