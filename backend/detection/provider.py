"""
Detection Provider Client

The image-detection provider is a black box: an image reference goes in, a
list of labelled bounding boxes with confidence scores comes out. Providers
implement ``DetectionProvider`` so the pipeline is provider-agnostic.

Failures are never turned into "no detections":
  - timeouts / connection errors -> ProviderError(unavailable=True)
  - non-2xx responses            -> ProviderError with the provider status
  - unparseable payloads         -> ProviderError

Retries are the caller's decision; nothing here retries.
"""

from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog

from core.config import get_settings
from core.errors import ProviderError
from detection.aggregator import BoundingBox, RawDetection

logger = structlog.get_logger()


class DetectionProvider(ABC):
    """Base class for image-detection collaborators."""

    name: str = "provider"

    @abstractmethod
    async def detect(self, image_reference: str) -> list[RawDetection]:
        """Run detection on the referenced image."""
        ...


def _clamp_confidence(value: Any) -> float:
    return min(max(float(value), 0.0), 1.0)


def parse_predictions(payload: Any) -> list[RawDetection]:
    """
    Normalize a provider payload into RawDetections.

    Accepts a bare ``{"predictions": [...]}`` body or a workflow response
    (``{"outputs": [{"predictions": {"predictions": [...]}}]}``). Boxes are
    centre-based (x, y = centre) and converted to a top-left origin.
    """
    predictions = _find_predictions(payload)
    if predictions is None:
        raise ProviderError(
            "Provider response did not contain predictions",
            details={"payload_keys": sorted(payload) if isinstance(payload, dict) else []},
        )

    detections = []
    for pred in predictions:
        try:
            width = float(pred["width"])
            height = float(pred["height"])
            detections.append(
                RawDetection(
                    label=str(pred.get("class") or pred.get("label") or ""),
                    confidence=_clamp_confidence(pred["confidence"]),
                    bounding_box=BoundingBox(
                        x=float(pred["x"]) - width / 2,
                        y=float(pred["y"]) - height / 2,
                        width=width,
                        height=height,
                    ),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(f"Malformed prediction from provider: {pred!r}") from exc
    return detections


def _find_predictions(payload: Any) -> list | None:
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return None
    preds = payload.get("predictions")
    if isinstance(preds, list):
        return preds
    if isinstance(preds, dict):
        return _find_predictions(preds)
    outputs = payload.get("outputs")
    if isinstance(outputs, list) and outputs:
        return _find_predictions(outputs[0])
    return None


class RoboflowProvider(DetectionProvider):
    """Roboflow serverless workflow client."""

    name = "roboflow"

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.url = url or settings.detection_provider_url
        self.api_key = api_key if api_key is not None else settings.detection_provider_api_key
        self.timeout = timeout or settings.detection_timeout_seconds
        self._transport = transport

    async def detect(self, image_reference: str) -> list[RawDetection]:
        body = {
            "api_key": self.api_key,
            "inputs": {"image": {"type": "url", "value": image_reference}},
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=body)
        except httpx.TimeoutException as exc:
            logger.warning("provider.timeout", provider=self.name, timeout=self.timeout)
            raise ProviderError(
                f"Detection provider timed out after {self.timeout}s",
                user_message="The detection service timed out. Please try again.",
                unavailable=True,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("provider.unreachable", provider=self.name, error=str(exc))
            raise ProviderError(
                f"Detection provider unreachable: {exc}",
                user_message="The detection service is unavailable. Please try again later.",
                unavailable=True,
            ) from exc

        if response.status_code >= 400:
            logger.error(
                "provider.error_response",
                provider=self.name,
                status=response.status_code,
                body=response.text[:500],
            )
            raise ProviderError(
                f"Detection provider error: {response.status_code}",
                details={"provider_message": response.text[:500]},
                provider_status=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError("Detection provider returned invalid JSON", provider_status=response.status_code) from exc

        detections = parse_predictions(payload)
        logger.info("provider.detected", provider=self.name, detections=len(detections))
        return detections
