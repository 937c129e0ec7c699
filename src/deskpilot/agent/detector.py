"""UI-element detection over screenshots."""

from __future__ import annotations

import base64
import logging
from typing import Protocol, runtime_checkable

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from deskpilot.events import EventSink, default_sink


class DetectedElement(BaseModel):
    """A UI element found on screen."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    type: str = ""
    content: str = ""
    bbox: list[int] = Field(default_factory=list, alias="bbox_pixels")
    center: list[int] = Field(default_factory=list)
    interactive: bool = Field(default=False, alias="interactivity")

    def describe(self) -> str:
        where = f" at ({self.center[0]}, {self.center[1]})" if len(self.center) >= 2 else ""
        flag = " [interactive]" if self.interactive else ""
        content = f" '{self.content}'" if self.content else ""
        return f"#{self.id} {self.type}{content}{where}{flag}"


class DetectionResult(BaseModel):
    annotated_image: bytes | None = None
    elements: list[DetectedElement] = Field(default_factory=list)
    width: int = 0
    height: int = 0


def format_elements(elements: list[DetectedElement]) -> str:
    """Render detected elements as a text listing for the model."""
    if not elements:
        return ""
    lines = ["Detected UI elements (id, type, content, center):"]
    lines.extend(element.describe() for element in elements)
    return "\n".join(lines)


@runtime_checkable
class ElementDetector(Protocol):
    async def detect(self, image: bytes, width: int, height: int) -> DetectionResult:
        """Detect elements in a screenshot.

        Args:
            image: PNG bytes
            width: Image width in pixels
            height: Image height in pixels
        """
        ...


class CloudElementDetector:
    """Client for the hosted ``/api/omniparser/parse`` endpoint."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 120.0,
        box_threshold: float = 0.3,
        iou_threshold: float = 0.1,
        client: httpx.AsyncClient | None = None,
        events: EventSink | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.box_threshold = box_threshold
        self.iou_threshold = iou_threshold
        self._client = client
        self._events = events or default_sink("detector")

    async def detect(self, image: bytes, width: int, height: int) -> DetectionResult:
        """Raises:
            httpx.HTTPStatusError: The service answered with an error status
            ValueError: The response body was not understood
        """
        payload = {
            "image": base64.b64encode(image).decode("ascii"),
            "width": width,
            "height": height,
            "box_threshold": self.box_threshold,
            "iou_threshold": self.iou_threshold,
            "use_ocr": True,
        }
        url = f"{self.base_url}/api/omniparser/parse"
        self._events.emit("detector.request", level=logging.DEBUG, width=width, height=height)

        if self._client is not None:
            response = await self._client.post(url, json=payload, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload)
        response.raise_for_status()

        try:
            body = response.json()
            elements = [DetectedElement.model_validate(e) for e in body.get("elements") or []]
        except (ValueError, ValidationError, AttributeError) as e:
            raise ValueError(f"Unexpected detector response: {e}") from e

        annotated = body.get("annotated_image")
        result = DetectionResult(
            annotated_image=base64.b64decode(annotated) if annotated else None,
            elements=elements,
            width=body.get("width") or width,
            height=body.get("height") or height,
        )
        self._events.emit(
            "detector.detected",
            elements=len(result.elements),
            latency_ms=body.get("latency_ms"),
        )
        return result
