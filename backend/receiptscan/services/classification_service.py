"""Receipt image classifier client.

Calls a Custom Vision style prediction endpoint with the raw image
bytes and reports whether the image is a receipt.  The endpoint answers
with a list of ``{"tagName", "probability"}`` predictions; an image is a
receipt when the configured positive tag scores *strictly* above the
threshold (``0.7`` by default, so exactly ``0.7`` is a rejection).

A rejection is a normal result (``is_receipt=False``).  Anything that
prevents us from getting a verdict at all (missing configuration,
transport failure, non-200 status, unreadable body) raises
``ClassificationServiceError`` so callers can tell "the service said no"
apart from "the service was unreachable".
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx

from receiptscan.core.config import settings
from receiptscan.core.errors import ClassificationServiceError
from receiptscan.models.schemas import ClassificationResult


logger = logging.getLogger(__name__)


def best_tag_probability(body: Any, tag: str) -> float:
    """Highest probability reported for ``tag`` (case-insensitive), 0.0 if absent."""
    if not isinstance(body, dict) or not isinstance(body.get("predictions"), list):
        raise ClassificationServiceError("Classifier response has no predictions list")
    best = 0.0
    for prediction in body["predictions"]:
        if not isinstance(prediction, dict):
            continue
        name = prediction.get("tagName")
        probability = prediction.get("probability")
        if not isinstance(name, str) or name.lower() != tag.lower():
            continue
        if isinstance(probability, bool) or not isinstance(probability, (int, float)):
            continue
        best = max(best, float(probability))
    return best


class ClassificationClient:
    """Stateless classifier handle, safe to share across requests."""

    def __init__(
        self,
        url: Optional[str] = None,
        key: Optional[str] = None,
        *,
        threshold: Optional[float] = None,
        positive_tag: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.url = url or settings.AZURE_CUSTOM_VISION_URL
        self.key = key or settings.AZURE_CUSTOM_VISION_KEY
        self.threshold = settings.CLASSIFICATION_THRESHOLD if threshold is None else threshold
        self.positive_tag = positive_tag or settings.CLASSIFICATION_POSITIVE_TAG
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self._http_client = http_client

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    def is_accepted(self, confidence: float) -> bool:
        return confidence > self.threshold

    async def classify(self, image: bytes) -> ClassificationResult:
        """Ask the classifier whether ``image`` is a receipt."""
        if not self.url:
            raise ClassificationServiceError("Custom vision URL is not configured")

        headers = {"Content-Type": "application/octet-stream"}
        if self.key:
            headers["Prediction-Key"] = self.key

        try:
            async with self._client() as client:
                resp = await client.post(self.url, content=image, headers=headers)
        except httpx.HTTPError as exc:
            raise ClassificationServiceError(f"Custom vision request failed: {exc}") from exc

        if resp.status_code != 200:
            raise ClassificationServiceError(
                f"Custom vision API returned non-OK status: {resp.status_code}",
                context={"status_code": resp.status_code, "body": resp.text[:500]},
            )
        try:
            body = resp.json()
        except ValueError as exc:
            raise ClassificationServiceError("Failed to decode custom vision response") from exc

        confidence = best_tag_probability(body, self.positive_tag)
        result = ClassificationResult(
            is_receipt=self.is_accepted(confidence),
            confidence=confidence,
            tag=self.positive_tag,
        )
        logger.info(
            "[classify] is_receipt=%s confidence=%.4f threshold=%.2f",
            result.is_receipt,
            result.confidence,
            self.threshold,
        )
        return result
