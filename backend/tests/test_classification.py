import math

import httpx
import pytest

from receiptscan.core.config import settings
from receiptscan.core.errors import ClassificationServiceError
from receiptscan.services.classification_service import ClassificationClient

URL = "https://vision.test/customvision/v3.0/Prediction/project/classify/iterations/prod/image"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _predictions(*pairs):
    return {"predictions": [{"tagName": tag, "probability": p} for tag, p in pairs]}


async def _classify(handler, image=b"image-bytes"):
    async with _client(handler) as http:
        classifier = ClassificationClient(URL, "vision-key", threshold=0.7, positive_tag="Positive", http_client=http)
        return await classifier.classify(image)


@pytest.mark.asyncio
async def test_request_carries_image_and_prediction_key():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["key"] = request.headers.get("Prediction-Key")
        seen["body"] = request.content
        seen["url"] = str(request.url)
        return httpx.Response(200, json=_predictions(("Positive", 0.93)))

    result = await _classify(handler)
    assert result.is_receipt is True
    assert result.confidence == pytest.approx(0.93)
    assert seen == {"key": "vision-key", "body": b"image-bytes", "url": URL}


@pytest.mark.asyncio
async def test_threshold_is_exclusive():
    at_threshold = await _classify(lambda r: httpx.Response(200, json=_predictions(("Positive", 0.7))))
    just_above = await _classify(
        lambda r: httpx.Response(200, json=_predictions(("Positive", math.nextafter(0.7, 1))))
    )
    assert at_threshold.is_receipt is False
    assert at_threshold.confidence == 0.7
    assert just_above.is_receipt is True


@pytest.mark.asyncio
async def test_positive_tag_matched_case_insensitively():
    body = _predictions(("Negative", 0.99), ("positive", 0.81), ("Positive", 0.2))
    result = await _classify(lambda r: httpx.Response(200, json=body))
    assert result.is_receipt is True
    assert result.confidence == pytest.approx(0.81)


@pytest.mark.asyncio
async def test_missing_positive_tag_is_a_rejection():
    result = await _classify(lambda r: httpx.Response(200, json=_predictions(("Negative", 0.99))))
    assert result.is_receipt is False
    assert result.confidence == 0.0


@pytest.mark.asyncio
async def test_non_ok_status_is_a_service_error():
    with pytest.raises(ClassificationServiceError) as excinfo:
        await _classify(lambda r: httpx.Response(500, text="boom"))
    assert excinfo.value.context["status_code"] == 500
    assert excinfo.value.operation == "classify"


@pytest.mark.asyncio
async def test_unreachable_service_is_a_service_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ClassificationServiceError):
        await _classify(handler)


@pytest.mark.asyncio
async def test_unreadable_body_is_a_service_error():
    with pytest.raises(ClassificationServiceError):
        await _classify(lambda r: httpx.Response(200, text="<html>"))
    with pytest.raises(ClassificationServiceError):
        await _classify(lambda r: httpx.Response(200, json={"unexpected": True}))


@pytest.mark.asyncio
async def test_missing_url_is_a_service_error(monkeypatch):
    monkeypatch.setattr(settings, "AZURE_CUSTOM_VISION_URL", None)
    with pytest.raises(ClassificationServiceError):
        await ClassificationClient().classify(b"x")
