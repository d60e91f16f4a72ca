"""Document analysis client (long-running operation).

Receipt analysis is asynchronous on the service side:

1. ``submit`` POSTs the image to the prebuilt receipt model.  The
   service answers ``202 Accepted`` with an ``Operation-Location``
   header pointing at the result resource.
2. ``poll`` GETs that resource until its ``status`` is terminal.

Status names differ between API versions (``notStarted``/``running``,
``inProgress``, ``succeeded``/``completed``...), so they are normalised
to :class:`AnalysisStatus` before use.

Polling backs off exponentially (``ANALYSIS_POLL_INITIAL_INTERVAL``
doubling up to ``ANALYSIS_POLL_MAX_INTERVAL``) and gives up with
``AnalysisTimeout`` once the deadline passes.  Sleeping goes through
``asyncio.sleep`` so cancelling the awaiting task stops the loop.  The
clock and sleep functions can be injected, which keeps tests instant.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Tuple

import httpx

from receiptscan.core.config import settings
from receiptscan.core.errors import AnalysisFailed, AnalysisServiceError, AnalysisTimeout
from receiptscan.models.enums import AnalysisStatus


logger = logging.getLogger(__name__)

ANALYZE_PATH = "/formrecognizer/v2.1/prebuilt/receipt/analyze"
SUBSCRIPTION_KEY_HEADER = "Ocp-Apim-Subscription-Key"

_STATUS_ALIASES: Dict[str, AnalysisStatus] = {
    "notstarted": AnalysisStatus.RUNNING,
    "queued": AnalysisStatus.RUNNING,
    "pending": AnalysisStatus.RUNNING,
    "running": AnalysisStatus.RUNNING,
    "inprogress": AnalysisStatus.RUNNING,
    "succeeded": AnalysisStatus.SUCCEEDED,
    "success": AnalysisStatus.SUCCEEDED,
    "completed": AnalysisStatus.SUCCEEDED,
    "complete": AnalysisStatus.SUCCEEDED,
    "failed": AnalysisStatus.FAILED,
    "error": AnalysisStatus.FAILED,
    "canceled": AnalysisStatus.FAILED,
    "cancelled": AnalysisStatus.FAILED,
}


def normalise_status(value: Any) -> AnalysisStatus:
    """Map a backend status string onto :class:`AnalysisStatus`.

    Unknown strings are treated as still running; a missing or non-string
    status is a protocol error.
    """
    if not isinstance(value, str) or not value.strip():
        raise AnalysisServiceError("unexpected poll response format: missing status field")
    key = value.strip().replace("_", "").replace("-", "").lower()
    status = _STATUS_ALIASES.get(key)
    if status is None:
        logger.warning("[analysis] unknown operation status %r; treating as running", value)
        return AnalysisStatus.RUNNING
    return status


class AnalysisClient:
    """Submit receipts for analysis and wait for the result.

    Holds no per-request state; one instance can serve concurrent
    ingestions.
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        key: Optional[str] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        initial_interval: Optional[float] = None,
        max_interval: Optional[float] = None,
        poll_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.endpoint = (endpoint or settings.AZURE_DOCUMENT_INTELLIGENCE_ENDPOINT or "").rstrip("/")
        self.key = key or settings.AZURE_DOCUMENT_INTELLIGENCE_KEY
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.initial_interval = settings.ANALYSIS_POLL_INITIAL_INTERVAL if initial_interval is None else initial_interval
        self.max_interval = settings.ANALYSIS_POLL_MAX_INTERVAL if max_interval is None else max_interval
        self.poll_timeout = settings.ANALYSIS_POLL_TIMEOUT if poll_timeout is None else poll_timeout
        self._http_client = http_client
        self._clock = clock
        self._sleep = sleep

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    def _headers(self) -> Dict[str, str]:
        return {SUBSCRIPTION_KEY_HEADER: self.key or ""}

    def deadline_after(self, seconds: Optional[float] = None) -> float:
        """Absolute deadline (on the client's clock) ``seconds`` from now."""
        return self._clock() + (self.poll_timeout if seconds is None else seconds)

    async def submit(self, image: bytes) -> str:
        """Start an analysis and return the operation location to poll."""
        if not self.endpoint or not self.key:
            raise AnalysisServiceError(
                "Document analysis endpoint or key not configured", operation="analyze.submit"
            )
        url = f"{self.endpoint}{ANALYZE_PATH}"
        headers = {**self._headers(), "Content-Type": "application/octet-stream"}
        try:
            async with self._client() as client:
                resp = await client.post(url, content=image, headers=headers)
        except httpx.HTTPError as exc:
            raise AnalysisServiceError(f"analyze receipt failed: {exc}", operation="analyze.submit") from exc

        if resp.status_code != 202:
            raise AnalysisServiceError(
                f"unexpected response status: {resp.status_code}",
                operation="analyze.submit",
                context={"status_code": resp.status_code, "body": resp.text[:500]},
            )
        operation_location = resp.headers.get("Operation-Location")
        if not operation_location:
            raise AnalysisServiceError(
                "missing operation-location header in response", operation="analyze.submit"
            )
        logger.info("[analysis] submitted; operation=%s", operation_location)
        return operation_location

    async def _fetch_status(self, client: httpx.AsyncClient, operation_location: str) -> Tuple[Dict[str, Any], str]:
        try:
            resp = await client.get(operation_location, headers=self._headers())
        except httpx.HTTPError as exc:
            raise AnalysisServiceError(
                f"failed to poll operation location: {exc}", operation="analyze.poll"
            ) from exc
        raw = resp.text
        if resp.status_code != 200:
            raise AnalysisServiceError(
                f"poll returned status {resp.status_code}",
                operation="analyze.poll",
                context={"status_code": resp.status_code, "body": raw[:500]},
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise AnalysisServiceError("failed to parse poll response", operation="analyze.poll") from exc
        if not isinstance(payload, dict):
            raise AnalysisServiceError("poll response is not an object", operation="analyze.poll")
        return payload, raw

    async def poll(self, operation_location: str, deadline: Optional[float] = None) -> Dict[str, Any]:
        """Poll until the operation is terminal or ``deadline`` passes.

        Returns the full payload on success.  Raises ``AnalysisFailed``
        (with the raw payload attached) when the service reports failure
        and ``AnalysisTimeout`` when the deadline is reached first.
        """
        if deadline is None:
            deadline = self.deadline_after()
        interval = self.initial_interval
        attempts = 0

        async with self._client() as client:
            while True:
                if self._clock() >= deadline:
                    raise AnalysisTimeout(
                        f"analysis did not finish before the deadline ({attempts} polls)",
                        context={"operation_location": operation_location, "polls": attempts},
                    )
                attempts += 1
                payload, raw = await self._fetch_status(client, operation_location)
                status = normalise_status(payload.get("status"))
                logger.debug("[analysis] poll #%d status=%s", attempts, status.value)

                if status is AnalysisStatus.SUCCEEDED:
                    logger.info("[analysis] succeeded after %d polls", attempts)
                    return payload
                if status is AnalysisStatus.FAILED:
                    logger.warning("[analysis] operation failed after %d polls", attempts)
                    raise AnalysisFailed(payload, raw)

                remaining = deadline - self._clock()
                if remaining <= 0:
                    continue
                await self._sleep(min(interval, remaining))
                interval = min(interval * 2, self.max_interval)

    async def analyze(self, image: bytes, deadline: Optional[float] = None) -> Dict[str, Any]:
        """Submit ``image`` and wait for the analysis payload."""
        operation_location = await self.submit(image)
        return await self.poll(operation_location, deadline=deadline)
