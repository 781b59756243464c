"""Async HTTP client for the autocaps render API.

WHY: Callers that submit renders (upload workers, scripts, the CLI) need
to follow a job to its terminal state without caring whether the server's
event stream is reachable. This module hides the push/pull choice behind
one watch() call.

HOW: Uses httpx.AsyncClient for non-blocking HTTP. RenderClient is an
async context manager; enter it to open the connection pool, exit to close
it. watch() consumes GET /renders/{id}/events first. If the stream fails,
or closes before a terminal event arrives, it falls back to polling
GET /renders/{id} with exponential backoff.

RULES:
- Always use the async context manager (async with RenderClient(...) as client:)
- Polling uses exponential backoff: 2s initial, 1.5x factor, 15s max
- watch() gives up after max_wait_s with JobWatchTimeoutError
- Duplicate or repeated events are tolerated; on_update sees each one
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx

from autocaps.api.models import JobSnapshot

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_BASE_URL = "http://localhost:8000"

_POLL_INITIAL_INTERVAL_S = 2.0
_POLL_BACKOFF_FACTOR = 1.5
_POLL_MAX_INTERVAL_S = 15.0
_WATCH_TIMEOUT_S = 60 * 60  # 60 minutes


class RenderAPIError(Exception):
    """Raised when the render API returns an error response.

    RULES:
    - Always include status_code and message
    - message is the response body text or a summary
    """

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Render API error {status_code}: {message}")


class JobWatchTimeoutError(TimeoutError):
    """Raised when a job is not terminal within the watch budget.

    RULES:
    - Message includes the job ID and elapsed time
    """


class RenderClient:
    """Async client for submitting and following render jobs.

    RULES:
    - Use as: async with RenderClient(base_url) as client: ...
    - transport is for tests (httpx.MockTransport)
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> RenderClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(300.0, connect=30.0),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        """Return the active httpx client, raising if not in context manager."""
        if self._client is None:
            raise RuntimeError(
                "RenderClient must be used as an async context manager: "
                "async with RenderClient() as client: ..."
            )
        return self._client

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def submit_render(self, request: dict[str, Any]) -> str:
        """Submit a render and return its job ID.

        Args:
            request: JSON body for POST /renders (upload_id, video_path,
                style, resolution, segments or transcript, ...).

        Returns:
            The job ID assigned by the server.
        """
        client = self._ensure_client()
        resp = await client.post("/renders", json=request)
        if resp.status_code not in (200, 201):
            raise RenderAPIError(resp.status_code, resp.text)
        return resp.json()["id"]

    async def get_status(self, job_id: str) -> JobSnapshot:
        client = self._ensure_client()
        resp = await client.get(f"/renders/{job_id}")
        if resp.status_code != 200:
            raise RenderAPIError(resp.status_code, resp.text)
        return JobSnapshot.from_dict(resp.json())

    async def stream_events(self, job_id: str) -> AsyncIterator[JobSnapshot]:
        """Yield job snapshots from the server-sent event stream.

        RULES:
        - Only "data:" lines are parsed; comments and blank lines are skipped
        - Iteration ends when the server closes the stream
        """
        client = self._ensure_client()
        async with client.stream(
            "GET",
            f"/renders/{job_id}/events",
            headers={"Accept": "text/event-stream"},
            timeout=httpx.Timeout(300.0, connect=30.0, read=None),
        ) as resp:
            if resp.status_code != 200:
                body = (await resp.aread()).decode("utf-8", errors="replace")
                raise RenderAPIError(resp.status_code, body)
            async for line in resp.aiter_lines():
                if not line.startswith("data:"):
                    continue
                yield JobSnapshot.from_dict(json.loads(line[len("data:"):].strip()))

    # ------------------------------------------------------------------
    # Watching
    # ------------------------------------------------------------------

    async def _follow_stream(
        self,
        job_id: str,
        on_update: Callable[[JobSnapshot], None] | None,
    ) -> JobSnapshot | None:
        """Terminal snapshot from the event stream, or None if it closed first."""
        async for snapshot in self.stream_events(job_id):
            if on_update:
                on_update(snapshot)
            if snapshot.is_terminal:
                return snapshot
        return None

    async def watch(
        self,
        job_id: str,
        on_update: Callable[[JobSnapshot], None] | None = None,
        max_wait_s: float = _WATCH_TIMEOUT_S,
    ) -> JobSnapshot:
        """Follow a job until it is done or failed and return the final snapshot.

        WHY: The event stream gives immediate progress, but proxies drop
        long-lived connections and old servers may not offer it. Polling is
        the slower path that always works.

        HOW: Consume stream_events() until a terminal snapshot arrives,
        bounded by max_wait_s (a stream of keep-alives alone cannot hold
        the watcher). Any error, the deadline, or the stream ending early
        switches to polling get_status() with exponential backoff until
        terminal or the deadline.

        RULES:
        - Returns the terminal snapshot; failed jobs are returned, not raised
        - Raises JobWatchTimeoutError after max_wait_s
        - RenderAPIError from polling (e.g. 404) propagates
        """
        start = time.monotonic()

        try:
            final = await asyncio.wait_for(self._follow_stream(job_id, on_update), timeout=max_wait_s)
            if final is not None:
                return final
            logger.info("Event stream for job %s ended early; polling", job_id)
        except asyncio.TimeoutError:
            logger.info("Event stream for job %s still open after %.0fs; polling", job_id, max_wait_s)
        except (httpx.HTTPError, RenderAPIError, ValueError, KeyError) as exc:
            logger.warning("Event stream for job %s failed (%s); polling", job_id, exc)

        interval = _POLL_INITIAL_INTERVAL_S
        while True:
            snapshot = await self.get_status(job_id)
            if on_update:
                on_update(snapshot)
            if snapshot.is_terminal:
                return snapshot

            elapsed = time.monotonic() - start
            if elapsed > max_wait_s:
                raise JobWatchTimeoutError(
                    f"Render job {job_id} not finished after "
                    f"{elapsed:.0f}s (limit: {max_wait_s:.0f}s)"
                )

            await asyncio.sleep(interval)
            interval = min(interval * _POLL_BACKOFF_FACTOR, _POLL_MAX_INTERVAL_S)
