"""FastAPI application for render submission, status, and progress events.

WHY: Callers (editors' tooling, upload workers, curl) need an HTTP API to
turn a video plus recognition output into a captioned video, and to follow
the render while it runs. FastAPI provides automatic OpenAPI documentation,
request validation, and streaming responses.

HOW: POST /renders normalizes the caption source, compiles the subtitle
file, stores it next to the upload, creates a queued job, and hands the
job to the store's worker pool. Workers run the async RenderEngine with
asyncio.run(). GET /renders/{id} returns a snapshot; GET
/renders/{id}/events streams one server-sent event per change until the
job is terminal.

RULES:
- All endpoints have OpenAPI descriptions on every parameter and response
- Error responses use a consistent ErrorResponse schema
- Submission never waits for the render to start
- Missing storage configuration is a 503, raised before any job exists
- The job store is a module-level singleton created at import
- Python 3.9+ compatible (no match/case, no PEP 604 unions)
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import Response, StreamingResponse

from autocaps import __version__
from autocaps.captions.compiler import CaptionCompiler
from autocaps.captions.styles import default_registry
from autocaps.config import (
    CAPTIONS_PREFIX,
    RENDER_TIMEOUT_S,
    RENDERS_PREFIX,
    ConfigurationError,
    load_storage_settings,
    resolve_resolution,
)
from autocaps.core.ir import CaptionSegment
from autocaps.core.normalizer import normalize_payload
from autocaps.core.payloads import detect_kind
from autocaps.render.engine import RenderEngine
from autocaps.render.models import Overlay, RenderDescriptor
from autocaps.render.overlays import derive_overlays
from autocaps.render.storage import ObjectStorage, StorageError, storage_from_settings
from autocaps.server.jobs import InvalidTransitionError, JobStore, RenderJob
from autocaps.server.models import (
    ErrorResponse,
    HealthResponse,
    JobCreatedResponse,
    JobResponse,
    NormalizeRequest,
    NormalizeResponse,
    RenderRequest,
    SegmentResponse,
    StyleInfo,
)

logger = logging.getLogger(__name__)

# Seconds between job checks while streaming events
EVENT_POLL_INTERVAL_S = 0.25
# Seconds between keep-alive comments on an idle event stream
EVENT_KEEPALIVE_S = 15.0
# An event stream never outlives the render budget by much
EVENT_STREAM_MAX_WAIT_S = RENDER_TIMEOUT_S + 60.0

# ---------------------------------------------------------------------------
# App and store setup
# ---------------------------------------------------------------------------

job_store = JobStore()
style_registry = default_registry()
compiler = CaptionCompiler(style_registry)


async def _periodic_cleanup() -> None:
    """Run job cleanup every 5 minutes."""
    while True:
        await asyncio.sleep(300)
        job_store.cleanup_expired()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start periodic cleanup on startup; cancel it and the pool on shutdown."""
    task = asyncio.create_task(_periodic_cleanup())
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    job_store.shutdown(wait=False)


app = FastAPI(
    lifespan=lifespan,
    title="autocaps Render API",
    description=(
        "REST API for burning styled, word-timed captions and animated "
        "overlays into videos. Submit a render, then poll its status or "
        "subscribe to its progress events."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)


# ---------------------------------------------------------------------------
# Dependencies and helpers
# ---------------------------------------------------------------------------


def get_storage() -> ObjectStorage:
    """Object storage from the environment; 503 when not configured."""
    try:
        settings = load_storage_settings()
    except ConfigurationError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return storage_from_settings(settings)


def _job_to_response(job: RenderJob) -> JobResponse:
    """Convert an internal RenderJob dataclass to a JobResponse Pydantic model."""
    return JobResponse(
        id=job.id,
        upload_id=job.upload_id,
        status=job.status.value,
        progress=job.progress,
        style=job.descriptor.style_id,
        resolution=job.descriptor.resolution,
        created_at=job.created_at,
        updated_at=job.updated_at,
        completed_at=job.completed_at,
        download_url=job.download_url,
        error=job.error,
    )


def _caption_segments(request: RenderRequest) -> List[CaptionSegment]:
    """Normalize whichever caption source the request carries."""
    if request.segments is not None:
        raw = {
            "kind": "segmented",
            "segments": [s.model_dump(exclude_none=True) for s in request.segments],
        }
        return normalize_payload(raw)
    return normalize_payload(request.transcript)


def _run_render_sync(job_id: str, store: JobStore, storage: ObjectStorage) -> None:
    """Synchronous wrapper that runs the async render engine in a worker thread.

    WHY: The worker pool runs plain callables. Each worker gets its own
    event loop through asyncio.run().
    """
    engine = RenderEngine(store, storage, registry=style_registry)
    asyncio.run(engine.run(job_id))


def _format_event(job: RenderJob) -> str:
    return "data: {}\n\n".format(json.dumps(_job_to_response(job).model_dump()))


# ---------------------------------------------------------------------------
# Endpoints: Renders
# ---------------------------------------------------------------------------


@app.post(
    "/renders",
    response_model=JobCreatedResponse,
    status_code=201,
    tags=["renders"],
    summary="Submit a render job",
    description=(
        "Compile captions for a stored video and queue the render. Returns "
        "a job ID immediately. Poll GET /renders/{id} or stream "
        "GET /renders/{id}/events for progress."
    ),
    responses={
        422: {"model": ErrorResponse, "description": "Invalid request body or resolution"},
        429: {"model": ErrorResponse, "description": "Too many concurrent jobs"},
        502: {"model": ErrorResponse, "description": "Subtitle file could not be stored"},
        503: {"model": ErrorResponse, "description": "Object storage not configured"},
    },
)
async def create_render(
    request: RenderRequest,
    storage: ObjectStorage = Depends(get_storage),
) -> JobCreatedResponse:
    try:
        resolution, canvas = resolve_resolution(request.resolution)
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    segments = _caption_segments(request)
    overrides = request.style_overrides.model_dump(exclude_none=True) if request.style_overrides else None
    subtitle = compiler.compile(
        segments,
        style_id=request.style,
        canvas=canvas,
        subtitle_format=request.subtitle_format.value,
        overrides=overrides,
    )

    overlays = [
        Overlay(asset_url=o.asset_url, start=o.start, end=o.end, size_hint=o.size_hint)
        for o in request.overlays or []
    ]
    if request.auto_overlays:
        overlays.extend(derive_overlays(segments))

    job_id = uuid.uuid4().hex
    subtitle_path = "{}/{}/{}{}".format(CAPTIONS_PREFIX, request.upload_id, job_id, subtitle.suffix)
    try:
        await storage.put(subtitle_path, subtitle.encode(), subtitle.media_type)
    except StorageError as exc:
        logger.error("Could not store subtitle for upload %s: %s", request.upload_id, exc)
        raise HTTPException(status_code=502, detail="Subtitle upload failed: {}".format(exc))

    descriptor = RenderDescriptor(
        upload_id=request.upload_id,
        video_path=request.video_path,
        subtitle_path=subtitle_path,
        output_path="{}/{}/{}.mp4".format(RENDERS_PREFIX, request.upload_id, job_id),
        subtitle_format=subtitle.format,
        style_id=subtitle.style_id,
        resolution=resolution,
        overlays=overlays,
        style_overrides=overrides or {},
    )

    try:
        job = job_store.create_job(descriptor, job_id=job_id)
    except ValueError as exc:
        try:
            await storage.delete(subtitle_path)
        except StorageError as cleanup_exc:
            logger.warning("Could not remove orphaned subtitle %s: %s", subtitle_path, cleanup_exc)
        raise HTTPException(status_code=429, detail=str(exc))

    job_store.submit(job.id, functools.partial(_run_render_sync, storage=storage))

    return JobCreatedResponse(id=job.id, status=job.status.value)


@app.get(
    "/renders/{job_id}",
    response_model=JobResponse,
    tags=["renders"],
    summary="Get render job status",
    description="Current status, progress, and (when done) the download URL of a render.",
    responses={
        404: {"model": ErrorResponse, "description": "Job not found"},
    },
)
async def get_render(job_id: str) -> JobResponse:
    job = job_store.snapshot(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found: {}".format(job_id))
    return _job_to_response(job)


async def _job_events(job_id: str) -> AsyncIterator[str]:
    """Yield one SSE event per observed change until the job is terminal.

    The store's change counter gates the snapshot: while no job has
    changed, a poll only checks the deadline and the keep-alive timer.
    """
    deadline = time.monotonic() + EVENT_STREAM_MAX_WAIT_S
    last_sent: Optional[tuple] = None
    last_version: Optional[int] = None
    last_write = time.monotonic()

    while True:
        version = job_store.version
        if version != last_version:
            last_version = version
            job = job_store.snapshot(job_id)
            if job is None:
                return

            state = (job.status, job.progress)
            if state != last_sent:
                last_sent = state
                last_write = time.monotonic()
                yield _format_event(job)
            if job.status.is_terminal:
                return

        now = time.monotonic()
        if now >= deadline:
            logger.info("Event stream for job %s reached its max wait", job_id)
            return
        if now - last_write >= EVENT_KEEPALIVE_S:
            last_write = now
            yield ": keep-alive\n\n"
        await asyncio.sleep(EVENT_POLL_INTERVAL_S)


@app.get(
    "/renders/{job_id}/events",
    tags=["renders"],
    summary="Stream render progress events",
    description=(
        "Server-sent events. Each `data:` line is a JSON job snapshot with the "
        "same fields as GET /renders/{id}. The stream closes once the job is "
        "done or failed."
    ),
    responses={
        200: {"content": {"text/event-stream": {}}, "description": "Event stream"},
        404: {"model": ErrorResponse, "description": "Job not found"},
    },
)
async def stream_render_events(job_id: str) -> StreamingResponse:
    if job_store.get_job(job_id) is None:
        raise HTTPException(status_code=404, detail="Job not found: {}".format(job_id))
    return StreamingResponse(
        _job_events(job_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.delete(
    "/renders/{job_id}",
    status_code=204,
    tags=["renders"],
    summary="Delete a finished render job",
    description="Remove a done or failed job record. Active jobs cannot be deleted.",
    responses={
        404: {"model": ErrorResponse, "description": "Job not found"},
        409: {"model": ErrorResponse, "description": "Job is still queued or processing"},
    },
)
async def delete_render(job_id: str) -> Response:
    try:
        deleted = job_store.delete_job(job_id)
    except InvalidTransitionError as exc:
        raise HTTPException(
            status_code=409,
            detail="Job is still active (current status: {}).".format(exc.current.value),
        )
    if not deleted:
        raise HTTPException(status_code=404, detail="Job not found: {}".format(job_id))
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Endpoints: Styles and transcripts
# ---------------------------------------------------------------------------


@app.get(
    "/styles",
    response_model=List[StyleInfo],
    tags=["styles"],
    summary="List caption styles",
    description="All registered caption styles with the ids accepted in render requests.",
)
async def list_styles() -> List[StyleInfo]:
    aliases: Dict[str, List[str]] = {}
    for alias, target in style_registry.aliases.items():
        aliases.setdefault(target, []).append(alias)

    result = []
    for style_id in style_registry.ids():
        style = style_registry.styles[style_id]
        result.append(StyleInfo(
            id=style_id,
            name=style.name,
            font_family=style.font_family,
            font_size=style.font_size,
            karaoke=style.is_karaoke,
            aliases=sorted(aliases.get(style_id, [])),
        ))
    return result


@app.post(
    "/transcripts/normalize",
    response_model=NormalizeResponse,
    tags=["transcripts"],
    summary="Normalize a recognition payload",
    description=(
        "Turn raw recognition output (chunked, segmented, word stream, or "
        "plain text) into validated caption cues without rendering anything."
    ),
)
async def normalize_transcript(request: NormalizeRequest) -> NormalizeResponse:
    segments = normalize_payload(request.transcript)
    return NormalizeResponse(
        kind=detect_kind(request.transcript),
        segments=[SegmentResponse(**s.to_dict()) for s in segments],
    )


# ---------------------------------------------------------------------------
# Endpoints: Health
# ---------------------------------------------------------------------------


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
    description="Liveness and readiness check for load balancers and orchestrators.",
)
async def health_check() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__)


def run_api():
    """Entry point for the autocaps-api console script."""
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)