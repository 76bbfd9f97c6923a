"""FastAPI main application for the Veritas manuscript verification service."""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Dict, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, BackgroundTasks, Request, Depends, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, StreamingResponse
from fastapi.security import APIKeyHeader
from collections import defaultdict
import time as time_module

from ..config import settings
from ..errors import ConfigurationError, PipelineError
from ..models.schemas import (
    VerifyRequest,
    JobResponse,
    RunStatus,
    StreamEvent,
)
from ..graph.orchestrator import VeritasGraph, PipelineRun, create_graph
from ..report.aggregator import summarize
from ..report.exporter import to_csv, export_filename
from ..services.llm_service import LLMService

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# In-memory job storage
jobs: Dict[str, Dict] = {}

# Rate limiting storage
rate_limit_storage: Dict[str, list] = defaultdict(list)

# Graph instance (singleton)
_graph_instance: Optional[VeritasGraph] = None

# API Key security
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

# Caller-supplied OpenAI key (overrides OPENAI_API_KEY for one run)
openai_key_header = APIKeyHeader(name="X-OpenAI-Key", auto_error=False)


def get_graph() -> VeritasGraph:
    """Get or create the graph instance."""
    global _graph_instance
    if _graph_instance is None:
        _graph_instance = create_graph()
    return _graph_instance


def cleanup_old_jobs():
    """Remove old finished jobs if storage exceeds limit."""
    if len(jobs) > settings.MAX_JOBS_STORED:
        finished = sorted(
            (
                (job_id, job) for job_id, job in jobs.items()
                if job["run"].status not in (RunStatus.PENDING, RunStatus.PROCESSING)
            ),
            key=lambda x: x[1]["created_at"],
        )
        # Remove oldest 10% of jobs
        to_remove = len(jobs) - int(settings.MAX_JOBS_STORED * 0.9)
        for job_id, _ in finished[:to_remove]:
            del jobs[job_id]
        logger.info(f"Cleaned up {min(to_remove, len(finished))} old jobs")


async def verify_api_key(api_key: str = Security(api_key_header)) -> bool:
    """Verify API key if authentication is enabled.

    Args:
        api_key: API key from request header

    Returns:
        True if valid or auth disabled

    Raises:
        HTTPException: If API key is invalid
    """
    # If no API key configured, allow all requests
    if not settings.API_KEY:
        return True

    if api_key != settings.API_KEY:
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "API key required"}
        )
    return True


async def rate_limit_check(request: Request):
    """Check rate limiting for the request.

    Args:
        request: FastAPI request object

    Raises:
        HTTPException: If rate limit exceeded
    """
    client_ip = request.client.host if request.client else "unknown"
    current_time = time_module.time()
    window_start = current_time - settings.RATE_LIMIT_WINDOW

    # Clean old entries
    rate_limit_storage[client_ip] = [
        t for t in rate_limit_storage[client_ip] if t > window_start
    ]

    # Check limit
    if len(rate_limit_storage[client_ip]) >= settings.RATE_LIMIT_REQUESTS:
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded. Please try again later."
        )

    # Record request
    rate_limit_storage[client_ip].append(current_time)


def sanitize_error_message(error: Exception) -> str:
    """Sanitize error message to prevent information leakage.

    Args:
        error: The exception that occurred

    Returns:
        Safe error message for clients
    """
    if settings.DEBUG_MODE:
        return str(error)

    error_str = str(getattr(error, "cause", None) or error).lower()

    if "api key" in error_str or "authentication" in error_str:
        return "Authentication error occurred"
    elif "timeout" in error_str or "timed out" in error_str:
        return "Request timed out"
    elif "connection" in error_str:
        return "Service temporarily unavailable"
    else:
        return "An internal error occurred"


def start_run(request: VerifyRequest, openai_key: Optional[str] = None) -> PipelineRun:
    """Validate the request and prepare a run.

    When the caller sends its own OpenAI key the run gets a dedicated
    graph bound to that key; otherwise the shared graph is used.

    Raises:
        HTTPException: 400 if the input is too long or the run cannot start
    """
    if len(request.text) > settings.MAX_TEXT_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"Text too long. Maximum {settings.MAX_TEXT_LENGTH} characters allowed."
        )

    try:
        graph = get_graph()
        if openai_key:
            graph = create_graph(
                llm_service=LLMService(api_key=openai_key),
                chunk_size=graph.chunk_size
            )
        return graph.run(request.text, request.chunk_size)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))


def register_job(run: PipelineRun) -> str:
    """Store a run under a fresh job id."""
    cleanup_old_jobs()

    job_id = str(uuid.uuid4())
    jobs[job_id] = {
        "run": run,
        "created_at": datetime.utcnow(),
        "completed_at": None,
        "error": None,
    }
    return job_id


def get_job(job_id: str) -> Dict:
    if job_id not in jobs:
        raise HTTPException(status_code=404, detail="Job not found")
    return jobs[job_id]


def build_job_response(job_id: str, job: Dict, include_items: bool = True) -> JobResponse:
    """Snapshot a job into its API representation."""
    run: PipelineRun = job["run"]
    items = run.items
    stats = run.stats

    message = None
    if run.status == RunStatus.PENDING:
        message = "Verification queued"
    elif run.status == RunStatus.PROCESSING:
        message = "Verification in progress..."
    elif run.status == RunStatus.COMPLETED:
        message = "Verification completed successfully"
    elif run.status == RunStatus.CANCELLED:
        message = f"Verification cancelled; {len(items)} citations kept"
    elif run.status == RunStatus.FAILED:
        message = (
            f"Verification stopped partway: {job.get('error') or 'Unknown error'}. "
            f"{len(items)} citations from earlier chunks are available."
        )

    return JobResponse(
        job_id=job_id,
        status=run.status,
        progress=run.progress,
        stats=stats,
        items=list(items) if include_items else [],
        summary=summarize(stats),
        message=message,
        created_at=job["created_at"],
        completed_at=job.get("completed_at"),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting Veritas API...")
    logger.info(f"Using LLM model: {settings.LLM_MODEL}")
    logger.info(f"Chunk size: {settings.CHUNK_SIZE} characters")

    yield

    # Shutdown
    logger.info("Shutting down Veritas API...")
    for job in jobs.values():
        job["run"].cancel()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Veritas API",
        description="Chunked verification of quotations and attributions in long manuscripts",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add CORS middleware with configurable origins
    cors_origins = [
        origin.strip()
        for origin in settings.CORS_ORIGINS.split(",")
        if origin.strip()
    ]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    )

    return app


# Create app instance
app = create_app()


# ==================== Health Check ====================

@app.get("/health")
async def health_check():
    """Health check endpoint (no auth required)."""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": "0.1.0"
    }


@app.get("/config")
async def get_config(_: bool = Depends(verify_api_key)):
    """Get current configuration (non-sensitive)."""
    return {
        "llm_model": settings.LLM_MODEL,
        "chunk_size": settings.CHUNK_SIZE,
        "max_text_length": settings.MAX_TEXT_LENGTH,
        "api_key_configured": bool(settings.OPENAI_API_KEY),
    }


# ==================== Synchronous Verification ====================

@app.post("/verify", response_model=JobResponse)
async def verify_text(
    request: VerifyRequest,
    http_request: Request,
    _: bool = Depends(verify_api_key),
    openai_key: Optional[str] = Security(openai_key_header)
):
    """Verify every quotation in the manuscript and return the full report.

    Args:
        request: VerifyRequest with the manuscript text

    Returns:
        JobResponse with all verification items and statistics
    """
    await rate_limit_check(http_request)

    run = start_run(request, openai_key)
    job_id = register_job(run)

    logger.info(f"Received verification request ({len(request.text)} chars, {run.total_chunks} chunks)")

    try:
        await asyncio.to_thread(run.drain)
    except PipelineError as e:
        jobs[job_id]["error"] = sanitize_error_message(e)
        jobs[job_id]["completed_at"] = datetime.utcnow()
        raise HTTPException(
            status_code=502,
            detail=(
                f"Verification stopped at chunk {e.chunk_index + 1} of {run.total_chunks}: "
                f"{jobs[job_id]['error']}. {len(e.partial_items)} citations are available "
                f"from GET /verify/{job_id}."
            )
        )

    jobs[job_id]["completed_at"] = datetime.utcnow()
    logger.info(f"Verification completed: {run.stats.total} citations")

    return build_job_response(job_id, jobs[job_id])


# ==================== Async Verification with Job ID ====================

async def run_verification_job(job_id: str):
    """Background task to drive a registered run.

    Args:
        job_id: Unique job identifier
    """
    job = jobs.get(job_id)
    if job is None:
        return

    try:
        await asyncio.to_thread(job["run"].drain)
        logger.info(f"Job {job_id} finished with status {job['run'].status.value}")

    except PipelineError as e:
        logger.error(f"Job {job_id} failed: {e}")
        job["error"] = sanitize_error_message(e)

    finally:
        job["completed_at"] = datetime.utcnow()


@app.post("/verify/async", response_model=JobResponse)
async def verify_text_async(
    request: VerifyRequest,
    http_request: Request,
    background_tasks: BackgroundTasks,
    _: bool = Depends(verify_api_key),
    openai_key: Optional[str] = Security(openai_key_header)
):
    """Start async verification and return job ID.

    Use GET /verify/{job_id} to follow progress and retrieve results.

    Args:
        request: VerifyRequest with the manuscript text

    Returns:
        JobResponse with job_id and initial status
    """
    await rate_limit_check(http_request)

    run = start_run(request, openai_key)
    job_id = register_job(run)

    background_tasks.add_task(run_verification_job, job_id)

    logger.info(f"Created async job: {job_id} ({run.total_chunks} chunks)")

    response = build_job_response(job_id, jobs[job_id], include_items=False)
    response.message = "Verification job started"
    return response


@app.get("/verify/{job_id}", response_model=JobResponse)
async def get_verification_status(job_id: str, _: bool = Depends(verify_api_key)):
    """Get progress, statistics and the citations found so far.

    Args:
        job_id: The job identifier returned from POST /verify/async

    Returns:
        JobResponse snapshot
    """
    return build_job_response(job_id, get_job(job_id))


@app.post("/verify/{job_id}/cancel", response_model=JobResponse)
async def cancel_verification_job(job_id: str, _: bool = Depends(verify_api_key)):
    """Request cancellation; takes effect at the next chunk boundary."""
    job = get_job(job_id)
    job["run"].cancel()
    return build_job_response(job_id, job, include_items=False)


@app.get("/verify/{job_id}/export")
async def export_verification_job(job_id: str, _: bool = Depends(verify_api_key)):
    """Download the citations found so far as CSV."""
    job = get_job(job_id)
    content = to_csv(job["run"].items)

    if not content:
        return Response(status_code=204)

    return Response(
        content=content.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'}
    )


@app.delete("/verify/{job_id}")
async def delete_verification_job(job_id: str, _: bool = Depends(verify_api_key)):
    """Cancel (if running) and delete a verification job.

    Args:
        job_id: The job identifier to delete

    Returns:
        Confirmation message
    """
    job = get_job(job_id)
    job["run"].cancel()
    del jobs[job_id]

    return {"message": "Job deleted successfully"}


# ==================== Streaming Verification ====================

def format_sse(event: StreamEvent) -> str:
    return f"event: {event.event_type}\ndata: {event.model_dump_json()}\n\n"


def log_worker_failure(task: asyncio.Future) -> None:
    """Retrieve and log an exception the stream worker ended with."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Streaming worker failed: {error!r}")


async def generate_sse_events(job_id: str, run: PipelineRun):
    """Generate Server-Sent Events while a run progresses.

    The run is driven in a single worker thread; its updates are handed
    to the event loop through a queue.

    Args:
        job_id: Job the run is registered under (usable for cancellation)
        run: The prepared run

    Yields:
        SSE-formatted event strings
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def drive():
        try:
            for update in run:
                loop.call_soon_threadsafe(queue.put_nowait, update)
        except PipelineError as e:
            loop.call_soon_threadsafe(queue.put_nowait, e)
        finally:
            loop.call_soon_threadsafe(queue.put_nowait, None)

    worker = asyncio.ensure_future(asyncio.to_thread(drive))
    worker.add_done_callback(log_worker_failure)
    failure: Optional[PipelineError] = None

    yield format_sse(StreamEvent(
        event_type="start",
        data={"job_id": job_id, "total_chunks": run.total_chunks}
    ))

    try:
        while True:
            update = await queue.get()
            if update is None:
                break

            if isinstance(update, PipelineError):
                failure = update
                continue

            yield format_sse(StreamEvent(
                event_type="progress",
                data={
                    "current": update.progress.current,
                    "total": update.progress.total,
                    "items": [item.model_dump(mode="json") for item in update.items],
                    "stats": run.stats.model_dump(),
                }
            ))

        await worker

        if failure is not None:
            logger.error(f"Streaming error: {failure}")
            message = sanitize_error_message(failure)
            if job_id in jobs:
                jobs[job_id]["error"] = message
            yield format_sse(StreamEvent(
                event_type="error",
                data={
                    "error": message,
                    "chunk_index": failure.chunk_index,
                    "partial_count": len(failure.partial_items),
                }
            ))
        else:
            event_type = "cancelled" if run.status == RunStatus.CANCELLED else "complete"
            yield format_sse(StreamEvent(
                event_type=event_type,
                data={
                    "stats": run.stats.model_dump(),
                    "summary": summarize(run.stats),
                }
            ))

    finally:
        # Client went away mid-run: stop at the next chunk boundary
        if run.status == RunStatus.PROCESSING:
            run.cancel()
        if job_id in jobs:
            jobs[job_id]["completed_at"] = datetime.utcnow()


@app.post("/verify/stream")
async def verify_text_stream(
    request: VerifyRequest,
    http_request: Request,
    _: bool = Depends(verify_api_key),
    openai_key: Optional[str] = Security(openai_key_header)
):
    """Stream verification progress using Server-Sent Events.

    Events:
    - start: Run prepared, with job_id and chunk count
    - progress: A chunk finished, with its citations and running stats
    - complete: All chunks processed
    - cancelled: Run stopped at a chunk boundary after a cancel request
    - error: A chunk failed; earlier citations stay available under the job id

    Args:
        request: VerifyRequest with the manuscript text

    Returns:
        StreamingResponse with SSE events
    """
    await rate_limit_check(http_request)

    run = start_run(request, openai_key)
    job_id = register_job(run)

    logger.info(f"Starting streaming verification (length: {len(request.text)})")

    return StreamingResponse(
        generate_sse_events(job_id, run),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
    )


@app.get("/jobs")
async def list_jobs(_: bool = Depends(verify_api_key)):
    """List all verification jobs.

    Returns:
        List of jobs with their statuses and progress
    """
    return {
        "jobs": [
            {
                "job_id": job_id,
                "status": job["run"].status.value,
                "progress": job["run"].progress.model_dump() if job["run"].progress else None,
                "created_at": job["created_at"].isoformat(),
                "completed_at": job["completed_at"].isoformat() if job.get("completed_at") else None,
            }
            for job_id, job in jobs.items()
        ],
        "total": len(jobs)
    }


# ==================== Run Server ====================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "veritas.api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=True
    )
