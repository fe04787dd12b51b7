"""Orchestration service API endpoints for batches, job monitors, status queries and webhooks."""

import time

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from models.api import BatchRequest, JobResponse, MonitorRequest, StatusResponse, StuckEventResponse
from services.orchestration import __version__
from services.orchestration.service import OrchestrationService
from shared.exceptions import InvalidRequestError, JobHandleError, MalformedEventError, OrchestrationError
from shared.response_models import APIResponse, ErrorResponse, HealthResponse
from shared.utils import config, setup_logging

logger = setup_logging("orchestration-api")

app = FastAPI(
    title="Orchestration Service",
    description="Concurrent execution and status tracking of long-running provider jobs",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get("allowed_origins", ["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

STARTED_AT = time.monotonic()

# Initialize service
service = OrchestrationService()


def get_service() -> OrchestrationService:
    return service


def error_response(status_code: int, exc: OrchestrationError) -> JSONResponse:
    body = ErrorResponse(message=exc.message or exc.code.value, error=type(exc).__name__, error_code=exc.code.value)
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def handle_orchestration_error(request: Request, exc: OrchestrationError) -> JSONResponse:
    if isinstance(exc, (InvalidRequestError, MalformedEventError)):
        return error_response(400, exc)
    if isinstance(exc, JobHandleError):
        return error_response(409, exc)
    logger.error(f"Unhandled orchestration error on {request.url.path}: {exc}")
    return error_response(500, exc)


def register_error_handlers(target: FastAPI) -> None:
    target.add_exception_handler(OrchestrationError, handle_orchestration_error)


register_error_handlers(app)


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint for the orchestration service."""
    return HealthResponse(
        status="healthy",
        message="Orchestration Service is healthy",
        version=__version__,
        uptime=time.monotonic() - STARTED_AT,
    )


@app.post("/batches", response_model=APIResponse, status_code=202)
async def start_batch(request: BatchRequest, svc: OrchestrationService = Depends(get_service)) -> APIResponse:
    """Start processing a batch of items in the background.

    Returns the run id immediately; poll ``/status/{subject_id}/{kind}`` for progress.
    """
    options = request.options.resolve(request.kind)
    run_id = svc.start_batch(
        request.subject_id, request.kind, request.items, options=options, provider=request.provider
    )
    logger.info(f"Started batch {run_id} for {request.subject_id} with {len(request.items)} items")
    return APIResponse(
        message="Batch accepted. Use the status endpoint to track progress.",
        data={"run_id": run_id, "subject_id": request.subject_id, "kind": request.kind.value, "total": len(request.items)},
    )


@app.delete("/batches/{subject_id}/{kind}", response_model=APIResponse)
async def cancel_batch(subject_id: str, kind: str, svc: OrchestrationService = Depends(get_service)) -> APIResponse:
    if not svc.cancel_batch(subject_id, kind):
        raise HTTPException(status_code=404, detail=f"No running batch for {subject_id}/{kind}")
    return APIResponse(message="Batch cancellation requested")


@app.post("/monitors", response_model=APIResponse, status_code=202)
async def start_monitor(request: MonitorRequest, svc: OrchestrationService = Depends(get_service)) -> APIResponse:
    """Start monitoring a job that was already submitted to a provider."""
    handle = request.to_handle()
    started = svc.start_monitor(handle, request.options.resolve(request.kind))
    return APIResponse(
        message="Monitoring started" if started else "Job is already being monitored",
        data={"handle_id": handle.handle_id, "external_job_id": handle.external_job_id, "started": started},
    )


@app.delete("/monitors/{handle_id}", response_model=APIResponse)
async def cancel_monitor(handle_id: str, svc: OrchestrationService = Depends(get_service)) -> APIResponse:
    if not svc.cancel_monitor(handle_id):
        raise HTTPException(status_code=404, detail=f"No active monitor for {handle_id}")
    return APIResponse(message="Monitoring cancelled")


@app.get("/status/{subject_id}/{kind}", response_model=StatusResponse)
async def get_status(subject_id: str, kind: str, svc: OrchestrationService = Depends(get_service)) -> StatusResponse:
    return StatusResponse.from_record(svc.get_status(subject_id, kind))


@app.get("/status/{subject_id}", response_model=list[StatusResponse])
async def get_active(subject_id: str, svc: OrchestrationService = Depends(get_service)) -> list[StatusResponse]:
    """List runs that are still pending or in progress for a subject."""
    return [StatusResponse.from_record(record) for record in svc.get_active(subject_id)]


@app.get("/jobs/{subject_id}", response_model=list[JobResponse])
async def list_jobs(subject_id: str, svc: OrchestrationService = Depends(get_service)) -> list[JobResponse]:
    return [JobResponse.from_job(job) for job in svc.list_jobs(subject_id)]


@app.post("/webhooks/{provider}", response_model=APIResponse, status_code=202)
async def receive_webhook(
    provider: str, request: Request, svc: OrchestrationService = Depends(get_service)
) -> APIResponse | JSONResponse:
    body = await request.body()
    if not await svc.ingest_webhook_event(provider, body):
        return error_response(400, MalformedEventError(f"Malformed {provider} webhook payload"))
    return APIResponse(message="Event received")


@app.get("/webhooks/stuck", response_model=list[StuckEventResponse])
async def list_stuck_events(svc: OrchestrationService = Depends(get_service)) -> list[StuckEventResponse]:
    return [StuckEventResponse.from_event(event) for event in svc.list_stuck_events()]
