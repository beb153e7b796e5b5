"""
app/api/routers/scrape_jobs.py

Scrape job management, manual runs and run history endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas.scrape_jobs import (
    RunResultResponse,
    SchedulerStatsResponse,
    ScrapeJobCreatedResponse,
    ScrapeJobCreateRequest,
    ScrapeJobResponse,
    ScrapeJobUpdateRequest,
)
from app.scraping.errors import (
    JobAlreadyRunning,
    JobNotFound,
    JobValidationError,
    SchedulerUnavailable,
    ScrapeError,
)
from app.scraping.types import RunResult, ScrapeJobDefinition
from app.services.scrape_scheduler_service import (
    SAMPLE_JOB_NOTE,
    ScrapeSchedulerService,
    get_scrape_scheduler_service,
)

router = APIRouter(prefix="/scraping", tags=["scraping"])

_REQUIRED_ON_UPDATE = ("name", "target_url", "schedule", "selectors", "active")


def _to_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, JobNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, JobAlreadyRunning):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, JobValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": "Invalid job definition", "issues": list(exc.issues)},
        )
    if isinstance(exc, SchedulerUnavailable):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    if isinstance(exc, ScrapeError):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_kind": exc.kind, "message": str(exc)},
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _job_response(definition: ScrapeJobDefinition) -> ScrapeJobResponse:
    return ScrapeJobResponse.model_validate(definition)


def _run_response(run: RunResult) -> RunResultResponse:
    return RunResultResponse(**run.to_dict())


@router.get("/jobs", response_model=list[ScrapeJobResponse])
def list_scrape_jobs(
    service: ScrapeSchedulerService = Depends(get_scrape_scheduler_service),
) -> list[ScrapeJobResponse]:
    return [_job_response(job) for job in service.list_jobs()]


@router.post(
    "/jobs",
    response_model=ScrapeJobCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_scrape_job(
    payload: ScrapeJobCreateRequest,
    service: ScrapeSchedulerService = Depends(get_scrape_scheduler_service),
) -> ScrapeJobCreatedResponse:
    """
    Register a scrape job; it first runs at the next time its schedule fires.
    """

    definition = ScrapeJobDefinition(
        name=payload.name.strip(),
        target_url=payload.target_url.strip(),
        schedule=payload.schedule.strip(),
        selectors=payload.selectors,
        active=payload.active,
        container_selector=payload.container_selector,
        rate_limit_per_second=payload.rate_limit_per_second,
    )
    try:
        stored = service.create_job(definition)
    except (ScrapeError, ValueError) as exc:
        raise _to_http_error(exc) from exc

    return ScrapeJobCreatedResponse(
        job_id=stored.id,
        message="Scraping job created successfully",
        job=_job_response(stored),
    )


@router.post(
    "/jobs/sample",
    response_model=ScrapeJobCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_sample_scrape_job(
    service: ScrapeSchedulerService = Depends(get_scrape_scheduler_service),
) -> ScrapeJobCreatedResponse:
    try:
        stored = service.create_sample_job()
    except (ScrapeError, ValueError) as exc:
        raise _to_http_error(exc) from exc

    return ScrapeJobCreatedResponse(
        job_id=stored.id,
        message="Sample scraping job created successfully",
        note=SAMPLE_JOB_NOTE,
        job=_job_response(stored),
    )


@router.get("/jobs/{job_id}", response_model=ScrapeJobResponse)
def get_scrape_job(
    job_id: str,
    service: ScrapeSchedulerService = Depends(get_scrape_scheduler_service),
) -> ScrapeJobResponse:
    try:
        return _job_response(service.get_job(job_id))
    except JobNotFound as exc:
        raise _to_http_error(exc) from exc


@router.patch("/jobs/{job_id}", response_model=ScrapeJobResponse)
def update_scrape_job(
    job_id: str,
    payload: ScrapeJobUpdateRequest,
    service: ScrapeSchedulerService = Depends(get_scrape_scheduler_service),
) -> ScrapeJobResponse:
    """
    Update selected fields. Deactivating a running job cancels its current run.
    """

    changes = payload.model_dump(exclude_unset=True)
    for field in _REQUIRED_ON_UPDATE:
        if changes.get(field, ...) is None:
            changes.pop(field)
    try:
        return _job_response(service.update_job(job_id, **changes))
    except (ScrapeError, ValueError) as exc:
        raise _to_http_error(exc) from exc


@router.delete("/jobs/{job_id}", status_code=status.HTTP_200_OK)
def delete_scrape_job(
    job_id: str,
    service: ScrapeSchedulerService = Depends(get_scrape_scheduler_service),
) -> dict[str, str]:
    try:
        service.delete_job(job_id)
    except ScrapeError as exc:
        raise _to_http_error(exc) from exc
    return {"message": f"Job {job_id} deleted successfully"}


@router.post("/jobs/{job_id}/run", response_model=RunResultResponse)
def run_scrape_job(
    job_id: str,
    wait: bool = Query(default=False, description="Block until the run reaches a terminal status"),
    service: ScrapeSchedulerService = Depends(get_scrape_scheduler_service),
) -> RunResultResponse:
    """
    Run a job now regardless of its schedule.
    """

    try:
        run = service.run_now(job_id, wait=wait)
    except ScrapeError as exc:
        raise _to_http_error(exc) from exc
    return _run_response(run)


@router.get("/jobs/{job_id}/runs", response_model=list[RunResultResponse])
def list_job_runs(
    job_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    service: ScrapeSchedulerService = Depends(get_scrape_scheduler_service),
) -> list[RunResultResponse]:
    try:
        runs = service.list_runs(job_id=job_id, limit=limit)
    except JobNotFound as exc:
        raise _to_http_error(exc) from exc
    return [_run_response(run) for run in runs]


@router.get("/runs", response_model=list[RunResultResponse])
def list_runs(
    limit: int = Query(default=50, ge=1, le=500),
    service: ScrapeSchedulerService = Depends(get_scrape_scheduler_service),
) -> list[RunResultResponse]:
    return [_run_response(run) for run in service.list_runs(limit=limit)]


@router.get("/stats", response_model=SchedulerStatsResponse)
def get_scraping_stats(
    service: ScrapeSchedulerService = Depends(get_scrape_scheduler_service),
) -> SchedulerStatsResponse:
    return SchedulerStatsResponse(**service.job_stats())
