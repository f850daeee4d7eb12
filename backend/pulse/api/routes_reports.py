from uuid import UUID
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Security
from fastapi.security.api_key import APIKeyHeader

from ..core.config import get_settings
from ..schemas.report import (
    InsightsOut,
    ReportStartOut,
    ReportStartRequest,
    ReportSummaryOut,
)
from ..services.errors import (
    ReportConflictError,
    ReportNotFoundError,
    ReportPersistenceError,
)
from ..services.orchestrator import ReportPipeline, dispatch_report_job, get_pipeline

router = APIRouter(tags=["reports"])

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
logger = logging.getLogger(__name__)


def verify_api_key(api_key: str | None = Security(api_key_header)) -> None:
    """
    Simple header-based API key authentication.

    - In dev, if API_AUTH_KEY is not set, auth is skipped.
    - Otherwise, require X-API-Key == API_AUTH_KEY.
    """
    settings = get_settings()
    expected = settings.API_AUTH_KEY

    if settings.ENV == "dev" and not expected:
        return

    if not expected:
        raise HTTPException(status_code=401, detail="API key not configured")

    if api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_user_id(x_user_id: str = Header(..., alias="X-User-Id")) -> UUID:
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="X-User-Id must be a UUID")


@router.post("/reports", response_model=ReportStartOut)
def start_report(
    payload: ReportStartRequest,
    user_id: UUID = Depends(get_user_id),
    pipeline: ReportPipeline = Depends(get_pipeline),
    _: None = Depends(verify_api_key),
):
    log_extra = {"search_id": str(payload.search_id), "user_id": str(user_id)}
    try:
        started = pipeline.start(payload.search_id, user_id)
    except ReportNotFoundError:
        raise HTTPException(status_code=404, detail="Search not found")
    except ReportConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ReportPersistenceError:
        logger.exception("Report job could not be created", extra=log_extra)
        raise HTTPException(status_code=500, detail="Report could not be started")

    if started.created:
        log_extra["job_id"] = str(started.job_id)
        try:
            dispatch_report_job(started)
        except Exception:
            logger.exception("Report job could not be queued", extra=log_extra)
            pipeline.store.mark_job_failed(started.job_id, "could not be queued")
            raise HTTPException(status_code=503, detail="Report could not be queued")
        logger.info("Report job queued", extra={**log_extra, "step": "job_queued"})

    return ReportStartOut(report_id=started.job_id)


@router.get("/reports/{report_id}", response_model=ReportSummaryOut)
def get_report(
    report_id: UUID,
    user_id: UUID = Depends(get_user_id),
    pipeline: ReportPipeline = Depends(get_pipeline),
    _: None = Depends(verify_api_key),
):
    try:
        return pipeline.get_report_summary(report_id, user_id)
    except ReportNotFoundError:
        raise HTTPException(status_code=404, detail="Report not found")


@router.post("/reports/{report_id}/insights", response_model=InsightsOut)
async def generate_insights(
    report_id: UUID,
    user_id: UUID = Depends(get_user_id),
    pipeline: ReportPipeline = Depends(get_pipeline),
    _: None = Depends(verify_api_key),
):
    try:
        status = await pipeline.generate_insights(report_id, user_id)
    except ReportNotFoundError:
        raise HTTPException(status_code=404, detail="Report not found")
    return InsightsOut(status=status)
