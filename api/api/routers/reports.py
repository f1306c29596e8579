"""Report job endpoints: submit, poll, cancel, fetch the artifact and share.

Every endpoint acts on behalf of the caller in ``X-Account-ID``; jobs of
other accounts are reported as not found.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query, Response
from report_engine.models.job import JobStage, ReportJob

from api.dependencies import ContextDep, ServiceDep
from api.schemas import IssueShareRequest, ShareLinkResponse, SubmitReportRequest, SubmitReportResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])


@router.post("/jobs", status_code=202, response_model=SubmitReportResponse)
async def submit_report_job(
    body: SubmitReportRequest,
    service: ServiceDep,
    context: ContextDep,
) -> SubmitReportResponse:
    """Validate the request, reserve credit and start a report job.

    Returns 202 with the job id; poll ``GET /reports/jobs/{job_id}`` for
    progress.
    """
    job_id = await service.submit_report_job(
        body.session_id,
        body.engine_id,
        body.renderer_id,
        context,
        options=body.options,
    )
    job = await service.get_job_status(job_id, context)
    return SubmitReportResponse(job_id=job_id, stage=job.stage)


@router.get("/jobs", response_model=list[ReportJob])
async def list_report_jobs(
    service: ServiceDep,
    context: ContextDep,
    stage: JobStage | None = Query(None, description="Only jobs in this stage"),
    limit: int = Query(50, ge=1, le=200),
) -> list[ReportJob]:
    """Return the caller's most recent jobs, newest first."""
    return await service.list_jobs(context, stage=stage, limit=limit)


@router.get("/jobs/{job_id}", response_model=ReportJob)
async def get_report_job(job_id: str, service: ServiceDep, context: ContextDep) -> ReportJob:
    return await service.get_job_status(job_id, context)


@router.get("/jobs/{job_id}/artifact")
async def get_report_artifact(job_id: str, service: ServiceDep, context: ContextDep) -> Response:
    """Return the rendered report of a completed job with its own content type."""
    artifact = await service.get_report_artifact(job_id, context)
    return Response(
        content=artifact.content,
        media_type=artifact.mime_type,
        headers={"X-Artifact-ID": artifact.id},
    )


@router.post("/jobs/{job_id}/cancel", response_model=ReportJob)
async def cancel_report_job(job_id: str, service: ServiceDep, context: ContextDep) -> ReportJob:
    """Cancel a queued or analyzing job and refund its reservation."""
    return await service.cancel_job(job_id, context)


@router.post("/jobs/{job_id}/shares", status_code=201, response_model=ShareLinkResponse)
async def issue_share_link(
    job_id: str,
    body: IssueShareRequest,
    service: ServiceDep,
    context: ContextDep,
) -> ShareLinkResponse:
    """Issue a subject-bound, expiring, count-limited link to a completed report."""
    link = await service.issue_share_link(
        job_id,
        context,
        body.subject_binding,
        expiry_days=body.expiry_days,
        max_access_count=body.max_access_count,
    )
    return ShareLinkResponse.from_link(link, service.sharing.share_url(link))


@router.get("/jobs/{job_id}/shares", response_model=list[ShareLinkResponse])
async def list_share_links(job_id: str, service: ServiceDep, context: ContextDep) -> list[ShareLinkResponse]:
    links = await service.list_share_links(job_id, context)
    return [ShareLinkResponse.from_link(link, service.sharing.share_url(link)) for link in links]
