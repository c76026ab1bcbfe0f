"""Render API endpoints - asynchronous jobs behind submit/poll/fetch."""

import logging
import re

from fastapi import APIRouter, status
from fastapi.responses import FileResponse

from storyrender.api.deps import RenderService
from storyrender.schemas.render import RenderStatusResponse, RenderSubmitResponse
from storyrender.schemas.timeline import Timeline

router = APIRouter()
logger = logging.getLogger(__name__)


def _download_filename(title: str) -> str:
    stem = re.sub(r"[^\w\-]+", "_", title).strip("_") or "render"
    return f"{stem}.mp4"


@router.post(
    "/render",
    response_model=RenderSubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_render(timeline: Timeline, service: RenderService) -> RenderSubmitResponse:
    """
    Start a render job.

    Returns immediately with the job id; poll the status endpoint until the
    job is completed, then download the result.
    """
    job_id = service.submit(timeline)
    return RenderSubmitResponse(job_id=job_id)


@router.get("/render/{job_id}/status", response_model=RenderStatusResponse)
async def get_render_status(job_id: str, service: RenderService) -> RenderStatusResponse:
    job = service.poll(job_id)
    return RenderStatusResponse(**job.to_dict())


@router.get("/render/{job_id}/download", response_class=FileResponse)
async def download_render(job_id: str, service: RenderService) -> FileResponse:
    """Stream the finished video. 409 while processing or failed, 410 once evicted."""
    job = service.fetch_job(job_id)
    return FileResponse(
        job.output_path,
        media_type="video/mp4",
        filename=_download_filename(job.title),
    )


@router.delete("/render/{job_id}", response_model=RenderStatusResponse, status_code=status.HTTP_202_ACCEPTED)
async def cancel_render(job_id: str, service: RenderService) -> RenderStatusResponse:
    """Request cancellation; the job stops at its next stage boundary."""
    job = service.cancel(job_id)
    return RenderStatusResponse(**job.to_dict())
