from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.dependencies.api_keys import require_api_key
from app.schemas.jobs import Job
from app.services import job_queue

router = APIRouter(prefix="/api/jobs", tags=["Jobs"], dependencies=[Depends(require_api_key)])


@router.get("/failed", response_model=list[Job])
async def list_failed_jobs(limit: int = Query(default=100, ge=1, le=1000)) -> list[Job]:
    return await job_queue.list_failed_jobs(limit=limit)


@router.get("/{job_id}", response_model=Job)
async def get_job(job_id: int) -> Job:
    job = await job_queue.get_job(job_id)
    if not job:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job


@router.post("/{job_id}/retry", response_model=Job)
async def retry_job(job_id: int) -> Job:
    job = await job_queue.force_retry(job_id)
    if not job:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job
