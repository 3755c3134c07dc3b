# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Job API — Gateway-side view of tracked jobs.

Lives under the admin prefix so the backend's own /api/v1/jobs routes stay
reachable through the proxy.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from gpu_gateway.api.deps import get_context, get_request_id
from gpu_gateway.api.errors import JobNotFoundError
from gpu_gateway.core.context import GatewayContext
from gpu_gateway.protocols.schema import JobRecord

router = APIRouter(prefix="/gateway/jobs", tags=["jobs"])


@router.get("/{job_id}", response_model=JobRecord)
async def get_job(
    job_id: str,
    ctx: GatewayContext = Depends(get_context),
    request_id: str = Depends(get_request_id),
):
    job = await ctx.job_tracker.get_job_status(job_id)
    if job is None:
        raise JobNotFoundError(job_id, request_id=request_id)
    return job


@router.post("/{job_id}/track", response_model=JobRecord)
async def track_job(
    job_id: str,
    ctx: GatewayContext = Depends(get_context),
    request_id: str = Depends(get_request_id),
):
    """Start tracking a job submitted through the backend."""
    job = await ctx.job_tracker.track_job(job_id)
    if job is None:
        raise JobNotFoundError(job_id, request_id=request_id)
    return job
