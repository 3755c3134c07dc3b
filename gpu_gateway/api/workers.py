# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Worker API — Read-only view of the worker registry snapshot.

Answered from gateway memory; requests here never reach the backend.
Only the list lives under /api/v1; everything else there is proxied.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from gpu_gateway.api.deps import get_context, get_request_id
from gpu_gateway.api.errors import WorkerNotFoundError
from gpu_gateway.core.context import GatewayContext
from gpu_gateway.protocols.schema import WorkerList, WorkerRecord

router = APIRouter(prefix="/api/v1", tags=["workers"])

# Single-worker lookups stay off /api/v1 so they never shadow backend routes
admin_router = APIRouter(prefix="/gateway/workers", tags=["workers"])


@router.get("/workers", response_model=WorkerList)
async def list_workers(
    region: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    ctx: GatewayContext = Depends(get_context),
):
    return ctx.worker_registry.get_worker_list(region=region, status=status)


@admin_router.get("/{worker_id}", response_model=WorkerRecord)
async def get_worker(
    worker_id: str,
    ctx: GatewayContext = Depends(get_context),
    request_id: str = Depends(get_request_id),
):
    worker = ctx.worker_registry.get_worker(worker_id)
    if worker is None:
        raise WorkerNotFoundError(worker_id, request_id=request_id)
    return worker
