"""Listener pool endpoints."""
from fastapi import APIRouter, Depends

from mockserver.api.deps import get_mock_server
from mockserver.models import PoolStatus

router = APIRouter(prefix="/api/pool", tags=["pool"])


@router.get("", response_model=PoolStatus)
async def get_pool_status(server=Depends(get_mock_server)):
    return PoolStatus(
        free=await server.pool.count(),
        total=server.pool.total,
        listeners=server.pool.snapshot(),
    )
