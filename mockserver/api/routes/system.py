"""System-level endpoints."""
from fastapi import APIRouter, Depends

from mockserver.api.deps import get_mock_server
from mockserver.config import settings

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
async def system_health(server=Depends(get_mock_server)):
    sessions = server.list_sessions()
    return {
        "status": "healthy" if server.running else "stopped",
        "active_sessions": sum(1 for session in sessions if not session.done),
        "total_sessions": len(sessions),
        "free_listeners": await server.pool.count() if server.running else 0,
    }


@router.get("/config")
async def get_config():
    return {
        "addresses": settings.address_list,
        "ports": settings.ports,
        "script_dir": str(settings.script_dir),
        "bind_poll_interval_ms": settings.bind_poll_interval_ms,
        "default_timeout_ms": settings.default_timeout_ms,
    }
