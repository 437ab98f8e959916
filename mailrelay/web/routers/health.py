"""
Health Check Router
"""

import time

from fastapi import APIRouter, Depends, Request

from ..dependencies import get_scheduler
from ...monitor import MonitorScheduler


router = APIRouter()


@router.get("/health")
async def health_check(request: Request, scheduler: MonitorScheduler = Depends(get_scheduler)):
    """
    Basic health check (no authentication required).

    Returns:
        Service status, number of monitored users and uptime in seconds
    """
    return {
        "status": "running",
        "active_users": scheduler.active_count,
        "uptime": round(time.monotonic() - request.app.state.started_at, 3),
    }
