"""
Monitoring Router

Register, stop and inspect per-user mailbox monitors.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..app import limiter
from ..dependencies import get_scheduler, manual_check_limit
from ...core.exceptions import ConfigurationError, MonitorNotFoundError
from ...monitor import MonitorScheduler
from ...utils.validators import validate_registration


logger = logging.getLogger(__name__)

router = APIRouter()


class RegisterUserRequest(BaseModel):
    chat_id: Optional[int] = None
    email: Optional[str] = None
    token: Optional[str] = None
    password: Optional[str] = None


class ChatRequest(BaseModel):
    chat_id: Optional[int] = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/register-user")
async def register_user(payload: RegisterUserRequest, scheduler: MonitorScheduler = Depends(get_scheduler)):
    """
    Register a user for monitoring.

    Replaces any existing monitor for the same chat.
    """
    try:
        validate_registration(payload.chat_id, payload.email, payload.token)
    except ConfigurationError as e:
        logger.warning(f"Rejected registration: {e}")
        return _error(400, str(e))

    scheduler.start(payload.chat_id, payload.email, payload.token, payload.password)

    return {"success": True, "message": "User registered for monitoring"}


@router.post("/stop-monitoring")
async def stop_monitoring(payload: ChatRequest, scheduler: MonitorScheduler = Depends(get_scheduler)):
    """Stop monitoring a user (no-op if not monitored)."""
    if payload.chat_id is None:
        return _error(400, "chat_id required")

    scheduler.stop(payload.chat_id)

    return {"success": True, "message": "Monitoring stopped"}


@router.get("/status/{chat_id}")
async def get_status(chat_id: int, scheduler: MonitorScheduler = Depends(get_scheduler)):
    """Monitoring status for one user."""
    status = scheduler.status(chat_id)

    return {
        "monitoring": status["active"],
        "email": status["mail_address"],
        "message_count": status["message_count"],
    }


@router.get("/active-users")
async def active_users(scheduler: MonitorScheduler = Depends(get_scheduler)):
    """All registered users (for debugging)."""
    users = [
        {"chat_id": monitor["user_id"], "email": monitor["mail_address"], "monitoring": monitor["active"]}
        for monitor in scheduler.list_active()
    ]

    return {"users": users, "count": len(users)}


@router.post("/check-inbox")
@limiter.limit(manual_check_limit)
async def check_inbox(
    request: Request,
    payload: ChatRequest,
    scheduler: MonitorScheduler = Depends(get_scheduler),
):
    """Poll a user's inbox immediately."""
    if payload.chat_id is None:
        return _error(400, "chat_id required")

    try:
        stats = await scheduler.force_poll(payload.chat_id)
    except MonitorNotFoundError:
        return _error(404, "User not found")

    return {"success": True, "message": "Inbox checked", "new_messages": stats["new"]}
