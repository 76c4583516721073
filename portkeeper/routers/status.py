"""Status API endpoints"""
from fastapi import APIRouter, HTTPException, Request
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/status")
async def get_status(request: Request):
    """Get the current port forwarding session"""
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(status_code=503, detail="Port forwarding loop is not running")

    data = controller.session.snapshot()
    data["gateway"] = controller.config.gateway
    data["stopping"] = controller.stopped
    return data
