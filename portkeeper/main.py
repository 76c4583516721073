"""
Portkeeper - NAT-PMP port forwarding agent
"""
import logging
import threading
from contextlib import asynccontextmanager

from fastapi import FastAPI

from portkeeper.activity_log import ActivityLog
from portkeeper.config import settings
from portkeeper.routers import status
from portkeeper.session import SessionController

logger = logging.getLogger(__name__)


def build_controller(config=None, **kwargs) -> SessionController:
    """Create a controller wired to the real gateway, firewall and activity log"""
    config = config or settings
    kwargs.setdefault("activity_log", ActivityLog(config.activity_log_path))
    return SessionController(config=config, **kwargs)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the polling loop in a worker thread for the lifetime of the API"""
    controller = getattr(app.state, "controller", None) or build_controller()
    app.state.controller = controller

    worker = threading.Thread(target=controller.run, name="portkeeper-loop", daemon=True)
    worker.start()
    logger.info("Port forwarding loop started")

    yield

    controller.stop()
    worker.join(timeout=controller.config.command_timeout * 4)
    if worker.is_alive():
        logger.warning(
            "Polling loop is still running after the shutdown timeout; "
            "cleaning up concurrently with the worker"
        )
    # run() already cleaned up unless the worker is stuck on an external command
    controller.shutdown()


app = FastAPI(
    title="Portkeeper",
    description="NAT-PMP port forwarding agent",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(status.router, prefix="/api", tags=["status"])


@app.get("/")
async def root():
    return {"status": "ok", "service": "portkeeper"}
