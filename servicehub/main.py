from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from servicehub.api.bookings import router as bookings_router
from servicehub.api.notifications import router as notifications_router
from servicehub.config import settings
from servicehub.container import configure_container, container
from servicehub.db import SessionLocal
from servicehub.logging import configure_logging, get_logger
from servicehub.middleware.api_rate_limit import APIRateLimitMiddleware
from servicehub.realtime.router import router as ws_progress_router
from servicehub.telemetry import setup_otel

configure_logging(settings.log_level)
logger = get_logger(__name__)

app = FastAPI(title="ServiceHub API")
setup_otel(app)
app.add_middleware(APIRateLimitMiddleware)

for router in (bookings_router, notifications_router):
    app.include_router(router)
    app.include_router(router, prefix="/api/v1")
app.include_router(ws_progress_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.head("/health")
def head_health():
    return Response(status_code=200)


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.on_event("startup")
def _start_pipeline():
    configure_container(SessionLocal)
    queue = container.delivery_queue()
    if hasattr(queue, "start"):
        queue.start(SessionLocal)
    logger.info("servicehub_started delivery_backend=%s", settings.notification_delivery_backend)


@app.on_event("shutdown")
def _stop_pipeline():
    queue = container.delivery_queue()
    if hasattr(queue, "stop"):
        queue.stop()
    container.change_feed().detach()
