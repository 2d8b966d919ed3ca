from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from plany.core.config import get_settings
from plany.core.errors import NotFound, PipelineBusy, PlanyError, ServiceError, ServiceUnavailable, StorageFailure
from plany.core.http.client import close_http_client
from plany.core.logging import configure_logging
from plany.core.logging.context import log_context
from plany.core.scheduler.jobs import run_maintenance

from .deps import (
    get_log_store,
    get_pipeline,
    get_scheduler_service,
    get_supplement_store,
    get_task_queue,
    get_voice_log_store,
)
from .routes_logs import router as logs_router
from .routes_tasks import router as tasks_router
from .routes_voice import router as voice_router

app = FastAPI(title="Plany API")

app.include_router(voice_router, prefix="/voice", tags=["voice"])
app.include_router(tasks_router, prefix="/tasks", tags=["tasks"])
app.include_router(logs_router, tags=["logs"])


def status_for(exc: PlanyError) -> int:
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, PipelineBusy):
        return 409
    if isinstance(exc, ServiceUnavailable):
        return 503
    if isinstance(exc, ServiceError):
        return 502
    if isinstance(exc, StorageFailure):
        return 500
    return 422


@app.exception_handler(PlanyError)
async def plany_error_handler(request: Request, exc: PlanyError) -> JSONResponse:
    return JSONResponse(status_code=status_for(exc), content=exc.to_dict())


@app.middleware("http")
async def request_context_middleware(request, call_next):
    correlation_id = request.headers.get("X-Correlation-ID") or str(uuid4())
    with log_context(correlation_id=correlation_id):
        response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


@app.on_event("startup")
async def startup() -> None:
    settings = get_settings()
    configure_logging(settings.state_dir)
    app.state.pipeline = get_pipeline()
    queue = get_task_queue()
    await queue.process_pending()

    scheduler = get_scheduler_service()
    scheduler.add_maintenance(
        run_maintenance,
        kwargs={
            "queue": queue,
            "voice_logs": get_voice_log_store(),
            "references": [get_log_store(), get_supplement_store()],
            "audio_grace": timedelta(hours=settings.audio_grace_hours),
        },
    )
    scheduler.start()


@app.on_event("shutdown")
async def shutdown() -> None:
    get_scheduler_service().shutdown()
    await get_task_queue().shutdown()
    await close_http_client()


@app.get("/healthz")
def healthz() -> dict[str, object]:
    settings = get_settings()
    return {
        "ok": True,
        "state_dir": str(settings.state_dir),
        "credentials": settings.has_api_key,
        "jobs": get_scheduler_service().list_jobs(),
    }


def run() -> None:
    uvicorn.run("plany.apps.api.main:app", host="127.0.0.1", port=8000)
