"""
Landed-cost estimation service.
"""
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from landedcost.api import admin, audit, estimates, sourcing
from landedcost.core.config import settings
from landedcost.core.errors import CooldownError, LandedCostError
from landedcost.core.logging import get_logger, setup_logging
from landedcost.db.session import init_db

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started (pipeline {settings.PIPELINE_VERSION})")
    yield


app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LandedCostError)
async def landed_cost_error_handler(request: Request, exc: LandedCostError):
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    headers = {"Retry-After": str(exc.retry_after_seconds)} if isinstance(exc, CooldownError) else None
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict(), headers=headers)


app.include_router(estimates.router)
app.include_router(sourcing.router)
app.include_router(admin.router)
app.include_router(audit.router)


@app.get("/health")
async def health():
    return {"status": "ok", "version": settings.APP_VERSION, "pipeline_version": settings.PIPELINE_VERSION}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
