"""FastAPI application for lot allocation, reservations and picking orders."""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__, settings
from .deps import engine
from .errors import error_payload, http_error_payload, status_for, validation_error_payload
from .exceptions import LotpickError
from .models import Base
from .routers import alerts, audit, auth, lots, picking, reservations

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("lotpick")

app = FastAPI(title="Lot Picking API", version=__version__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for router, prefix in (
    (auth.router, "/auth"),
    (lots.router, "/lots"),
    (reservations.router, "/reservations"),
    (picking.router, "/picking"),
    (alerts.router, "/alerts"),
    (audit.router, "/audit"),
):
    app.include_router(router, prefix=prefix, tags=[prefix.strip("/")])


@app.on_event("startup")
async def _create_tables() -> None:
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured (%s)", engine.url.render_as_string(hide_password=True))


@app.exception_handler(LotpickError)
async def _domain_exception_handler(request: Request, exc: LotpickError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 409:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc.code)
    return JSONResponse(status_code=status_code, content=error_payload(exc))


@app.exception_handler(HTTPException)
async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=http_error_payload(exc), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content=validation_error_payload(exc.errors()))


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok"}
