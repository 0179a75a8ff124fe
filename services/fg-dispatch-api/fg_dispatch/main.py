"""FastAPI application entrypoint for the FG Dispatch API."""

from __future__ import annotations

import logging
import os
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from . import deps
from .routers import audit, auth, challans, master_data, realtime, stock

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("fg-dispatch-api")

app = FastAPI(title="FG Dispatch API", version="0.1.0")

cors_origins_env = os.getenv(
    "FG_API_CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
)
allow_origins = [origin.strip() for origin in cors_origins_env.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def _create_tables() -> None:
    """Ensure the database schema exists before serving requests."""

    await deps.init_models()
    logger.info("Database schema ensured")


@app.exception_handler(HTTPException)
async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict):
        payload: dict[str, Any] = {
            "message": str(detail.get("message", "Internal error")),
            "code": str(detail.get("code", f"http.{exc.status_code}")),
        }
    elif isinstance(detail, str):
        payload = {"message": detail, "code": f"http.{exc.status_code}"}
    else:
        payload = {"message": "Unexpected error", "code": "http.unexpected"}
    if exc.headers:
        return JSONResponse(status_code=exc.status_code, content=payload, headers=exc.headers)
    return JSONResponse(status_code=exc.status_code, content=payload)


@app.exception_handler(RequestValidationError)
async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    payload = {
        "message": "Invalid request",
        "code": "validation_error",
        "errors": jsonable_encoder(exc.errors()),
    }
    return JSONResponse(status_code=400, content=payload)


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Server error", "code": "server_error"})


app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(challans.router, prefix="/api/fg/delivery-challan", tags=["delivery-challan"])
app.include_router(stock.router, prefix="/api/fg", tags=["stock"])
app.include_router(master_data.router, prefix="/api/fg", tags=["master-data"])
app.include_router(audit.router, prefix="/audit", tags=["audit"])
app.include_router(realtime.router, prefix="/ws", tags=["realtime"])


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok"}
