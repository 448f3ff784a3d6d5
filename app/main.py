"""
Main FastAPI application for the LogoToAnything API.
Serves auth, billing, Stripe webhook, generation, profile, health and metrics.
"""
import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.core.errors import AppError
from app.core.logging import configure_logging
from app.api.routes import auth, billing, generations, health, profile, webhook
from app.utils.metrics import http_request_duration_seconds, router as metrics_router


configure_logging()
logger = logging.getLogger("api")

app = FastAPI(
    title="LogoToAnything API",
    description="Logo placement image generation with credit billing",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = [settings.site_url.rstrip("/"), "http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Assign/propagate the request id and log one line per request."""
    request_id = request.headers.get(settings.request_id_header) or uuid.uuid4().hex
    request.state.request_id = request_id
    start = time.time()
    response = await call_next(request)
    latency = time.time() - start
    response.headers[settings.request_id_header] = request_id
    http_request_duration_seconds.labels(method=request.method, status_code=str(response.status_code)).observe(latency)
    logger.info(
        "http_request",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "latency_ms": int(latency * 1000),
        },
    )
    return response


# Error handlers
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "request_failed",
            extra={"path": request.url.path, "status_code": exc.status_code, "error": exc.message},
        )
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse({"error": "Invalid request", "details": jsonable_encoder(exc.errors())}, status_code=400)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", extra={"path": request.url.path})
    return JSONResponse({"error": "Internal Server Error"}, status_code=500)


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(auth.router)
app.include_router(billing.router)
app.include_router(webhook.router)
app.include_router(generations.router)
app.include_router(profile.router)
app.include_router(metrics_router)
