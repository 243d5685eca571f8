# homeledger/main.py
import logging
import uuid
from contextlib import asynccontextmanager
from typing import List

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from homeledger import auth
from homeledger.category_routes import router as category_router
from homeledger.chat_routes import router as chat_router
from homeledger.config import settings
from homeledger.db import close_engine, get_async_session, init_models, ping_database
from homeledger.dependencies import get_current_user
from homeledger.document_routes import router as document_router
from homeledger.errors import HomeLedgerError
from homeledger.inventory_routes import router as inventory_router
from homeledger.llm import close_http_client
from homeledger.maintenance_routes import router as maintenance_router
from homeledger.schemas import ApiKeyCreate, ApiKeyOut, ApiKeyWithSecret

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("uvicorn.error")

HTTP_ERROR_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "status_conflict",
    422: "precondition_failed",
    503: "unavailable",
}

# Redis helper
_redis = None


def get_redis():
    global _redis
    if _redis is None:
        _redis = aioredis.from_url(settings.redis_url, decode_responses=True)
    return _redis


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.auto_create_tables:
        await init_models()
    yield
    await close_http_client()
    if _redis is not None:
        await _redis.aclose()
    await close_engine()


app = FastAPI(title="HomeLedger", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(inventory_router)
app.include_router(document_router)
app.include_router(maintenance_router)
app.include_router(category_router)
app.include_router(chat_router)


@app.exception_handler(HomeLedgerError)
async def homeledger_error_handler(request: Request, exc: HomeLedgerError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse({"error": exc.code, "detail": exc.message}, status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    code = HTTP_ERROR_CODES.get(exc.status_code, "error")
    return JSONResponse({"error": code, "detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"error": "bad_request", "detail": jsonable_encoder(exc.errors())}, status_code=400)


@app.get("/healthz")
async def healthz():
    checks = {}
    try:
        await ping_database()
        checks["database"] = "ok"
    except Exception as e:
        logger.warning("Health check: database unreachable: %s", e)
        checks["database"] = "error"
    try:
        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as e:
        logger.warning("Health check: redis unreachable: %s", e)
        checks["redis"] = "error"
    healthy = all(v == "ok" for v in checks.values())
    return JSONResponse({"status": "ok" if healthy else "degraded", **checks}, status_code=200 if healthy else 503)


@app.get("/metrics")
def metrics():
    if not settings.prometheus_enabled:
        return Response(status_code=404)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/api-keys", response_model=List[ApiKeyOut], tags=["api-keys"])
async def list_api_keys(
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    return await auth.list_api_keys(session, user_id)


@app.post("/api-keys", response_model=ApiKeyWithSecret, status_code=201, tags=["api-keys"])
async def create_api_key(
    body: ApiKeyCreate,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    key, secret = await auth.create_api_key(session, user_id, body.name)
    return ApiKeyWithSecret(
        id=key.id, name=key.name, last_used_at=key.last_used_at, created_at=key.created_at, secret=secret
    )


@app.delete("/api-keys/{key_id}", status_code=204, tags=["api-keys"])
async def revoke_api_key(
    key_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    await auth.revoke_api_key(session, user_id, key_id)
    return Response(status_code=204)
