# app/__init__.py
import time
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi import _rate_limit_exceeded_handler
from contextlib import asynccontextmanager

from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.trustedhost import TrustedHostMiddleware

from app.config import APP_ENV, ALLOWED_HOSTS, IS_TESTING
from app.database import init_db
from app.dependencies import limiter
from app.errors import InventoryError
from app.utils.logging import logger
from app.routers import auth, users, storage, inventory, inbound, outbound, stats

@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.start_time = time.time()
    # Tests build their own in-memory schema
    if not IS_TESTING:
        init_db()
    logger.info(f"CryoStock starting in {APP_ENV} mode")
    yield
    logger.info("CryoStock shutting down")

def create_app() -> FastAPI:
    app = FastAPI(title="CryoStock", version="1.0.0", lifespan=lifespan)

    # --- 1. ROUTERS ---
    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(storage.router)
    app.include_router(inventory.router)
    app.include_router(inbound.router)
    app.include_router(outbound.router)
    app.include_router(stats.router)

    @app.get("/api/health", tags=["health"])
    async def health(request: Request):
        started = getattr(request.app.state, "start_time", None)
        return {"status": "ok", "env": APP_ENV, "uptime": round(time.time() - started, 1) if started else 0}

    # --- 2. ERROR HANDLERS ---
    # Every error leaves the API as {"error": message}

    @app.exception_handler(InventoryError)
    async def inventory_error_handler(request: Request, exc: InventoryError):
        logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            {"error": "invalid request body", "details": jsonable_encoder(exc.errors())},
            status_code=422
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse({"error": "internal server error, please try again"}, status_code=500)

    # --- 3. MIDDLEWARE ---

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        logger.info(f"{request.method} {request.url.path} status={response.status_code} {process_time:.3f}s")
        return response

    if APP_ENV == "production":
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=ALLOWED_HOSTS)

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    return app

app = create_app()
