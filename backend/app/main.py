import uuid
import asyncio
import re
from pathlib import Path
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from app.config import settings
from app.routers import (
    auth,
    admin_users,
    orders,
    shipping,
    tasks,
    metrics,
    mercadolivre,
)
from app.services.errors import ServiceError
from app.utils.logger import logger

app = FastAPI(title="Seller Operations API", version="1.0.0")

origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]
if settings.FRONTEND_URL and settings.FRONTEND_URL not in origins:
    origins.append(settings.FRONTEND_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
    max_age=3600,
)


# Request logging middleware with request ID
@app.middleware("http")
async def request_logger(request: Request, call_next):
    rid = uuid.uuid4().hex[:8]
    request.state.rid = rid
    logger.info("→ %s %s rid=%s", request.method, request.url.path, rid)
    try:
        resp = await call_next(request)
        logger.info("← %s status=%s rid=%s", request.url.path, resp.status_code, rid)
        resp.headers["X-Request-ID"] = rid
        return resp
    except Exception as e:
        logger.exception("Unhandled error rid=%s: %s", rid, str(e))
        error_resp = JSONResponse(
            {"error": "internal_error", "rid": rid, "message": str(e), "type": type(e).__name__},
            status_code=500
        )
        error_resp.headers["X-Request-ID"] = rid
        return error_resp


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    rid = getattr(request.state, "rid", None)
    log = logger.error if exc.status_code >= 500 else logger.info
    log("%s %s -> %s %s: %s rid=%s", request.method, request.url.path, exc.status_code, exc.code, exc.message, rid)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        {"error": "invalid_argument", "message": "Invalid request data.", "details": jsonable_encoder(exc.errors())},
        status_code=400,
    )


app.include_router(auth.router)
app.include_router(admin_users.router)
app.include_router(orders.router)
app.include_router(shipping.router)
app.include_router(tasks.router)
app.include_router(metrics.router)
app.include_router(mercadolivre.router)


def _run_migrations(database_url: str) -> None:
    from alembic.config import Config
    from alembic import command

    alembic_cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    alembic_cfg.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(alembic_cfg, "head")


@app.on_event("startup")
async def startup_event():
    logger.info("Seller Operations API starting up...")

    database_url = settings.DATABASE_URL
    is_sqlite = database_url.startswith("sqlite")

    if not is_sqlite:
        masked_url = re.sub(r'://([^:]+):([^@]+)@', r'://\1:****@', database_url)
        logger.info(f"Database URL: {masked_url}")
        try:
            _run_migrations(database_url)
            logger.info("Database migrations completed successfully")
        except Exception as e:
            logger.warning(f"Alembic migration failed: {e}")
    else:
        logger.info("Using SQLite database; background workers are not started")

    if not settings.WORKERS_ENABLED or is_sqlite:
        logger.info("Background workers disabled")
        return

    from app.workers import (
        run_order_sync_loop,
        run_task_overdue_loop,
        run_daily_metrics_loop,
    )

    asyncio.create_task(run_order_sync_loop())
    logger.info("Order sync worker started (runs every %s minutes)", settings.ORDER_SYNC_INTERVAL_MINUTES)

    asyncio.create_task(run_task_overdue_loop())
    logger.info("Task overdue worker started (runs every %s minutes)", settings.TASK_OVERDUE_INTERVAL_MINUTES)

    asyncio.create_task(run_daily_metrics_loop())
    logger.info("Daily metrics worker started (runs daily at %02d:00 %s)", settings.DAILY_METRICS_HOUR, settings.SELLER_TIMEZONE)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    """Database health check endpoint"""
    from fastapi import HTTPException, status
    try:
        from app.models_sqlalchemy import engine
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return {"status": "ok", "database": "connected"}
    except Exception as e:
        logger.exception("Database health check failed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Database unavailable: {type(e).__name__}: {str(e)}"
        )


@app.get("/")
async def root():
    return {
        "message": "Seller Operations API",
        "version": "1.0.0",
        "docs": "/docs"
    }
