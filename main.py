# main.py
"""
FastAPI entry point for the Baker's Dozen inventory service.

Startup builds the offline cache, connection monitor, data-access layer and
auth service, stores them on `app.state`, and starts connection polling.
Missing Supabase credentials do not abort startup: the service comes up
offline and serves whatever the cache holds.
"""
import logging
import os
import uuid
from contextlib import asynccontextmanager
from typing import Dict

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bakersdozen.api.routes import register_exception_handlers, router as api_router
from bakersdozen.config.settings import settings
from bakersdozen.config.supabase import supabase_client
from bakersdozen.services.auth_service import AuthService
from bakersdozen.services.connection_monitor import ConnectionMonitor
from bakersdozen.services.database import Database
from bakersdozen.services.local_cache import LocalCache

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("uvicorn.error")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Baker's Dozen service...")

    cache = LocalCache.from_settings(settings)
    if cache.attempt_recovery():
        logger.warning("Corrupted cache entries found; offline cache cleared")
    cache.prune_stale_versions()

    monitor = ConnectionMonitor(supabase_client)
    app.state.monitor = monitor
    app.state.database = Database(supabase_client, monitor=monitor, cache=cache)
    app.state.auth = AuthService(supabase_client)

    await monitor.check_connection()
    logger.info("Supabase reachable: %s", monitor.is_online)
    monitor.start()

    try:
        yield
    finally:
        logger.info("Shutting down Baker's Dozen service...")
        try:
            await app.state.database.close()
            await monitor.stop()
            await supabase_client.close()
        except Exception:
            logger.exception("Error during shutdown cleanup")


app = FastAPI(
    title="Baker's Dozen",
    description="Bakery inventory service over Supabase with an offline cache",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # you can lock this down in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


# Simple request-id middleware + structured request logging
@app.middleware("http")
async def add_request_id_and_log(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
    request.state.request_id = request_id
    logger.info("→ Incoming request %s %s id=%s", request.method, request.url.path, request_id)
    try:
        response: Response = await call_next(request)
    except Exception as exc:
        logger.exception("Handler error for request id=%s: %s", request_id, exc)
        return JSONResponse(
            {"ok": False, "status": 500, "message": "Internal server error"},
            status_code=500,
        )
    logger.info("← Completed request id=%s status=%s", request_id, response.status_code)
    response.headers["X-Request-Id"] = request_id
    return response


app.include_router(api_router, prefix="/api", tags=["api"])


@app.get("/")
async def root() -> Dict[str, str]:
    return {"message": "Baker's Dozen inventory service is running!", "status": "healthy"}


@app.get("/health")
async def health_check():
    """
    Liveness with a fresh backend probe. Returns 503 (degraded) when the
    backend is unreachable; the process itself stays up.
    """
    db_ok = await app.state.monitor.check_connection()
    return JSONResponse(
        {
            "status": "healthy" if db_ok else "degraded",
            "service": "bakersdozen",
            "database": "connected" if db_ok else "disconnected",
            "supabase": supabase_client.diagnostics(),
        },
        status_code=200 if db_ok else 503,
    )


@app.get("/ready")
async def readiness_check():
    """Readiness from the monitor's last known state; no network call."""
    online = app.state.monitor.is_online
    return JSONResponse(
        {"ready": online, "database": "connected" if online else "disconnected"},
        status_code=200 if online else 503,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", 5000)), reload=True)
