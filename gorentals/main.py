# Application entrypoint: configures logging, middleware, error mapping and API routers.
import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .db import Base, engine
from .errors import DomainError, StepFailed
from .payments import router as payments_router
from .routes.auth import router as auth_router
from .routes.bookings import router as bookings_router
from .routes.coupons import router as coupons_router
from .routes.notifications import router as notifications_router
from .routes.transactions import router as transactions_router
from .routes.vehicles import router as vehicles_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("gorentals.api")


# Parse CORS origins from a comma-separated env var.
# Note: '*' cannot be used with allow_credentials=True; we fall back to explicit localhost origins for dev.
def _parse_cors_origins(env_value: str | None) -> list[str]:
    default_dev_origins = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]
    if not env_value:
        return default_dev_origins
    origins = [o.strip() for o in env_value.split(",") if o.strip()]
    if "*" in origins:
        return default_dev_origins
    return origins


app = FastAPI(title="GoRentals API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=_parse_cors_origins(os.getenv("CORS_ORIGINS")),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    content = {"detail": exc.message, "code": exc.code}
    if isinstance(exc, StepFailed):
        # Partially applied operation: tell the caller exactly what already happened
        content["failed_step"] = exc.failed_step
        content["completed_steps"] = exc.completed_steps
        logger.error("request.step_failed", extra={"path": request.url.path, "step": exc.failed_step})
    return JSONResponse(status_code=exc.status_code, content=content)


@app.on_event("startup")
def on_startup() -> None:
    # Local SQLite gets its tables created on boot; no migrations are shipped
    if os.getenv("DATABASE_URL", "sqlite:///./data.db").startswith("sqlite"):
        Base.metadata.create_all(bind=engine)


# Simple liveness endpoint for container orchestrators and uptime checks
@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


# Auth and the Stripe webhook sit at the root; domain APIs under /api/v1
app.include_router(auth_router, prefix="", tags=["auth"])
app.include_router(payments_router, prefix="", tags=["payments"])
app.include_router(vehicles_router, prefix="/api/v1", tags=["vehicles"])
app.include_router(bookings_router, prefix="/api/v1", tags=["bookings"])
app.include_router(coupons_router, prefix="/api/v1", tags=["coupons"])
app.include_router(notifications_router, prefix="/api/v1", tags=["notifications"])
app.include_router(transactions_router, prefix="/api/v1", tags=["transactions"])
