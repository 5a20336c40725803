import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from backend.config import RESPONSIBLE_GAMBLING
from backend.core.errors import EdgeUpError, UpstreamFailure

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Edge Up Sim",
    description="AI sports betting predictions with edge scoring, simulation quotas and subscriptions",
    version="1.0.0"
)

# Read CORS configuration from environment
cors_origins = os.getenv("CORS_ALLOW_ORIGINS", "*")
if cors_origins.strip() == "*":
    allow_origins = ["*"]
else:
    allow_origins = [o.strip() for o in cors_origins.split(",") if o.strip()]

# Only allow credentials when explicit origins are configured
allow_credentials = False
if allow_origins != ["*"]:
    allow_credentials = os.getenv("CORS_ALLOW_CREDENTIALS", "false").lower() in ("1", "true", "yes")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EdgeUpError)
async def edge_up_error_handler(request: Request, exc: EdgeUpError):
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, "%s %s → %s: %s", request.method, request.url.path, exc.error_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    error = UpstreamFailure("database", str(exc))
    logger.error("%s %s → %s: %s", request.method, request.url.path, error.error_code, error.message)
    return JSONResponse(status_code=error.status_code, content=error.to_response())


# Import routers
from backend.routes.admin_routes import router as admin_router
from backend.routes.auth_routes import router as auth_router
from backend.routes.cron_routes import router as cron_router
from backend.routes.payment_routes import router as payment_router
from backend.routes.prediction_routes import router as prediction_router

app.include_router(auth_router)
app.include_router(prediction_router)
app.include_router(payment_router)
app.include_router(cron_router)
app.include_router(admin_router)


@app.on_event("startup")
async def startup_event():
    """Initialize database indexes on startup"""
    from backend.db.mongo import ensure_indexes
    try:
        ensure_indexes()
        logger.info("✓ Database indexes initialized")
    except PyMongoError as e:
        logger.error("✗ Could not initialize indexes: %s", e)

    from backend.services.scheduler import scheduler_enabled, start_scheduler
    if scheduler_enabled():
        start_scheduler()


@app.on_event("shutdown")
async def shutdown_event():
    """Clean shutdown"""
    from backend.services.scheduler import stop_scheduler
    stop_scheduler()


@app.get("/")
def root():
    return {
        "status": "ok",
        "service": "Edge Up Sim",
        "version": "1.0.0",
        "features": [
            "AI predictions with edge scoring",
            "Daily hot picks",
            "Simulation quotas with rollover",
            "Outcome tracking and learning insights",
            "Stripe subscriptions with free trial",
        ],
        "responsible_gambling": RESPONSIBLE_GAMBLING,
    }


@app.get("/health")
def health_check():
    """Health check for load balancers"""
    from backend.db.mongo import db
    try:
        db.command("ping")
        return {"status": "healthy", "database": "connected"}
    except PyMongoError as e:
        return {"status": "unhealthy", "database": "disconnected", "error": str(e)}
