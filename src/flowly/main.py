import logging

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth import get_basic_auth_dependency
from .logging_config import configure_logging
from .routers import assistant as assistant_router
from .routers import billing as billing_router
from .routers import dashboard as dashboard_router
from .routers import goals as goals_router
from .routers import habits as habits_router
from .routers import profile as profile_router
from .routers import tasks as tasks_router
from .settings import get_settings
from .stats import StatsInputError

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {
        "name": "tasks",
        "description": "Task CRUD with filtering, sorting, pagination and a weekly planner view.",
    },
    {"name": "habits", "description": "Habits, daily completion toggles, streaks and weekly statistics."},
    {"name": "goals", "description": "Goals, milestones and progress derived from completed milestones."},
    {"name": "dashboard", "description": "Aggregated productivity overview."},
    {"name": "profile", "description": "The caller's profile and subscription."},
    {"name": "assistant", "description": "AI productivity assistant for Pro users."},
    {"name": "billing", "description": "Stripe checkout, customer portal and webhook."},
]

_settings = get_settings()
configure_logging(_settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Flowly Backend",
    description="Backend API for tasks, habits, goals, productivity statistics, an AI assistant and billing.",
    version="0.1.0",
    openapi_tags=openapi_tags,
)

# Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
allow_all = (_settings.cors_allow_origins == ["*"]) or (len(_settings.cors_allow_origins) == 0)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all else _settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handlers for consistent JSON on validation errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Return a consistent JSON structure for request validation errors.

    Response format:
        {
            "error": "ValidationError",
            "detail": [... pydantic/fastapi error details ...],
            "message": "Request validation failed"
        }
    """
    return JSONResponse(
        status_code=422,
        content={
            "error": "ValidationError",
            "message": "Request validation failed",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(StatsInputError)
async def stats_input_exception_handler(request: Request, exc: StatsInputError) -> JSONResponse:
    logger.warning("Rejected statistics input on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=400,
        content={"error": "InvalidStatisticsInput", "message": str(exc)},
    )


# PUBLIC_INTERFACE
@app.get("/", summary="Health Check", tags=["health"])
def health_check():
    """
    Health check endpoint.

    Returns:
        A JSON object indicating service health.
    """
    return {"message": "Healthy", "backend": _settings.persistence_backend}


# Include routers; basic auth is a no-op unless ENABLE_BASIC_AUTH is set
_guard = [Depends(get_basic_auth_dependency())]
for _module in (
    tasks_router,
    habits_router,
    goals_router,
    dashboard_router,
    profile_router,
    assistant_router,
    billing_router,
):
    app.include_router(_module.router, dependencies=_guard)
app.include_router(billing_router.webhook_router)
