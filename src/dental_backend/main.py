import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.dental_backend.api.v1.routes_admin import router as admin_router_v1
from src.dental_backend.api.v1.routes_appointments import router as appointments_router_v1
from src.dental_backend.api.v1.routes_availability import router as availability_router_v1
from src.dental_backend.api.v1.routes_navigation import router as navigation_router_v1
from src.dental_backend.api.v1.routes_system import router as system_router_v1
from src.dental_backend.config import settings
from src.dental_backend.domain.errors import InternalError, InvalidRequest, ServiceError
from src.dental_backend.infra.db.bootstrap import init_stores

logger = logging.getLogger("dental_backend")

app = FastAPI(title="Dental Clinic API")


@app.on_event("startup")
async def on_startup() -> None:
    """Application startup hook.

    Configures log levels and, when IDENTITY_BACKEND / PROFILE_BACKEND
    select Supabase or SQL, swaps the in-memory stores for real ones. In
    tests and local development without those settings this leaves the
    in-memory stores active.
    """

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    init_stores()


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = InvalidRequest("Invalid request payload")
    return JSONResponse(status_code=error.status_code, content={"error": error.message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error in %s %s", request.method, request.url.path)
    error = InternalError()
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": error.message})


# CORS configuration – permissive by default for development. Tighten via
# CORS_ALLOW_ORIGINS in production deployments.
allow_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["system"])
async def health_check() -> dict:
    """Basic liveness check for the API root."""
    return {"status": "ok"}


# Versioned API routers
app.include_router(system_router_v1, prefix="/api/v1")
app.include_router(admin_router_v1, prefix="/api/v1")
app.include_router(navigation_router_v1, prefix="/api/v1")
app.include_router(appointments_router_v1, prefix="/api/v1")
app.include_router(availability_router_v1, prefix="/api/v1")
