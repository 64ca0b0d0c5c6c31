"""Main FastAPI application"""
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import time

from api.routers import intelligence
from api.schemas.errors import ErrorCode, ErrorResponse
from intelcore.config import settings
from intelcore.core import IntelligenceCore
from intelcore.db.session import build_engine, build_session_factory, check_db_health, init_db
from intelcore.utils.errors import IntelCoreError
from intelcore.log_config import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    # Startup
    logger.info("Starting Intelligence Core API...")

    engine = build_engine(settings.database_url)
    init_db(engine)

    core = IntelligenceCore(settings=settings, session_factory=build_session_factory(engine))
    core.register_default_signal_sources()

    app.state.engine = engine
    app.state.core = core
    logger.info(
        f"Intelligence Core ready: {len(core.dataset_types.list_types())} dataset types, "
        f"{len(core.signal_sources)} signal sources"
    )

    yield

    # Shutdown
    logger.info("Shutting down Intelligence Core API...")
    engine.dispose()


# Create FastAPI app
app = FastAPI(
    title=settings.api_title,
    description="Dataset-agnostic predictive modeling, signed predictions, drift monitoring and attention-signal correlation.",
    version=settings.api_version,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "intelligence", "description": "Datasets, training, predictions, drift, signals, AMI, exploration and optimization"},
    ]
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["content-type", "authorization"],
)


# Access logging middleware
@app.middleware("http")
async def access_log_middleware(request: Request, call_next):
    """Log all API requests with timing"""
    t0 = time.time()
    response = await call_next(request)
    ms = int((time.time() - t0) * 1000)

    logger.info(f"{request.method} {request.url.path} {response.status_code} {ms}ms")

    return response


def error_json(body: ErrorResponse) -> JSONResponse:
    return JSONResponse(status_code=body.status_code, content=body.model_dump())


@app.exception_handler(IntelCoreError)
async def intelcore_exception_handler(request: Request, exc: IntelCoreError):
    """Core errors: not found 404, duplicate 409, invalid input 400, else 500"""
    body = ErrorResponse.from_core_error(exc)
    if body.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.__class__.__name__}: {exc.message}")
    return error_json(body)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_json(ErrorResponse.from_http_status(exc.status_code, str(exc.detail)))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Request body / query failed pydantic validation"""
    return error_json(
        ErrorResponse(
            error_code=ErrorCode.VALIDATION_ERROR,
            message="Validation error",
            details={"errors": jsonable_encoder(exc.errors())},
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
    return error_json(
        ErrorResponse(
            error_code=ErrorCode.INTERNAL_ERROR,
            message="An unexpected error occurred",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    )


# Include routers
app.include_router(intelligence.router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": "Intelligence Core API",
        "version": settings.api_version,
        "status": "running"
    }


@app.get("/healthz")
async def health_check(request: Request):
    """Health check endpoint"""
    engine = getattr(request.app.state, "engine", None)
    database = check_db_health(engine) if engine is not None else False
    return {"status": "healthy" if database else "degraded", "database": database}
