"""FastAPI application for the Excel skills assessment."""
from contextlib import asynccontextmanager
import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from excel_assessment.config import settings
from excel_assessment.database.db import init_db
from excel_assessment.api_routes import router

REQUEST_ID_HEADER = "X-Request-ID"


def configure_logging(level: str) -> None:
    """JSON log lines through stdlib logging, with per-request context merged in."""
    logging.basicConfig(format="%(message)s", level=level.upper())
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(settings.LOG_LEVEL)
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info(
        "Assessment API ready",
        llm_provider=settings.LLM_PROVIDER,
        auth_mode=settings.AUTH_MODE,
        upload_dir=settings.UPLOAD_DIR,
    )
    if settings.LLM_PROVIDER == "gemini" and not settings.GEMINI_API_KEY:
        logger.warning("Gemini API key not configured - answer scoring will fail")
    yield
    logger.info("Assessment API stopped")


app = FastAPI(
    title="Excel Skills Assessment API",
    description="AI-scored Excel skills interview with practical workbook tasks",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[REQUEST_ID_HEADER],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )
    start_time = time.time()
    response = await call_next(request)
    logger.info(
        "Request handled",
        status_code=response.status_code,
        duration_ms=round((time.time() - start_time) * 1000, 1),
    )
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception", error=str(exc), exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    return {
        "service": "Excel Skills Assessment API",
        "interviews": "/api/interviews",
        "health": "/api/health",
    }
