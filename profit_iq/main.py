import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from profit_iq.api.v1.chat import router as chat_router
from profit_iq.api.v1.documents import router as documents_router
from profit_iq.api.v1.ingest import router as ingest_router
from profit_iq.api.v1.projects import router as projects_router
from profit_iq.core.config import get_settings
from profit_iq.core.dependencies import Database
from profit_iq.core.errors import AdapterFailure, ProfitIQError

settings = get_settings()

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Internal server error"


@asynccontextmanager
async def lifespan(app: FastAPI):
    database = None
    if settings.database_url:
        database = Database(settings.database_url)
        app.state.database = database
        logger.info("Database engine created")
    else:
        logger.warning("DATABASE_URL is not configured; database routes will fail")
    try:
        yield
    finally:
        if database is not None:
            database.close()
            app.state.database = None


app = FastAPI(
    title="Profit IQ API",
    version="0.1.0",
    docs_url="/docs" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.openapi_enabled else None,
    lifespan=lifespan,
)

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

app.include_router(projects_router, prefix="/api/v1", tags=["projects"])
app.include_router(documents_router, prefix="/api/v1", tags=["documents"])
app.include_router(chat_router, prefix="/api/v1", tags=["chat"])
app.include_router(ingest_router, prefix="/api/v1", tags=["ingest"])


@app.exception_handler(ProfitIQError)
async def _domain_exception_handler(request: Request, exc: ProfitIQError):
    if exc.status_code >= 500:
        if isinstance(exc, AdapterFailure):
            logger.warning("Model adapter failed on %s: %s (%s)", request.url.path, exc.message, exc.error_kind)
        else:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        detail = exc.message if settings.expose_error_details else exc.public_message
        return JSONResponse(status_code=exc.status_code, content={"detail": detail})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Hide internal details for 5xx in production unless explicitly enabled.
    if exc.status_code >= 500 and not settings.expose_error_details:
        return JSONResponse(status_code=exc.status_code, content={"detail": GENERIC_ERROR})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception")
    if settings.expose_error_details:
        return JSONResponse(status_code=500, content={"detail": str(exc)})
    return JSONResponse(status_code=500, content={"detail": GENERIC_ERROR})


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    if not settings.security_headers_enabled:
        return response

    headers = response.headers
    if "X-Content-Type-Options" not in headers:
        headers["X-Content-Type-Options"] = "nosniff"
    if "X-Frame-Options" not in headers:
        headers["X-Frame-Options"] = "DENY"
    if "Referrer-Policy" not in headers:
        headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if "Strict-Transport-Security" not in headers:
        headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    if "Content-Security-Policy" not in headers:
        headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'; base-uri 'none'"

    return response


@app.get("/health")
async def health_check():
    return {"status": "ok"}
