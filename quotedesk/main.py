from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Depends, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from quotedesk.config import settings
from quotedesk.database import init_db, close_db, get_db
from quotedesk.logging_config import setup_logging
from quotedesk.middleware.correlation import CorrelationIdMiddleware
from quotedesk.services.errors import ExternalCollaboratorError, QuoteWorkflowError
from quotedesk.services.http_client import close_http_client

# Registers every table on Base.metadata
import quotedesk.models  # noqa: F401

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("starting_quotedesk", env=settings.ENVIRONMENT, version=settings.APP_VERSION)
    if not settings.collaborators_configured:
        logger.warning(
            "collaborators_not_configured",
            email_gateway=bool(settings.EMAIL_GATEWAY_URL),
            extraction_service=bool(settings.EXTRACTION_SERVICE_URL),
        )
    await init_db()
    yield
    await close_http_client()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Every error leaves the API as {"error": {"code": "...", "message": "..."}}
# ---------------------------------------------------------------------------

def error_response(
    status_code: int,
    code: str,
    message: str,
    details=None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    body = {"code": code, "message": message}
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content={"error": body}, headers=headers)


@app.exception_handler(QuoteWorkflowError)
async def workflow_exception_handler(request: Request, exc: QuoteWorkflowError) -> JSONResponse:
    if isinstance(exc, ExternalCollaboratorError):
        logger.error(
            "collaborator_error",
            collaborator=exc.collaborator,
            ref=exc.ref,
            error=exc.reason,
            path=request.url.path,
        )
    else:
        logger.info("workflow_error", code=exc.code, message=exc.message, path=request.url.path)
    return error_response(exc.status_code, exc.code, exc.message)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        return JSONResponse(status_code=exc.status_code, content=detail, headers=exc.headers)
    if isinstance(detail, dict):
        return error_response(
            exc.status_code,
            detail.get("code", "HTTP_ERROR"),
            detail.get("message", ""),
            headers=exc.headers,
        )
    return error_response(exc.status_code, "HTTP_ERROR", str(detail), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        422,
        "VALIDATION_ERROR",
        "Request validation failed",
        details=jsonable_encoder(exc.errors()),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", path=request.url.path, method=request.method)
    return error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")


app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "X-Request-ID"],
)


@app.get("/health", tags=["System"])
async def health(response: Response, db: AsyncSession = Depends(get_db)):
    checks = {"collaborators": "configured" if settings.collaborators_configured else "missing"}
    try:
        await db.execute(text("SELECT 1"))
        checks["db"] = "ok"
    except Exception as e:
        logger.error("health_check_db_failed", error=str(e))
        checks["db"] = "error"

    healthy = checks["db"] == "ok"
    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {
        "status": "healthy" if healthy else "unhealthy",
        "version": settings.APP_VERSION,
        "checks": checks,
    }


# --- Routers ---
from quotedesk.routes import cost_savings, orders, quote_requests, supplier_threads  # noqa: E402
from quotedesk.jobs import scheduled  # noqa: E402

for module, prefix, tag in (
    (quote_requests, "/api/v1/quote-requests", "Quote Requests"),
    (supplier_threads, "/api/v1/supplier-threads", "Supplier Threads"),
    (orders, "/api/v1/orders", "Orders"),
    (cost_savings, "/api/v1/cost-savings", "Cost Savings"),
    (scheduled, "/internal/jobs", "Internal Jobs"),
):
    app.include_router(module.router, prefix=prefix, tags=[tag])
