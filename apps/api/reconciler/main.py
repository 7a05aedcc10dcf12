"""ASGI entry point for the reconciliation API."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from reconciler.core.config import settings
from reconciler.core.errors import PipelineError
from reconciler.core.rate_limit import limiter
from reconciler.db.session import engine
from reconciler.routers import leads, webhooks

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ["X-CRM-Signature", "X-Voice-Signature"]


def init_error_tracking() -> None:
    """Sentry is enabled only outside dev and only when a DSN is configured."""
    if not settings.SENTRY_DSN or settings.ENV == "dev":
        return

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        release=settings.VERSION,
        integrations=[FastApiIntegration(transaction_style="endpoint"), SqlalchemyIntegration()],
        traces_sample_rate=0.1,
        # Webhook payloads carry phone numbers and call transcripts
        send_default_pii=False,
    )
    logger.info("Error tracking enabled (env=%s)", settings.ENV)


async def handle_pipeline_error(request: Request, exc: PipelineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    body: dict = {"error": exc.message}
    if exc.details:
        body["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=body)


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def health() -> dict:
    """Liveness plus a database round trip."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}


def create_app() -> FastAPI:
    init_error_tracking()

    show_docs = settings.ENV == "dev"
    application = FastAPI(
        title="Lead Intake Reconciliation API",
        description="Reconciles CRM, voice and workflow events into one lead record",
        version=settings.VERSION,
        docs_url="/docs" if show_docs else None,
        redoc_url="/redoc" if show_docs else None,
    )

    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    application.add_exception_handler(PipelineError, handle_pipeline_error)
    application.add_exception_handler(Exception, handle_unexpected_error)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", *SIGNATURE_HEADERS],
    )

    application.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
    application.include_router(leads.router, prefix="/leads", tags=["leads"])
    application.add_api_route("/health", health, methods=["GET"], tags=["health"])
    return application


app = create_app()
