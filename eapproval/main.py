from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from eapproval.config import settings
from eapproval.database import build_engine, build_session_factory, check_db, close_db
from eapproval.exceptions import ApprovalError
from eapproval.logging_config import setup_logging
from eapproval.middleware.correlation import CorrelationIdMiddleware
from eapproval.services.approval_service import ApprovalService
from eapproval.services.directory_service import Directory, SqlDirectory
from eapproval.services.notification_service import NotificationDispatcher

# Import models so they are registered with Base.metadata
import eapproval.models  # noqa: F401

logger = structlog.get_logger()


def create_app(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    directory: Optional[Directory] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> FastAPI:
    """
    Build the API with its collaborators injected. Anything not supplied is
    built from settings: an engine on DATABASE_URL, the employees-table
    directory and a Brevo-backed dispatcher.
    """
    engine = None
    if session_factory is None:
        engine = build_engine()
        session_factory = build_session_factory(engine)
    directory = directory or SqlDirectory(session_factory)
    dispatcher = dispatcher or NotificationDispatcher(session_factory, directory)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        logger.info("starting_eapproval", env=settings.ENVIRONMENT)
        await check_db(app.state.session_factory)
        yield
        await app.state.dispatcher.aclose()
        if engine is not None:
            await close_db(engine)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )
    app.state.session_factory = session_factory
    app.state.directory = directory
    app.state.dispatcher = dispatcher
    app.state.approval_service = ApprovalService(session_factory, directory)

    # -----------------------------------------------------------------------
    # Global exception handlers: normalize all errors to
    # {"error": {"code": "...", "message": "..."}}
    # -----------------------------------------------------------------------

    @app.exception_handler(ApprovalError)
    async def approval_error_handler(request: Request, exc: ApprovalError) -> JSONResponse:
        log = logger.warning if exc.status_code < 500 else logger.error
        log("approval_error", code=exc.code, message=exc.message, path=request.url.path)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        detail = exc.detail
        if isinstance(detail, str):
            detail = {"error": {"code": "HTTP_ERROR", "message": detail}}
        elif isinstance(detail, dict) and "error" not in detail:
            detail = {"error": detail}
        return JSONResponse(status_code=exc.status_code, content=detail, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "error": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "details": jsonable_encoder(exc.errors()),
                }
            },
        )

    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Requested-With", "X-Request-ID"],
    )

    @app.get("/health", tags=["System"])
    async def health(response: Response):
        health_status = {"status": "healthy", "version": settings.APP_VERSION, "checks": {}}
        try:
            await check_db(app.state.session_factory)
            health_status["checks"]["db"] = "ok"
        except Exception as e:
            logger.error("health_check_db_failed", error=str(e))
            health_status["checks"]["db"] = "error"
            health_status["status"] = "unhealthy"
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return health_status

    from eapproval.routes.approvals import router as approvals_router
    from eapproval.routes.balances import router as balances_router
    from eapproval.routes.notifications import router as notifications_router
    from eapproval.jobs.outbox import router as jobs_router

    app.include_router(approvals_router, prefix="/api/v1/approvals", tags=["Approvals"])
    app.include_router(balances_router, prefix="/api/v1/balances", tags=["Balances"])
    app.include_router(notifications_router, prefix="/api/v1/notifications", tags=["Notifications"])
    app.include_router(jobs_router, prefix="/internal/jobs", tags=["Internal Jobs"])

    return app


app = create_app()
