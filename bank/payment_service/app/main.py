from contextlib import asynccontextmanager

from fastapi import FastAPI

from bank.common import (
    DEFAULT_APP_NAME,
    ServiceSettings,
    build_app,
    configure_logging,
    create_schema,
    dispose_engines,
    get_session_factory,
    resolve_database_url,
)

from .accounts import AccountService, DummyAccountService, HttpAccountService
from .api.health import router as health_router
from .api.payments import router as payments_router
from .api.refunds import router as refunds_router
from .models import Base

SERVICE_NAME = "Payment Service"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./payment_service.db"


def _build_account_service(settings: ServiceSettings) -> AccountService:
    if settings.account_service_backend == "http":
        if not settings.account_service_url:
            msg = "SERVICE_ACCOUNT_SERVICE_URL is required when the http account service backend is selected"
            raise RuntimeError(msg)
        return HttpAccountService.from_url(
            settings.account_service_url,
            timeout=settings.account_service_timeout_seconds,
        )
    return DummyAccountService()


def create_app(
    settings: ServiceSettings | None = None,
    *,
    account_service: AccountService | None = None,
) -> FastAPI:
    """Create the Payment Service FastAPI application."""

    resolved_settings = settings or ServiceSettings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    database_url = resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL)
    session_factory = get_session_factory(database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        accounts = account_service or _build_account_service(resolved_settings)
        app.state.session_factory = session_factory
        app.state.account_service = accounts
        try:
            if resolved_settings.database_create_schema:
                await create_schema(database_url, Base.metadata)
            yield
        finally:
            app.state.session_factory = None
            app.state.account_service = None
            if isinstance(accounts, HttpAccountService) and account_service is None:
                await accounts.close()
            await dispose_engines()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(payments_router)
    app.include_router(refunds_router)
    return app


app = create_app()
