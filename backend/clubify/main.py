from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from .api import clubs, events, memberships, payments, registrations, stripe, users
from .config import Settings, get_settings
from .db import Store
from .errors import install_error_handlers
from .guard import AccessGuard, IdentityStrategy, TokenStrategy, strategy_from_settings
from .log import configure_logging
from .payments import PaymentGateway

# Load .env
load_dotenv()


def create_app(
    settings: Optional[Settings] = None,
    gateway: Optional[PaymentGateway] = None,
    strategy: Optional[IdentityStrategy] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    store = Store(settings.database_url)
    strategy = strategy or strategy_from_settings(settings)
    if strategy.insecure:
        logger.warning(f"Authentication mode '{strategy.label}' is not safe for production")
    if isinstance(strategy, TokenStrategy) and not strategy.configured:
        logger.error("AUTH_MODE=token needs JWT_SECRET or JWT_JWKS_URL; every bearer token will be rejected")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.create_all()
        logger.info(f"Store ready at {store.engine.url.render_as_string(hide_password=True)}")
        yield
        store.dispose()

    app = FastAPI(title="Clubify API", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.guard = AccessGuard(strategy)
    app.state.gateway = gateway or PaymentGateway(
        api_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        currency=settings.stripe_currency,
        tolerance=settings.stripe_webhook_tolerance,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    @app.get("/")
    def read_root():
        return {"message": "Clubify server is running"}

    @app.get("/health")
    def health():
        try:
            store.ping()
        except SQLAlchemyError:
            logger.exception("Health check could not reach the store")
            return JSONResponse(status_code=503, content={"status": "unavailable"})
        return {"status": "ok"}

    for module in (users, clubs, events, memberships, registrations, payments, stripe):
        app.include_router(module.router)

    return app


app = create_app()
