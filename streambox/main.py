import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from streambox.core.config import settings
from streambox.core.errors import MarketplaceError, ValidationFailed, marketplace_error_handler
from streambox.core.gateway import PersistenceGateway
from streambox.core.middleware import RateLimitMiddleware
from streambox.modules.delivery.service import StreamingGate
from streambox.modules.ledger.client import LedgerClient
from streambox.modules.sales.service import PurchaseVerifier
from streambox.modules.storage.registry import StoreRegistry
from streambox.modules.uploads.service import UploadRegistrar

logger = logging.getLogger(__name__)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return await marketplace_error_handler(request, ValidationFailed("Invalid request", errors=errors))


def create_app() -> FastAPI:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title=settings.PROJECT_NAME,
        openapi_url=f"{settings.API_V1_STR}/openapi.json"
    )

    @app.on_event("startup")
    async def startup_event():
        # Components already placed on app.state (tests) are left alone
        state = app.state
        if not hasattr(state, "gateway"):
            state.gateway = PersistenceGateway.from_url(settings.async_database_url)
        if not hasattr(state, "ledger"):
            state.ledger = LedgerClient.from_settings(settings)
        if not hasattr(state, "stores"):
            state.stores = StoreRegistry.from_settings(settings)
        if not hasattr(state, "verifier"):
            state.verifier = PurchaseVerifier.from_settings(state.gateway, state.ledger, settings)
        if not hasattr(state, "registrar"):
            state.registrar = UploadRegistrar(
                state.gateway, state.stores, settings.MAX_UPLOAD_BYTES, settings.CONTENT_REFERENCE_HOSTS
            )
        if not hasattr(state, "streaming_gate"):
            state.streaming_gate = StreamingGate(
                state.gateway, state.verifier, state.stores, settings.STREAM_CHUNK_BYTES
            )

        await state.gateway.create_schema()
        logger.info("%s started (upload backend: %s)", settings.PROJECT_NAME, state.stores.upload_backend)

    @app.on_event("shutdown")
    async def shutdown_event():
        await app.state.stores.close()
        await app.state.ledger.close()
        await app.state.gateway.dispose()

    @app.get("/")
    def root():
        return {"message": "Welcome to the StreamBox API", "docs": "/docs"}

    @app.get("/health")
    async def health():
        ledger_ready = await app.state.ledger.is_ready()
        stores = await app.state.stores.readiness()
        database = await app.state.gateway.ping()
        upload_ready = stores.get(app.state.stores.upload_backend, False)
        return {
            "status": "ok" if (ledger_ready and database and upload_ready) else "degraded",
            "database": database,
            "ledger": ledger_ready,
            "content_stores": stores,
        }

    app.add_exception_handler(MarketplaceError, marketplace_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        RateLimitMiddleware,
        limit_per_minute=settings.RATE_LIMIT_PER_MINUTE,
        purchase_limit_per_minute=settings.PURCHASE_RATE_LIMIT_PER_MINUTE,
    )

    from streambox.modules.accounts.router import router as accounts_router
    from streambox.modules.accounts.explore_router import router as explore_router
    from streambox.modules.assets.router import router as assets_router
    from streambox.modules.sales.router import router as sales_router
    from streambox.modules.uploads.router import router as uploads_router
    from streambox.modules.delivery.router import router as delivery_router
    from streambox.modules.subscriptions.router import router as subscriptions_router

    app.include_router(accounts_router, prefix=f"{settings.API_V1_STR}/accounts", tags=["accounts"])
    app.include_router(explore_router, prefix=f"{settings.API_V1_STR}/creators", tags=["explore"])
    app.include_router(subscriptions_router, prefix=f"{settings.API_V1_STR}/creators", tags=["subscriptions"])
    app.include_router(assets_router, prefix=f"{settings.API_V1_STR}/assets", tags=["assets"])
    app.include_router(sales_router, prefix=f"{settings.API_V1_STR}/assets", tags=["sales"])
    app.include_router(uploads_router, prefix=f"{settings.API_V1_STR}/assets", tags=["uploads"])
    app.include_router(delivery_router, prefix=f"{settings.API_V1_STR}/assets", tags=["playback"])

    return app


app = create_app()
