from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from datetime import datetime
from typing import Callable, Optional
import logging

from storefront.shared.config import settings
from storefront.shared.utils import get_db_client, ErrorResponse, HealthResponse, SuccessResponse
from storefront.shared.logging_config import setup_logging, RequestLoggingMiddleware
from storefront.shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware
from storefront.auth.routes import router as auth_router
from storefront.products.routes import router as products_router
from storefront.orders.routes import cart_router, order_router
from storefront.orders.admin import router as admin_router
from storefront.orders.checkout import recover_checkouts
from storefront.notifications.email import EmailSender, get_email_sender
from storefront.notifications.notifier import OrderNotifier

SERVICE_NAME = "storefront"
VERSION = "1.0.0"


def _error(status_code: int, message: str, data=None, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(ErrorResponse(message=message, data=data)),
        headers=headers,
    )


def register_exception_handlers(app: FastAPI, logger: logging.Logger):
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail), getattr(exc, "details", None), exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation failed", errors)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error", extra={
            "request_id": getattr(request.state, "request_id", None),
            "path": request.url.path,
        })
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


async def ensure_indexes(db):
    await db.users.create_index("email", unique=True)
    await db.revoked_tokens.create_index("exp", expireAfterSeconds=0)
    await db.categories.create_index("slug", unique=True)
    await db.products.create_index([("category", 1), ("is_active", 1)])
    await db.carts.create_index("user_id", unique=True)
    await db.orders.create_index("order_number", unique=True)
    await db.orders.create_index([("user_id", 1), ("created_at", -1)])
    await db.orders.create_index("order_status")
    await db.checkouts.create_index("state")


def create_app(client_factory: Callable = get_db_client, email_sender: Optional[EmailSender] = None) -> FastAPI:
    logger = setup_logging(SERVICE_NAME, settings.LOG_LEVEL)

    app = FastAPI(title="Storefront API", version=VERSION)

    # Security Setup
    setup_rate_limiting(app)
    app.add_middleware(SecurityHeadersMiddleware)

    # Middleware
    app.add_middleware(RequestLoggingMiddleware, service_name=SERVICE_NAME)

    # CORS Configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app, logger)
    app.state.notifier = OrderNotifier(email_sender or get_email_sender())

    @app.on_event("startup")
    async def startup_db_client():
        app.mongodb_client = client_factory(settings.MONGO_URL)
        app.mongodb = app.mongodb_client[settings.MONGO_DB_NAME]
        await ensure_indexes(app.mongodb)
        summary = await recover_checkouts(app.mongodb)
        if summary["rolled_forward"] or summary["rolled_back"]:
            logger.warning(f"Recovered interrupted checkouts: {summary}")

    @app.on_event("shutdown")
    async def shutdown_db_client():
        app.mongodb_client.close()

    for router in (auth_router, products_router, cart_router, order_router, admin_router):
        app.include_router(router, prefix="/api")

    @app.get("/health", response_model=SuccessResponse[HealthResponse])
    async def health_check():
        try:
            await app.mongodb.command("ping")
            db_status = "connected"
        except Exception:
            logger.exception("Database ping failed")
            db_status = "disconnected"

        health = HealthResponse(
            service=SERVICE_NAME,
            status="healthy" if db_status == "connected" else "unhealthy",
            timestamp=datetime.utcnow(),
            version=VERSION,
            database=db_status,
        )
        if db_status != "connected":
            return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Service Unhealthy", health)
        return SuccessResponse(data=health)

    return app


app = create_app()
