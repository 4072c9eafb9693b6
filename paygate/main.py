import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from paygate.core.config import settings
from paygate.core.deps import Services, build_default_services
from paygate.core.errors import PaygateError
from paygate.core.middleware import RateLimitMiddleware, RequestLogMiddleware
from paygate.modules.content.router import router as content_router
from paygate.modules.payments.router import router as payments_router
from paygate.modules.receipts.router import router as receipts_router

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


async def paygate_error_handler(request: Request, exc: PaygateError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = ", ".join(".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors())
    return JSONResponse(
        status_code=400,
        content={"error": "ValidationError", "message": f"Missing or invalid fields: {fields}" if fields else "Invalid request"},
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"{request.method} {request.url.path} crashed", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "InternalError", "message": "Internal server error"})


def create_app(services: Optional[Services] = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if getattr(app.state, "services", None) is None:
            owned = await build_default_services()
            app.state.services = owned
        yield
        if owned is not None:
            await owned.aclose()

    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)
    app.state.services = services

    app.add_exception_handler(PaygateError, paygate_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Payment-Required", "X-Payment-Id", "X-Payment-Address", "X-Asset-Type", "X-Expires-At"],
    )
    app.add_middleware(
        RateLimitMiddleware,
        limit_per_minute=settings.RATE_LIMIT_PER_MINUTE,
        paywall_limit_per_minute=settings.PAYWALL_RATE_LIMIT_PER_MINUTE,
    )
    app.add_middleware(RequestLogMiddleware)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(content_router, tags=["content"])
    app.include_router(payments_router, tags=["paywall"])
    app.include_router(receipts_router, tags=["receipts"])

    return app


configure_logging()
app = create_app()
