import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from sql_gateway.api.router import api_router
from sql_gateway.core.config import Settings, settings
from sql_gateway.core.cors import OriginPolicy, origin_guard
from sql_gateway.core.errors import GatewayError, UnhandledError, error_envelope
from sql_gateway.core.database import SqlAlchemyDriver
from sql_gateway.core.security import build_cipher

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("SQL gateway started")
    yield
    # Sessions never outlive their request, nothing to dispose here
    logger.info("SQL gateway stopped")


async def handle_gateway_error(request: Request, error: GatewayError):
    return JSONResponse(status_code=error.status_code, content=error_envelope(error))


async def handle_invalid_body(request: Request, error: RequestValidationError):
    errors = _safe_errors(error)
    logger.error(f"Malformed request body on {request.url.path}: {errors}")
    unhandled = UnhandledError(
        "Malformed request body",
        {"name": type(error).__name__, "errors": errors},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_envelope(unhandled),
    )


async def handle_unexpected_error(request: Request, error: Exception):
    logger.exception(f"Unhandled error on {request.url.path}")
    unhandled = UnhandledError(
        str(error) or "Internal Server Error", {"name": type(error).__name__}
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_envelope(unhandled),
    )


def _safe_errors(error: RequestValidationError):
    # Keep location and reason only, never echo the submitted values back
    return [
        {"loc": list(item.get("loc", ())), "msg": item.get("msg", "")}
        for item in error.errors()
    ]


def create_app(config: Optional[Settings] = None) -> FastAPI:
    config = config or settings
    logging.basicConfig(level=config.LOG_LEVEL)

    app = FastAPI(title="SQL Gateway", lifespan=lifespan)

    # Read-only, shared by every request
    app.state.settings = config
    app.state.cipher = build_cipher(config)
    app.state.driver = SqlAlchemyDriver(config.DB_DIALECT)

    policy = OriginPolicy(config.CORS_ORIGINS, config.CORS_ORIGIN_REGEX)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(policy.origins),
        allow_origin_regex=policy.origin_regex,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    # Added last so it runs first and rejects before CORS headers are computed
    app.middleware("http")(origin_guard(policy))

    app.add_exception_handler(GatewayError, handle_gateway_error)
    app.add_exception_handler(RequestValidationError, handle_invalid_body)
    app.add_exception_handler(Exception, handle_unexpected_error)

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "SQL gateway is running"

    # Include the master router containing all our endpoints
    app.include_router(api_router)
    return app


app = create_app()
