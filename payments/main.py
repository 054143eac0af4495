from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payments import __version__
from payments.config import Settings, get_settings
from payments.database import build_engine, build_session_maker, init_db
from payments.exceptions import PaymentsError
from payments.logging_config import configure_logging
from payments.routers import family_router, health_router, subscriptions_router, webhook_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    logger.info("Starting %s (%s)", settings.app_name, settings.environment)

    # tests attach their own engine before startup
    if getattr(app.state, "engine", None) is None:
        app.state.engine = build_engine(settings)
        app.state.session_maker = build_session_maker(app.state.engine)
    await init_db(app.state.engine)
    logger.info("Database initialized")

    yield

    await app.state.engine.dispose()
    logger.info("Shutting down %s", settings.app_name)


async def payments_error_handler(request: Request, exc: PaymentsError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"error": "validation_error", "message": message})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PaymentsError, payments_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(health_router)
    app.include_router(webhook_router)
    app.include_router(subscriptions_router)
    app.include_router(family_router)

    @app.exception_handler(404)
    async def not_found(request: Request, exc) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={"error": "not_found", "message": "Not found", "path": request.url.path},
        )

    return app


app = create_app()

if __name__ == "__main__":
    port = int(os.getenv("PORT", "5000"))
    uvicorn.run(
        "payments.main:app",
        host="0.0.0.0",
        port=port,
        reload=get_settings().environment != "production",
    )
