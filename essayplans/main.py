import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from essayplans.api import subscriptions
from essayplans.core.config import settings, validate_config
from essayplans.core.database import check_connection, create_all_tables
from essayplans.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from essayplans.core.logging import configure_logging
from essayplans.core.middleware.request_id import RequestIdMiddleware

configure_logging(settings.ENV, settings.LOG_LEVEL)
validate_config(strict=settings.CONFIG_STRICT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("essayplans")
    logger.info("Starting essayplans backend...")
    create_all_tables()
    try:
        yield
    finally:
        logger.info("Stopping essayplans backend...")


app = FastAPI(title="Essay plans - subscriptions & entitlements", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(subscriptions.router)
app.include_router(subscriptions.essays_router)


@app.get("/healthz")
def healthz():
    """Liveness."""
    return {"status": "ok"}


@app.get("/readyz")
def readyz():
    """Readiness: the subscription store answers."""
    return {"status": "ok", "db": check_connection()}
