# inkbook/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from sqlmodel import Session

from inkbook import db
from inkbook.auth import ensure_artist_account
from inkbook.config import get_settings
from inkbook.errors import InkbookError
from inkbook.routers import (
    auth_routes,
    availability_routes,
    books_routes,
    bookings_routes,
    payments_routes,
    users_routes,
    webhooks_routes,
)

# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db.init_db()
    with Session(db.engine) as session:
        ensure_artist_account(session)
    logger.info("%s booking API started", get_settings().studio_name)
    yield


app = FastAPI(title="Inkbook", lifespan=lifespan)

app.include_router(auth_routes.router)
app.include_router(users_routes.router)
app.include_router(books_routes.router)
app.include_router(availability_routes.router)
app.include_router(bookings_routes.router)
app.include_router(payments_routes.router)
app.include_router(webhooks_routes.router)


@app.exception_handler(InkbookError)
async def inkbook_error_handler(request: Request, exc: InkbookError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return await http_exception_handler(request, exc.to_http_exception())


@app.get("/health")
def health_check():
    return {"status": "ok"}
