import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from services.exceptions import DatabaseQueryError, ReservationDomainError

logger = logging.getLogger(__name__)


async def domain_exception_handler(request: Request, exc: ReservationDomainError):
    logger.info(f"{request.method} {request.url.path} rejected: {exc.error_code}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def database_exception_handler(request: Request, exc: DatabaseQueryError):
    logger.error(f"{request.method} {request.url.path} failed on the database: {exc}")
    return JSONResponse(
        status_code=503,
        content={"error": "database_unavailable", "message": "The database is temporarily unavailable."},
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(ReservationDomainError, domain_exception_handler)
    app.add_exception_handler(DatabaseQueryError, database_exception_handler)
