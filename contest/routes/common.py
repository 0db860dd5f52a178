import logging
import math

from fastapi import HTTPException, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


class MessageResponse(BaseModel):
    message: str


class PageMeta(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


def page_meta(total: int, page: int, limit: int) -> PageMeta:
    return PageMeta(total=total, page=page, limit=limit, total_pages=math.ceil(total / limit) if limit else 0)


def database_unavailable(exc: SQLAlchemyError) -> HTTPException:
    logger.error('Database operation failed', exc_info=exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def storage_unavailable(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc) or 'File storage error.')
