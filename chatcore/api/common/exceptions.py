import logging
from typing import Any

from fastapi import HTTPException, status

from chatcore.services.exceptions import (
    AttachmentRecordError,
    BusinessRuleError,
    ConflictError,
    ConversationNotFoundError,
    DatabaseError,
    MessageNotFoundError,
    NotAuthorizedError,
    ServiceError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)


class APIException(HTTPException):
    """Base class for API specific exceptions."""

    def __init__(
        self, status_code: int, detail: Any = None, headers: dict | None = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class NotFoundError(APIException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class BadRequestError(APIException):
    def __init__(self, detail: str = "Bad request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class ForbiddenError(APIException):
    def __init__(self, detail: str = "Forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class ConflictAPIError(APIException):
    def __init__(self, detail: str = "Conflict"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class InternalServerError(APIException):
    def __init__(self, detail: str = "Internal server error"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail
        )


def handle_service_error(e: ServiceError):
    """
    Maps ServiceError subclasses to APIExceptions. Always raises; called by
    the @handle_route_errors decorator.
    """
    message = getattr(e, "message", str(e))
    logger.info(f"Handling service error: {e.__class__.__name__} - {message}")

    if isinstance(
        e, (ConversationNotFoundError, MessageNotFoundError, UserNotFoundError)
    ):
        raise NotFoundError(detail=message)
    elif isinstance(e, NotAuthorizedError):
        raise ForbiddenError(detail=message)
    elif isinstance(e, BusinessRuleError):
        raise BadRequestError(detail=message)
    elif isinstance(e, ConflictError):
        raise ConflictAPIError(detail=message)
    elif isinstance(e, AttachmentRecordError):
        # The client needs to know its upload did not become a message
        raise InternalServerError(detail=message)
    elif isinstance(e, DatabaseError):
        raise InternalServerError(detail="A database error occurred.")
    else:
        status_code = getattr(e, "status_code", status.HTTP_500_INTERNAL_SERVER_ERROR)
        raise APIException(status_code=status_code, detail=message)
