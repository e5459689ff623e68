# This file makes chatcore/api/common a Python package

from .base_router import BaseRouter
from .decorators import handle_route_errors, log_route_call
from .exceptions import (
    APIException,
    BadRequestError,
    ConflictAPIError,
    ForbiddenError,
    InternalServerError,
    NotFoundError,
    handle_service_error,
)

__all__ = [
    "log_route_call",
    "handle_route_errors",
    "APIException",
    "NotFoundError",
    "BadRequestError",
    "ForbiddenError",
    "ConflictAPIError",
    "InternalServerError",
    "handle_service_error",
    "BaseRouter",
]
