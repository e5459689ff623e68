import logging
from functools import wraps

from fastapi import HTTPException, status

from chatcore.api.common.exceptions import handle_service_error
from chatcore.services.exceptions import DatabaseError, ServiceError

logger = logging.getLogger(__name__)


def log_route_call(func):
    """
    Logs entry and exit of a route function under the route module's logger.
    Upload bodies are logged by type only.
    """

    @wraps(func)
    async def wrapper(*args, **kwargs):
        route_logger = logging.getLogger(func.__module__)
        logged_kwargs = {
            k: (type(v).__name__ if isinstance(v, (bytes, bytearray)) else repr(v))
            for k, v in kwargs.items()
        }

        route_logger.info(f"Entering route: {func.__name__} (kwargs: {logged_kwargs})")
        try:
            result = await func(*args, **kwargs)
            route_logger.info(f"Successfully exited route: {func.__name__}")
            return result
        except Exception as e:
            route_logger.error(
                f"Error during route: {func.__name__}. Exception: {type(e).__name__} - {e}",
                exc_info=False,
            )
            raise

    return wrapper


def handle_route_errors(func):
    """
    Standardizes error handling in API routes: service exceptions become
    APIExceptions through handle_service_error, anything unexpected a 500.
    """

    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except DatabaseError as e:
            logger.error(f"Database error in {func.__name__} route: {e}", exc_info=True)
            handle_service_error(e)
        except ServiceError as e:
            logger.warning(f"Service error in {func.__name__} route: {e}")
            handle_service_error(e)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(
                f"Unexpected error in {func.__name__} route: {e}", exc_info=True
            )
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="An unexpected server error occurred.",
            )

    return wrapper
