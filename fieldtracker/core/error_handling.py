"""
Standardized error handling utilities for API endpoints.
"""
from functools import wraps
from typing import Callable, Any
from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
import logging

from fieldtracker.core.config import settings

logger = logging.getLogger(__name__)


def license_error(errors: list[str]) -> HTTPException:
    """Build the 403 raised whenever the active license does not permit access."""
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "error": "LICENSE_INVALID",
            "message": "Invalid or expired license",
            "errors": errors,
        },
    )


def handle_endpoint_errors(
    operation_name: str = None,
    log_error: bool = True,
):
    """
    Decorator to standardize error handling across all endpoints.

    Catches unexpected exceptions, logs them, and returns appropriate HTTP responses.

    Usage:
        @handle_endpoint_errors(operation_name="sync_push")
        async def sync_push_endpoint(...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            op_name = operation_name or func.__name__
            try:
                return await func(*args, **kwargs)
            except HTTPException:
                # Already properly formatted
                raise
            except IntegrityError as e:
                # Usually two devices racing to create the same record
                if log_error:
                    logger.warning(f"Integrity error in {op_name}: {e.orig}")
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="Request conflicts with existing data",
                )
            except ValueError as e:
                if log_error:
                    logger.warning(f"Value error in {op_name}: {str(e)}")
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Invalid input: {str(e)}",
                )
            except Exception as e:
                error_detail = str(e)
                error_type = type(e).__name__

                if "no such table" in error_detail.lower() or "does not exist" in error_detail.lower():
                    error_detail = f"Database schema issue detected. Please ensure all migrations have been run. Original error: {error_detail}"

                if log_error:
                    logger.error(
                        f"Unexpected error in {op_name}",
                        exc_info=True,
                        extra={
                            "operation": op_name,
                            "error": error_detail,
                            "error_type": error_type
                        }
                    )

                if settings.ENVIRONMENT.lower() not in ["prod", "production"]:
                    detail_msg = f"Error in {op_name}: {error_type}: {error_detail}"
                else:
                    detail_msg = "An unexpected error occurred while processing your request. Please try again later."

                raise HTTPException(
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                    detail=detail_msg,
                )
        return wrapper
    return decorator
