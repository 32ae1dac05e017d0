"""
Error Handler - sanitized HTTP errors for portal routes

Account flows turn expected failures into FlowResult values. Anything else
that escapes a route is logged in full here and answered with a generic
message, so internal details never reach the browser.

Usage:
    from rental_portal.utils.error_handler import log_and_raise

    try:
        result = await flow.submit(...)
    except Exception as e:
        log_and_raise(500, "changing password", e, logger)
"""

import logging
from typing import NoReturn

from fastapi import HTTPException


def safe_error_response(
    status_code: int,
    operation: str,
    exception: Exception,
    logger: logging.Logger
) -> HTTPException:
    """
    Log the exception with traceback and build a generic HTTPException.

    Args:
        status_code: HTTP status code
        operation: What was being done, e.g. "assessing password"
        exception: The caught exception
        logger: Logger of the calling module

    Returns:
        HTTPException whose detail never contains the exception text
    """
    logger.error(f"{operation} failed: {exception}", exc_info=True)

    if status_code >= 500:
        detail = f"An internal error occurred while {operation}. Please try again later."
    else:
        detail = f"Error while {operation}. Please check your request and try again."

    return HTTPException(status_code=status_code, detail=detail)


def log_and_raise(
    status_code: int,
    operation: str,
    exception: Exception,
    logger: logging.Logger
) -> NoReturn:
    raise safe_error_response(status_code, operation, exception, logger)
