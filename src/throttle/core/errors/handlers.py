"""RFC 7807 Problem Details exception handlers.

See: https://tools.ietf.org/html/rfc7807
"""

from typing import TYPE_CHECKING, Any, cast

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from throttle.config import settings
from throttle.core.errors.exceptions import ThrottleError


if TYPE_CHECKING:
    from starlette.types import ExceptionHandler


logger = structlog.get_logger()


class ProblemDetail(BaseModel):
    """RFC 7807 Problem Details response schema.

    Attributes:
        type: URI reference identifying the problem type
        title: Short human-readable summary
        status: HTTP status code
        detail: Human-readable explanation specific to this occurrence
        instance: URI reference identifying this specific occurrence
    """

    type: str
    title: str
    status: int
    detail: str
    instance: str | None = None

    model_config = {"extra": "allow"}


def get_error_type_uri(error_code: str) -> str:
    """Generate a URI for the error type."""
    return f"{settings.api_docs_base_url}/errors/{error_code}"


def problem_response(
    exc: ThrottleError,
    instance: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Render a throttling exception as a Problem Details response.

    Args:
        exc: The exception to render
        instance: Request path the problem occurred on
        headers: Extra response headers (e.g. Retry-After)

    Returns:
        JSON response carrying the problem document
    """
    content: dict[str, Any] = ProblemDetail(
        type=get_error_type_uri(exc.error_code),
        title=exc.error_code.replace("_", " ").title(),
        status=exc.status_code,
        detail=exc.message,
        instance=instance,
    ).model_dump(exclude_none=True)

    for key, value in exc.details.items():
        if key not in content:
            content[key] = value

    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=headers,
    )


async def throttle_exception_handler(
    request: Request, exc: ThrottleError
) -> JSONResponse:
    """Handle throttling exceptions raised while serving a request."""
    logger.warning(
        "throttle_exception",
        error_code=exc.error_code,
        message=exc.message,
        status_code=exc.status_code,
        path=str(request.url.path),
    )
    return problem_response(exc, instance=str(request.url.path))


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions.

    The actual error details are logged but not exposed to clients.
    """
    logger.exception(
        "unhandled_exception",
        path=str(request.url.path),
        error_type=type(exc).__name__,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ProblemDetail(
            type=get_error_type_uri("internal_error"),
            title="Internal Server Error",
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred",
            instance=str(request.url.path),
        ).model_dump(exclude_none=True),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register the exception handlers with the FastAPI app."""
    app.add_exception_handler(
        ThrottleError, cast("ExceptionHandler", throttle_exception_handler)
    )
    app.add_exception_handler(Exception, generic_exception_handler)
