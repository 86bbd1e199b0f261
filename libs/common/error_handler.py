"""Map typed domain errors to JSON responses.

Domain errors expose ``status_code``, ``code``, ``message`` and ``to_dict()``.

Usage:
    from libs.common.error_handler import add_exception_handlers

    app = FastAPI()
    add_exception_handlers(app, CommerceError)
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from libs.common.logging import get_logger

logger = get_logger(__name__)


async def domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    status_code = getattr(exc, "status_code", 400)
    code = getattr(exc, "code", "ERROR")
    if status_code >= 500:
        logger.error("%s on %s: %s", code, request.url.path, exc)
    else:
        logger.info("%s on %s: %s", code, request.url.path, exc)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def add_exception_handlers(app: FastAPI, *error_types: type[Exception]) -> None:
    for error_type in error_types:
        app.add_exception_handler(error_type, domain_error_handler)
