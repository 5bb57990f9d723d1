"""
Global exception handlers mapping lending errors to HTTP responses
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..errors import LendingError

logger = logging.getLogger("peer_lending.api")


def register_error_handlers(app: FastAPI) -> None:
    """Register domain error handlers on the FastAPI app"""
    
    @app.exception_handler(LendingError)
    async def lending_error_handler(request: Request, exc: LendingError):
        logger.warning(
            f"{exc.code} on {request.method} {request.url.path}: {exc.message}"
        )
        return JSONResponse(status_code=exc.http_status, content=exc.to_response())
