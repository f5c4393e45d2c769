"""Map ledger rejections to HTTP responses"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from peerpool_ledger.domain.exceptions import (
    AuthorizationError,
    InvalidRequestError,
    LedgerError,
    LoanNotFoundError,
    StateConflictError,
    TimingError,
    TransferFailedError,
)

STATUS_BY_ERROR = {
    AuthorizationError: 403,
    LoanNotFoundError: 404,
    StateConflictError: 409,
    TimingError: 409,
    InvalidRequestError: 422,
    TransferFailedError: 502,
}


def status_for(exc: LedgerError) -> int:
    for error_type, status_code in STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return status_code
    return 400


def register_error_handlers(app: FastAPI) -> None:
    """Register the ledger error handler on the FastAPI app"""

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        status_code = status_for(exc)
        if isinstance(exc, TransferFailedError):
            logging.error(f"Transfer failed: {exc}", extra={"path": request.url.path})
        else:
            logging.warning(f"Ledger request rejected: {exc}", extra={"path": request.url.path})

        return JSONResponse(
            status_code=status_code,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )
