"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
    3. CORSMiddleware — handles the browser dashboard
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

import structlog
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from agrotrust_escrow.domain.exceptions import (
    ConcurrentModificationError,
    ContractConflictError,
    ContractNotFoundError,
    ContractStateError,
    EscrowError,
    EscrowValidationError,
    InvalidStateTransitionError,
    PaymentProviderError,
)
from agrotrust_escrow.schemas.escrow import ErrorResponse, EscrowResponse

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)


def _json(status_code: int, body: ErrorResponse) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True),
    )


def error_response(status_code: int, exc: EscrowError, **extra: Any) -> JSONResponse:
    return _json(status_code, ErrorResponse(error=exc.code, message=exc.message, **extra))


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Use client-provided ID or generate one
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        # Bind to structlog context for all log entries in this request
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except EscrowValidationError as exc:
            logger.info("request.invalid", error=exc.message, field=exc.field)
            return error_response(400, exc, field=exc.field)
        except ContractNotFoundError as exc:
            logger.warning("contract.not_found", error=exc.message)
            return error_response(404, exc)
        except ContractStateError as exc:
            # NotYetFunded / AlreadyFinalized report the current contract back.
            logger.warning("contract.state_conflict", code=exc.code, contract_id=exc.contract.id)
            return error_response(
                409,
                exc,
                contract=EscrowResponse.from_contract(exc.contract),
            )
        except InvalidStateTransitionError as exc:
            logger.warning(
                "state_machine.invalid_transition",
                current=exc.current_state,
                attempted=exc.attempted,
            )
            return error_response(409, exc)
        except (ConcurrentModificationError, ContractConflictError) as exc:
            logger.warning("contract.write_conflict", error=exc.message)
            return error_response(409, exc)
        except PaymentProviderError as exc:
            logger.error(
                "payment.provider_error",
                error=exc.message,
                kind=exc.kind,
                operation=exc.operation,
                provider_code=exc.provider_code,
            )
            return error_response(503 if exc.transient else 502, exc, kind=exc.kind)
        except EscrowError as exc:
            logger.error("domain.error", error=exc.message, code=exc.code)
            return error_response(400, exc)
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return _json(
                500,
                ErrorResponse(error="INTERNAL_ERROR", message="An unexpected error occurred"),
            )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are reported like domain validation errors."""
    logger.info("request.invalid", errors=len(exc.errors()))
    return _json(
        400,
        ErrorResponse(
            error="VALIDATION_ERROR",
            message="Request validation failed",
            details=jsonable_encoder(exc.errors()),
        ),
    )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters — middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # CORS (runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Tighten in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handling (runs second)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)
