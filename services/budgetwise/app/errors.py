from __future__ import annotations

from fastapi import Request, status
from fastapi.responses import JSONResponse

from shared.errors import error_response


class BudgetwiseError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(BudgetwiseError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(BudgetwiseError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(BudgetwiseError):
    status_code = status.HTTP_409_CONFLICT


class DepositPathDisabled(BudgetwiseError):
    status_code = status.HTTP_403_FORBIDDEN


class GatewayUnavailable(BudgetwiseError):
    """Provider credentials are not configured."""


class GatewayError(BudgetwiseError):
    """The provider rejected the request or could not be reached.

    ``provider_status`` keeps the upstream HTTP status for callers that need
    to tell a bad reference from an outage; it is never rendered to clients.
    """

    def __init__(self, message: str, *, provider_status: int | None = None) -> None:
        super().__init__(message)
        self.provider_status = provider_status


class PaymentNotCompleted(BudgetwiseError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, provider_status: str) -> None:
        super().__init__(f"Payment not completed. Status: {provider_status}")
        self.provider_status = provider_status


class DepositNotRecorded(BudgetwiseError):
    """The provider took the money but the wallet could not be credited."""

    def __init__(self, reference: str) -> None:
        super().__init__(
            "Payment was received but your wallet could not be updated. "
            f"Contact support with reference {reference}.",
            detail=reference,
        )
        self.reference = reference


async def budgetwise_exception_handler(request: Request, exc: BudgetwiseError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    return error_response(exc.status_code, error=exc.message, detail=exc.detail, request_id=request_id)
