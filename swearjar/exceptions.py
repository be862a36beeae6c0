"""
Custom exception classes and FastAPI exception handlers.

The service layer raises these domain errors without importing any HTTP
concepts; the handlers registered here translate each one into a JSON
response of the form {"detail": ..., "error_type": ..., <context>}. The
error_type field is the discriminator clients switch on, and the context
fields (jar id, transaction id, offending amount or limit) are there so a
client can render an actionable message.

Exception hierarchy:
    SwearJarError (base)
    ├── NotFoundError              : jar, membership, transaction or bank account missing/inactive
    ├── AccessDeniedError          : Permission Gate rejected the actor
    │   └── BankAccountNotVerifiedError: bank account not cleared for withdrawals
    ├── InvalidAmountError         : amount below one cent or malformed
    ├── LimitExceededError         : deposit outside the jar's min/max
    ├── InvalidSettingsError       : inconsistent jar settings (also a ValueError)
    ├── InsufficientFundsError     : withdrawal or reversal would go negative
    ├── InvalidStateError          : transaction/jar not in the required state
    ├── AlreadyMemberError         : invite of an existing member
    ├── NotAMemberError            : mutation of a non-member
    ├── SettlementFailedError      : external transfer reported as failed
    └── ConflictError              : transient contention, safe to retry
"""

import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class SwearJarError(Exception):
    """Base exception for all ledger domain errors."""

    status_code = 400
    error_type = "error"

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)

    def context(self) -> dict:
        """Extra fields included in the JSON error body."""
        return {}


# ---------------------------------------------------------------------------
# Domain exceptions
# ---------------------------------------------------------------------------

class NotFoundError(SwearJarError):
    """Raised when a referenced resource does not exist or is inactive."""

    status_code = 404
    error_type = "not_found"

    def __init__(self, resource: str, resource_id: uuid.UUID | str):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource.replace('_', ' ').capitalize()} {resource_id} not found")

    def context(self) -> dict:
        return {"resource": self.resource, "resource_id": str(self.resource_id)}


class AccessDeniedError(SwearJarError):
    """Raised when the actor lacks the capability an operation requires."""

    status_code = 403
    error_type = "access_denied"

    def __init__(
        self,
        jar_id: uuid.UUID | None = None,
        capability: str | None = None,
        detail: str | None = None,
    ):
        self.jar_id = jar_id
        self.capability = capability
        if detail is None:
            detail = f"Access denied: '{capability}' required on jar {jar_id}"
        super().__init__(detail)

    def context(self) -> dict:
        return {
            "jar_id": str(self.jar_id) if self.jar_id else None,
            "capability": self.capability,
        }


class BankAccountNotVerifiedError(AccessDeniedError):
    """Raised when a withdrawal targets a bank account not verified for withdrawals."""

    error_type = "bank_account_not_verified"

    def __init__(self, bank_account_id: uuid.UUID):
        self.bank_account_id = bank_account_id
        super().__init__(
            capability="verified_bank_account",
            detail=f"Bank account {bank_account_id} is not verified for withdrawals",
        )

    def context(self) -> dict:
        return {"bank_account_id": str(self.bank_account_id)}


class InvalidAmountError(SwearJarError):
    """Raised when an amount is below the minimum unit (1 cent)."""

    status_code = 422
    error_type = "invalid_amount"

    def __init__(self, amount_cents: int):
        self.amount_cents = amount_cents
        super().__init__(f"Invalid amount: {amount_cents} cents (minimum is 1 cent)")

    def context(self) -> dict:
        return {"amount_cents": self.amount_cents}


class LimitExceededError(SwearJarError):
    """
    Raised when a deposit falls outside the jar's configured limits.

    Attributes:
        jar_id: The jar whose settings were violated.
        amount_cents: The requested deposit.
        limit_cents: The limit that was crossed.
        bound: "minimum" or "maximum".
    """

    status_code = 422
    error_type = "limit_exceeded"

    def __init__(self, jar_id: uuid.UUID, amount_cents: int, limit_cents: int, bound: str):
        self.jar_id = jar_id
        self.amount_cents = amount_cents
        self.limit_cents = limit_cents
        self.bound = bound
        super().__init__(f"{bound.capitalize()} deposit is {limit_cents} cents, requested {amount_cents} cents")

    def context(self) -> dict:
        return {
            "jar_id": str(self.jar_id),
            "amount_cents": self.amount_cents,
            "limit_cents": self.limit_cents,
            "bound": self.bound,
        }


class InvalidSettingsError(SwearJarError, ValueError):
    """Raised when a jar's settings are inconsistent, e.g. minimum deposit above maximum."""

    status_code = 422
    error_type = "invalid_settings"

    def __init__(self, jar_id: uuid.UUID | None, field: str, detail: str):
        self.jar_id = jar_id
        self.field = field
        super().__init__(detail)

    def context(self) -> dict:
        return {"jar_id": str(self.jar_id) if self.jar_id else None, "field": self.field}


class InsufficientFundsError(SwearJarError):
    """
    Raised when a withdrawal or reversal would cause a negative jar balance.

    Attributes:
        jar_id: The jar that lacks sufficient funds.
        requested_cents: The amount the actor tried to take out.
        available_cents: The jar balance at the time of the check.
    """

    status_code = 422
    error_type = "insufficient_funds"

    def __init__(self, jar_id: uuid.UUID, requested_cents: int, available_cents: int):
        self.jar_id = jar_id
        self.requested_cents = requested_cents
        self.available_cents = available_cents
        super().__init__(
            f"Insufficient funds: requested {requested_cents} cents, "
            f"available {available_cents} cents"
        )

    def context(self) -> dict:
        return {
            "jar_id": str(self.jar_id),
            "requested_cents": self.requested_cents,
            "available_cents": self.available_cents,
        }


class InvalidStateError(SwearJarError):
    """Raised when an operation targets a transaction or jar in the wrong state."""

    status_code = 409
    error_type = "invalid_state"

    def __init__(
        self,
        detail: str,
        transaction_id: uuid.UUID | None = None,
        current_status: str | None = None,
    ):
        self.transaction_id = transaction_id
        self.current_status = current_status
        super().__init__(detail)

    def context(self) -> dict:
        return {
            "transaction_id": str(self.transaction_id) if self.transaction_id else None,
            "current_status": self.current_status,
        }


class AlreadyMemberError(SwearJarError):
    """Raised when inviting a user who already belongs to the jar."""

    status_code = 409
    error_type = "already_member"

    def __init__(self, jar_id: uuid.UUID, user_id: uuid.UUID):
        self.jar_id = jar_id
        self.user_id = user_id
        super().__init__(f"User {user_id} is already a member of jar {jar_id}")

    def context(self) -> dict:
        return {"jar_id": str(self.jar_id), "user_id": str(self.user_id)}


class NotAMemberError(SwearJarError):
    """Raised when a membership mutation targets a user outside the jar."""

    status_code = 404
    error_type = "not_a_member"

    def __init__(self, jar_id: uuid.UUID, user_id: uuid.UUID):
        self.jar_id = jar_id
        self.user_id = user_id
        super().__init__(f"User {user_id} is not a member of jar {jar_id}")

    def context(self) -> dict:
        return {"jar_id": str(self.jar_id), "user_id": str(self.user_id)}


class SettlementFailedError(SwearJarError):
    """Raised when the external transfer backing a transaction failed."""

    status_code = 502
    error_type = "settlement_failed"

    def __init__(self, transaction_id: uuid.UUID, reason: str | None = None):
        self.transaction_id = transaction_id
        self.reason = reason
        super().__init__(f"Settlement failed for transaction {transaction_id}: {reason or 'unknown reason'}")

    def context(self) -> dict:
        return {"transaction_id": str(self.transaction_id), "reason": self.reason}


class ConflictError(SwearJarError):
    """Raised when concurrent writers collided and the operation can be retried."""

    status_code = 409
    error_type = "conflict"

    def __init__(self, jar_id: uuid.UUID | None = None):
        self.jar_id = jar_id
        target = f"jar {jar_id}" if jar_id else "the ledger"
        super().__init__(f"Concurrent update on {target}, please retry")

    def context(self) -> dict:
        return {"jar_id": str(self.jar_id) if self.jar_id else None}


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def error_body(exc: SwearJarError) -> dict:
    """Build the JSON body for a domain error."""
    return {"detail": exc.detail, "error_type": exc.error_type, **exc.context()}


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register the domain exception handler with the FastAPI application.

    Every SwearJarError subclass carries its own status code and error_type,
    so one handler on the base class covers the whole hierarchy.

    This is called once during app startup in main.py.
    """

    @app.exception_handler(SwearJarError)
    async def swear_jar_error_handler(request: Request, exc: SwearJarError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=error_body(exc))
