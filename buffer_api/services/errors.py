"""Service error taxonomy and the mapping onto external error codes.

Every failure the services raise on purpose is a ``BufferServiceError`` whose
category and code are fixed where it is raised. ``resolve_error`` turns any
exception into the ``(status_code, error_code, message)`` triple the HTTP layer
responds with; it never inspects message text and never raises.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    POLICY = "policy"
    CONFIRMATION = "confirmation"
    INTERNAL = "internal"


CATEGORY_STATUS = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.POLICY: 409,
    ErrorCategory.CONFIRMATION: 409,
    ErrorCategory.INTERNAL: 500,
}


class BufferServiceError(Exception):
    category: ErrorCategory = ErrorCategory.INTERNAL
    error_code: str = "INTERNAL_ERROR"
    public_message: str = "Internal error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        error_code: Optional[str] = None,
        details: Any = None,
    ) -> None:
        super().__init__(message or self.public_message)
        if error_code:
            self.error_code = error_code
        self.details = details


class RequestValidationFailed(BufferServiceError):
    category = ErrorCategory.VALIDATION
    error_code = "INVALID_REQUEST"
    public_message = "Invalid request payload."


class PreconditionConflict(BufferServiceError):
    category = ErrorCategory.CONFLICT
    error_code = "PRECONDITION_FAILED"
    public_message = "Request conflicts with the current onboarding state."


class WalletNotReady(PreconditionConflict):
    error_code = "WALLET_NOT_READY"
    public_message = "User has no wallet address. Complete wallet provisioning first."


class VaultAlreadyActive(PreconditionConflict):
    error_code = "VAULT_ALREADY_ACTIVE"
    public_message = "User already has an active vault."


class VaultSubmitInvalidState(PreconditionConflict):
    error_code = "VAULT_SUBMIT_INVALID_STATE"
    public_message = "Missing predicted vault address for submitted vault transaction."


class VaultPrepareInProgress(PreconditionConflict):
    error_code = "VAULT_PREPARE_IN_PROGRESS"
    public_message = "Vault preparation already in progress for this user."


class OnboardingIncomplete(PreconditionConflict):
    error_code = "ONBOARDING_INCOMPLETE"
    public_message = "User has no stellar address. Complete onboarding first."


class ContractNotAvailable(PreconditionConflict):
    error_code = "BUFFER_CONTRACT_NOT_AVAILABLE"
    public_message = "No buffer contract available for this user."


class TransactionNotFound(BufferServiceError):
    category = ErrorCategory.NOT_FOUND
    error_code = "TRANSACTION_NOT_FOUND"
    public_message = "Transaction not found."


class TransactionAlreadyFinalized(PreconditionConflict):
    error_code = "TRANSACTION_ALREADY_FINALIZED"
    public_message = "Transaction has already been finalized."


class UserSignatureRequired(BufferServiceError):
    category = ErrorCategory.POLICY
    error_code = "USER_SIGNATURE_REQUIRED"
    public_message = (
        "Server-side signing is disabled for user fund movements. "
        "Submit a user-signed transaction hash."
    )


class ConfirmationFailed(BufferServiceError):
    category = ErrorCategory.CONFIRMATION
    error_code = "CONFIRMATION_FAILED"
    public_message = "On-chain confirmation failed."


class VaultNotConfirmed(ConfirmationFailed):
    error_code = "VAULT_NOT_CONFIRMED"
    public_message = "Vault not confirmed after polling."


class VaultTransactionFailed(ConfirmationFailed):
    error_code = "VAULT_TX_FAILED"
    public_message = "Vault creation transaction did not succeed on-chain."


class ExternalServiceError(BufferServiceError):
    """An upstream provider failed or returned an unusable payload."""

    error_code = "UPSTREAM_ERROR"


class DatastoreError(BufferServiceError):
    error_code = "DATASTORE_ERROR"


@dataclass(frozen=True)
class ResolvedError:
    status_code: int
    error_code: str
    message: str
    details: Any = None

    def to_payload(self) -> dict:
        return {"errorCode": self.error_code, "message": self.message, "details": self.details}


def resolve_error(
    exc: BaseException,
    fallback_code: str = "INTERNAL_ERROR",
    fallback_message: str = "Internal error",
) -> ResolvedError:
    try:
        if isinstance(exc, BufferServiceError):
            category = exc.category
            status_code = CATEGORY_STATUS.get(category, 500)
            if category == ErrorCategory.INTERNAL:
                return ResolvedError(status_code, fallback_code, fallback_message)
            return ResolvedError(status_code, exc.error_code, str(exc), exc.details)
    except Exception:  # pragma: no cover - malformed subclass
        logger.exception("Error resolution failed for %r", type(exc))
    return ResolvedError(500, fallback_code, fallback_message)
