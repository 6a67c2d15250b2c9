"""Error taxonomy. Each error has a stable code, an HTTP status and a customer-safe message."""
from typing import Optional


class ServiceError(Exception):
    code = "service_error"
    status_code = 400
    user_message = "Something went wrong. Please try again."
    retryable = False

    def __init__(self, message: Optional[str] = None, **details):
        super().__init__(message or self.user_message)
        self.details = details


class InvalidAmount(ServiceError):
    code = "invalid_amount"
    user_message = "Invalid amount"


class InsufficientFunds(ServiceError):
    code = "insufficient_funds"
    user_message = "Insufficient wallet balance. Please fund your wallet and try again."


class InvalidPin(ServiceError):
    code = "invalid_pin"
    user_message = "Invalid transaction PIN"


class PinNotSet(ServiceError):
    code = "pin_not_set"
    user_message = "Please set a transaction PIN before making payments"


class AccountLocked(ServiceError):
    code = "account_locked"
    status_code = 423
    user_message = "Too many incorrect PIN attempts. Please try again later."

    def __init__(self, locked_until, message: Optional[str] = None):
        super().__init__(message, locked_until=locked_until.isoformat())
        self.locked_until = locked_until


class Unauthenticated(ServiceError):
    code = "unauthenticated"
    status_code = 401
    user_message = "Not authenticated"


class UserNotFound(ServiceError):
    code = "user_not_found"
    status_code = 404
    user_message = "User not found"


class TransactionNotFound(ServiceError):
    code = "transaction_not_found"
    status_code = 404
    user_message = "Transaction not found"


class UnknownPlan(ServiceError):
    code = "unknown_plan"
    user_message = "This plan is not available"


class DuplicateReference(ServiceError):
    code = "duplicate_reference"
    status_code = 409
    user_message = "Transaction already recorded"


class InvalidSignature(ServiceError):
    code = "invalid_signature"
    status_code = 401
    user_message = "Invalid signature"


class ProviderError(ServiceError):
    code = "provider_error"
    status_code = 502
    user_message = "Transaction failed. Please try again."


class NetworkUnreachable(ProviderError):
    code = "network_unreachable"
    status_code = 503
    retryable = True
    user_message = "Unable to connect to payment service. Please try again."


class ProviderRejected(ProviderError):
    code = "provider_rejected"
    status_code = 400


class ConfigurationError(ProviderError):
    code = "configuration_error"
    status_code = 503
    user_message = "This service is temporarily unavailable. Please try again later."


class ReconciliationRequired(ServiceError):
    """Not a rejection: the purchase went through but the wallet could not be debited."""

    code = "reconciliation_required"
    status_code = 200
    user_message = "Transaction successful"

    def __init__(self, reference: str, cause: Exception):
        super().__init__(
            f"Provider settled {reference} but the wallet debit failed: {cause}",
            reference=reference,
            cause=getattr(cause, "code", type(cause).__name__),
        )
        self.reference = reference
