"""
Contract System Exceptions

Errors raised by the contract services. State-machine violations
(InvalidState, TokenExpired) are surfaced to callers as-is.
"""


class ContractError(Exception):
    """Base exception for all contract system errors."""

    code = "contract_error"


class NotFound(ContractError):
    """Contract, signature or signing token does not exist."""

    code = "not_found"


class InvalidState(ContractError):
    """
    Raised when an operation is attempted from a state that forbids it.

    Examples: completing an already signed or declined signature, inviting a
    signer before any signature field exists, touching a cancelled contract.
    """

    code = "invalid_state"

    def __init__(self, message: str, current_status: str = None):
        self.current_status = current_status
        super().__init__(message)


class TokenExpired(ContractError):
    """The signing session passed its expiry time."""

    code = "token_expired"

    def __init__(self, message: str = "Signing link has expired", expires_at=None):
        self.expires_at = expires_at
        super().__init__(message)


class ValidationError(ContractError):
    """
    Raised when input data is missing mandatory values or is malformed.

    Carries the offending field name when known.
    """

    code = "validation_error"

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)


class UpstreamFailure(ContractError):
    """
    Raised when an external collaborator (Document Store, Notifier,
    extraction engine) is unreachable or rejects the request.
    """

    code = "upstream_failure"

    def __init__(self, message: str, service: str = None, status_code: int = None):
        self.service = service
        self.status_code = status_code
        super().__init__(message)


class ConcurrencyConflict(ContractError):
    """Optimistic write kept losing to concurrent writers."""

    code = "concurrency_conflict"


class AuthenticationError(ContractError):
    """Caller credentials could not be resolved to an actor."""

    code = "auth_error"


class AuthorizationError(ContractError):
    """Actor is not allowed to perform the operation."""

    code = "forbidden"
