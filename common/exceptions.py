"""
Savory - Custom Exceptions
===========================
Business-level exceptions that can be caught and converted to HTTP responses.

Eligibility/redemption denials are NOT exceptions: they are returned as
DenialReason values (see modules.voucher.eligibility). These classes cover
the cases that must abort the current transaction.
"""


class SavoryError(Exception):
    """Base exception for all business logic errors."""
    def __init__(self, message: str = "An internal error occurred."):
        self.message = message
        super().__init__(self.message)


class AuthenticationError(SavoryError):
    """Raised when authentication fails."""
    pass


class AuthorizationError(SavoryError):
    """Raised when the caller lacks a permission."""
    def __init__(self, permission: str = ""):
        msg = f"Missing permission: {permission}" if permission else "Access denied."
        self.permission = permission
        super().__init__(msg)


class ValidationError(SavoryError):
    """Raised when admin input is invalid. Carries a field -> message map."""
    def __init__(self, errors: dict):
        self.errors = errors
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))


class DuplicateError(SavoryError):
    """Raised for unique constraint violations at the business level."""
    pass


class NotFoundError(SavoryError):
    """Raised when a requested resource doesn't exist."""
    pass


class ConcurrencyConflictError(SavoryError):
    """Raised when a counter update kept losing races after all retries."""
    def __init__(self, message: str = "The operation conflicted with another request. Please try again."):
        super().__init__(message)
