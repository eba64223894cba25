"""Error taxonomy shared by the services and the HTTP layer.

Every error raised by the core derives from `LedgerError` and carries the
HTTP status code the router answers with. Server-side errors (status >= 500)
keep their detail for the logs only; callers receive `public_message`.
"""


class LedgerError(Exception):
    status_code = 500
    public_message = "internal error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message

    @property
    def client_message(self) -> str:
        if self.status_code >= 500:
            return self.public_message
        return self.message


class Unauthorized(LedgerError):
    status_code = 401
    public_message = "Unauthorized"


class InvalidCredentials(LedgerError):
    status_code = 401
    public_message = "Invalid credentials"


class DuplicateIdentity(LedgerError):
    status_code = 400
    public_message = "account already exists"


class ValidationError(LedgerError):
    """Malformed or out-of-range input; the message is shown to the caller."""
    status_code = 400
    public_message = "invalid input"


class NotFound(LedgerError):
    status_code = 404
    public_message = "not found"


class ProfileNotFound(NotFound):
    public_message = "Profile not found"


class ScholarshipNotFound(NotFound):
    public_message = "Scholarship not found"


class AmountExceedsRemaining(LedgerError):
    status_code = 400
    public_message = "amount exceeds remaining requirement"

    def __init__(self, amount: int, remaining: int):
        super().__init__(f"amount {amount} exceeds remaining requirement ({remaining})")
        self.amount = amount
        self.remaining = remaining


class ProfileMissing(LedgerError):
    """The gateway accepted a credential that has no profile row."""
    status_code = 500
    public_message = "Login failed"


class StorageFailure(LedgerError):
    status_code = 500
    public_message = "storage unavailable"


class RateLimited(LedgerError):
    status_code = 429
    public_message = "rate limit exceeded"

    def __init__(self, retry_after: int):
        super().__init__(f"rate limit exceeded; retry after {retry_after}s")
        self.retry_after = retry_after
