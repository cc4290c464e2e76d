class ProClaimError(Exception):
    """Base exception for the ProClaim service."""

    pass


class ConfigurationError(ProClaimError):
    """Raised when required secrets or identifiers are not configured."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing configuration: {', '.join(missing)}")


class MalformedPayloadError(ProClaimError):
    """Raised when a webhook body does not parse into the minimal event shape."""

    pass


class SignatureVerificationError(ProClaimError):
    """Raised when a webhook delivery cannot be authenticated.

    ``transient`` separates upstream trouble (token fetch, transport errors,
    processor 5xx) from a processor answer that the signature is bad.
    """

    def __init__(self, message: str, transient: bool = False):
        self.transient = transient
        super().__init__(message)


class StorageError(ProClaimError):
    """Raised when the datastore fails in a way callers should retry."""

    pass


class ClaimInputError(ProClaimError):
    """Raised when a claim request is missing fields or fails validation."""

    pass


class NoCandidateEventError(ProClaimError):
    """Raised when no recent completed payment exists for the claimant."""

    pass


class CandidateValidationError(ProClaimError):
    """Raised when events exist but none is sufficient and unclaimed."""

    def __init__(self, message: str, rejections: dict[str, str] | None = None):
        self.rejections = rejections or {}
        super().__init__(message)


class ClaimConflictError(ProClaimError):
    """Raised when another request consumed the event first."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Payment event '{event_id}' already claimed")


class RateLimitedError(ProClaimError):
    """Raised when a claimant retries inside the cooldown window."""

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(f"Retry after {retry_after} seconds")


class AccountAlreadyExistsError(ProClaimError):
    """Raised when creating an account for an email that is taken."""

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Account already exists for '{email}'")


class AccountNotFoundError(ProClaimError):
    """Raised when an account id does not resolve to an active account."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account '{account_id}' not found")


class PayPalAPIError(ProClaimError):
    """Raised when the PayPal REST API is unreachable or answers with an error."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
