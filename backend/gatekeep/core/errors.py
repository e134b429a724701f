"""API error classes.

Every failure the identity flows can report maps to one class here, each
with a stable machine-readable code and an HTTP status. Authentication
failures carry deliberately vague messages so callers cannot tell which
check failed.
"""


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400)."""

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class UnauthorizedError(APIError):
    """Authentication required (401).

    Use when no valid session cookie was provided.
    """

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
        )


class ForbiddenError(APIError):
    """Not allowed to access resource (403)."""

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=403,
        )


class NotFoundError(APIError):
    """Resource not found (404).

    Use for absent users and sessions on authenticated or admin paths.
    Never raised from the anti-enumeration flows.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
        )


class ConflictError(APIError):
    """Duplicate or conflicting resource (409).

    Accepts custom code for specific conflict types.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details,
        )


class InvalidCredentialsError(APIError):
    """Email/password did not authenticate (401).

    Covers unknown email, account without a password, and wrong password.
    """

    def __init__(self) -> None:
        super().__init__(
            code="INVALID_CREDENTIALS",
            message="Invalid email or password",
            status_code=401,
        )


class EmailNotVerifiedError(APIError):
    """Password was correct but the email address is unverified (403)."""

    def __init__(self) -> None:
        super().__init__(
            code="EMAIL_NOT_VERIFIED",
            message="Email address has not been verified",
            status_code=403,
        )


class InvalidTokenError(APIError):
    """Verification token missing, expired, or issued for another flow (400)."""

    def __init__(self) -> None:
        super().__init__(
            code="INVALID_TOKEN",
            message="Invalid or expired token",
            status_code=400,
        )


class InvalidStateError(APIError):
    """OAuth state parameter failed validation (400)."""

    def __init__(self) -> None:
        super().__init__(
            code="INVALID_STATE",
            message="Invalid OAuth state",
            status_code=400,
        )


class EmailExistsError(ConflictError):
    """An account with this email already exists (409)."""

    def __init__(self) -> None:
        super().__init__(
            code="EMAIL_ALREADY_EXISTS",
            message="An account with this email already exists",
        )


class ProviderAlreadyLinkedError(ConflictError):
    """The external identity is linked to a different account (409)."""

    def __init__(self, provider: str) -> None:
        super().__init__(
            code="PROVIDER_ALREADY_LINKED",
            message=f"This {provider} account is already linked to another user",
        )


class LastAuthMethodError(ConflictError):
    """Unlinking would leave the account with no way to sign in (409)."""

    def __init__(self) -> None:
        super().__init__(
            code="LAST_AUTH_METHOD",
            message="Cannot remove the last authentication method",
        )


class ProviderNotFoundError(APIError):
    """The user has no link for this provider (404)."""

    def __init__(self, provider: str) -> None:
        super().__init__(
            code="PROVIDER_NOT_FOUND",
            message=f"No linked {provider} account",
            status_code=404,
        )


class AccountNotLinkedError(APIError):
    """OAuth login for an external identity with no linked account (401)."""

    def __init__(self) -> None:
        super().__init__(
            code="ACCOUNT_NOT_LINKED",
            message="No account is linked to this provider identity",
            status_code=401,
        )


class UpstreamError(APIError):
    """An OAuth provider or other dependency failed (502).

    The upstream response body is never echoed back to the client.
    """

    def __init__(self, message: str = "Upstream service failed") -> None:
        super().__init__(
            code="UPSTREAM_FAILURE",
            message=message,
            status_code=502,
        )


class InternalError(APIError):
    """Unexpected server error (500).

    Use for unhandled exceptions. Never expose stack traces to clients.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
            details=details,
        )
