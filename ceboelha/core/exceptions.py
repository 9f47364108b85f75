"""Custom exceptions for the Ceboelha auth core.

Every domain error carries an HTTP status code and a stable machine code so
the FastAPI layer can render it into the uniform error envelope without
knowing anything about where it was raised.
"""


class CeboelhaError(Exception):
    """Base exception for all Ceboelha errors.

    All Ceboelha exceptions inherit from this class, making it easy
    to catch all application-specific errors.
    """

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, hint: str | None = None):
        """Initialize the exception.

        Args:
            message: The error message (safe to show to clients)
            hint: Optional hint for operators, never sent to clients
        """
        self.message = message
        self.hint = hint
        super().__init__(message)

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message}\nHint: {self.hint}"
        return self.message


class ValidationError(CeboelhaError):
    """Raised when input is malformed or fails a policy (e.g. weak password)."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field: str | None = None,
    ):
        """Initialize the validation error.

        Args:
            message: The error message
            field: The field that failed validation
        """
        self.field = field
        hint = f"Check the value for field '{field}'." if field else None
        super().__init__(message, hint)


class UnauthorizedError(CeboelhaError):
    """Raised for bad credentials, invalid tokens and locked accounts."""

    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class ForbiddenError(CeboelhaError):
    """Raised when an authenticated caller may not perform an action."""

    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class NotFoundError(CeboelhaError):
    """Raised when a requested resource does not exist."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource"):
        """Initialize the not found error.

        Args:
            resource: Human readable name of the missing resource
        """
        self.resource = resource
        super().__init__(f"{resource} not found")


class ConflictError(CeboelhaError):
    """Raised when a write collides with existing state (e.g. duplicate email)."""

    status_code = 409
    code = "CONFLICT"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        hint = None
        if field:
            hint = f"The value for '{field}' already exists. Choose a different value."
        super().__init__(message, hint)


class RateLimitError(CeboelhaError):
    """Raised when rate limit is exceeded."""

    status_code = 429
    code = "RATE_LIMIT"

    def __init__(
        self,
        message: str = "Too many requests. Please wait and try again.",
        retry_after: int | None = None,
        headers: dict[str, str] | None = None,
    ):
        """Initialize the rate limit error.

        Args:
            message: The error message
            retry_after: Seconds until the rate limit resets
            headers: X-RateLimit-* headers describing the exhausted counter
        """
        self.retry_after = retry_after
        self.headers = headers or {}

        if retry_after:
            hint = f"Try again in {retry_after} seconds."
        else:
            hint = "Please wait before making more requests."

        super().__init__(message, hint)


class ConfigurationError(CeboelhaError):
    """Raised when configuration is invalid. Fatal at startup."""

    code = "CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str | None = None,
        invalid_fields: list[str] | None = None,
    ):
        """Initialize the configuration error.

        Args:
            message: Custom error message
            invalid_fields: Configuration fields that are missing or invalid
        """
        self.invalid_fields = invalid_fields or []

        if self.invalid_fields and not message:
            message = f"Invalid configuration: {', '.join(self.invalid_fields)}"
        hint = "Set these as environment variables or in your .env file."

        super().__init__(message or "Invalid Ceboelha configuration", hint)


class StoreError(CeboelhaError):
    """Raised when a document store operation fails."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        key: str | None = None,
        original_error: Exception | None = None,
    ):
        """Initialize the store error.

        Args:
            message: The error message
            operation: The S3 operation that failed (e.g., 'put_object')
            key: The S3 key involved in the operation
            original_error: The original exception
        """
        self.operation = operation
        self.key = key
        self.original_error = original_error

        hint = None
        if "NoSuchBucket" in message:
            hint = "The configured bucket does not exist. Run `ceboelha ensure-bucket`."
        elif "AccessDenied" in message:
            hint = "Check your IAM permissions for this operation."

        super().__init__(message, hint)


class StaleDocumentError(StoreError):
    """Raised when a conditional write loses against a concurrent writer."""


class S3ConnectionError(StoreError):
    """Raised when there is an error connecting to S3."""

    status_code = 503
    code = "SERVICE_UNAVAILABLE"

    def __init__(
        self,
        message: str | None = None,
        original_error: Exception | None = None,
        endpoint: str | None = None,
    ):
        """Initialize the connection error.

        Args:
            message: Custom error message (optional)
            original_error: The original exception that caused this error
            endpoint: The S3 endpoint URL being connected to
        """
        self.endpoint = endpoint
        super().__init__(
            message or f"Could not connect to S3 at {endpoint or 'AWS'}",
            original_error=original_error,
        )
        if self.hint is None:
            self.hint = "Check your AWS credentials and network connection."
