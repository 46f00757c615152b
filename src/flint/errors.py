"""Error taxonomy and user-facing hints for Flint."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any


class FlintError(Exception):
    """Base class for all errors Flint reports to the user."""

    hint: str | None = None


class ValidationError(FlintError):
    """User input failed local validation before any network call."""


# -------------------------------------------------------------------------
# Command resolution
# -------------------------------------------------------------------------


class ResolutionError(FlintError):
    """A typed command could not be resolved to exactly one known command."""


class UnknownCommandError(ResolutionError):
    """No known command starts with the typed text."""

    def __init__(self, typed: str, available: list[str]) -> None:
        self.typed = typed
        self.available = list(available)
        if typed:
            message = f"unknown command '{typed}'. Available commands: {', '.join(self.available)}"
        else:
            message = f"empty command. Available commands: {', '.join(self.available)}"
        super().__init__(message)


class AmbiguousCommandError(ResolutionError):
    """More than one known command starts with the typed text."""

    def __init__(self, typed: str, candidates: list[str]) -> None:
        self.typed = typed
        self.candidates = list(candidates)
        super().__init__(f"ambiguous command '{typed}'. Possible matches: {', '.join(self.candidates)}")


class CategoryNotFoundError(ResolutionError):
    """The caller asked for a command category that is not registered."""

    def __init__(self, category: str) -> None:
        self.category = category
        super().__init__(f"unknown command category: {category}")


# -------------------------------------------------------------------------
# Configuration store
# -------------------------------------------------------------------------


class StoreError(FlintError):
    """Failure reading or writing the configuration store."""


class EnvironmentNotFoundError(StoreError):
    """The named environment does not exist."""

    def __init__(self, name: str, available: list[str] | None = None) -> None:
        self.name = name
        self.available = available or []
        message = f"environment '{name}' not found"
        if self.available:
            message += f". Available environments: {', '.join(self.available)}"
        super().__init__(message)


class NoActiveEnvironmentError(EnvironmentNotFoundError):
    """No environment is currently selected."""

    hint = "Use 'flint environment select <name>' to set one."

    def __init__(self) -> None:
        StoreError.__init__(self, "no active environment")
        self.name = ""
        self.available = []


class EnvironmentExistsError(StoreError):
    """An environment with the same name already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"environment '{name}' already exists")


class InvalidEnvironmentError(StoreError):
    """Environment settings failed validation."""


class ConfigParseError(StoreError):
    """A configuration document could not be parsed."""

    def __init__(self, path: Path | str, detail: str) -> None:
        self.path = Path(path)
        self.detail = detail
        super().__init__(f"failed to parse {path}: {detail}")


class ConfigIOError(StoreError):
    """A configuration document could not be read or written."""

    def __init__(self, path: Path | str, detail: str) -> None:
        self.path = Path(path)
        self.detail = detail
        super().__init__(f"failed to access {path}: {detail}")


# -------------------------------------------------------------------------
# Session
# -------------------------------------------------------------------------


class SessionError(FlintError):
    """The stored session cannot be used; the user must act."""


class UnauthenticatedError(SessionError):
    """No session token is stored."""

    hint = "Run 'flint auth pb' to authenticate."

    def __init__(self, message: str = "authentication required") -> None:
        super().__init__(message)


class SessionExpiredError(SessionError):
    """The session token has expired or is about to."""

    hint = "Run 'flint auth pb' to re-authenticate, or 'flint auth refresh' to renew the token."

    def __init__(self, expires: datetime | None = None) -> None:
        self.expires = expires
        message = "authentication has expired"
        if expires is not None:
            message += f" (expires {expires.isoformat()})"
        super().__init__(message)


class OrganizationMismatchError(SessionError):
    """The requested organization is not among the identity's memberships."""

    hint = "Check the organization id with 'flint environment show' or ask your administrator."

    def __init__(self, requested: str, available: list[str] | None = None) -> None:
        self.requested = requested
        self.available = available or []
        message = f"user does not belong to organization '{requested}'"
        if self.available:
            message += f". Available organizations: {', '.join(self.available)}"
        super().__init__(message)


class UnrecognizedMembershipShapeError(SessionError):
    """The organization membership field has a shape we cannot interpret."""

    def __init__(self, value: Any) -> None:
        self.value = value
        super().__init__(f"invalid organization data format: {type(value).__name__}")


# -------------------------------------------------------------------------
# Collaborators
# -------------------------------------------------------------------------


class CollaboratorError(FlintError):
    """Failure reported by the document database or the messaging service."""


# Mapping of backend HTTP status codes to helpful hint messages
BACKEND_ERROR_HINTS: dict[int, str] = {
    0: "Connection error. Check your network connection and the backend URL of the environment.",
    400: "Please check your input and try again.",
    401: "Try running 'flint auth pb' to authenticate.",
    403: "Contact your organization administrator to verify your permissions.",
    404: "Verify the resource exists and that you have access to it.",
    429: "Rate limit exceeded. Please wait a moment before trying again.",
    500: "This appears to be a server issue. Please try again later.",
    502: "This appears to be a server issue. Please try again later.",
    503: "The service is temporarily unavailable. Please try again later.",
}

# Per-field validation codes returned by the backend
VALIDATION_MESSAGES: dict[str, str] = {
    "validation_required": "is required",
    "validation_min_text_constraint": "is too short",
    "validation_max_text_constraint": "is too long",
    "validation_invalid_email": "must be a valid email address",
    "validation_not_unique": "must be unique",
    "validation_invalid_format": "has an invalid format",
    "validation_missing_rel_records": "references a record that does not exist",
}


class BackendError(CollaboratorError):
    """An HTTP error returned by the document database."""

    def __init__(self, status_code: int, message: str, data: dict[str, Any] | None = None) -> None:
        self.status_code = status_code
        self.message = message
        self.data = data or {}
        super().__init__(self.friendly_message())

    def friendly_message(self) -> str:
        """Return a human-readable rendering of the error."""
        if self.status_code == 0:
            return f"Connection error: {self.message}"
        if self.status_code == 400 and self.data:
            details = []
            for field, info in sorted(self.data.items()):
                if isinstance(info, dict):
                    code = info.get("code", "")
                    text = VALIDATION_MESSAGES.get(code) or info.get("message") or code
                    details.append(f"{field} {text}")
            if details:
                return f"Validation failed: {'; '.join(details)}"
        if self.status_code == 401:
            return "Authentication failed or session is no longer valid."
        if self.status_code == 403:
            return "Access denied. You don't have permission to perform this action."
        if self.status_code == 404:
            return f"Not found: {self.message}" if self.message else "The requested resource was not found."
        return f"Backend error [{self.status_code}]: {self.message}"

    @property
    def hint(self) -> str | None:  # type: ignore[override]
        if self.status_code >= 500:
            return BACKEND_ERROR_HINTS[500]
        return BACKEND_ERROR_HINTS.get(self.status_code)

    @property
    def is_authentication_error(self) -> bool:
        return self.status_code == 401

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


# Substrings of messaging failures mapped to (summary, hint)
MESSAGING_ERROR_HINTS: list[tuple[str, str, str]] = [
    (
        "no servers",
        "no messaging servers are currently available",
        "Check your network connection and the server URLs of the environment.",
    ),
    (
        "connection refused",
        "connection to the messaging server was refused",
        "Verify the server is running and the URL/port are correct.",
    ),
    ("timeout", "operation timed out", "The server may be overloaded or your network connection is slow."),
    (
        "connection closed",
        "messaging connection was closed unexpectedly",
        "Check your network connection and the server status.",
    ),
    (
        "authorization violation",
        "messaging authentication failed",
        "Verify your credentials with 'flint auth nats'.",
    ),
    (
        "permissions violation",
        "permission denied for this subject",
        "Your credentials are not allowed to use this subject.",
    ),
    (
        "credentials",
        "invalid messaging user credentials",
        "Check the credentials file path and ensure the file is readable.",
    ),
]


class MessagingError(CollaboratorError):
    """A failure reported by the messaging service or its client library."""

    def __init__(self, operation: str, subject: str | None, cause: BaseException | str) -> None:
        self.operation = operation
        self.subject = subject
        self.cause = cause
        self._hint: str | None = None

        detail = str(cause) or type(cause).__name__
        # Translate library failures only
        if isinstance(cause, BaseException):
            lowered = detail.lower()
            if type(cause).__name__.lower().endswith("timeouterror"):
                lowered = f"timeout {lowered}"
            for needle, summary, hint in MESSAGING_ERROR_HINTS:
                if needle in lowered:
                    detail = summary
                    self._hint = hint
                    break

        where = f" on '{subject}'" if subject else ""
        super().__init__(f"{operation} failed{where}: {detail}")

    @property
    def hint(self) -> str | None:  # type: ignore[override]
        return self._hint


def get_error_hint(error: BaseException) -> str | None:
    """Get a helpful hint message for an error, if one is known.

    Args:
        error: The exception raised by a Flint operation.

    Returns:
        A hint message, or None if no hint is available.
    """
    return getattr(error, "hint", None)


def format_error_with_hint(error: BaseException) -> tuple[str, str | None]:
    """Format an error with an optional hint.

    Args:
        error: The exception to format.

    Returns:
        A tuple of (error_message, hint_message or None).
    """
    return str(error), get_error_hint(error)
