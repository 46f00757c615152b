"""Tests for error messages and hints."""

from __future__ import annotations

import asyncio

from flint.errors import (
    AmbiguousCommandError,
    BackendError,
    MessagingError,
    NoActiveEnvironmentError,
    OrganizationMismatchError,
    SessionExpiredError,
    UnknownCommandError,
    format_error_with_hint,
    get_error_hint,
)


class TestBackendError:
    """Tests for BackendError messages and hints."""

    def test_validation_details(self) -> None:
        """Test that field validation codes become readable text."""
        error = BackendError(
            400,
            "Failed to create record.",
            {
                "email": {"code": "validation_invalid_email", "message": "Must be a valid email address."},
                "code": {"code": "validation_not_unique", "message": "Value must be unique."},
            },
        )
        assert str(error) == "Validation failed: code must be unique; email must be a valid email address"
        assert error.hint == "Please check your input and try again."

    def test_unknown_validation_code_uses_message(self) -> None:
        """Test the fallback to the server message."""
        error = BackendError(400, "bad", {"name": {"code": "validation_custom", "message": "Too fancy."}})
        assert str(error) == "Validation failed: name Too fancy."

    def test_status_messages(self) -> None:
        """Test messages for common statuses."""
        assert BackendError(401, "x").is_authentication_error
        assert "permission" in str(BackendError(403, "x"))
        not_found = BackendError(404, "The requested resource wasn't found.")
        assert not_found.is_not_found
        assert str(not_found) == "Not found: The requested resource wasn't found."
        assert str(BackendError(0, "connection refused")) == "Connection error: connection refused"

    def test_server_errors_share_hint(self) -> None:
        """Test that all 5xx statuses get the server hint."""
        assert BackendError(504, "x").hint == BackendError(500, "x").hint
        assert BackendError(418, "x").hint is None


class TestMessagingError:
    """Tests for MessagingError translation."""

    def test_known_failure(self) -> None:
        """Test that library failures are summarized with a hint."""
        error = MessagingError("publish", "a.b", Exception("nats: Authorization Violation"))
        assert str(error) == "publish failed on 'a.b': messaging authentication failed"
        assert error.hint is not None and "flint auth nats" in error.hint

    def test_timeout_by_type(self) -> None:
        """Test that timeout exceptions are recognized without a message."""
        error = MessagingError("request", "svc.echo", asyncio.TimeoutError())
        assert str(error) == "request failed on 'svc.echo': operation timed out"
        assert error.hint is not None

    def test_plain_message_kept(self) -> None:
        """Test that our own messages are not rewritten."""
        error = MessagingError("connect", None, "credentials file not found: /tmp/x.creds")
        assert str(error) == "connect failed: credentials file not found: /tmp/x.creds"
        assert error.hint is None

    def test_unknown_failure(self) -> None:
        """Test that unknown failures keep their text."""
        error = MessagingError("subscribe", "x", RuntimeError("weird"))
        assert str(error) == "subscribe failed on 'x': weird"
        assert error.hint is None


class TestHints:
    """Tests for get_error_hint() and format_error_with_hint()."""

    def test_class_hints(self) -> None:
        """Test hints declared on error classes."""
        assert "flint environment select" in (get_error_hint(NoActiveEnvironmentError()) or "")
        assert "flint auth" in (get_error_hint(SessionExpiredError()) or "")

    def test_no_hint(self) -> None:
        """Test errors without hints."""
        assert get_error_hint(ValueError("x")) is None
        assert format_error_with_hint(UnknownCommandError("x", ["a"])) == (
            "unknown command 'x'. Available commands: a",
            None,
        )

    def test_messages(self) -> None:
        """Test messages that list alternatives."""
        assert str(AmbiguousCommandError("s", ["select", "show"])) == (
            "ambiguous command 's'. Possible matches: select, show"
        )
        assert "Available organizations: a, b" in str(OrganizationMismatchError("c", ["a", "b"]))
        assert str(NoActiveEnvironmentError()) == "no active environment"
