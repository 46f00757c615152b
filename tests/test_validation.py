"""Tests for input validation."""

from __future__ import annotations

import pytest

from flint.errors import ValidationError
from flint.validation import (
    parse_headers,
    validate_create_data,
    validate_email,
    validate_queue,
    validate_subject,
    validate_update_data,
    validate_url,
)


class TestSimpleValidators:
    """Tests for email, URL and queue validation."""

    def test_email(self) -> None:
        """Test email validation."""
        assert validate_email("admin@example.com") == "admin@example.com"
        for bad in ("", "admin", "admin@", "@example.com", "a@b"):
            with pytest.raises(ValidationError):
                validate_email(bad)

    def test_url(self) -> None:
        """Test that only absolute http(s) URLs pass."""
        assert validate_url("https://api.example.io") == "https://api.example.io"
        assert validate_url("http://localhost:8090") == "http://localhost:8090"
        for bad in ("", "api.example.io", "ftp://example.io", "https://"):
            with pytest.raises(ValidationError):
                validate_url(bad)

    def test_queue(self) -> None:
        """Test queue group names."""
        assert validate_queue("workers.v1") == "workers.v1"
        with pytest.raises(ValidationError):
            validate_queue("bad queue")


class TestValidateSubject:
    """Tests for validate_subject()."""

    def test_plain_subjects(self) -> None:
        """Test ordinary subjects."""
        for subject in ("telemetry", "telemetry.edge001.temp", "a-b_c.d"):
            assert validate_subject(subject, allow_wildcards=False) == subject

    def test_wildcards(self) -> None:
        """Test whole-token wildcards."""
        assert validate_subject("telemetry.*.temp") == "telemetry.*.temp"
        assert validate_subject("telemetry.>") == "telemetry.>"
        assert validate_subject(">") == ">"

    def test_wildcards_rejected_when_not_allowed(self) -> None:
        """Test that publishing subjects cannot contain wildcards."""
        with pytest.raises(ValidationError, match="wildcards"):
            validate_subject("telemetry.*", allow_wildcards=False)

    def test_malformed(self) -> None:
        """Test malformed subjects."""
        for bad in ("", "a..b", ".a", "a.", "a b", "tele*.x", "a.>.b", "a.b>"):
            with pytest.raises(ValidationError):
                validate_subject(bad)


class TestParseHeaders:
    """Tests for parse_headers()."""

    def test_separators(self) -> None:
        """Test key=value and key:value forms."""
        assert parse_headers(["priority=high", "trace-id: abc", "empty="]) == {
            "priority": "high",
            "trace-id": "abc",
            "empty": "",
        }

    def test_value_keeps_separators(self) -> None:
        """Test that only the first separator splits."""
        assert parse_headers(["url=http://x/?a=b"]) == {"url": "http://x/?a=b"}

    def test_none(self) -> None:
        """Test that no headers yield an empty mapping."""
        assert parse_headers(None) == {}

    def test_invalid(self) -> None:
        """Test entries without a separator or with a bad name."""
        for bad in ("novalue", "=value", "bad name=1"):
            with pytest.raises(ValidationError):
                parse_headers([bad])


class TestRecordData:
    """Tests for record payload validation."""

    def test_create_valid(self) -> None:
        """Test a complete payload."""
        assert validate_create_data("organizations", {"name": "Acme", "code": "acme", "account_name": "acme"}) == []

    def test_create_missing_required(self) -> None:
        """Test that required fields are enforced per collection."""
        with pytest.raises(ValidationError, match="field 'region' is required for edge creation"):
            validate_create_data("edges", {"name": "e", "code": "e", "type": "t"})

    def test_create_restricted(self) -> None:
        """Test that managed fields cannot be set."""
        for field_name in ("id", "created", "updated"):
            with pytest.raises(ValidationError, match="cannot be set"):
                validate_create_data("edge_types", {field_name: "x", "name": "n"})

    def test_create_empty(self) -> None:
        """Test that empty payloads are rejected."""
        with pytest.raises(ValidationError):
            validate_create_data("edge_types", {})

    def test_create_user_email(self) -> None:
        """Test that user emails are validated."""
        with pytest.raises(ValidationError, match="invalid email"):
            validate_create_data("users", {"email": "nope", "password": "secret"})

    def test_create_organization_warning(self) -> None:
        """Test the warning for explicit organization ids."""
        warnings = validate_create_data(
            "things", {"name": "t", "code": "t", "type": "sensor", "edge_id": "e1", "organization_id": "o1"}
        )
        assert len(warnings) == 1
        assert "organization_id" in warnings[0]

    def test_collections_without_rules(self) -> None:
        """Test that other collections only need a non-empty payload."""
        assert validate_create_data("audit_logs", {"action": "x"}) == []

    def test_update_restricted(self) -> None:
        """Test that managed fields cannot be updated."""
        with pytest.raises(ValidationError, match="cannot be updated"):
            validate_update_data("users", {"id": "abc"})

    def test_update_empty(self) -> None:
        """Test that empty updates are rejected."""
        with pytest.raises(ValidationError):
            validate_update_data("users", {})

    def test_update_warnings(self) -> None:
        """Test warnings for sensitive fields."""
        warnings = validate_update_data("edges", {"region": "eu", "organization_id": "o2", "name": "x"})
        assert warnings == [
            "Updating organization_id may cause access issues",
            "Updating 'region' may affect edge connectivity",
        ]
