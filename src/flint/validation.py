"""Input validation for record payloads and messaging arguments.

Validators raise ValidationError for input that must be rejected and return
a list of warning strings for input that is allowed but worth pointing out.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlparse

from .errors import ValidationError

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
SUBJECT_PATTERN = re.compile(r"^[a-zA-Z0-9.*>_-]+$")
QUEUE_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+$")
HEADER_NAME_PATTERN = re.compile(r"^[!-9;-~]+$")

# Fields the backend manages itself
RESTRICTED_FIELDS = ("id", "created", "updated")

REQUIRED_CREATE_FIELDS: dict[str, tuple[str, ...]] = {
    "users": ("email", "password"),
    "organizations": ("name", "code", "account_name"),
    "edges": ("name", "code", "type", "region"),
    "things": ("name", "code", "type", "edge_id"),
    "locations": ("name", "type", "code"),
}

# Fields whose update deserves a warning, with the warning text
SENSITIVE_UPDATE_FIELDS: dict[str, dict[str, str]] = {
    "users": {
        "password": "Updating 'password' - ensure this is intentional",
        "current_organization_id": "Updating 'current_organization_id' - ensure this is intentional",
    },
    "organizations": {
        "code": "Updating 'code' may affect system integrations",
        "account_name": "Updating 'account_name' may affect system integrations",
    },
    "edges": {
        "region": "Updating 'region' may affect edge connectivity",
        "public_key": "Updating 'public_key' may affect edge connectivity",
        "private_key": "Updating 'private_key' may affect edge connectivity",
    },
    "things": {
        "edge_id": "Updating 'edge_id' may affect device operation",
        "mac_address": "Updating 'mac_address' may affect device operation",
        "ip_address": "Updating 'ip_address' may affect device operation",
    },
    "locations": {
        "parent_id": "Updating parent_id will change the location hierarchy",
        "path": "Updating path should be done carefully to maintain location hierarchy",
    },
}

ORGANIZATION_SCOPED = ("users", "edges", "things", "locations")


def validate_email(email: str) -> str:
    """Validate an email address format.

    Raises:
        ValidationError: If the address is empty or malformed.
    """
    if not email:
        raise ValidationError("email cannot be empty")
    if not EMAIL_PATTERN.match(email):
        raise ValidationError(f"invalid email format: {email}")
    return email


def validate_url(url: str) -> str:
    """Validate that url is an absolute http(s) URL.

    Raises:
        ValidationError: If the URL is empty or not http(s).
    """
    if not url:
        raise ValidationError("URL cannot be empty")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"invalid URL '{url}': expected http:// or https:// with a host")
    return url


def validate_subject(subject: str, allow_wildcards: bool = True) -> str:
    """Validate a messaging subject.

    Args:
        subject: The subject, e.g. "telemetry.edge.*".
        allow_wildcards: Whether "*" and ">" tokens are permitted.

    Raises:
        ValidationError: If the subject is malformed.
    """
    if not subject:
        raise ValidationError("subject cannot be empty")
    if not SUBJECT_PATTERN.match(subject):
        raise ValidationError(
            f"invalid subject '{subject}'. Use letters, numbers, dots, dashes, underscores and wildcards (*, >)"
        )
    tokens = subject.split(".")
    if any(token == "" for token in tokens):
        raise ValidationError(f"invalid subject '{subject}': empty token")
    for index, token in enumerate(tokens):
        if ("*" in token or ">" in token) and token not in ("*", ">"):
            raise ValidationError(f"invalid subject '{subject}': wildcards must be whole tokens")
        if token == ">" and index != len(tokens) - 1:
            raise ValidationError(f"invalid subject '{subject}': '>' must be the last token")
    if not allow_wildcards and any(token in ("*", ">") for token in tokens):
        raise ValidationError(f"wildcards are not allowed when publishing: {subject}")
    return subject


def validate_queue(queue: str) -> str:
    """Validate a queue group name.

    Raises:
        ValidationError: If the name is malformed.
    """
    if not QUEUE_PATTERN.match(queue):
        raise ValidationError(f"invalid queue group '{queue}'")
    return queue


def parse_headers(values: list[str] | None) -> dict[str, str]:
    """Parse "key=value" (or "key:value") header arguments.

    Raises:
        ValidationError: If an entry lacks a separator or has an invalid name.
    """
    headers: dict[str, str] = {}
    for raw in values or []:
        match = re.match(r"^([^=:]+)[=:](.*)$", raw)
        if not match:
            raise ValidationError(f"invalid header '{raw}': expected key=value")
        key, value = match.group(1).strip(), match.group(2).strip()
        if not key or not HEADER_NAME_PATTERN.match(key):
            raise ValidationError(f"invalid header name '{key}'")
        headers[key] = value
    return headers


def _check_restricted(data: Mapping[str, Any], action: str) -> None:
    for field_name in RESTRICTED_FIELDS:
        if field_name in data:
            raise ValidationError(f"field '{field_name}' is automatically managed and cannot be {action}")


def validate_create_data(collection: str, data: Mapping[str, Any]) -> list[str]:
    """Validate the payload of a record creation.

    Returns:
        Warnings to show the user.

    Raises:
        ValidationError: If the payload is empty, sets managed fields or misses required ones.
    """
    if not data:
        raise ValidationError("record data cannot be empty")
    _check_restricted(data, "set")

    singular = collection[:-1] if collection.endswith("s") else collection
    for field_name in REQUIRED_CREATE_FIELDS.get(collection, ()):
        if field_name not in data:
            raise ValidationError(f"field '{field_name}' is required for {singular} creation")

    if collection == "users" and isinstance(data.get("email"), str):
        validate_email(data["email"])

    warnings = []
    if collection in ORGANIZATION_SCOPED and "organization_id" in data:
        warnings.append("organization_id is typically set automatically based on your environment")
    return warnings


def validate_update_data(collection: str, data: Mapping[str, Any]) -> list[str]:
    """Validate the payload of a record update.

    Returns:
        Warnings to show the user.

    Raises:
        ValidationError: If the payload is empty or touches managed fields.
    """
    if not data:
        raise ValidationError("update data cannot be empty")
    _check_restricted(data, "updated")

    if collection == "users" and isinstance(data.get("email"), str):
        validate_email(data["email"])

    warnings = []
    if "organization_id" in data:
        warnings.append("Updating organization_id may cause access issues")
    for field_name, message in SENSITIVE_UPDATE_FIELDS.get(collection, {}).items():
        if field_name in data:
            warnings.append(message)
    return warnings
