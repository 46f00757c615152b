"""Configuration models for Flint.

Global preferences and per-environment settings are plain dataclasses that
serialize to and from the YAML documents kept by :mod:`flint.store`.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from .errors import ConfigParseError, InvalidEnvironmentError
from .time_utils import ensure_aware

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "flint"
CONFIG_DIR_ENV_VAR = "FLINT_CONFIG_DIR"
ENV_PREFIX = "FLINT_"

ENVIRONMENT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,50}$")

DEFAULT_COLLECTIONS = [
    "organizations",
    "users",
    "edges",
    "things",
    "locations",
    "clients",
    "edge_types",
    "thing_types",
    "location_types",
    "edge_regions",
    "audit_logs",
    "topic_permissions",
]


class AuthCollection(str, Enum):
    """Identity collections a session can authenticate against."""

    USERS = "users"
    CLIENTS = "clients"
    EDGES = "edges"
    THINGS = "things"
    SERVICE_USERS = "service_users"

    @property
    def display_name(self) -> str:
        return _AUTH_COLLECTION_NAMES[self]


_AUTH_COLLECTION_NAMES = {
    AuthCollection.USERS: "Users (Human Administrators)",
    AuthCollection.CLIENTS: "Clients (NATS Client Entities)",
    AuthCollection.EDGES: "Edges (Edge Computing Nodes)",
    AuthCollection.THINGS: "Things (IoT Devices)",
    AuthCollection.SERVICE_USERS: "Service Users (System Accounts)",
}


class MessagingAuthMethod(str, Enum):
    """Authentication methods for the messaging service."""

    USER_PASS = "user_pass"
    TOKEN = "token"
    CREDS = "creds"


class OutputFormat(str, Enum):
    """Output formats for command results."""

    JSON = "json"
    YAML = "yaml"
    TABLE = "table"


def parse_enum(enum_cls: type[Enum], value: Any, what: str) -> Any:
    """Convert a raw value into a member of enum_cls.

    Raises:
        InvalidEnvironmentError: If the value is not a member.
    """
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(m.value for m in enum_cls)  # type: ignore[attr-defined]
        raise InvalidEnvironmentError(f"invalid {what} '{value}'. Valid options: {valid}") from None


def validate_environment_name(name: str) -> str:
    """Validate an environment name.

    Args:
        name: The candidate name.

    Returns:
        The name, unchanged.

    Raises:
        InvalidEnvironmentError: If the name is empty, too long or has invalid characters.
    """
    if not name:
        raise InvalidEnvironmentError("environment name cannot be empty")
    if len(name) > 50:
        raise InvalidEnvironmentError("environment name cannot be longer than 50 characters")
    if not ENVIRONMENT_NAME_PATTERN.match(name):
        raise InvalidEnvironmentError(
            f"invalid environment name '{name}': only letters, digits, dashes and underscores are allowed"
        )
    return name


# -------------------------------------------------------------------------
# Global preferences
# -------------------------------------------------------------------------


@dataclass(frozen=True)
class GlobalPreferences:
    """Process-wide preferences stored in config.yaml."""

    active_environment: str = ""
    output_format: OutputFormat = OutputFormat.JSON
    colors_enabled: bool = True
    pagination_size: int = 30
    debug: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        return {
            "active_environment": self.active_environment,
            "output_format": self.output_format.value,
            "colors_enabled": self.colors_enabled,
            "pagination_size": self.pagination_size,
            "debug": self.debug,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GlobalPreferences:
        """Create preferences from a parsed document, filling in defaults.

        Raises:
            ValueError: If a value has the wrong type.
        """
        defaults = cls()
        return cls(
            active_environment=str(data.get("active_environment") or ""),
            output_format=OutputFormat(str(data.get("output_format") or defaults.output_format.value).lower()),
            colors_enabled=_coerce_bool(data.get("colors_enabled", defaults.colors_enabled)),
            pagination_size=_coerce_int(data.get("pagination_size", defaults.pagination_size)),
            debug=_coerce_bool(data.get("debug", defaults.debug)),
        )

    def with_value(self, key: str, raw: str) -> GlobalPreferences:
        """Return a copy with one preference parsed from its string form.

        Args:
            key: The preference name.
            raw: The textual value, as typed on the command line or in an env var.

        Raises:
            KeyError: If the key is not a known preference.
            ValueError: If the value cannot be parsed for that key.
        """
        if key not in PREFERENCE_KEYS:
            raise KeyError(key)
        if key == "active_environment":
            value: Any = raw.strip()
        elif key == "output_format":
            value = OutputFormat(raw.strip().lower())
        elif key == "pagination_size":
            value = _coerce_int(raw)
        else:
            value = _coerce_bool(raw)
        return replace(self, **{key: value})


PREFERENCE_KEYS = tuple(f.name for f in fields(GlobalPreferences))


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"expected a boolean, got '{value}'")


def _coerce_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"expected an integer, got '{value}'")
    number = int(str(value).strip())
    if number < 1:
        raise ValueError(f"expected a positive integer, got '{value}'")
    return number


def apply_env_overrides(
    prefs: GlobalPreferences,
    environ: Mapping[str, str] | None = None,
) -> tuple[GlobalPreferences, list[str]]:
    """Overlay FLINT_* environment variables onto preferences.

    The result is meant for the current invocation only and is never persisted.

    Args:
        prefs: The stored preferences.
        environ: Environment mapping, defaults to os.environ.

    Returns:
        A tuple of (effective preferences, names of overridden keys).

    Raises:
        ConfigParseError: If an override has an invalid value.
    """
    environ = os.environ if environ is None else environ
    overridden: list[str] = []
    for key in PREFERENCE_KEYS:
        var = f"{ENV_PREFIX}{key.upper()}"
        if var not in environ:
            continue
        try:
            prefs = prefs.with_value(key, environ[var])
        except ValueError as e:
            raise ConfigParseError(f"${var}", str(e)) from e
        overridden.append(key)
    return prefs, overridden


# -------------------------------------------------------------------------
# Environments
# -------------------------------------------------------------------------


@dataclass
class Session:
    """Cached authentication result for an environment.

    An empty token means unauthenticated. A missing expiry is trusted as valid.
    """

    token: str = ""
    expires: datetime | None = None
    record: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.expires is not None:
            self.expires = ensure_aware(self.expires)

    @property
    def is_empty(self) -> bool:
        return not self.token


@dataclass
class BackendConfig:
    """Document database settings of an environment."""

    url: str
    auth_collection: AuthCollection = AuthCollection.USERS
    organization_id: str | None = None
    collections: list[str] = field(default_factory=lambda: list(DEFAULT_COLLECTIONS))
    session: Session = field(default_factory=Session)

    def __post_init__(self) -> None:
        self.organization_id = self.organization_id or None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        return {
            "url": self.url,
            "auth_collection": self.auth_collection.value,
            "organization_id": self.organization_id,
            "available_collections": list(self.collections),
            "auth_token": self.session.token,
            "auth_expires": self.session.expires.isoformat() if self.session.expires else None,
            "auth_record": self.session.record or None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BackendConfig:
        """Create from a parsed environment document section."""
        expires = data.get("auth_expires")
        if isinstance(expires, str) and expires:
            expires = datetime.fromisoformat(expires)
        elif not isinstance(expires, datetime):
            expires = None
        collections = data.get("available_collections")
        return cls(
            url=str(data.get("url") or ""),
            auth_collection=parse_enum(AuthCollection, data.get("auth_collection") or "users", "auth collection"),
            organization_id=data.get("organization_id") or None,
            collections=list(collections) if collections else list(DEFAULT_COLLECTIONS),
            session=Session(
                token=str(data.get("auth_token") or ""),
                expires=ensure_aware(expires) if expires else None,
                record=dict(data.get("auth_record") or {}),
            ),
        )


@dataclass
class MessagingConfig:
    """Messaging service settings of an environment.

    Exactly one of the secret fields is meaningful for the selected method.
    """

    servers: list[str] = field(default_factory=list)
    auth_method: MessagingAuthMethod = MessagingAuthMethod.CREDS
    username: str = ""
    password: str = ""
    token: str = ""
    creds_file: str = ""
    tls_enabled: bool = True
    tls_verify: bool = True

    def set_user_pass(self, username: str, password: str) -> None:
        self._switch(MessagingAuthMethod.USER_PASS)
        self.username = username
        self.password = password

    def set_token(self, token: str) -> None:
        self._switch(MessagingAuthMethod.TOKEN)
        self.token = token

    def set_creds_file(self, path: str) -> None:
        self._switch(MessagingAuthMethod.CREDS)
        self.creds_file = path

    def _switch(self, method: MessagingAuthMethod) -> None:
        self.auth_method = method
        self.username = ""
        self.password = ""
        self.token = ""
        self.creds_file = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        return {
            "servers": list(self.servers),
            "auth_method": self.auth_method.value,
            "username": self.username,
            "password": self.password,
            "token": self.token,
            "creds_file": self.creds_file,
            "tls_enabled": self.tls_enabled,
            "tls_verify": self.tls_verify,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MessagingConfig:
        """Create from a parsed environment document section."""
        return cls(
            servers=[str(s) for s in data.get("servers") or []],
            auth_method=parse_enum(MessagingAuthMethod, data.get("auth_method") or "creds", "messaging auth method"),
            username=str(data.get("username") or ""),
            password=str(data.get("password") or ""),
            token=str(data.get("token") or ""),
            creds_file=str(data.get("creds_file") or ""),
            tls_enabled=_coerce_bool(data.get("tls_enabled", True)),
            tls_verify=_coerce_bool(data.get("tls_verify", True)),
        )


@dataclass
class Environment:
    """A named bundle of backend and messaging settings."""

    name: str
    backend: BackendConfig
    messaging: MessagingConfig = field(default_factory=MessagingConfig)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        return {
            "name": self.name,
            "pocketbase": self.backend.to_dict(),
            "nats": self.messaging.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Environment:
        """Create an Environment from a parsed document.

        Raises:
            ValueError: If required sections are missing or malformed.
        """
        backend = data.get("pocketbase")
        messaging = data.get("nats") or {}
        if not isinstance(backend, Mapping):
            raise ValueError("missing 'pocketbase' section")
        if not isinstance(messaging, Mapping):
            raise ValueError("'nats' section must be a mapping")
        return cls(
            name=str(data.get("name") or ""),
            backend=BackendConfig.from_dict(backend),
            messaging=MessagingConfig.from_dict(messaging),
        )
