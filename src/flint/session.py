"""Session validity, organization membership and organization selection.

Functions here take explicit inputs (including the current time) and never
print; callers in the command layer decide how to present results.
"""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from .config import AuthCollection, Session
from .errors import (
    OrganizationMismatchError,
    SessionExpiredError,
    UnauthenticatedError,
    UnrecognizedMembershipShapeError,
)
from .logging import get_logger
from .time_utils import ensure_aware, utc_now

logger = get_logger(__name__)

# Sessions are treated as expired this long before their recorded expiry
EXPIRY_BUFFER = timedelta(minutes=5)

# Lifetime assumed when neither the token nor the server states one
DEFAULT_SESSION_LIFETIME = timedelta(days=7)


class SessionState(str, Enum):
    """State of a cached session at a given instant."""

    UNAUTHENTICATED = "unauthenticated"
    VALID = "valid"
    NEAR_EXPIRY = "near_expiry"
    EXPIRED = "expired"


def session_state(session: Session, now: datetime | None = None) -> SessionState:
    """Classify a session.

    Args:
        session: The cached session.
        now: The reference instant, defaults to the current time.

    Returns:
        UNAUTHENTICATED for an empty token, VALID when no expiry is recorded
        or now is strictly before expiry minus the buffer, NEAR_EXPIRY inside
        the buffer, EXPIRED at or after the expiry.
    """
    if not session.token:
        return SessionState.UNAUTHENTICATED
    if session.expires is None:
        return SessionState.VALID

    now = ensure_aware(now or utc_now())
    expires = ensure_aware(session.expires)
    if now < expires - EXPIRY_BUFFER:
        return SessionState.VALID
    if now < expires:
        return SessionState.NEAR_EXPIRY
    return SessionState.EXPIRED


def is_session_valid(session: Session, now: datetime | None = None) -> bool:
    """Check whether a cached session can be used without re-authenticating."""
    return session_state(session, now) is SessionState.VALID


def require_valid_session(session: Session, now: datetime | None = None) -> None:
    """Raise unless the session is valid.

    Raises:
        UnauthenticatedError: If no token is stored.
        SessionExpiredError: If the session is expired or about to expire.
    """
    state = session_state(session, now)
    if state is SessionState.UNAUTHENTICATED:
        raise UnauthenticatedError()
    if state is not SessionState.VALID:
        raise SessionExpiredError(session.expires)


def token_expiry(token: str) -> datetime | None:
    """Read the exp claim of a JWT without verifying its signature.

    Returns:
        The expiry as a UTC datetime, or None if the token has no readable exp claim.
    """
    parts = token.split(".")
    if len(parts) != 3:
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (binascii.Error, ValueError):
        return None
    exp = claims.get("exp") if isinstance(claims, dict) else None
    if not isinstance(exp, (int, float)) or isinstance(exp, bool):
        return None
    try:
        return datetime.fromtimestamp(exp, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def session_from_auth(
    token: str,
    record: Mapping[str, Any] | None,
    expiry_hint: datetime | None = None,
    now: datetime | None = None,
) -> Session:
    """Build a new Session from a successful authentication.

    The expiry is taken from the token's exp claim, else from expiry_hint,
    else it defaults to seven days from now.
    """
    expires = token_expiry(token) or (ensure_aware(expiry_hint) if expiry_hint else None)
    if expires is None:
        expires = ensure_aware(now or utc_now()) + DEFAULT_SESSION_LIFETIME
        logger.debug(f"Token carries no expiry, assuming {expires.isoformat()}")
    return Session(token=token, expires=expires, record=dict(record or {}))


# -------------------------------------------------------------------------
# Organization membership
# -------------------------------------------------------------------------


@dataclass(frozen=True)
class Organization:
    """An organization id with its display name, when known."""

    id: str
    name: str | None = None

    def label(self) -> str:
        return f"{self.name} ({self.id})" if self.name else self.id


@dataclass(frozen=True)
class Membership:
    """Normalized list of organizations an identity belongs to."""

    organizations: tuple[Organization, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.organizations)

    def __iter__(self) -> Iterator[Organization]:
        return iter(self.organizations)

    def __contains__(self, org_id: object) -> bool:
        return any(org.id == org_id for org in self.organizations)

    @property
    def ids(self) -> list[str]:
        return [org.id for org in self.organizations]

    @property
    def missing_names(self) -> bool:
        return any(org.name is None for org in self.organizations)

    def get(self, org_id: str) -> Organization | None:
        for org in self.organizations:
            if org.id == org_id:
                return org
        return None

    def with_names(self, names: Mapping[str, str]) -> Membership:
        """Fill in missing display names from an id-to-name mapping."""
        return Membership(
            tuple(
                org if org.name is not None or org.id not in names else Organization(org.id, names[org.id])
                for org in self.organizations
            )
        )


def _organization_from_object(value: Mapping[str, Any]) -> Organization:
    org_id = value.get("id")
    if not isinstance(org_id, str) or not org_id:
        raise UnrecognizedMembershipShapeError(value)
    name = value.get("name")
    return Organization(org_id, name if isinstance(name, str) and name else None)


def normalize_membership(raw: Any) -> Membership:
    """Normalize the organizations field of an identity record.

    Accepted shapes are a single id string, a list of id strings, a list of
    objects with an "id" (and optionally a "name"), and a single such object.
    None and the empty string mean no memberships. Duplicate ids are dropped,
    keeping the first occurrence.

    Raises:
        UnrecognizedMembershipShapeError: If the value has any other shape.
    """
    if raw is None or raw == "":
        return Membership()
    if isinstance(raw, str):
        return Membership((Organization(raw),))
    if isinstance(raw, Mapping):
        return Membership((_organization_from_object(raw),))
    if not isinstance(raw, list):
        raise UnrecognizedMembershipShapeError(raw)

    seen: set[str] = set()
    organizations: list[Organization] = []
    for item in raw:
        if isinstance(item, str) and item:
            org = Organization(item)
        elif isinstance(item, Mapping):
            org = _organization_from_object(item)
        else:
            raise UnrecognizedMembershipShapeError(item)
        if org.id not in seen:
            seen.add(org.id)
            organizations.append(org)
    return Membership(tuple(organizations))


def extract_membership(record: Mapping[str, Any]) -> Membership:
    """Get the membership of an identity record, preferring expanded data."""
    expand = record.get("expand")
    if isinstance(expand, Mapping) and expand.get("organizations") not in (None, "", []):
        return normalize_membership(expand["organizations"])
    return normalize_membership(record.get("organizations"))


class SelectionMode(str, Enum):
    """How an organization was chosen for a session."""

    EXPLICIT = "explicit"
    SOLE_MEMBERSHIP = "sole_membership"
    PREVIOUSLY_STORED = "previously_stored"
    REQUIRES_PROMPT = "requires_prompt"
    NONE = "none"


@dataclass(frozen=True)
class OrganizationSelection:
    """Outcome of organization selection.

    For REQUIRES_PROMPT, organization_id is None and candidates lists the choices.
    """

    organization_id: str | None
    mode: SelectionMode
    candidates: tuple[Organization, ...] = ()


def select_organization(
    membership: Membership,
    requested: str | None = None,
    previous: str | None = None,
) -> OrganizationSelection:
    """Choose the organization a new session is bound to.

    Args:
        membership: The identity's normalized memberships.
        requested: An organization id the user asked for explicitly.
        previous: The organization id stored before re-authentication.

    Returns:
        The selection and how it was made.

    Raises:
        OrganizationMismatchError: If requested is not among the memberships.
    """
    if requested:
        if requested not in membership:
            raise OrganizationMismatchError(requested, membership.ids)
        return OrganizationSelection(requested, SelectionMode.EXPLICIT)

    if len(membership) == 0:
        return OrganizationSelection(None, SelectionMode.NONE)

    if len(membership) == 1:
        return OrganizationSelection(membership.ids[0], SelectionMode.SOLE_MEMBERSHIP)

    if previous and previous in membership:
        return OrganizationSelection(previous, SelectionMode.PREVIOUSLY_STORED)

    return OrganizationSelection(None, SelectionMode.REQUIRES_PROMPT, membership.organizations)


def select_session_organization(
    collection: AuthCollection,
    record: Mapping[str, Any],
    requested: str | None = None,
    stored: str | None = None,
) -> OrganizationSelection:
    """Select the organization for a fresh session of any identity collection.

    Only administrators carry organization memberships; for other collections
    the requested or stored organization is kept as is.

    Args:
        collection: The identity collection that authenticated.
        record: The identity record returned by authentication.
        requested: Organization id given explicitly by the user.
        stored: Organization id stored in the environment before authentication.

    Raises:
        OrganizationMismatchError: If requested is not among the memberships.
        UnrecognizedMembershipShapeError: If the membership field is malformed.
    """
    if collection is not AuthCollection.USERS:
        if requested:
            return OrganizationSelection(requested, SelectionMode.EXPLICIT)
        if stored:
            return OrganizationSelection(stored, SelectionMode.PREVIOUSLY_STORED)
        return OrganizationSelection(None, SelectionMode.NONE)

    previous = stored or record.get("current_organization_id") or None
    return select_organization(extract_membership(record), requested, previous)
