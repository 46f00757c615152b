"""HTTP client for the platform's document database (PocketBase API)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from . import __version__
from .config import AuthCollection, Session
from .errors import BackendError, OrganizationMismatchError, ValidationError
from .logging import get_logger
from .session import Membership, extract_membership, normalize_membership

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0
MAX_PAGE_SIZE = 500


@dataclass
class AuthResult:
    """Token and identity record returned by a successful authentication."""

    token: str
    record: dict[str, Any] = field(default_factory=dict)


@dataclass
class RecordPage:
    """One page of records from a list query."""

    page: int
    per_page: int
    total_items: int
    total_pages: int
    items: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RecordPage:
        """Create a RecordPage from a list response body."""
        return cls(
            page=data.get("page", 1),
            per_page=data.get("perPage", 0),
            total_items=data.get("totalItems", 0),
            total_pages=data.get("totalPages", 0),
            items=list(data.get("items") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "page": self.page,
            "perPage": self.per_page,
            "totalItems": self.total_items,
            "totalPages": self.total_pages,
            "items": self.items,
        }


def page_for_offset(offset: int, limit: int) -> tuple[int, int]:
    """Translate offset/limit into a (page, per_page) pair.

    Raises:
        ValidationError: If limit is outside 1..500 or offset is negative.
    """
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if offset < 0:
        raise ValidationError("offset cannot be negative")
    return offset // limit + 1, limit


class BackendClient:
    """Thin wrapper around the document database HTTP API.

    Every non-2xx response is raised as BackendError; transport failures are
    raised as BackendError with status code 0.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        record: dict[str, Any] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.record: dict[str, Any] = dict(record or {})
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"User-Agent": f"flint-cli/{__version__}"},
        )

    @classmethod
    def from_session(cls, base_url: str, session: Session, **kwargs: Any) -> BackendClient:
        """Create a client carrying the token and identity of a stored session."""
        return cls(base_url, token=session.token, record=session.record, **kwargs)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> BackendClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        clean_params = {k: v for k, v in (params or {}).items() if v not in (None, "")}
        logger.debug(f"{method} {self.base_url}/api/{path} params={clean_params}")

        try:
            response = self._client.request(method, f"/api/{path}", params=clean_params, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise BackendError(0, str(e) or type(e).__name__) from e

        logger.debug(f"Response status: {response.status_code}")
        if response.status_code >= 400:
            raise self._error_from_response(response)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise BackendError(response.status_code, f"invalid JSON response: {e}") from e

    @staticmethod
    def _error_from_response(response: httpx.Response) -> BackendError:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = str(body.get("message") or response.reason_phrase)
            data = body.get("data") if isinstance(body.get("data"), dict) else {}
        else:
            message = response.text.strip() or response.reason_phrase
            data = {}
        return BackendError(response.status_code, message, data)

    # -------------------------------------------------------------------------
    # Health and authentication
    # -------------------------------------------------------------------------

    def health(self) -> dict[str, Any]:
        """Check that the server is reachable and healthy."""
        return self._request("GET", "health") or {}

    def authenticate(self, collection: AuthCollection, identity: str, password: str) -> AuthResult:
        """Authenticate with identity and password against an identity collection.

        The client keeps the returned token for subsequent calls.

        Raises:
            ValidationError: If identity or password is empty.
            BackendError: If the server rejects the credentials.
        """
        if not identity:
            raise ValidationError("identity (email/username) is required")
        if not password:
            raise ValidationError("password is required")

        logger.debug(f"Authenticating with collection: {collection.value}")
        data = self._request(
            "POST",
            f"collections/{collection.value}/auth-with-password",
            json={"identity": identity, "password": password},
        )
        return self._accept_auth(data)

    def refresh_auth(self, collection: AuthCollection) -> AuthResult:
        """Exchange the current token for a fresh one.

        Raises:
            BackendError: If the token is rejected.
        """
        if not self.token:
            raise BackendError(401, "not authenticated")
        data = self._request("POST", f"collections/{collection.value}/auth-refresh")
        return self._accept_auth(data)

    def _accept_auth(self, data: Any) -> AuthResult:
        if not isinstance(data, dict) or not data.get("token"):
            raise BackendError(500, "authentication response did not contain a token")
        result = AuthResult(token=data["token"], record=dict(data.get("record") or {}))
        self.token = result.token
        self.record = result.record
        return result

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    def list_records(
        self,
        collection: str,
        page: int = 1,
        per_page: int = 30,
        filter: str | None = None,
        sort: str | None = None,
        fields: list[str] | None = None,
        expand: list[str] | None = None,
    ) -> RecordPage:
        """List records of a collection."""
        params = {
            "page": page,
            "perPage": per_page,
            "filter": filter,
            "sort": sort,
            "fields": ",".join(fields) if fields else None,
            "expand": ",".join(expand) if expand else None,
        }
        data = self._request("GET", f"collections/{collection}/records", params=params)
        return RecordPage.from_api(data or {})

    def get_record(self, collection: str, record_id: str, expand: list[str] | None = None) -> dict[str, Any]:
        """Fetch a single record by id."""
        params = {"expand": ",".join(expand) if expand else None}
        return self._request("GET", f"collections/{collection}/records/{record_id}", params=params) or {}

    def create_record(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create a record and return it as stored."""
        return self._request("POST", f"collections/{collection}/records", json=data) or {}

    def update_record(self, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Patch a record and return it as stored."""
        return self._request("PATCH", f"collections/{collection}/records/{record_id}", json=data) or {}

    def delete_record(self, collection: str, record_id: str) -> None:
        self._request("DELETE", f"collections/{collection}/records/{record_id}")

    # -------------------------------------------------------------------------
    # Organizations
    # -------------------------------------------------------------------------

    def fetch_user_organizations(self, user_id: str) -> Membership:
        """Fetch a user's organizations with display names."""
        record = self.get_record("users", user_id, expand=["organizations"])
        return extract_membership(record)

    def complete_membership(self, membership: Membership, user_id: str | None) -> Membership:
        """Fill in missing organization names with a follow-up fetch.

        Failures leave the membership unchanged; names are best-effort.
        """
        if not membership.missing_names or not user_id:
            return membership
        try:
            fetched = self.fetch_user_organizations(user_id)
        except BackendError as e:
            logger.debug(f"Could not fetch organization names: {e}")
            return membership
        return membership.with_names({org.id: org.name for org in fetched if org.name})

    def validate_organization_access(self, organization_id: str, record: dict[str, Any] | None = None) -> None:
        """Check that the authenticated user belongs to an organization.

        The cached identity record is consulted first, then the server.

        Raises:
            OrganizationMismatchError: If the user is not a member.
            BackendError: If the server cannot be reached.
        """
        record = record if record is not None else self.record
        membership = extract_membership(record) if record else normalize_membership(None)
        if organization_id in membership:
            return

        user_id = record.get("id") if record else None
        if not user_id:
            raise OrganizationMismatchError(organization_id, membership.ids)
        logger.debug("Organization not found in identity record, fetching expanded user data")
        fetched = self.fetch_user_organizations(user_id)
        if organization_id not in fetched:
            raise OrganizationMismatchError(organization_id, fetched.ids)

    def update_current_organization(self, user_id: str, organization_id: str) -> dict[str, Any]:
        """Set the user's current organization on the server."""
        return self.update_record("users", user_id, {"current_organization_id": organization_id})

