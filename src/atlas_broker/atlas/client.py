"""Minimal client for the Atlas backend API.

Uses stdlib ``urllib.request`` with HTTP digest authentication; no extra
dependencies required. Only the calls the broker core needs are here:
fetching provider metadata for the catalog and generic JSON requests for
the provisioning layer built on top.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from atlas_broker.errors import InvalidCredentials
from atlas_broker.models import InstanceSize, Provider, RequestAuth

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://cloud.mongodb.com"
DEFAULT_TIMEOUT = 30.0


class AtlasError(Exception):
    """Raised when a backend request fails."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


@runtime_checkable
class ProviderSource(Protocol):
    """Anything that can fetch provider metadata by name."""

    def get_provider(self, name: str) -> Provider: ...


class AtlasClient:
    """Digest-authenticated JSON client bound to one project's key pair.

    Without keys the client makes unauthenticated requests, which is
    enough for provider metadata.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        public_key: str = "",
        private_key: str = "",
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._public_key = public_key
        self._timeout = timeout

        handlers: list[urllib.request.BaseHandler] = []
        if public_key:
            passwords = urllib.request.HTTPPasswordMgrWithDefaultRealm()
            passwords.add_password(None, self._base_url, public_key, private_key)
            handlers.append(urllib.request.HTTPDigestAuthHandler(passwords))
        self._opener = urllib.request.build_opener(*handlers)

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def public_key(self) -> str:
        return self._public_key

    def request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        query: dict[str, str] | None = None,
    ) -> Any:
        """Send a JSON request and return the decoded response body."""
        url = self._base_url + path
        if query:
            url += "?" + urllib.parse.urlencode(query)

        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = urllib.request.Request(
            url,
            data=data,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            method=method,
        )

        try:
            with self._opener.open(req, timeout=self._timeout) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            raise AtlasError(f"{method} {path} failed: HTTP {e.code}", status=e.code) from e
        except (urllib.error.URLError, TimeoutError) as e:
            raise AtlasError(f"{method} {path} failed: {e}") from e

        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise AtlasError(f"{method} {path} returned invalid JSON: {e}") from e

    def get_json(self, path: str, query: dict[str, str] | None = None) -> Any:
        return self.request("GET", path, query=query)

    def get_provider(self, name: str) -> Provider:
        """Fetch a provider and its instance sizes, preserving backend order."""
        logger.debug("Fetching provider %s from %s", name, self._base_url)
        data = self.get_json(
            "/api/private/unauth/nds/instanceSizes", query={"provider": name},
        )
        return parse_provider(name, data)


def parse_provider(name: str, data: Any) -> Provider:
    """Build a Provider from the backend's instance-size listing.

    Accepts either a list of size objects or a mapping keyed by size name.
    """
    if isinstance(data, dict) and "instanceSizes" in data:
        name = data.get("@provider", name)
        data = data["instanceSizes"]

    if isinstance(data, dict):
        entries = []
        for key, value in data.items():
            if value is not None and not isinstance(value, dict):
                raise AtlasError(
                    f"Invalid instance size {key!r} for {name}: expected an object"
                )
            entries.append({"name": key, **(value or {})})
    elif isinstance(data, list):
        entries = data
    else:
        raise AtlasError(f"Unexpected provider payload for {name}: {type(data).__name__}")

    sizes: dict[str, InstanceSize] = {}
    for entry in entries:
        try:
            size = InstanceSize.model_validate(entry)
        except ValidationError as e:
            raise AtlasError(f"Invalid instance size for {name}: {e}") from e
        sizes[size.name] = size
    return Provider(name=name, instance_sizes=sizes)


def new_client(public_key: str, private_key: str, base_url: str) -> AtlasClient:
    """Default client factory used by the resolver."""
    return AtlasClient(base_url=base_url, public_key=public_key, private_key=private_key)


def parse_basic_auth(username: str, password: str) -> RequestAuth:
    """Parse BasicAuth-mode request credentials.

    The username is ``<publicKey>@<groupID>`` and the password is the
    private key.

    Raises:
        InvalidCredentials: If the username is not in that form.
    """
    public_key, sep, group_id = username.rpartition("@")
    if not sep or not public_key or not group_id:
        raise InvalidCredentials("Username must be of the form <publicKey>@<groupID>")
    return RequestAuth(group_id=group_id, public_key=public_key, private_key=password)
