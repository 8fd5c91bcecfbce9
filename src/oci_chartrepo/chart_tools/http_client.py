"""HTTP client shared by the registry API, the Harbor API and the OCI pull transport."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import aiohttp
from multidict import CIMultiDict

from .config import settings
from .exceptions import MalformedArtifactError, SkipCandidateError, TransportError

logger = logging.getLogger(__name__)

# Statuses meaning "not visible to this credential" rather than a broken upstream
SKIP_STATUSES = frozenset({401, 403, 404, 412})

SKIP_ERROR_CODES = frozenset(
    {
        "UNAUTHORIZED",
        "DENIED",
        "FORBIDDEN",
        "NAME_UNKNOWN",
        "MANIFEST_UNKNOWN",
        "NOT_FOUND",
        "PROJECT_POLICY_VIOLATION",
    }
)

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')
_REPOSITORY_PATH = re.compile(r"^/v2/(?P<name>.+)/(?:manifests|blobs|tags)/")


@dataclass
class HttpResponse:
    """Buffered response of one request."""

    status: int
    headers: CIMultiDict
    body: bytes
    links: Dict[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        try:
            return json.loads(self.body)
        except ValueError as e:
            raise MalformedArtifactError(f"Response is not valid JSON: {e}") from e


def error_codes(body: bytes) -> List[str]:
    """Extract distribution-style error codes from an error body."""
    try:
        payload = json.loads(body)
    except ValueError:
        return []
    if not isinstance(payload, dict):
        return []
    codes = []
    for item in payload.get("errors") or []:
        if isinstance(item, dict) and item.get("code"):
            codes.append(str(item["code"]).upper())
    return codes


def classify_status(status: int, body: bytes, url: str) -> None:
    """Raise the typed error for a non-success response.

    Raises:
        SkipCandidateError: Unauthorized, forbidden, unknown or policy-blocked
        TransportError: Any other failure status
    """
    codes = error_codes(body)
    if status in SKIP_STATUSES or SKIP_ERROR_CODES.intersection(codes):
        raise SkipCandidateError(
            f"{url} is not accessible: HTTP {status} {','.join(codes)}".rstrip(),
            status=status,
            codes=codes,
        )
    raise TransportError(f"Request to {url} failed: HTTP {status}", status=status)


def parse_challenge(www_auth: str) -> Optional[Dict[str, str]]:
    """Parse a Bearer WWW-Authenticate challenge into its parameters."""
    if not www_auth.lower().startswith("bearer "):
        return None
    return {key.lower(): value for key, value in _CHALLENGE_PARAM.findall(www_auth[7:])}


def predict_scope(path: str) -> str:
    """Guess the token scope a registry path needs, so cached tokens can be reused."""
    path = urlsplit(path).path
    if path.startswith("/v2/_catalog"):
        return "registry:catalog:*"
    match = _REPOSITORY_PATH.match(path)
    if match:
        return f"repository:{match.group('name')}:pull"
    return ""


class RegistryHttpClient:
    """Talks to a registry or Harbor endpoint with Basic and Bearer authentication."""

    def __init__(
        self,
        base_url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: Optional[int] = None,
        verify_tls: Optional[bool] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session
        self._owns_session = session is None
        self._username = username
        self._password = password
        self._basic_auth = (
            aiohttp.BasicAuth(username, password or "") if username else None
        )
        self._token_cache: Dict[str, str] = {}  # Bearer tokens by scope

        http_config = settings.http_config
        self.timeout = timeout or http_config.timeout
        self.verify_tls = http_config.verify_tls if verify_tls is None else verify_tls

    async def __aenter__(self):
        """Async context manager entry."""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(ssl=None if self.verify_tls else False)
            )
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    def with_base_url(self, base_url: str) -> "RegistryHttpClient":
        """Return a client for another base URL sharing session, credentials and tokens."""
        client = RegistryHttpClient(
            base_url,
            username=self._username,
            password=self._password,
            session=self.session,
            timeout=self.timeout,
            verify_tls=self.verify_tls,
        )
        client._owns_session = False
        client._token_cache = self._token_cache
        return client

    def url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}{path}"

    async def ping(self) -> bool:
        """Return True if the registry API root answers at all."""
        try:
            response = await self._send("GET", self.url("/v2/"), None, None, None)
        except TransportError as e:
            logger.warning(f"Registry API at {self.base_url} is not reachable: {e}")
            return False
        return response.status < 500

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> HttpResponse:
        """Send a request, answering a Bearer challenge once if the server sends one.

        Args:
            method: HTTP method
            path: Path below the base URL, or an absolute URL
            params: Query parameters
            headers: Extra request headers

        Returns:
            The buffered 2xx response

        Raises:
            SkipCandidateError: The resource is not visible to this credential
            TransportError: Network failure, timeout or server error
        """
        url = self.url(path)
        scope = predict_scope(path)

        response = await self._send(
            method, url, params, headers, self._token_cache.get(scope)
        )
        if response.status == 401:
            challenge = parse_challenge(response.headers.get("WWW-Authenticate", ""))
            if challenge is not None:
                token = await self._get_auth_token(challenge, scope)
                if token:
                    self._token_cache[scope] = token
                    response = await self._send(method, url, params, headers, token)

        if response.status >= 300:
            classify_status(response.status, response.body, url)
        return response

    async def get_json(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Tuple[Any, HttpResponse]:
        response = await self.request("GET", path, params=params, headers=headers)
        return response.json(), response

    async def get_bytes(self, path: str, headers: Optional[Dict[str, str]] = None) -> bytes:
        response = await self.request("GET", path, headers=headers)
        return response.body

    async def _send(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]],
        headers: Optional[Dict[str, str]],
        token: Optional[str],
    ) -> HttpResponse:
        if not self.session:
            raise RuntimeError("HTTP session not initialized")

        request_headers = dict(headers or {})
        auth = None
        if token:
            request_headers["Authorization"] = f"Bearer {token}"
        else:
            auth = self._basic_auth

        logger.debug(f"{method} {url} params={params}")
        try:
            async with self.session.request(
                method,
                url,
                params=params,
                headers=request_headers,
                auth=auth,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                body = await response.read()
                links = {}
                for rel, link in response.links.items():
                    if link.get("url") is not None:
                        links[str(rel)] = str(link["url"])
                return HttpResponse(
                    status=response.status,
                    headers=CIMultiDict(response.headers),
                    body=body,
                    links=links,
                )
        except asyncio.TimeoutError:
            raise TransportError(f"Timeout after {self.timeout}s requesting {url}")
        except aiohttp.ClientError as e:
            raise TransportError(f"Request to {url} failed: {e}") from e

    async def _get_auth_token(
        self, challenge: Dict[str, str], scope: str
    ) -> Optional[str]:
        """Get a registry bearer token using the Docker Registry HTTP API V2 flow.

        The challenge comes from the WWW-Authenticate header of a 401 response;
        the token is requested from its realm with Basic authentication when
        credentials are configured.

        Args:
            challenge: Parsed Bearer challenge parameters
            scope: Scope predicted from the request path

        Returns:
            Bearer token if the auth service issued one, None if the challenge
            has no realm

        Raises:
            SkipCandidateError: The auth service refused the credentials
            TransportError: The auth service could not be reached
        """
        if not self.session:
            raise RuntimeError("HTTP session not initialized")

        realm = challenge.get("realm")
        if not realm:
            logger.error(f"No realm found in auth challenge from {self.base_url}")
            return None

        params = {}
        if challenge.get("service"):
            params["service"] = challenge["service"]
        if challenge.get("scope") or scope:
            params["scope"] = challenge.get("scope") or scope

        try:
            async with self.session.get(
                realm,
                params=params,
                auth=self._basic_auth,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                if response.status != 200:
                    logger.error(
                        f"Failed to get auth token from {realm}: HTTP {response.status}"
                    )
                    raise SkipCandidateError(
                        f"Auth service {realm} refused token request: HTTP {response.status}",
                        status=response.status,
                    )
                token_response = await response.json(content_type=None)
        except asyncio.TimeoutError:
            raise TransportError(f"Timeout requesting auth token from {realm}")
        except aiohttp.ClientError as e:
            raise TransportError(f"Failed to get auth token from {realm}: {e}") from e
        except ValueError as e:
            raise TransportError(f"Invalid auth response from {realm}: {e}") from e

        if not isinstance(token_response, dict):
            logger.error(f"Unexpected auth response from {realm}")
            return None
        token = token_response.get("token") or token_response.get("access_token")
        if not token:
            logger.error(f"No token found in auth response from {realm}")
            return None

        logger.debug(f"Obtained auth token for scope {params.get('scope', '')!r}")
        return token
