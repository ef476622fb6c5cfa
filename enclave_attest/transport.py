"""
HTTP transport and authorization source

Thin wrappers around requests. Cookies are never persisted in a shared jar:
every request runs in its own session whose cookie policy blocks all domains,
and the response cookies are handed back explicitly to the caller.
"""

from dataclasses import dataclass, field
from http.cookiejar import DefaultCookiePolicy
import json
import logging
from typing import Any, Dict, Optional, Tuple

import requests

from .config import AttestationService, ServiceConfig
from .errors import AuthorizationFailure, MalformedResponse, TransportFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Authorization:
    """Short-lived enclave credentials; never persisted"""
    username: str
    password: str = field(repr=False)

    @property
    def basic_auth(self) -> Tuple[str, str]:
        return (self.username, self.password)


@dataclass
class TransportResponse:
    """Status, headers, decoded JSON body and explicitly captured cookies."""
    status_code: int
    headers: Dict[str, str]
    body: Any
    cookies: Dict[str, str] = field(default_factory=dict)
    url: str = ""


class HttpTransport:
    """
    requests-based transport.

    Usage:
        transport = HttpTransport(timeout=10)
        response = transport.request("PUT", url, json_body={...}, auth=("user", "pass"))
    """

    def __init__(self, timeout: float = 30.0, verify: bool = True) -> None:
        self.timeout = timeout
        self.verify = verify

    def _new_session(self) -> requests.Session:
        session = requests.Session()
        session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))
        return session

    def request(
        self,
        method: str,
        url: str,
        json_body: Optional[dict] = None,
        auth: Optional[Tuple[str, str]] = None
    ) -> TransportResponse:
        """
        Perform one request and decode its JSON body.

        Raises:
            TransportFailure: Connection errors, timeouts, non-2xx statuses
            AuthorizationFailure: 401 or 403 from the host
            MalformedResponse: The body is not JSON
        """
        logger.info(f"Sending {method} request to {url}")

        with self._new_session() as session:
            try:
                response = session.request(
                    method,
                    url,
                    json=json_body,
                    auth=auth,
                    timeout=self.timeout,
                    verify=self.verify
                )
            except requests.exceptions.Timeout as e:
                logger.warning(f"Request timed out: {e}")
                raise TransportFailure(f"Request to {url} timed out: {e}") from e
            except requests.exceptions.RequestException as e:
                logger.warning(f"Request failed: {e}")
                raise TransportFailure(f"HTTP request to {url} failed: {e}") from e

        if response.status_code in (401, 403):
            logger.warning(f"HTTP {response.status_code}: credentials rejected")
            raise AuthorizationFailure(
                f"HTTP {response.status_code} from {url}",
                details={"status_code": response.status_code}
            )
        if not 200 <= response.status_code < 300:
            logger.warning(f"HTTP {response.status_code}: {response.text[:200]}")
            raise TransportFailure(
                f"HTTP {response.status_code} from {url}",
                details={"status_code": response.status_code}
            )

        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise MalformedResponse(f"Failed to parse JSON response: {e}") from e

        return TransportResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=body,
            cookies=response.cookies.get_dict(),
            url=response.url
        )


class AuthorizationClient:
    """Fetches enclave credentials from the main service."""

    def __init__(self, config: ServiceConfig, transport=None) -> None:
        self.config = config
        self.transport = transport or HttpTransport(timeout=config.timeout)

    def fetch(self, service: AttestationService) -> Authorization:
        """
        Request short-lived credentials for an attestation service.

        Raises:
            AuthorizationFailure: If the service refuses or returns no credentials
            TransportFailure: If the round-trip fails
        """
        url = f"{self.config.service_url.rstrip('/')}/{service.auth_path}"
        logger.info(f"Requesting {service.value} authorization from {url}...")

        account = None
        if self.config.username and self.config.password:
            account = (self.config.username, self.config.password)

        try:
            response = self.transport.request("GET", url, auth=account)
        except MalformedResponse as e:
            raise AuthorizationFailure(f"Missing or invalid JSON: {e.message}") from e

        body = response.body
        if not isinstance(body, dict):
            raise AuthorizationFailure("Missing or invalid JSON")
        username = body.get('username')
        password = body.get('password')
        if not isinstance(username, str) or not username:
            raise AuthorizationFailure("Authorization response is missing username")
        if not isinstance(password, str) or not password:
            raise AuthorizationFailure("Authorization response is missing password")

        logger.info(f"✓ Authorization obtained for {service.value}")
        return Authorization(username=username, password=password)
