"""Authentication providers for the OData transport."""

import base64
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple, Union

import requests

from ..errors import AuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)

TOKEN_REFRESH_BUFFER_SECONDS = 60
TOKEN_TIMEOUT_SECONDS = 10


class AuthProvider(ABC):
    """
    Base class for request credential providers.

    Providers produce request headers and may optionally contribute transport
    materials (client certificates) to the session used by a client.
    """

    @abstractmethod
    def get_headers(self) -> Dict[str, str]:
        """Return the headers to attach to each request."""
        pass

    def configure_session(self, session: requests.Session) -> None:
        """Contribute transport materials to a session. No-op by default."""
        return None


class NoAuthProvider(AuthProvider):
    def get_headers(self) -> Dict[str, str]:
        return {}


class BasicAuthProvider(AuthProvider):
    """HTTP basic authentication."""

    def __init__(self, username: str, password: str):
        if not username:
            raise ConfigurationError("Basic auth requires a username", {"field": "username"})
        self.username = username
        self.password = password or ""

    def get_headers(self) -> Dict[str, str]:
        credentials = f"{self.username}:{self.password}"
        encoded = base64.b64encode(credentials.encode()).decode()
        return {"Authorization": f"Basic {encoded}"}


class OAuth2ClientCredentialsProvider(AuthProvider):
    """
    OAuth2 client-credentials grant with token caching.

    The token is reused until 60 seconds before its declared expiry, then
    fetched again. Fetch failures raise AuthenticationError and are not retried.
    """

    grant_type = "client_credentials"

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        scope: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = TOKEN_TIMEOUT_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ):
        if not token_url:
            raise ConfigurationError("OAuth2 requires a token URL", {"field": "token_url"})
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope
        self.timeout = timeout
        self._session = session or requests.Session()
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self._expires_at: float = 0.0

    def get_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.get_token()}"}

    def get_token(self) -> str:
        """Get a valid access token, refreshing when close to expiry."""
        with self._lock:
            if self._token and self._clock() < self._expires_at - TOKEN_REFRESH_BUFFER_SECONDS:
                return self._token
            self._token, expires_in = self._fetch_token()
            self._expires_at = self._clock() + expires_in
            return self._token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None
            self._expires_at = 0.0

    def _grant_data(self) -> Dict[str, str]:
        data = {"grant_type": self.grant_type}
        if self.scope:
            data["scope"] = self.scope
        return data

    def _fetch_token(self) -> Tuple[str, float]:
        logger.debug(f"Fetching OAuth2 token from {self.token_url}")
        try:
            response = self._session.post(
                self.token_url,
                data=self._grant_data(),
                auth=(self.client_id, self.client_secret),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise AuthenticationError(
                f"Token request failed: {e}", {"url": self.token_url}
            ) from e

        if response.status_code != 200:
            raise AuthenticationError(
                f"Token request failed: {response.status_code}",
                {"url": self.token_url, "status": response.status_code, "body": response.text[:500]},
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise AuthenticationError("Token response is not JSON", {"url": self.token_url}) from e

        token = payload.get("access_token")
        if not token:
            raise AuthenticationError("Token response has no access_token", {"url": self.token_url})

        expires_in = float(payload.get("expires_in", 3600))
        logger.info(f"Obtained OAuth2 token (expires in {int(expires_in)}s)")
        return token, expires_in


class OAuth2SamlBearerProvider(OAuth2ClientCredentialsProvider):
    """
    OAuth2 assertion-bearer grant.

    The assertion is either a fixed string or a callable returning a fresh
    (base64 encoded) assertion for each token request.
    """

    grant_type = "urn:ietf:params:oauth:grant-type:saml2-bearer"

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        assertion: Union[str, Callable[[], str]],
        scope: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(token_url, client_id, client_secret, scope=scope, **kwargs)
        if not assertion:
            raise ConfigurationError("Assertion grant requires an assertion", {"field": "assertion"})
        self.assertion = assertion

    def _grant_data(self) -> Dict[str, str]:
        data = super()._grant_data()
        data["assertion"] = self.assertion() if callable(self.assertion) else self.assertion
        return data


class MutualTLSProvider(AuthProvider):
    """Client certificate authentication. Contributes no auth header."""

    def __init__(
        self,
        cert_path: str,
        key_path: Optional[str] = None,
        ca_path: Optional[str] = None,
    ):
        if not cert_path:
            raise ConfigurationError("mTLS requires a certificate", {"field": "cert_path"})
        self.cert_path = cert_path
        self.key_path = key_path
        self.ca_path = ca_path

    def get_headers(self) -> Dict[str, str]:
        return {}

    def configure_session(self, session: requests.Session) -> None:
        session.cert = (self.cert_path, self.key_path) if self.key_path else self.cert_path
        if self.ca_path:
            session.verify = self.ca_path


def create_auth_provider(auth: Optional[Dict[str, Any]]) -> AuthProvider:
    """
    Create an auth provider from a configuration dict.

    Args:
        auth: Dict with a ``type`` key (basic, oauth2, saml_bearer, mtls, none)
            and the provider's credentials

    Returns:
        AuthProvider instance
    """
    if not auth:
        return NoAuthProvider()

    auth_type = (auth.get("type") or "basic").lower()

    if auth_type == "basic":
        return BasicAuthProvider(auth.get("username", ""), auth.get("password", ""))
    elif auth_type in ("oauth2", "client_credentials"):
        return OAuth2ClientCredentialsProvider(
            token_url=auth.get("token_url", ""),
            client_id=auth.get("client_id", ""),
            client_secret=auth.get("client_secret", ""),
            scope=auth.get("scope"),
        )
    elif auth_type == "saml_bearer":
        return OAuth2SamlBearerProvider(
            token_url=auth.get("token_url", ""),
            client_id=auth.get("client_id", ""),
            client_secret=auth.get("client_secret", ""),
            assertion=auth.get("assertion", ""),
            scope=auth.get("scope"),
        )
    elif auth_type == "mtls":
        return MutualTLSProvider(
            cert_path=auth.get("cert_path", ""),
            key_path=auth.get("key_path"),
            ca_path=auth.get("ca_path"),
        )
    elif auth_type == "none":
        return NoAuthProvider()
    else:
        raise ConfigurationError(f"Unsupported auth type: {auth_type}", {"field": "auth.type"})
