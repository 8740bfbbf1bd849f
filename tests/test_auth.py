from unittest.mock import MagicMock

import pytest
import requests

from conftest import make_response
from migration_fabric.errors import AuthenticationError, ConfigurationError
from migration_fabric.odata.auth import (
    BasicAuthProvider,
    MutualTLSProvider,
    NoAuthProvider,
    OAuth2ClientCredentialsProvider,
    OAuth2SamlBearerProvider,
    create_auth_provider,
)


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.unit
class TestBasicAuth:
    """Test basic authentication headers."""

    def test_header(self) -> None:
        assert BasicAuthProvider("user", "pass").get_headers() == {"Authorization": "Basic dXNlcjpwYXNz"}

    def test_username_required(self) -> None:
        with pytest.raises(ConfigurationError):
            BasicAuthProvider("", "pass")


@pytest.mark.unit
class TestOAuth2:
    """Test token fetching and caching."""

    def _provider(self, session, clock, **kwargs):
        return OAuth2ClientCredentialsProvider(
            "https://auth.test/token", "client", "secret", session=session, clock=clock, **kwargs
        )

    def test_token_is_cached_until_refresh_buffer(self) -> None:
        """The token is reused until 60 seconds before it expires."""
        session = MagicMock(spec=requests.Session)
        session.post.side_effect = [
            make_response(200, {"access_token": "first", "expires_in": 3600}),
            make_response(200, {"access_token": "second", "expires_in": 3600}),
        ]
        clock = FakeClock()
        provider = self._provider(session, clock)

        assert provider.get_headers() == {"Authorization": "Bearer first"}
        clock.now = 3539
        assert provider.get_token() == "first"
        clock.now = 3540
        assert provider.get_token() == "second"
        assert session.post.call_count == 2

    def test_grant_data_and_credentials(self) -> None:
        session = MagicMock(spec=requests.Session)
        session.post.return_value = make_response(200, {"access_token": "tok"})
        provider = self._provider(session, FakeClock(), scope="api")

        provider.get_token()

        kwargs = session.post.call_args.kwargs
        assert kwargs["data"] == {"grant_type": "client_credentials", "scope": "api"}
        assert kwargs["auth"] == ("client", "secret")

    def test_rejected_token_request(self) -> None:
        session = MagicMock(spec=requests.Session)
        session.post.return_value = make_response(400, {"error": "invalid_client"})
        provider = self._provider(session, FakeClock())

        with pytest.raises(AuthenticationError) as exc_info:
            provider.get_token()
        assert exc_info.value.details["status"] == 400

    def test_network_failure(self) -> None:
        session = MagicMock(spec=requests.Session)
        session.post.side_effect = requests.ConnectionError("down")
        provider = self._provider(session, FakeClock())

        with pytest.raises(AuthenticationError, match="Token request failed"):
            provider.get_token()

    def test_missing_access_token(self) -> None:
        session = MagicMock(spec=requests.Session)
        session.post.return_value = make_response(200, {"token_type": "bearer"})

        with pytest.raises(AuthenticationError):
            self._provider(session, FakeClock()).get_token()

    def test_invalidate_forces_refetch(self) -> None:
        session = MagicMock(spec=requests.Session)
        session.post.return_value = make_response(200, {"access_token": "tok", "expires_in": 3600})
        provider = self._provider(session, FakeClock())

        provider.get_token()
        provider.invalidate()
        provider.get_token()

        assert session.post.call_count == 2

    def test_assertion_grant_uses_fresh_assertion(self) -> None:
        session = MagicMock(spec=requests.Session)
        session.post.return_value = make_response(200, {"access_token": "tok"})
        provider = OAuth2SamlBearerProvider(
            "https://auth.test/token", "client", "secret", assertion=lambda: "PHNhbWw+", session=session
        )

        provider.get_token()

        data = session.post.call_args.kwargs["data"]
        assert data["grant_type"] == "urn:ietf:params:oauth:grant-type:saml2-bearer"
        assert data["assertion"] == "PHNhbWw+"


@pytest.mark.unit
class TestMutualTLS:
    """Test client certificate configuration."""

    def test_configures_session(self) -> None:
        session = requests.Session()
        provider = MutualTLSProvider("/certs/client.pem", key_path="/certs/client.key", ca_path="/certs/ca.pem")

        provider.configure_session(session)

        assert provider.get_headers() == {}
        assert session.cert == ("/certs/client.pem", "/certs/client.key")
        assert session.verify == "/certs/ca.pem"


@pytest.mark.unit
class TestCreateAuthProvider:
    """Test provider selection from configuration."""

    def test_types(self) -> None:
        assert isinstance(create_auth_provider(None), NoAuthProvider)
        assert isinstance(create_auth_provider({"type": "none"}), NoAuthProvider)
        assert isinstance(create_auth_provider({"username": "u", "password": "p"}), BasicAuthProvider)
        oauth = create_auth_provider({"type": "oauth2", "token_url": "https://t", "client_id": "c"})
        assert isinstance(oauth, OAuth2ClientCredentialsProvider)
        assert isinstance(create_auth_provider({"type": "mtls", "cert_path": "/c.pem"}), MutualTLSProvider)

    def test_unknown_type(self) -> None:
        with pytest.raises(ConfigurationError):
            create_auth_provider({"type": "kerberos"})

    def test_oauth2_requires_token_url(self) -> None:
        with pytest.raises(ConfigurationError):
            create_auth_provider({"type": "oauth2"})
