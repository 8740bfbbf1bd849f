"""Dictionary connection speaking to a JSON function gateway over HTTP."""

import json
import logging
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import ConnectionError, ProtocolError, error_from_response
from ..odata.auth import AuthProvider, NoAuthProvider

logger = logging.getLogger(__name__)


class GatewayConnection:
    """
    Call dictionary functions exposed as ``POST {base_url}/{function}``.

    The request body is the JSON parameter set; the response body is the
    JSON result (export parameters and tables keyed by name).
    """

    def __init__(
        self,
        base_url: str,
        auth_provider: Optional[AuthProvider] = None,
        timeout: float = 30.0,
        client: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth_provider = auth_provider or NoAuthProvider()
        self.timeout = timeout
        self.client = client
        self.session = session or self._create_session()
        self.auth_provider.configure_session(self.session)
        self.is_connected = True

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        retry_strategy = Retry(
            total=3,
            backoff_factor=1,
            status_forcelist=[502, 503, 504],
            allowed_methods=["POST"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        return session

    def call(self, name: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/{name.lstrip('/')}"
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        headers.update(self.auth_provider.get_headers())
        query = {"sap-client": self.client} if self.client else None

        try:
            response = self.session.post(
                url, data=json.dumps(params or {}), headers=headers, params=query, timeout=self.timeout
            )
        except requests.Timeout as e:
            raise ConnectionError(f"Function call {name} timed out after {self.timeout}s", {"function": name}) from e
        except requests.RequestException as e:
            self.is_connected = False
            raise ConnectionError(f"Network error calling {name}: {e}", {"function": name}) from e

        if response.status_code >= 400:
            raise error_from_response(
                response.status_code,
                f"Function call {name} failed: {response.status_code}",
                response.text,
                {"function": name, "url": url},
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON from function {name}", {"function": name}) from e

    def close(self) -> None:
        self.session.close()
        self.is_connected = False
