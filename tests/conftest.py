"""
Shared fixtures for the unit tests.

HTTP traffic is faked with real ``requests.Response`` objects handed out by a
mocked session, so the client code sees exactly what ``requests`` returns.
"""

import json
from typing import Any, Dict, Optional
from unittest.mock import MagicMock

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from migration_fabric.odata import ODataClient


def make_response(
    status: int = 200,
    json_body: Any = None,
    text: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
    url: str = "https://example.test/",
) -> requests.Response:
    """Build a requests.Response with the given status, body and headers."""
    response = requests.Response()
    response.status_code = status
    response.url = url
    response.reason = "OK" if status < 400 else "Error"
    response.headers = CaseInsensitiveDict(headers or {})
    response.encoding = "utf-8"
    if json_body is not None:
        response._content = json.dumps(json_body).encode("utf-8")
        response.headers.setdefault("Content-Type", "application/json")
    else:
        response._content = (text or "").encode("utf-8")
    return response


@pytest.fixture
def session() -> MagicMock:
    """A session double; tests set ``request``/``head`` side effects."""
    return MagicMock(spec=requests.Session)


@pytest.fixture
def sleeps() -> list:
    return []


@pytest.fixture
def make_client(session: MagicMock, sleeps: list):
    """Factory for clients wired to the fake session with no real sleeping."""

    def _make(**kwargs: Any) -> ODataClient:
        options: Dict[str, Any] = {
            "base_url": "https://example.test",
            "session": session,
            "sleep": sleeps.append,
            "rng": lambda: 0.0,
        }
        options.update(kwargs)
        return ODataClient(**options)

    return _make
