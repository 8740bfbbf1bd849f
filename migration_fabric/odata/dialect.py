"""Dialect handling for OData v2 and v4 services."""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union
from urllib.parse import parse_qsl, quote, urlencode, urljoin, urlsplit, urlunsplit

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

CSRF_HEADER = "X-CSRF-Token"
CSRF_TTL_SECONDS = 25 * 60
CSRF_FALLBACK_TTL_SECONDS = 5 * 60
CSRF_UNUSED = "unused"
CSRF_FALLBACK = "fallback"

WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "MERGE", "DELETE"})

_QUERY_SAFE = "$,'():/@*"


@dataclass
class CsrfToken:
    """Cached CSRF token with its expiry (epoch seconds)."""
    value: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return bool(self.value) and now < self.expires_at

    @property
    def is_placeholder(self) -> bool:
        return self.value in (CSRF_UNUSED, CSRF_FALLBACK)


def extract_results(data: Any) -> List[Any]:
    """
    Unwrap a response body into a list of records.

    ``value[]`` wins, then ``d.results[]``, then a single ``d`` entity, then
    the body itself (a list stays a list, anything else becomes one element).
    """
    if data is None:
        return []
    if isinstance(data, dict):
        value = data.get("value")
        if isinstance(value, list):
            return value
        envelope = data.get("d")
        if isinstance(envelope, dict):
            results = envelope.get("results")
            if isinstance(results, list):
                return results
            return [envelope]
        if envelope is not None:
            return [envelope]
        return [data]
    if isinstance(data, list):
        return data
    return [data]


def build_url(base_url: str, path: str, params: Optional[Dict[str, Any]] = None) -> str:
    """
    Join a path onto the base URL and merge query parameters.

    Absolute paths (``http...``) are used as-is. Existing query parameters
    are preserved unless overridden by ``params``.
    """
    url = path if path.startswith("http") else f"{base_url.rstrip('/')}{path if path.startswith('/') else '/' + path}"
    if not params:
        return url

    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    for key, value in params.items():
        if value is None:
            continue
        query[key] = str(value)
    encoded = urlencode(query, quote_via=quote, safe=_QUERY_SAFE)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, encoded, parts.fragment))


def resolve_link(base_url: str, link: str, current_url: Optional[str] = None) -> str:
    """Resolve a next-link against the configured base URL."""
    if link.startswith("http://") or link.startswith("https://"):
        return link
    if link.startswith("/"):
        return f"{base_url.rstrip('/')}{link}"
    return urljoin(current_url or base_url.rstrip("/") + "/", link)


class Dialect:
    """Base class for protocol dialects."""

    name = ""
    next_link_field = ""

    def prepare_params(self, params: Optional[Dict[str, Any]], url: str) -> Dict[str, Any]:
        return dict(params or {})

    def build_url(self, base_url: str, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        url = build_url(base_url, path)
        return build_url(base_url, url, self.prepare_params(params, url))

    def next_link(self, data: Any) -> Optional[str]:
        raise NotImplementedError

    def count(self, data: Any) -> Optional[int]:
        raise NotImplementedError

    def extract_results(self, data: Any) -> List[Any]:
        return extract_results(data)

    def format_date_literal(self, value: Union[str, date, datetime]) -> str:
        raise NotImplementedError

    def requires_csrf(self, method: str) -> bool:
        return method.upper() in WRITE_METHODS


class V2Dialect(Dialect):
    """OData v2: ``{d: {results, __count, __next}}`` envelopes."""

    name = "v2"
    next_link_field = "__next"

    def next_link(self, data: Any) -> Optional[str]:
        if isinstance(data, dict) and isinstance(data.get("d"), dict):
            return data["d"].get("__next") or None
        return None

    def count(self, data: Any) -> Optional[int]:
        if isinstance(data, dict) and isinstance(data.get("d"), dict):
            raw = data["d"].get("__count")
            if raw is not None:
                return int(raw)
        return None

    def format_date_literal(self, value: Union[str, date, datetime]) -> str:
        return f"'{_iso_date(value)}'"


class V4Dialect(Dialect):
    """OData v4: ``{value, @odata.nextLink, @odata.count}`` envelopes."""

    name = "v4"
    next_link_field = "@odata.nextLink"

    def prepare_params(self, params: Optional[Dict[str, Any]], url: str) -> Dict[str, Any]:
        prepared = dict(params or {})
        existing = dict(parse_qsl(urlsplit(url).query, keep_blank_values=True))
        if "$format" not in prepared and "$format" not in existing:
            prepared["$format"] = "json"
        return prepared

    def next_link(self, data: Any) -> Optional[str]:
        if isinstance(data, dict):
            return data.get("@odata.nextLink") or None
        return None

    def count(self, data: Any) -> Optional[int]:
        if isinstance(data, dict) and data.get("@odata.count") is not None:
            return int(data["@odata.count"])
        return None

    def format_date_literal(self, value: Union[str, date, datetime]) -> str:
        return _iso_date(value)


DIALECTS = {
    "v2": V2Dialect,
    "v4": V4Dialect,
}


def get_dialect(name: Union[str, Dialect, None]) -> Dialect:
    """Look up a dialect by name (``v2``/``v4``)."""
    if isinstance(name, Dialect):
        return name
    key = (name or "v2").lower()
    if key not in DIALECTS:
        raise ConfigurationError(f"Unsupported OData dialect: {name}", {"field": "dialect"})
    return DIALECTS[key]()


def _iso_date(value: Union[str, date, datetime]) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)[:10]


def format_date_literal(value: Union[str, date, datetime], dialect: Union[str, Dialect, None] = "v2") -> str:
    """Render a date for use inside a ``$filter`` expression."""
    return get_dialect(dialect).format_date_literal(value)
