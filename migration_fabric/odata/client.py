"""OData HTTP client with CSRF handling, retries, circuit breaking and pagination."""

import json
import logging
import re
import threading
import time
from datetime import timezone
from http.cookiejar import DefaultCookiePolicy
from typing import Any, Callable, Dict, Iterator, List, Optional, Union
from urllib.parse import urlsplit

import requests
from dateutil import parser as date_parser
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import (
    AuthenticationError,
    CancelledError,
    ConfigurationError,
    ConnectionError,
    CsrfError,
    FabricError,
    RateLimitedError,
    RequestError,
    error_from_response,
    is_retryable,
)
from ..models.schema import ServiceMetadata
from .auth import AuthProvider, NoAuthProvider
from .batch import (
    BatchBuilder,
    BatchResult,
    boundary_from_content_type,
    parse_v2_batch_response,
    parse_v4_batch_response,
)
from .dialect import (
    CSRF_FALLBACK,
    CSRF_FALLBACK_TTL_SECONDS,
    CSRF_HEADER,
    CSRF_TTL_SECONDS,
    CSRF_UNUSED,
    WRITE_METHODS,
    CsrfToken,
    Dialect,
    get_dialect,
    resolve_link,
)
from .metadata import MetadataParser
from .resilience import CircuitBreaker, RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_ROOT = "/sap/opu/odata/sap"
_COOKIE_SPLIT = re.compile(r",\s*(?=[^;,\s]+=)")


class ODataClient:
    """
    HTTP client for OData v2/v4 services.

    State owned by each instance (never shared between clients):
    - CSRF token cache (25 minutes on success, 5 minutes after a failed fetch)
    - session cookies captured from Set-Cookie headers
    - the circuit breaker guarding individual request attempts

    Retries cover network errors, 5xx and 429 with exponential backoff plus
    jitter. 401 is never retried; a 403 mentioning CSRF triggers one forced
    re-handshake and one more attempt.
    """

    def __init__(
        self,
        base_url: str,
        auth_provider: Optional[AuthProvider] = None,
        dialect: Union[str, Dialect] = "v2",
        timeout: float = 30.0,
        retries: int = 3,
        circuit_breaker_threshold: int = 5,
        circuit_breaker_reset_ms: int = 60000,
        csrf_timeout: float = 10.0,
        service_path: Optional[str] = None,
        session: Optional[requests.Session] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Optional[Callable[[], float]] = None,
        rng: Optional[Callable[[], float]] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Scheme and host (optionally a path prefix) of the service
            auth_provider: Credential provider; anonymous when omitted
            dialect: ``v2`` or ``v4``
            timeout: Per-attempt timeout in seconds
            retries: Retries after the first attempt
            circuit_breaker_threshold: Consecutive failures before opening
            circuit_breaker_reset_ms: Open time before a half-open probe
            csrf_timeout: Timeout for the CSRF handshake in seconds
            service_path: Service root used for handshakes and $batch
            session: Custom requests session
            sleep: Sleep function used for backoff delays
            clock: Wall clock (epoch seconds) used for token expiry
            rng: Random source in [0, 1) used for jitter
            cancel_event: Event checked before every attempt
        """
        if not base_url:
            raise ConfigurationError("ODataClient requires a base URL", {"field": "base_url"})

        self.base_url = base_url.rstrip("/")
        self.auth_provider = auth_provider or NoAuthProvider()
        self.dialect = get_dialect(dialect)
        self.timeout = timeout
        self.csrf_timeout = csrf_timeout
        self.service_path = service_path
        self.retry_policy = RetryPolicy(max_retries=retries, rng=rng)
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=circuit_breaker_threshold,
            reset_timeout_ms=circuit_breaker_reset_ms,
        )
        self.cancel_event = cancel_event

        self._session = session or self._create_session()
        self.auth_provider.configure_session(self._session)
        self._sleep = sleep or time.sleep
        self._clock = clock or time.time
        self._csrf: Optional[CsrfToken] = None
        self._cookies: Dict[str, str] = {}
        self._lock = threading.RLock()

    @property
    def version(self) -> str:
        return self.dialect.name

    @property
    def retries(self) -> int:
        return self.retry_policy.max_retries

    def _create_session(self) -> requests.Session:
        """Create a pooled session; retries and cookies are handled by the client."""
        session = requests.Session()
        session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))
        adapter = HTTPAdapter(pool_connections=10, pool_maxsize=10, max_retries=Retry(total=0, raise_on_status=False))
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        return session

    # Public API

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET a single resource and return the parsed body."""
        url = self.dialect.build_url(self.base_url, path, params)
        return self._execute_with_retry("GET", url)

    def iter_pages(self, path: str, params: Optional[Dict[str, Any]] = None) -> Iterator[Any]:
        """Yield raw response pages, following next-links until none is returned."""
        url: Optional[str] = self.dialect.build_url(self.base_url, path, params)
        page = 0
        while url:
            data = self._execute_with_retry("GET", url)
            page += 1
            yield data

            link = self.dialect.next_link(data)
            if link:
                logger.debug(f"Following next link (page {page + 1}): {link}")
                url = resolve_link(self.base_url, link, url)
            else:
                url = None

    def iter_records(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        max_records: Optional[int] = None,
    ) -> Iterator[Dict[str, Any]]:
        """Lazily yield records across pages, stopping at ``max_records``."""
        if max_records is not None and max_records <= 0:
            return
        count = 0
        for page in self.iter_pages(path, params):
            for record in self.dialect.extract_results(page):
                yield record
                count += 1
                if max_records is not None and count >= max_records:
                    logger.info(f"Reached max record cap ({max_records}) for {path}")
                    return

    def get_all(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        max_records: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """GET with auto-pagination; returns the concatenated records."""
        return list(self.iter_records(path, params, max_records=max_records))

    def post(self, path: str, body: Any) -> Any:
        return self._write("POST", path, body)

    def put(self, path: str, body: Any) -> Any:
        return self._write("PUT", path, body)

    def patch(self, path: str, body: Any) -> Any:
        return self._write("PATCH", path, body)

    def merge(self, path: str, body: Any) -> Any:
        """v2 partial update tunnelled through POST."""
        return self._write("POST", path, body, headers={"X-HTTP-Method": "MERGE"})

    def delete(self, path: str) -> Any:
        return self._write("DELETE", path, None)

    def batch(self, builder: BatchBuilder) -> List[BatchResult]:
        """
        Execute a $batch request.

        The batch is sent once through the circuit breaker; it is not retried
        because its operations are not idempotent as a whole.
        """
        service_path = self.service_path or self._guess_service_path(builder)
        batch_url = f"{self.base_url}{service_path}/$batch"
        self._ensure_csrf_token(f"{self.base_url}{service_path}")

        request = builder.build()
        headers = dict(request["headers"])
        self._check_cancelled()
        response = self.circuit_breaker.call(
            lambda: self._send("POST", batch_url, request["body"], headers, return_response=True),
            should_trip=is_retryable,
        )
        text = response.text if response is not None else ""

        if builder.version == "v4":
            return parse_v4_batch_response(text or "{}")
        # Servers answer with their own batchresponse_ boundary
        content_type = response.headers.get("Content-Type") if response is not None else None
        boundary = boundary_from_content_type(content_type) or request["boundary"]
        return parse_v2_batch_response(text, boundary)

    def get_metadata(self, service_path: str) -> str:
        """Fetch the raw $metadata XML of a service."""
        url = f"{self.base_url}{service_path}/$metadata"
        return self._execute_with_retry("GET", url, headers={"Accept": "application/xml"}, raw=True)

    def fetch_metadata(self, service_path: str) -> ServiceMetadata:
        """Fetch and parse the $metadata of a service."""
        return MetadataParser().parse(self.get_metadata(service_path))

    def get_circuit_breaker_stats(self) -> Dict[str, Any]:
        return self.circuit_breaker.get_stats()

    def reset_csrf(self) -> None:
        with self._lock:
            self._csrf = None

    @property
    def csrf_token(self) -> Optional[str]:
        return self._csrf.value if self._csrf else None

    @property
    def cookies(self) -> Dict[str, str]:
        return dict(self._cookies)

    # Internals

    def _write(self, method: str, path: str, body: Any, headers: Optional[Dict[str, str]] = None) -> Any:
        url = self.dialect.build_url(self.base_url, path)
        if self.dialect.requires_csrf(method):
            self._ensure_csrf_token(url)
        return self._execute_with_retry(method, url, body, headers=headers)

    def _ensure_csrf_token(self, url: str) -> None:
        """Seed the CSRF token (and session cookies) with a HEAD handshake."""
        with self._lock:
            if self._csrf and self._csrf.is_valid(self._clock()):
                return

            handshake_url = url.split("?", 1)[0]
            headers = self._base_headers()
            headers[CSRF_HEADER] = "Fetch"

            try:
                response = self._session.head(handshake_url, headers=headers, timeout=self.csrf_timeout)
            except requests.RequestException as e:
                logger.warning(f"CSRF token fetch failed, using placeholder: {e}")
                self._csrf = CsrfToken(CSRF_FALLBACK, self._clock() + CSRF_FALLBACK_TTL_SECONDS)
                return

            if response.status_code == 401:
                raise AuthenticationError("Authentication failed", {"url": handshake_url, "status": 401})

            self._capture_cookies(response)
            token = response.headers.get(CSRF_HEADER)
            if token and token.lower() != "required":
                self._csrf = CsrfToken(token, self._clock() + CSRF_TTL_SECONDS)
                logger.debug(f"Fetched CSRF token for {handshake_url}")
            else:
                self._csrf = CsrfToken(CSRF_UNUSED, self._clock() + CSRF_TTL_SECONDS)

    def _execute_with_retry(
        self,
        method: str,
        url: str,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
        raw: bool = False,
    ) -> Any:
        last_error: Optional[FabricError] = None
        csrf_refreshed = False
        attempt = 0

        while attempt < self.retry_policy.max_attempts:
            self._check_cancelled()
            try:
                return self.circuit_breaker.call(
                    lambda: self._send(method, url, body, headers, raw=raw),
                    should_trip=is_retryable,
                )
            except AuthenticationError:
                raise
            except RequestError as e:
                if not e.details.get("csrf_required") or method.upper() not in WRITE_METHODS:
                    raise
                if csrf_refreshed:
                    raise CsrfError(
                        "CSRF token rejected after refresh", {"url": url, "method": method, "status": 403}
                    ) from e
                logger.info(f"CSRF token rejected for {method} {url}, refreshing")
                csrf_refreshed = True
                self.reset_csrf()
                self._ensure_csrf_token(url)
            except FabricError as e:
                if not is_retryable(e):
                    raise
                last_error = e
                if attempt + 1 >= self.retry_policy.max_attempts:
                    break
                delay = self._retry_delay(e, attempt)
                logger.debug(
                    f"Retry {attempt + 1}/{self.retry_policy.max_retries} after {delay:.2f}s: {method} {url} ({e})"
                )
                self._sleep(delay)
                attempt += 1

        raise last_error

    def _retry_delay(self, error: FabricError, attempt: int) -> float:
        delay = self.retry_policy.delay_for(attempt)
        if isinstance(error, RateLimitedError) and error.retry_after:
            honored = _parse_retry_after(error.retry_after, self._clock())
            if honored is not None:
                return honored
        return delay

    def _send(
        self,
        method: str,
        url: str,
        body: Any = None,
        extra_headers: Optional[Dict[str, str]] = None,
        raw: bool = False,
        return_response: bool = False,
    ) -> Any:
        """Single request attempt."""
        headers = self._base_headers()
        headers.update(extra_headers or {})
        headers.setdefault("Accept", "application/json")

        if method.upper() in WRITE_METHODS and self._csrf and not self._csrf.is_placeholder:
            headers[CSRF_HEADER] = self._csrf.value

        data = None
        if body is not None and method.upper() not in ("GET", "HEAD"):
            if isinstance(body, (str, bytes)):
                data = body
            else:
                data = json.dumps(body)
                headers.setdefault("Content-Type", "application/json")

        details = {"url": url, "method": method}
        try:
            response = self._session.request(method, url, headers=headers, data=data, timeout=self.timeout)
        except requests.Timeout as e:
            raise ConnectionError(f"Request timed out after {self.timeout}s", details) from e
        except requests.RequestException as e:
            raise ConnectionError(f"Network error: {e}", details) from e

        self._capture_cookies(response)
        status = response.status_code

        if status == 401:
            raise AuthenticationError("Authentication failed", {**details, "status": 401})
        if status == 429:
            raise error_from_response(
                429, "Rate limited", details=details, retry_after=response.headers.get("Retry-After")
            )
        if status == 204:
            return None

        text = response.text
        if status >= 400:
            error_body: Any = text
            try:
                error_body = json.loads(text)
            except ValueError:
                pass
            error = error_from_response(
                status, f"OData request failed: {status} {response.reason or ''}".strip(), error_body, details
            )
            if status == 403 and _mentions_csrf(response, text):
                error.details["csrf_required"] = True
            raise error

        if return_response:
            return response
        if raw:
            return text
        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError:
            return text

    def _base_headers(self) -> Dict[str, str]:
        headers = dict(self.auth_provider.get_headers())
        if self._cookies:
            headers["Cookie"] = "; ".join(f"{k}={v}" for k, v in self._cookies.items())
        return headers

    def _capture_cookies(self, response: requests.Response) -> None:
        raw = response.headers.get("Set-Cookie")
        if not raw:
            return
        for cookie in _COOKIE_SPLIT.split(raw):
            pair = cookie.split(";", 1)[0].strip()
            if "=" in pair:
                name, _, value = pair.partition("=")
                self._cookies[name.strip()] = value.strip()

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise CancelledError("Request cancelled", {"base_url": self.base_url})

    def _guess_service_path(self, builder: BatchBuilder) -> str:
        if not builder.operations:
            return DEFAULT_SERVICE_ROOT
        path = urlsplit(builder.operations[0].url).path
        parts = path.split("/")[:6]
        guessed = "/".join(parts)
        return guessed if guessed.strip("/") else DEFAULT_SERVICE_ROOT


def _mentions_csrf(response: requests.Response, text: str) -> bool:
    token_header = (response.headers.get(CSRF_HEADER) or "").lower()
    return token_header == "required" or "csrf" in (text or "").lower()


def _parse_retry_after(value: str, now: float) -> Optional[float]:
    """Retry-After as delta seconds or an HTTP date."""
    value = str(value).strip()
    if value.isdigit():
        return float(value)
    try:
        when = date_parser.parse(value)
    except (ValueError, OverflowError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, when.timestamp() - now)
