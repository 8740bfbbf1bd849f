"""OData transport: authentication, dialects, batching, metadata and the HTTP client."""

from .auth import (
    AuthProvider,
    BasicAuthProvider,
    MutualTLSProvider,
    NoAuthProvider,
    OAuth2ClientCredentialsProvider,
    OAuth2SamlBearerProvider,
    create_auth_provider,
)
from .batch import BatchBuilder, BatchResult, parse_v2_batch_response, parse_v4_batch_response
from .client import ODataClient
from .dialect import V2Dialect, V4Dialect, extract_results, format_date_literal, get_dialect
from .metadata import MetadataParser, find_entity_type, get_navigation_targets, to_entity_set_metadata
from .resilience import CircuitBreaker, CircuitState, RetryPolicy

__all__ = [
    "AuthProvider",
    "BasicAuthProvider",
    "MutualTLSProvider",
    "NoAuthProvider",
    "OAuth2ClientCredentialsProvider",
    "OAuth2SamlBearerProvider",
    "create_auth_provider",
    "BatchBuilder",
    "BatchResult",
    "parse_v2_batch_response",
    "parse_v4_batch_response",
    "ODataClient",
    "V2Dialect",
    "V4Dialect",
    "extract_results",
    "format_date_literal",
    "get_dialect",
    "MetadataParser",
    "find_entity_type",
    "get_navigation_targets",
    "to_entity_set_metadata",
    "CircuitBreaker",
    "CircuitState",
    "RetryPolicy",
]
