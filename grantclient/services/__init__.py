"""
Service layer infrastructure - request orchestration for the grants API.

Provides:
- CacheManager: Response cache with TTL and pattern invalidation
- RequestDeduplicator: Prevents duplicate concurrent reads
- RetryingTransport: Exponential backoff for transient failures
- CancellationRegistry: Supersede and tear down outstanding requests
- CsrfTokenCache: Single-flighted anti-forgery token
- ServiceClient: Unified client combining all patterns
"""

from grantclient.services.errors import (
    ServiceError,
    RequestCancelledError,
    RequestTimeoutError,
    RateLimitError,
    ServiceUnavailableError,
    ClientRequestError,
    UnauthenticatedError,
    InteractionError,
)
from grantclient.services.cache import CacheManager, CacheEntry
from grantclient.services.deduplicator import RequestDeduplicator
from grantclient.services.retry import RetryingTransport, RetryPolicy
from grantclient.services.cancellation import CancellationRegistry, CancellationToken
from grantclient.services.csrf import CsrfTokenCache, CredentialToken
from grantclient.services.client import (
    ServiceClient,
    RequestResult,
    get_service_client,
    close_service_client,
)

__all__ = [
    # Errors
    "ServiceError",
    "RequestCancelledError",
    "RequestTimeoutError",
    "RateLimitError",
    "ServiceUnavailableError",
    "ClientRequestError",
    "UnauthenticatedError",
    "InteractionError",
    # Cache
    "CacheManager",
    "CacheEntry",
    # Deduplicator
    "RequestDeduplicator",
    # Retry
    "RetryingTransport",
    "RetryPolicy",
    # Cancellation
    "CancellationRegistry",
    "CancellationToken",
    # Credential token
    "CsrfTokenCache",
    "CredentialToken",
    # Client
    "ServiceClient",
    "RequestResult",
    "get_service_client",
    "close_service_client",
]
