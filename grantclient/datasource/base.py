"""
Base data source interface.
"""

from abc import ABC, abstractmethod

from grantclient.auth import AuthSession
from grantclient.services.client import ServiceClient


class BaseDataSource(ABC):
    """
    Abstract base class for grants service endpoints.

    All data sources should:
    - Use ServiceClient for HTTP requests (caching, dedup, retries, cancellation)
    - Return Pydantic models
    - Let service errors propagate to the orchestrator/coordinator that asked
    """

    def __init__(self, client: ServiceClient | None = None):
        from grantclient.services.client import get_service_client

        self.client = client or get_service_client()

    @property
    @abstractmethod
    def endpoint(self) -> str:
        """Path prefix below /api served by this data source."""
        ...

    @staticmethod
    def _access_token(session: AuthSession | None) -> str | None:
        return session.access_token if session else None
