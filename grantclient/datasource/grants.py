"""
Grants endpoints: search, detail, metadata and recommendations.

TTLs:
- search: 5 minutes
- detail: 10 minutes
- metadata: 1 hour
- recommended: 10 minutes
"""

from datetime import timedelta
from typing import Any

from loguru import logger

from grantclient.auth import AuthSession
from grantclient.datasource.base import BaseDataSource
from grantclient.datasource.types import Grant, GrantMetadata, SearchPage

SEARCH_TTL = timedelta(minutes=5)
DETAIL_TTL = timedelta(minutes=10)
METADATA_TTL = timedelta(hours=1)
RECOMMENDED_TTL = timedelta(minutes=10)


class GrantsApi(BaseDataSource):
    """Read-only access to grant listings."""

    @property
    def endpoint(self) -> str:
        return "/grants"

    async def search(
        self,
        params: dict[str, Any],
        session: AuthSession | None = None,
        force_refresh: bool = False,
    ) -> SearchPage:
        result = await self.client.request(
            self.endpoint,
            params=params,
            access_token=self._access_token(session),
            cache_ttl=SEARCH_TTL,
            force_refresh=force_refresh,
        )
        return SearchPage.from_payload(result.data)

    async def get_grant(self, grant_id: str, session: AuthSession | None = None) -> Grant | None:
        result = await self.client.request(
            f"{self.endpoint}/{grant_id}",
            access_token=self._access_token(session),
            cache_ttl=DETAIL_TTL,
        )
        data = result.data
        if isinstance(data, dict) and "grant" in data:
            data = data["grant"]
        if not data:
            return None
        return Grant.model_validate(data)

    async def get_metadata(self, session: AuthSession | None = None) -> GrantMetadata:
        """Filter option lists; falls back to empty lists if the service is unavailable."""
        try:
            result = await self.client.request(
                f"{self.endpoint}/metadata",
                access_token=self._access_token(session),
                cache_ttl=METADATA_TTL,
            )
        except Exception as e:
            logger.error(f"Error fetching grant metadata: {e}")
            return GrantMetadata()

        if not isinstance(result.data, dict):
            return GrantMetadata()
        return GrantMetadata.model_validate(result.data)

    async def get_recommended(
        self,
        session: AuthSession,
        exclude: list[str] | None = None,
        limit: int | None = None,
    ) -> list[Grant]:
        params: dict[str, Any] = {"userId": session.user_id}
        if exclude:
            params["exclude"] = exclude
        if limit:
            params["limit"] = limit

        result = await self.client.request(
            f"{self.endpoint}/recommended",
            params=params,
            access_token=session.access_token,
            cache_ttl=RECOMMENDED_TTL,
        )
        return SearchPage.from_payload(result.data).items
