"""
User interaction endpoints.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from loguru import logger

from grantclient.auth import AuthSession
from grantclient.datasource.base import BaseDataSource
from grantclient.datasource.types import InteractionAction, UserInteraction

INTERACTIONS_TTL = timedelta(minutes=5)


class UsersApi(BaseDataSource):
    """Record, remove and list save/apply/ignore interactions."""

    @property
    def endpoint(self) -> str:
        return "/users/interactions"

    def _resource(self, grant_id: str) -> str:
        # Writes for one grant supersede each other, never writes for other grants
        return f"{self.endpoint}/{grant_id}"

    async def invalidate_interaction_reads(self, grant_id: str) -> int:
        """Drop cached reads that would still show the pre-action state."""
        removed = await self.client.invalidate(
            self.endpoint,
            f"/grants/{grant_id}",
            "/grants/recommended",
            "/grants-",
        )
        logger.debug(f"Invalidated {removed} cached reads for grant {grant_id}")
        return removed

    async def record_interaction(
        self,
        session: AuthSession,
        grant_id: str,
        action: InteractionAction,
        now: datetime | None = None,
    ) -> Any:
        timestamp = (now or datetime.now(timezone.utc)).isoformat()
        result = await self.client.request(
            self.endpoint,
            method="POST",
            json_data={
                "user_id": session.user_id,
                "grant_id": grant_id,
                "action": InteractionAction(action).value,
                "timestamp": timestamp,
            },
            access_token=session.access_token,
            resource=self._resource(grant_id),
        )
        return result.data

    async def delete_interaction(
        self,
        session: AuthSession,
        grant_id: str,
        action: InteractionAction,
    ) -> Any:
        result = await self.client.request(
            f"{self.endpoint}/delete",
            method="DELETE",
            json_data={
                "user_id": session.user_id,
                "grant_id": grant_id,
                "action": InteractionAction(action).value,
            },
            access_token=session.access_token,
            resource=self._resource(grant_id),
        )
        return result.data

    async def get_interactions(
        self,
        session: AuthSession,
        action: InteractionAction | None = None,
        grant_id: str | None = None,
        force_refresh: bool = False,
    ) -> list[UserInteraction]:
        params: dict[str, Any] = {
            "userId": session.user_id,
            "action": InteractionAction(action).value if action else None,
            "grant_id": grant_id,
        }
        result = await self.client.request(
            self.endpoint,
            params=params,
            access_token=session.access_token,
            cache_ttl=INTERACTIONS_TTL,
            force_refresh=force_refresh,
        )

        data = result.data
        rows = data.get("interactions") if isinstance(data, dict) else data
        interactions = []
        for row in rows or []:
            try:
                interactions.append(UserInteraction.model_validate(row))
            except ValueError as e:
                logger.warning(f"Skipping malformed interaction: {e}")
        return interactions
