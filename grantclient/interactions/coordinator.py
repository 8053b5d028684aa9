"""
InteractionCoordinator - Optimistic save/apply/ignore with exact rollback.

Flow for one action on a grant:
1. mark the grant pending (a second action on it is ignored until settled)
2. record the action locally and hide the grant from the search view
3. drop cached reads that would still show the old state
4. send the write
5. success: keep the local change and schedule a background search refresh
   failure: restore the exact previous state and surface one error message
6. unmark the grant, whatever happened
"""

from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from grantclient.auth import AuthSession, SessionProvider, active_session
from grantclient.datasource.types import InteractionAction, UserInteraction
from grantclient.datasource.users import UsersApi
from grantclient.search.orchestrator import HiddenResult, SearchOrchestrator
from grantclient.services.errors import (
    InteractionError,
    RequestCancelledError,
    ServiceError,
    UnauthenticatedError,
)
from grantclient.settings import Settings, global_settings

ACTION_VERBS = {
    InteractionAction.SAVED: "save",
    InteractionAction.APPLIED: "apply to",
    InteractionAction.IGNORED: "ignore",
}

ErrorCallback = Callable[[str], None]


class InteractionCoordinator:
    """
    Local interaction state for the signed-in user, kept in step with the server.

    Usage:
        coordinator = InteractionCoordinator(UsersApi(client), sessions, view=orchestrator)
        await coordinator.load_interactions()

        await coordinator.perform_action(grant_id, InteractionAction.SAVED)
        if coordinator.last_error:
            show(coordinator.last_error)
    """

    def __init__(
        self,
        users_api: UsersApi | None = None,
        session_provider: SessionProvider | None = None,
        view: SearchOrchestrator | None = None,
        refresh_delay: float | None = None,
        on_error: ErrorCallback | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or global_settings
        self._users_api = users_api or UsersApi()
        self._session_provider = session_provider
        self._view = view
        self._refresh_delay = (
            refresh_delay if refresh_delay is not None else settings.refresh_after_action_ms / 1000
        )
        self._on_error = on_error

        self._interactions: dict[str, InteractionAction] = {}
        self._pending: set[str] = set()
        self._interaction_loading = False
        self._last_error: str | None = None
        self._pending_apply: str | None = None

    @property
    def pending_operations(self) -> frozenset[str]:
        return frozenset(self._pending)

    @property
    def interaction_loading(self) -> bool:
        return self._interaction_loading

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def pending_apply(self) -> str | None:
        """Grant waiting for the user to confirm they applied."""
        return self._pending_apply

    @property
    def interactions(self) -> dict[str, InteractionAction]:
        return dict(self._interactions)

    def current_action(self, grant_id: str) -> InteractionAction | None:
        return self._interactions.get(grant_id)

    def is_pending(self, grant_id: str) -> bool:
        return grant_id in self._pending

    def clear_error(self) -> None:
        self._last_error = None

    def _require_session(self) -> AuthSession:
        session = active_session(self._session_provider)
        if session is None:
            raise UnauthenticatedError()
        return session

    async def perform_action(self, grant_id: str, action: InteractionAction) -> None:
        """Record ``action`` on a grant optimistically. No-op while the grant is pending."""
        action = InteractionAction(action)
        session = self._require_session()

        def apply() -> HiddenResult | None:
            self._interactions[grant_id] = action
            return self._view.hide_result(grant_id) if self._view else None

        await self._run_optimistic(
            grant_id,
            apply,
            lambda: self._users_api.record_interaction(session, grant_id, action),
            failure_prefix=f"Failed to {ACTION_VERBS[action]} grant",
            action=action,
        )

    async def undo_action(self, grant_id: str, action: InteractionAction) -> None:
        """Remove a recorded action optimistically. No-op while the grant is pending."""
        action = InteractionAction(action)
        session = self._require_session()

        def apply() -> HiddenResult | None:
            if self._interactions.get(grant_id) == action:
                del self._interactions[grant_id]
            return None

        await self._run_optimistic(
            grant_id,
            apply,
            lambda: self._users_api.delete_interaction(session, grant_id, action),
            failure_prefix=f"Failed to remove {action.value} status",
            action=action,
        )

    async def _run_optimistic(
        self,
        grant_id: str,
        apply: Callable[[], HiddenResult | None],
        remote: Callable[[], Awaitable[Any]],
        failure_prefix: str,
        action: InteractionAction,
    ) -> None:
        if grant_id in self._pending:
            logger.debug(f"Ignoring {action.value} on {grant_id}: operation already pending")
            return

        self._pending.add(grant_id)
        previous = self._interactions.get(grant_id)
        hidden: HiddenResult | None = None
        try:
            hidden = apply()
            await self._users_api.invalidate_interaction_reads(grant_id)
            await remote()
        except RequestCancelledError as e:
            self._revert(grant_id, previous, hidden)
            logger.debug(f"{action.value} on {grant_id} cancelled, reverted: {e}")
        except ServiceError as e:
            self._revert(grant_id, previous, hidden)
            error = InteractionError(grant_id, action.value, f"{failure_prefix}: {e}")
            logger.warning(f"Reverted {action.value} on {grant_id}: {e}")
            self._surface(str(error))
        except BaseException:
            self._revert(grant_id, previous, hidden)
            raise
        else:
            logger.info(f"Confirmed {action.value} on grant {grant_id}")
            if self._view is not None:
                self._view.schedule_refresh(self._refresh_delay)
        finally:
            self._pending.discard(grant_id)

    def _revert(
        self,
        grant_id: str,
        previous: InteractionAction | None,
        hidden: HiddenResult | None,
    ) -> None:
        if previous is None:
            self._interactions.pop(grant_id, None)
        else:
            self._interactions[grant_id] = previous
        if self._view is not None:
            self._view.restore_result(hidden)

    def _surface(self, message: str) -> None:
        self._last_error = message
        if self._on_error is not None:
            try:
                self._on_error(message)
            except Exception as e:
                logger.error(f"Error callback failed: {e}")

    async def load_interactions(self, force_refresh: bool = False) -> dict[str, InteractionAction]:
        """Seed local state from the server; the latest interaction per grant wins."""
        session = active_session(self._session_provider)
        if session is None:
            self._interactions.clear()
            return {}

        self._interaction_loading = True
        try:
            rows = await self._users_api.get_interactions(session, force_refresh=force_refresh)
        except RequestCancelledError as e:
            logger.debug(f"Interaction load cancelled: {e}")
            return self.interactions
        except ServiceError as e:
            logger.error(f"Error loading interactions: {e}")
            self._surface(f"Failed to load interactions: {e}")
            return self.interactions
        finally:
            self._interaction_loading = False

        latest: dict[str, UserInteraction] = {}
        for row in rows:
            current = latest.get(row.grant_id)
            if current is None or row.timestamp >= current.timestamp:
                latest[row.grant_id] = row

        loaded = {grant_id: row.action for grant_id, row in latest.items()}
        # Optimistic values for in-flight grants stay until their write settles
        for grant_id in self._pending:
            if grant_id in self._interactions:
                loaded[grant_id] = self._interactions[grant_id]
            else:
                loaded.pop(grant_id, None)
        self._interactions = loaded
        logger.debug(f"Loaded {len(loaded)} interactions for user {session.user_id}")
        return self.interactions

    # Two-step apply: the user opens the application, then confirms they applied

    def begin_apply(self, grant_id: str) -> None:
        self._require_session()
        self._pending_apply = grant_id

    async def confirm_apply(self, did_apply: bool) -> None:
        grant_id = self._pending_apply
        self._pending_apply = None
        if did_apply and grant_id is not None:
            await self.perform_action(grant_id, InteractionAction.APPLIED)
