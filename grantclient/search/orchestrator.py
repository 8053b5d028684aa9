"""
SearchOrchestrator - Owns the search filter state and applies only current results.

Every fetch is stamped with a strictly increasing request id. A response (or
error) is applied only if its id is still the latest one issued; anything
older is dropped without touching state.

Explicit actions (submit, page, sort, reset, refresh) fetch immediately.
Filter edits are debounced: each edit restarts the timer and only the last
FilterState of a burst is sent.
"""

import asyncio
import math
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict

from grantclient.auth import SessionProvider, active_session
from grantclient.datasource.grants import GrantsApi
from grantclient.datasource.types import Grant, InteractionAction
from grantclient.search.filters import DEFAULT_FILTER, FilterState, map_filters_to_api
from grantclient.services.errors import RequestCancelledError
from grantclient.settings import Settings, global_settings


class SearchStatus(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    FETCHING_DEBOUNCED = "fetching_debounced"
    ERROR = "error"


class SearchState(BaseModel):
    """Snapshot handed to observers; optimistically hidden grants are already removed."""

    model_config = ConfigDict(frozen=True)

    status: SearchStatus = SearchStatus.IDLE
    filter: FilterState = DEFAULT_FILTER
    grants: tuple[Grant, ...] = ()
    total_count: int = 0
    total_pages: int | None = None
    error: str | None = None
    request_id: int = 0


@dataclass(frozen=True)
class HiddenResult:
    """Record of one optimistic hide, used to undo it."""

    grant_id: str


StateListener = Callable[[SearchState], None]


def total_pages_for(total_count: int, page_size: int) -> int:
    return max(1, math.ceil(total_count / page_size))


class SearchOrchestrator:
    """
    Debounced, sequence-checked search over the grants endpoint.

    Usage:
        orchestrator = SearchOrchestrator(GrantsApi(client), session_provider)
        orchestrator.subscribe(render)

        await orchestrator.submit_search("cancer")
        orchestrator.update_filter(funding_min=50_000)   # debounced
        await orchestrator.go_to_page(2)

        await orchestrator.close()
    """

    def __init__(
        self,
        grants_api: GrantsApi | None = None,
        session_provider: SessionProvider | None = None,
        page_size: int | None = None,
        debounce_delay: float | None = None,
        initial_filter: FilterState = DEFAULT_FILTER,
        settings: Settings | None = None,
    ):
        settings = settings or global_settings
        self._grants_api = grants_api or GrantsApi()
        self._session_provider = session_provider
        self._page_size = page_size or settings.search_page_size
        self._debounce_delay = (
            debounce_delay if debounce_delay is not None else settings.search_debounce_ms / 1000
        )
        self._initial_filter = initial_filter

        self._filter = initial_filter
        self._status = SearchStatus.IDLE
        self._results: list[Grant] = []
        self._total_count = 0
        self._total_pages: int | None = None
        self._error: str | None = None
        self._hidden: set[str] = set()

        self._latest_id = 0
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._refresh_handle: asyncio.TimerHandle | None = None
        self._fetch_tasks: set[asyncio.Task[None]] = set()
        self._listeners: list[StateListener] = []
        self._closed = False

    # Observable state

    @property
    def state(self) -> SearchState:
        visible = tuple(g for g in self._results if g.id not in self._hidden)
        return SearchState(
            status=self._status,
            filter=self._filter,
            grants=visible,
            total_count=max(0, self._total_count - len(self._hidden)),
            total_pages=self._total_pages,
            error=self._error,
            request_id=self._latest_id,
        )

    @property
    def filter(self) -> FilterState:
        return self._filter

    @property
    def page_size(self) -> int:
        return self._page_size

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.state
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Search state listener failed: {e}")

    # Explicit actions: fetch now

    def submit_search(self, search_term: str) -> asyncio.Task[None]:
        self._filter = self._filter.evolve(search_term=search_term, page=1)
        return self._submit()

    def go_to_page(self, page: int) -> asyncio.Task[None]:
        self._filter = self._filter.evolve(page=self._clamp_page(page))
        return self._submit()

    def set_sort(self, sort_by: str) -> asyncio.Task[None]:
        self._filter = self._filter.evolve(sort_by=sort_by, page=1)
        return self._submit()

    def reset_filters(self) -> asyncio.Task[None]:
        self._filter = self._initial_filter
        return self._submit()

    def refresh(self, force_refresh: bool = True) -> asyncio.Task[None]:
        """Re-run the current search, bypassing the response cache by default."""
        return self._submit(force_refresh=force_refresh)

    # Debounced edits

    def update_filter(self, **changes: Any) -> None:
        """Apply filter edits and (re)start the debounce timer. Resets to page 1."""
        self._ensure_open()
        changes.setdefault("page", 1)
        self._filter = self._filter.evolve(**changes)
        self._status = SearchStatus.FETCHING_DEBOUNCED

        self._cancel_debounce()
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(self._debounce_delay, self._on_debounce_fired)
        self._notify()

    def _on_debounce_fired(self) -> None:
        self._debounce_handle = None
        if self._closed:
            return
        self._submit()

    def _cancel_debounce(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    # Fetching

    def _submit(self, force_refresh: bool = False) -> asyncio.Task[None]:
        self._ensure_open()
        self._cancel_debounce()

        self._latest_id += 1
        request_id = self._latest_id
        self._status = SearchStatus.FETCHING
        self._error = None
        self._notify()

        task = asyncio.get_running_loop().create_task(
            self._fetch(request_id, self._filter, force_refresh)
        )
        self._fetch_tasks.add(task)
        task.add_done_callback(self._fetch_tasks.discard)
        return task

    def build_params(self, filter: FilterState | None = None) -> dict[str, Any]:
        """Outbound query parameters for a FilterState (the current one by default)."""
        if filter is None:
            filter = self._filter
        params = map_filters_to_api(filter)
        params["page"] = self._clamp_page(filter.page)
        params["limit"] = self._page_size

        session = active_session(self._session_provider)
        if session is not None:
            params["user_id"] = session.user_id
            params["exclude_interaction_types"] = [a.value for a in InteractionAction]
        return params

    def _settled_status(self) -> SearchStatus:
        # A pending debounced edit still owes a fetch
        if self._debounce_handle is not None:
            return SearchStatus.FETCHING_DEBOUNCED
        return SearchStatus.IDLE

    def _clamp_page(self, page: int) -> int:
        page = max(1, page)
        if self._total_pages is not None:
            page = min(page, self._total_pages)
        return page

    async def _fetch(self, request_id: int, filter: FilterState, force_refresh: bool) -> None:
        params = self.build_params(filter)
        session = active_session(self._session_provider)

        try:
            page = await self._grants_api.search(params, session=session, force_refresh=force_refresh)
        except RequestCancelledError as e:
            logger.debug(f"Search #{request_id} cancelled: {e}")
            if request_id == self._latest_id and not self._closed:
                self._status = self._settled_status()
                self._notify()
            return
        except Exception as e:
            if request_id != self._latest_id:
                logger.debug(f"Ignoring error from stale search #{request_id}: {e}")
                return
            logger.warning(f"Search #{request_id} failed: {e}")
            self._status = SearchStatus.ERROR
            self._error = f"Failed to load grants: {e}"
            self._notify()
            return

        if request_id != self._latest_id:
            logger.debug(f"Discarding stale search #{request_id} (latest #{self._latest_id})")
            return

        self._results = list(page.items)
        self._total_count = page.total_count
        self._total_pages = total_pages_for(page.total_count, self._page_size)
        # Grants the server no longer lists need no local hiding
        listed = {g.id for g in self._results}
        self._hidden &= listed
        self._status = self._settled_status()
        self._error = None
        self._notify()

    # View hooks for optimistic interactions

    def hide_result(self, grant_id: str) -> HiddenResult | None:
        """Hide a listed grant and adjust the visible count. None if nothing changed."""
        if grant_id in self._hidden:
            return None
        if not any(g.id == grant_id for g in self._results):
            return None
        self._hidden.add(grant_id)
        self._notify()
        return HiddenResult(grant_id)

    def restore_result(self, change: HiddenResult | None) -> None:
        if change is None or change.grant_id not in self._hidden:
            return
        self._hidden.discard(change.grant_id)
        self._notify()

    def schedule_refresh(self, delay: float) -> None:
        """Refresh after ``delay`` seconds; a newer schedule replaces an older one."""
        if self._closed:
            return
        if self._refresh_handle is not None:
            self._refresh_handle.cancel()
        loop = asyncio.get_running_loop()
        self._refresh_handle = loop.call_later(delay, self._on_refresh_fired)

    def _on_refresh_fired(self) -> None:
        self._refresh_handle = None
        if self._closed:
            return
        self.refresh()

    # Teardown

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("SearchOrchestrator is closed")

    async def close(self) -> None:
        """Stop timers, drop in-flight fetches and cancel outstanding client requests."""
        if self._closed:
            return
        self._closed = True
        self._cancel_debounce()
        if self._refresh_handle is not None:
            self._refresh_handle.cancel()
            self._refresh_handle = None

        # Nothing issued so far may be applied any more
        self._latest_id += 1
        cancelled = self._grants_api.client.cancel_all_requests()

        tasks = list(self._fetch_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._listeners.clear()
        logger.debug(f"SearchOrchestrator closed ({cancelled} requests cancelled)")
