"""
CancellationRegistry - Tracks outstanding requests so they can be cancelled.

Used for two things:
- a new write to a resource supersedes any earlier outstanding request to it
- navigation/teardown cancels everything so no late response lands on a dead view
"""

import asyncio
from typing import Any

from loguru import logger


class CancellationToken:
    """
    Cooperative cancellation handle for one request.

    The token is bound to the task running the request. Cancelling the token
    marks it and cancels that task; the owner checks ``cancelled`` to tell an
    intentional cancellation apart from any other CancelledError.
    """

    def __init__(self, request_id: str):
        self.request_id = request_id
        self.reason: str | None = None
        self._cancelled = False
        self._task: asyncio.Task[Any] | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def bind(self, task: asyncio.Task[Any]) -> None:
        self._task = task
        if self._cancelled:
            task.cancel()

    def cancel(self, reason: str | None = None) -> bool:
        """Cancel the bound task. Returns False if already cancelled or finished."""
        if self._cancelled:
            return False
        self._cancelled = True
        self.reason = reason
        if self._task is not None and not self._task.done():
            self._task.cancel()
        return True


class CancellationRegistry:
    """
    Table of outstanding requests keyed by request id.

    Usage:
        registry = CancellationRegistry()
        token = CancellationToken("/users/interactions#3")
        registry.register(token.request_id, token)
        ...
        registry.cancel_matching_prefix("/users/interactions")
    """

    def __init__(self, debug: bool = False):
        self._tokens: dict[str, CancellationToken] = {}
        self._debug = debug

    def register(self, request_id: str, token: CancellationToken) -> None:
        self._tokens[request_id] = token
        self._log(f"REGISTER: {request_id}")

    def unregister(self, request_id: str) -> None:
        if self._tokens.pop(request_id, None) is not None:
            self._log(f"UNREGISTER: {request_id}")

    def cancel(self, request_id: str, reason: str | None = None) -> bool:
        """Cancel one outstanding request."""
        token = self._tokens.pop(request_id, None)
        if token is None:
            return False
        token.cancel(reason)
        self._log(f"CANCEL: {request_id}")
        return True

    def cancel_matching_prefix(self, prefix: str, reason: str | None = None) -> int:
        """Cancel every outstanding request whose id starts with ``prefix``."""
        matching = [rid for rid in self._tokens if rid.startswith(prefix)]
        for request_id in matching:
            self._tokens.pop(request_id).cancel(reason)

        if matching:
            self._log(f"CANCEL_PREFIX: {len(matching)} requests matching '{prefix}'")
        return len(matching)

    def cancel_all(self, reason: str | None = None) -> int:
        """Cancel all outstanding requests."""
        tokens = list(self._tokens.values())
        self._tokens.clear()
        for token in tokens:
            token.cancel(reason)

        if tokens:
            logger.debug(f"Cancelled {len(tokens)} outstanding requests")
        return len(tokens)

    def is_registered(self, request_id: str) -> bool:
        return request_id in self._tokens

    def get_outstanding_ids(self) -> list[str]:
        return list(self._tokens.keys())

    def __len__(self) -> int:
        return len(self._tokens)

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[Cancellation] {message}")
