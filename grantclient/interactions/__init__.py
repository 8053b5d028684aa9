"""
Optimistic user interactions (save/apply/ignore) with rollback on failure.
"""

from grantclient.interactions.coordinator import ACTION_VERBS, InteractionCoordinator

__all__ = ["ACTION_VERBS", "InteractionCoordinator"]
