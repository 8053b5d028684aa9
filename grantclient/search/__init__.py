"""
Search state: filter snapshots, query mapping and the debounced orchestrator.
"""

from grantclient.search.filters import (
    DEFAULT_FILTER,
    DEADLINE_PRESETS,
    FUNDING_PRESETS,
    SORT_MAPPING,
    UNCONSTRAINED,
    FilterState,
    Unconstrained,
    Values,
    deadline_preset,
    funding_preset,
    map_filters_to_api,
    values,
)
from grantclient.search.orchestrator import (
    HiddenResult,
    SearchOrchestrator,
    SearchState,
    SearchStatus,
    total_pages_for,
)

__all__ = [
    # Filters
    "DEFAULT_FILTER",
    "DEADLINE_PRESETS",
    "FUNDING_PRESETS",
    "SORT_MAPPING",
    "UNCONSTRAINED",
    "FilterState",
    "Unconstrained",
    "Values",
    "deadline_preset",
    "funding_preset",
    "map_filters_to_api",
    "values",
    # Orchestrator
    "HiddenResult",
    "SearchOrchestrator",
    "SearchState",
    "SearchStatus",
    "total_pages_for",
]
