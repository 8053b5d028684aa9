"""
Search filter state and its translation into grants API query parameters.

Enumeration filters use an explicit tagged value:
- ``Unconstrained``: nothing is sent, every row matches
- ``Values(items)``: only those values match; an empty set sends the ``NONE``
  sentinel so the server returns no rows for that dimension
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Literal, NamedTuple, Union

from pydantic import BaseModel, ConfigDict, Field

MAX_FUNDING = 100_000_000
MIN_DEADLINE_DAYS = -90
MAX_DEADLINE_DAYS = 365
MAX_SAFE_INTEGER = 2**53 - 1
NONE_SENTINEL = "NONE"

# Frontend sort key -> (sort_by, sort_direction)
SORT_MAPPING: dict[str, tuple[str, str]] = {
    "relevance": ("created_at", "desc"),
    "recent": ("created_at", "desc"),
    "available": ("created_at", "desc"),
    "deadline": ("application_deadline", "asc"),
    "deadline_latest": ("application_deadline", "desc"),
    "amount": ("funding_amount_max", "desc"),
    "amount_asc": ("funding_amount_max", "asc"),
    "title_asc": ("title", "asc"),
    "title_desc": ("title", "desc"),
    "popular": ("view_count", "desc"),
}


class Unconstrained(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["unconstrained"] = "unconstrained"


class Values(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["values"] = "values"
    items: frozenset[str] = frozenset()

    def is_empty(self) -> bool:
        return not self.items


FilterValues = Annotated[Union[Unconstrained, Values], Field(discriminator="kind")]

UNCONSTRAINED = Unconstrained()


def values(*items: str) -> Values:
    """Shorthand for an explicit value set (``values()`` matches nothing)."""
    return Values(items=frozenset(items))


class FilterState(BaseModel):
    """Immutable snapshot of every search and filter field."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    search_term: str = ""
    page: int = 1
    sort_by: str = "relevance"

    # Funding
    funding_min: int | None = None
    funding_max: int | None = None
    include_funding_null: bool | None = None
    only_no_funding: bool = False

    # Deadline, in days relative to today
    deadline_min_days: int | None = None
    deadline_max_days: int | None = None
    include_no_deadline: bool | None = None
    only_no_deadline: bool = False
    show_overdue: bool | None = None

    # Posted date (ISO dates)
    post_date_from: str | None = None
    post_date_to: str | None = None

    statuses: FilterValues = UNCONSTRAINED
    currencies: FilterValues = UNCONSTRAINED
    include_no_currency: bool | None = None
    eligible_applicant_types: FilterValues = UNCONSTRAINED
    data_sources: FilterValues = UNCONSTRAINED

    only_featured: bool = False
    geographic_scope: str | None = None
    include_no_geographic_scope: bool | None = None
    countries: tuple[str, ...] = ()
    states: tuple[str, ...] = ()
    grant_types: tuple[str, ...] = ()
    organizations: tuple[str, ...] = ()
    cfda_numbers: tuple[str, ...] = ()
    opportunity_number: str | None = None
    min_view_count: int | None = None
    min_save_count: int | None = None

    def evolve(self, **changes: Any) -> "FilterState":
        """Validated copy with ``changes`` applied."""
        return FilterState.model_validate({**dict(self), **changes})


DEFAULT_FILTER = FilterState()


class Range(NamedTuple):
    min: int | None
    max: int | None


FUNDING_PRESETS: dict[str, Range] = {
    "ANY": Range(None, None),
    "ZERO": Range(0, 0),
    "UNDER_50K": Range(0, 50_000),
    "50K_100K": Range(50_000, 100_000),
    "100K_500K": Range(100_000, 500_000),
    "500K_1M": Range(500_000, 1_000_000),
    "1M_5M": Range(1_000_000, 5_000_000),
    "5M_10M": Range(5_000_000, 10_000_000),
    "10M_PLUS": Range(10_000_000, MAX_FUNDING),
    "100M_PLUS": Range(MAX_FUNDING, MAX_SAFE_INTEGER),
}

DEADLINE_PRESETS: dict[str, Range] = {
    "ANY": Range(None, None),
    "OVERDUE": Range(MIN_DEADLINE_DAYS, -1),
    "NEXT_7_DAYS": Range(0, 7),
    "NEXT_30_DAYS": Range(0, 30),
    "NEXT_3_MONTHS": Range(0, 90),
    "NEXT_6_MONTHS": Range(0, 180),
    "THIS_YEAR": Range(0, MAX_DEADLINE_DAYS),
}


def funding_preset(name: str) -> dict[str, int | None]:
    """Filter changes for a named funding range, for ``update_filter(**...)``."""
    preset = FUNDING_PRESETS[name]
    return {"funding_min": preset.min, "funding_max": preset.max}


def deadline_preset(name: str) -> dict[str, int | None]:
    """Filter changes for a named deadline window, for ``update_filter(**...)``."""
    preset = DEADLINE_PRESETS[name]
    return {"deadline_min_days": preset.min, "deadline_max_days": preset.max}


def _enumeration(value: Unconstrained | Values) -> list[str] | None:
    if isinstance(value, Unconstrained):
        return None
    if value.is_empty():
        return [NONE_SENTINEL]
    return sorted(value.items)


def map_filters_to_api(filter: FilterState, now: datetime | None = None) -> dict[str, Any]:
    """
    Translate a FilterState into grants API query parameters.

    ``limit`` is left to the caller. Deadline windows are resolved against
    ``now`` (UTC by default) into ISO timestamps.
    """
    now = now or datetime.now(timezone.utc)
    params: dict[str, Any] = {"page": max(1, filter.page)}

    if filter.search_term:
        params["search"] = filter.search_term

    # Data sources are sent as a single comma-separated value
    sources = _enumeration(filter.data_sources)
    if sources is not None:
        params["data_sources"] = ",".join(sources)

    if filter.sort_by:
        if filter.sort_by in SORT_MAPPING:
            params["sort_by"], params["sort_direction"] = SORT_MAPPING[filter.sort_by]
        else:
            params["sort_by"] = filter.sort_by

    # Deadline
    if filter.only_no_deadline:
        params["deadline_null"] = True
    else:
        if filter.deadline_min_days is not None:
            params["deadline_start"] = (now + timedelta(days=filter.deadline_min_days)).isoformat()
        if filter.deadline_max_days is not None and filter.deadline_max_days < MAX_SAFE_INTEGER:
            params["deadline_end"] = (now + timedelta(days=filter.deadline_max_days)).isoformat()
        has_window = filter.deadline_min_days is not None or filter.deadline_max_days is not None
        if has_window and filter.include_no_deadline is not None:
            params["include_no_deadline"] = filter.include_no_deadline

    # Funding
    if filter.only_no_funding:
        params["funding_null"] = True
    else:
        filtering = False
        # "Any amount" (0 and no upper bound) sends nothing
        if filter.funding_min is not None and not (filter.funding_min == 0 and filter.funding_max is None):
            params["funding_min"] = filter.funding_min
            filtering = True
        if filter.funding_max is not None:
            params["funding_max"] = MAX_SAFE_INTEGER if filter.funding_max >= MAX_FUNDING else filter.funding_max
            filtering = True
        if filtering and filter.include_funding_null is not None:
            params["include_no_funding"] = filter.include_funding_null

    if filter.show_overdue is not None:
        params["show_overdue"] = filter.show_overdue

    statuses = _enumeration(filter.statuses)
    if statuses is not None:
        params["status"] = statuses

    currencies = _enumeration(filter.currencies)
    if currencies is not None:
        params["currency"] = currencies
    if filter.include_no_currency is not None:
        params["include_no_currency"] = filter.include_no_currency

    if filter.only_featured:
        params["is_featured"] = True

    if filter.post_date_from:
        params["posted_date_start"] = filter.post_date_from
    if filter.post_date_to:
        params["posted_date_end"] = filter.post_date_to

    # Geography
    if filter.geographic_scope:
        params["geographic_scope"] = filter.geographic_scope
    if filter.include_no_geographic_scope is not None:
        params["include_no_geographic_scope"] = filter.include_no_geographic_scope
    if filter.countries:
        params["countries"] = list(filter.countries)
    if filter.states:
        params["states"] = list(filter.states)

    if filter.grant_types:
        params["grant_type"] = list(filter.grant_types)
    if filter.organizations:
        params["funding_organization_name"] = list(filter.organizations)
    if filter.cfda_numbers:
        params["cfda_numbers"] = list(filter.cfda_numbers)
    if filter.opportunity_number:
        params["opportunity_number"] = filter.opportunity_number

    if filter.min_view_count is not None:
        params["min_view_count"] = filter.min_view_count
    if filter.min_save_count is not None:
        params["min_save_count"] = filter.min_save_count

    applicant_types = _enumeration(filter.eligible_applicant_types)
    if applicant_types is not None:
        params["eligible_applicant_types"] = applicant_types

    return params
