"""
Grants service payload types using Pydantic models.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class InteractionAction(str, Enum):
    """User actions recorded against a grant."""

    SAVED = "saved"
    APPLIED = "applied"
    IGNORED = "ignored"


class Grant(BaseModel):
    """Grant listing as returned by the search and detail endpoints."""

    id: str
    title: str = ""
    agency_name: str | None = None
    opportunity_number: str | None = None
    close_date: str | None = None
    post_date: str | None = None
    award_ceiling: float | None = None
    award_floor: float | None = None
    description_short: str = ""
    data_source: str | None = None
    status: str | None = None
    grant_type: str | None = None
    source_url: str | None = None
    match_score: float | None = None


class SearchPage(BaseModel):
    """One page of search results."""

    items: list[Grant] = Field(default_factory=list)
    total_count: int = 0

    @classmethod
    def from_payload(cls, data: Any) -> "SearchPage":
        """Decode ``{items, totalCount}``, tolerating the legacy ``grants``/``count`` keys."""
        if not isinstance(data, dict):
            return cls()

        items = data.get("items")
        if items is None:
            items = data.get("grants") or []

        raw_count = data.get("totalCount", data.get("count"))
        if isinstance(raw_count, (int, float)) and not isinstance(raw_count, bool) and raw_count >= 0:
            total_count = int(raw_count)
        else:
            total_count = 0

        return cls(items=items, total_count=total_count)


class UserInteraction(BaseModel):
    """A recorded save/apply/ignore."""

    id: str | None = None
    user_id: str
    grant_id: str
    action: InteractionAction
    timestamp: datetime
    notes: str | None = None


class GrantMetadata(BaseModel):
    """Option lists used to populate the filter panel."""

    model_config = ConfigDict(populate_by_name=True)

    agencies: list[str] = Field(default_factory=list)
    subdivisions: list[str] = Field(default_factory=list)
    grant_types: list[str] = Field(default_factory=list, alias="grantTypes")
    activity_codes: list[str] = Field(default_factory=list, alias="activityCodes")
    activity_categories: list[str] = Field(default_factory=list, alias="activityCategories")
    announcement_types: list[str] = Field(default_factory=list, alias="announcementTypes")
    applicant_types: list[str] = Field(default_factory=list, alias="applicantTypes")
    data_sources: list[str] = Field(default_factory=list, alias="dataSources")
    statuses: list[str] = Field(default_factory=list)
