"""
Grants service endpoint wrappers returning Pydantic models.
"""

from grantclient.datasource.types import (
    Grant,
    GrantMetadata,
    InteractionAction,
    SearchPage,
    UserInteraction,
)
from grantclient.datasource.base import BaseDataSource
from grantclient.datasource.grants import GrantsApi
from grantclient.datasource.users import UsersApi

__all__ = [
    # Types
    "Grant",
    "GrantMetadata",
    "InteractionAction",
    "SearchPage",
    "UserInteraction",
    # Endpoints
    "BaseDataSource",
    "GrantsApi",
    "UsersApi",
]
