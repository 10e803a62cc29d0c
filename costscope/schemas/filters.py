"""
Candidate-set filters for resource and account reads.
"""

from typing import Optional, Tuple
from uuid import UUID
from pydantic import BaseModel, ConfigDict

from costscope.models.cloud import AccountStatus, ResourceCategory, ResourceStatus


class ResourceFilter(BaseModel):
    """Empty tuples mean "no restriction"."""
    model_config = ConfigDict(frozen=True)

    account_ids: Tuple[UUID, ...] = ()
    resource_ids: Tuple[UUID, ...] = ()
    categories: Tuple[ResourceCategory, ...] = ()
    statuses: Tuple[ResourceStatus, ...] = ()


class AccountFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_ids: Tuple[UUID, ...] = ()
    provider: Optional[str] = None
    # Suspended accounts are skipped by default
    statuses: Tuple[AccountStatus, ...] = (AccountStatus.ACTIVE,)
