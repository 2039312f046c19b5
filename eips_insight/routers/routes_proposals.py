from typing import Optional

from fastapi import APIRouter, Depends, Header

from eips_insight.data_models.schemas import ProposalTimeline
from eips_insight.routers.deps import _parse_repo, _validate_api_key, get_lifecycle_service
from eips_insight.services.lifecycle_service import LifecycleService

router = APIRouter(prefix="/proposals", tags=["proposals"])


@router.get("/{repo}/{number}/timeline")
def get_proposal_timeline(
    repo: str,
    number: int,
    authorization: Optional[str] = Header(None),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> ProposalTimeline:
    """Full lifecycle of one proposal: header, raw event streams and merged entries."""
    _validate_api_key(authorization)
    return service.get_proposal_timeline(number, _parse_repo(repo))
