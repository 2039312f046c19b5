from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query

from eips_insight.data_models.schemas import (
    AttentionItem,
    GovernanceAssessment,
    GovernanceState,
    WaitingBucket,
    WaitingTimelineBucket,
)
from eips_insight.routers.deps import _parse_repo, _validate_api_key, get_lifecycle_service
from eips_insight.services.lifecycle_service import LifecycleService

router = APIRouter(prefix="/governance", tags=["governance"])


@router.get("/waiting-buckets")
def get_waiting_buckets(
    repo: Optional[str] = Query(None),
    authorization: Optional[str] = Header(None),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> List[WaitingBucket]:
    _validate_api_key(authorization)
    return service.get_governance_waiting_buckets(_parse_repo(repo))


@router.get("/waiting-timeline")
def get_waiting_timeline(
    repo: Optional[str] = Query(None),
    authorization: Optional[str] = Header(None),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> List[WaitingTimelineBucket]:
    _validate_api_key(authorization)
    return service.get_waiting_timeline(_parse_repo(repo))


@router.get("/needs-attention")
def get_needs_attention(
    state: Optional[GovernanceState] = Query(None),
    min_days: Optional[int] = Query(None, ge=0),
    repo: Optional[str] = Query(None),
    authorization: Optional[str] = Header(None),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> List[AttentionItem]:
    """Open pull requests, longest wait first (at most 50)."""
    _validate_api_key(authorization)
    return service.get_needs_attention(state=state, min_days=min_days, repo=_parse_repo(repo))


@router.get("/longest-waiting")
def get_longest_waiting_pr(
    state: Optional[GovernanceState] = Query(None),
    repo: Optional[str] = Query(None),
    authorization: Optional[str] = Header(None),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> Optional[AttentionItem]:
    _validate_api_key(authorization)
    return service.get_longest_waiting_pr(state=state, repo=_parse_repo(repo))


@router.get("/{repo}/prs/{pr_number}/state")
def get_governance_state(
    repo: str,
    pr_number: int,
    as_of: Optional[datetime] = Query(None, description="Classify as of this instant (defaults to now)"),
    authorization: Optional[str] = Header(None),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> GovernanceAssessment:
    """Current waiting state of one pull request."""
    _validate_api_key(authorization)
    return service.get_governance_state(pr_number, _parse_repo(repo), as_of=as_of)
