from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Path, Query

from eips_insight.data_models.schemas import FunnelStage, MonthSnapshot, YearSnapshot
from eips_insight.routers.deps import _parse_repo, _validate_api_key, get_lifecycle_service
from eips_insight.services.lifecycle_service import LifecycleService

router = APIRouter(prefix="/analytics/prs", tags=["analytics"])


# Declared before /{year} so "funnel" is not parsed as a year
@router.get("/funnel")
def get_lifecycle_funnel(
    repo: Optional[str] = Query(None),
    authorization: Optional[str] = Header(None),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> List[FunnelStage]:
    _validate_api_key(authorization)
    return service.get_lifecycle_funnel(_parse_repo(repo))


@router.get("/{year}/{month}")
def get_month_snapshot(
    year: int = Path(..., ge=2015),
    month: int = Path(..., ge=1, le=12),
    repo: Optional[str] = Query(None),
    authorization: Optional[str] = Header(None),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> MonthSnapshot:
    _validate_api_key(authorization)
    return service.get_month_snapshot(year, month, _parse_repo(repo))


@router.get("/{year}")
def get_year_snapshot(
    year: int = Path(..., ge=2015),
    repo: Optional[str] = Query(None),
    authorization: Optional[str] = Header(None),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> YearSnapshot:
    _validate_api_key(authorization)
    return service.get_year_snapshot(year, _parse_repo(repo))
