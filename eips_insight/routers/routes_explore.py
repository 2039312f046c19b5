from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query

from eips_insight.config.common_settings import TRENDING_DEFAULT_LIMIT, TRENDING_WINDOW_DAYS
from eips_insight.data_models.schemas import HeatmapRow, TrendingScore
from eips_insight.routers.deps import _parse_repo, _validate_api_key, get_lifecycle_service
from eips_insight.services.lifecycle_service import LifecycleService

router = APIRouter(prefix="/explore", tags=["explore"])


@router.get("/trending")
def get_trending(
    limit: int = Query(TRENDING_DEFAULT_LIMIT, ge=1, le=50),
    window_days: int = Query(TRENDING_WINDOW_DAYS, ge=1, le=90),
    authorization: Optional[str] = Header(None),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> List[TrendingScore]:
    """
    Proposals ranked by recent activity.

    score = PR review events x 2 + comments + 10 if the status changed in the window
    """
    _validate_api_key(authorization)
    return service.get_trending_proposals(limit=limit, window_days=window_days)


@router.get("/trending/heatmap")
def get_trending_heatmap(
    top_n: int = Query(10, ge=5, le=20),
    repo: Optional[str] = Query(None),
    authorization: Optional[str] = Header(None),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> List[HeatmapRow]:
    _validate_api_key(authorization)
    return service.get_trending_heatmap(top_n=top_n, repo=_parse_repo(repo))
