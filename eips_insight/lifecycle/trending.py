"""
Trending scorer.

    score = (PR review events x 2) + comments + (status change in window ? 10 : 0)

The formula is published in-product and must not drift. Scores are only
meaningful for the window they were computed over and are recomputed per
query.
"""
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from eips_insight.config.common_settings import TRENDING_WINDOW_DAYS
from eips_insight.data_models.events import EventKind, ProposalEvent, Repo
from eips_insight.data_models.schemas import DailyActivity, HeatmapRow, TrendingScore
from eips_insight.utils.dates import ensure_utc

PR_EVENT_WEIGHT = 2
COMMENT_WEIGHT = 1
STATUS_CHANGE_BONUS = 10


def window_events(
    events: Iterable[ProposalEvent],
    as_of: datetime,
    window_days: int = TRENDING_WINDOW_DAYS,
) -> List[ProposalEvent]:
    """Events in ``[as_of - window_days, as_of]``; future events are dropped."""
    as_of = ensure_utc(as_of)
    start = as_of - timedelta(days=window_days)
    return [e for e in events if start <= e.occurred_at <= as_of]


def _period(window_days: int) -> str:
    return "this week" if window_days == 7 else f"in the last {window_days} days"


def reason_text(pr_event_count: int, comment_count: int, had_status_change: bool, window_days: int = TRENDING_WINDOW_DAYS) -> str:
    """Summarize the factors, dominant one first."""
    period = _period(window_days)
    factors = []
    if pr_event_count:
        factors.append((pr_event_count * PR_EVENT_WEIGHT, f"{pr_event_count} PR events {period}"))
    if had_status_change:
        factors.append((STATUS_CHANGE_BONUS, f"Status changed {period}"))
    if comment_count:
        factors.append((comment_count * COMMENT_WEIGHT, f"{comment_count} comments"))
    if not factors:
        return "Recent activity"
    # sorted() is stable, so equal contributions keep the order above
    factors = sorted(factors, key=lambda f: -f[0])
    return ", ".join(text for _, text in factors)


def score(
    proposal_number: int,
    windowed: Iterable[ProposalEvent],
    repo: Repo = Repo.EIP,
    title: Optional[str] = None,
    status: Optional[str] = None,
    window_days: int = TRENDING_WINDOW_DAYS,
) -> TrendingScore:
    """Score one proposal from the events already restricted to the window."""
    windowed = list(windowed)
    pr_event_count = sum(1 for e in windowed if e.kind == EventKind.PR_REVIEW)
    comment_count = sum(1 for e in windowed if e.kind == EventKind.PR_COMMENT)
    had_status_change = any(e.kind == EventKind.STATUS_CHANGE for e in windowed)

    total = (
        pr_event_count * PR_EVENT_WEIGHT
        + comment_count * COMMENT_WEIGHT
        + (STATUS_CHANGE_BONUS if had_status_change else 0)
    )
    last_activity = max((e.occurred_at for e in windowed), default=None)

    return TrendingScore(
        proposal_number=proposal_number,
        repo=repo,
        title=title,
        status=status,
        score=total,
        reason_text=reason_text(pr_event_count, comment_count, had_status_change, window_days),
        last_activity=last_activity,
        pr_event_count=pr_event_count,
        comment_count=comment_count,
        had_status_change=had_status_change,
    )


def rank(scores: Iterable[TrendingScore], limit: Optional[int] = None) -> List[TrendingScore]:
    """Order by score, then most recent activity; zero scores are not trending."""
    trending = [s for s in scores if s.score > 0]
    trending.sort(key=lambda s: s.proposal_number)
    trending.sort(key=lambda s: s.last_activity.timestamp() if s.last_activity else float("-inf"), reverse=True)
    trending.sort(key=lambda s: s.score, reverse=True)
    if limit is not None:
        trending = trending[:limit]
    return trending


def activity_heatmap(
    events_by_proposal: Dict[Tuple[Repo, int], List[ProposalEvent]],
    as_of: datetime,
    titles: Optional[Dict[Tuple[Repo, int], str]] = None,
    days: int = 30,
    top_n: int = 10,
    kinds=frozenset({EventKind.STATUS_CHANGE}),
) -> List[HeatmapRow]:
    """Daily activity grid for the most active proposals over ``days``.

    Proposals are keyed by ``(repo, number)``; EIP-20 and ERC-20 are separate rows.
    """
    as_of = ensure_utc(as_of)
    titles = titles or {}
    first_day = (as_of - timedelta(days=days - 1)).date()
    day_labels = [(first_day + timedelta(days=i)).isoformat() for i in range(days)]

    rows = []
    for (repo, number), events in events_by_proposal.items():
        counts: Dict[str, int] = {}
        for e in events:
            if e.kind not in kinds or e.occurred_at > as_of:
                continue
            day = e.occurred_at.date().isoformat()
            if day >= day_labels[0]:
                counts[day] = counts.get(day, 0) + 1
        total = sum(counts.values())
        if total == 0:
            continue
        rows.append(HeatmapRow(
            repo=repo,
            proposal_number=number,
            title=titles.get((repo, number)) or f"{repo.prefix}-{number}",
            total_activity=total,
            daily_activity=[DailyActivity(date=d, value=counts.get(d, 0)) for d in day_labels],
        ))

    rows.sort(key=lambda r: (-r.total_activity, r.proposal_number, r.repo.value))
    return rows[:top_n]
