"""
Rollup views over classified pull requests.

These are thin groupings by state, age or calendar month. All governance
decisions are delegated to ``governance.assess`` so stallness and tie-break
rules live in exactly one place.
"""
from datetime import datetime
from statistics import median
from typing import Dict, Iterable, List, Optional

from eips_insight.config.common_settings import STALL_THRESHOLD_DAYS
from eips_insight.data_models.events import EventKind, PullRequestRecord
from eips_insight.data_models.schemas import (
    FunnelStage,
    GOVERNANCE_STATE_LABELS,
    GovernanceAssessment,
    GovernanceState,
    MonthSnapshot,
    OPEN_GOVERNANCE_STATES,
    WaitingBucket,
    WaitingTimelineBucket,
    YearSnapshot,
)
from eips_insight.lifecycle.governance import assess
from eips_insight.utils.dates import month_bounds

AGE_BUCKETS = ("< 7 days", "7-30 days", "30-90 days", "90+ days")
FUNNEL_STAGES = ("created", "reviewed", "merged", "closed")

def assess_pull_requests(
    prs: Iterable[PullRequestRecord],
    as_of: datetime,
    stall_threshold_days: int = STALL_THRESHOLD_DAYS,
) -> List[GovernanceAssessment]:
    return [
        assess(pr.events, as_of, stall_threshold_days, pr_number=pr.pr_number, repo=pr.repo)
        for pr in prs
    ]


def waiting_buckets(assessments: Iterable[GovernanceAssessment]) -> List[WaitingBucket]:
    """Count, median wait and oldest PR for each non-terminal state."""
    grouped: Dict[GovernanceState, List[GovernanceAssessment]] = {s: [] for s in OPEN_GOVERNANCE_STATES}
    for a in assessments:
        if a.state in grouped:
            grouped[a.state].append(a)

    buckets = []
    for state in OPEN_GOVERNANCE_STATES:
        members = grouped[state]
        bucket = WaitingBucket(state=state, label=GOVERNANCE_STATE_LABELS[state], count=len(members))
        if members:
            bucket.median_wait_days = int(round(median(a.days_waiting for a in members)))
            oldest = max(members, key=lambda a: (a.days_waiting, -(a.pr_number or 0)))
            bucket.oldest_pr_number = oldest.pr_number
            bucket.oldest_wait_days = oldest.days_waiting
        buckets.append(bucket)

    # Stable sort keeps the canonical order among equal counts
    buckets.sort(key=lambda b: b.count, reverse=True)
    return buckets


def age_bucket(days: int) -> str:
    if days < 7:
        return AGE_BUCKETS[0]
    if days < 30:
        return AGE_BUCKETS[1]
    if days < 90:
        return AGE_BUCKETS[2]
    return AGE_BUCKETS[3]


def waiting_timeline(assessments: Iterable[GovernanceAssessment]) -> List[WaitingTimelineBucket]:
    rows = {label: WaitingTimelineBucket(bucket=label) for label in AGE_BUCKETS}
    for a in assessments:
        row = rows[age_bucket(a.days_waiting)]
        if a.state == GovernanceState.WAITING_ON_AUTHOR:
            row.waiting_on_author += 1
        elif a.state == GovernanceState.WAITING_ON_EDITOR:
            row.waiting_on_editor += 1
    return [rows[label] for label in AGE_BUCKETS]


def _within(moment: Optional[datetime], start: datetime, end: datetime) -> bool:
    return moment is not None and start <= moment <= end


def month_snapshot(
    prs: Iterable[PullRequestRecord],
    year: int,
    month: int,
    stall_threshold_days: int = STALL_THRESHOLD_DAYS,
) -> MonthSnapshot:
    """End-of-month view: flow during the month and state of what is still open."""
    start, end = month_bounds(year, month)
    prs = list(prs)

    new_prs = sum(1 for pr in prs if _within(pr.created_at, start, end))
    merged = sum(1 for pr in prs if _within(pr.merged_at, start, end))
    closed_unmerged = sum(
        1 for pr in prs if pr.merged_at is None and _within(pr.closed_at, start, end)
    )
    open_at_end = [pr for pr in prs if pr.open_at(end)]

    states = {s.value: 0 for s in OPEN_GOVERNANCE_STATES}
    for a in assess_pull_requests(open_at_end, end, stall_threshold_days):
        if a.state.value in states:
            states[a.state.value] += 1

    return MonthSnapshot(
        month=f"{year}-{month:02d}",
        open_prs=len(open_at_end),
        new_prs=new_prs,
        merged_prs=merged,
        closed_unmerged=closed_unmerged,
        net_delta=new_prs - merged - closed_unmerged,
        governance_states=states,
    )


def year_snapshot(
    prs: Iterable[PullRequestRecord],
    year: int,
    stall_threshold_days: int = STALL_THRESHOLD_DAYS,
    through_month: int = 12,
) -> YearSnapshot:
    prs = list(prs)
    months = [
        month_snapshot(prs, year, m, stall_threshold_days)
        for m in range(1, through_month + 1)
    ]
    return YearSnapshot(
        year=year,
        months=months,
        new_prs=sum(m.new_prs for m in months),
        merged_prs=sum(m.merged_prs for m in months),
        closed_unmerged=sum(m.closed_unmerged for m in months),
        open_at_year_end=months[-1].open_prs if months else 0,
    )


def funnel_stage(pr: PullRequestRecord) -> str:
    if pr.merged_at is not None:
        return "merged"
    if pr.closed_at is not None:
        return "closed"
    if any(e.kind == EventKind.PR_REVIEW for e in pr.events):
        return "reviewed"
    return "created"


def lifecycle_funnel(prs: Iterable[PullRequestRecord]) -> List[FunnelStage]:
    """opened -> reviewed -> merged / closed-unmerged, one stage per PR."""
    counts = {stage: 0 for stage in FUNNEL_STAGES}
    for pr in prs:
        counts[funnel_stage(pr)] += 1
    total = sum(counts.values())
    return [
        FunnelStage(
            stage=stage,
            count=counts[stage],
            percentage=round(counts[stage] * 100.0 / total, 1) if total else 0.0,
        )
        for stage in FUNNEL_STAGES
    ]
