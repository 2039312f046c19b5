"""
Lifecycle service facade.

Glues the event store to the pure lifecycle functions:

    EventStore ──> RoleDirectory.annotate ──> governance / timeline / trending
                                        └──> aggregation rollups (cached)

Reads over many pull requests fan out through ``run_batch`` with the worker
count bounded by the connection pool size.
"""
import threading
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from eips_insight.config.common_settings import LifecycleSettings, get_settings
from eips_insight.data_models.events import EventKind, ProposalEvent, PullRequestRecord, Repo
from eips_insight.data_models.schemas import (
    OPEN_GOVERNANCE_STATES,
    AttentionItem,
    FunnelStage,
    GovernanceAssessment,
    GovernanceState,
    HeatmapRow,
    MonthSnapshot,
    ProposalTimeline,
    TrendingScore,
    WaitingBucket,
    WaitingTimelineBucket,
    YearSnapshot,
)
from eips_insight.exceptions import UpstreamUnavailableError, ValidationError
from eips_insight.lifecycle import aggregation
from eips_insight.lifecycle.batch import run_batch
from eips_insight.lifecycle.governance import assess
from eips_insight.lifecycle.roles import RoleDirectory
from eips_insight.lifecycle.timeline import merge
from eips_insight.lifecycle.trending import activity_heatmap, rank, score, window_events
from eips_insight.services.rollup_cache import RollupCache
from eips_insight.utils.dates import ensure_utc, month_bounds, utcnow
from eips_insight.utils.logger import logger

MAX_TRENDING_LIMIT = 50
MAX_TRENDING_WINDOW_DAYS = 90
HEATMAP_DAYS = 30
MAX_ATTENTION_ITEMS = 50

# States in which the turn is held by the author or an editor
TURN_STATES = (GovernanceState.WAITING_ON_AUTHOR, GovernanceState.WAITING_ON_EDITOR)


class LifecycleService:
    """Answers timeline, governance, trending and analytics queries."""

    def __init__(
        self,
        store,
        role_directory: Optional[RoleDirectory] = None,
        settings: Optional[LifecycleSettings] = None,
        cache: Optional[RollupCache] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self._roles = role_directory or RoleDirectory(self.settings.editors)
        self._roles_loaded = False
        self._roles_lock = threading.Lock()
        self.cache = cache or RollupCache(ttl_seconds=self.settings.rollup_cache_ttl_seconds)
        self._clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _now(self, as_of: Optional[datetime] = None) -> datetime:
        return ensure_utc(as_of) if as_of is not None else self._clock()

    @property
    def roles(self) -> RoleDirectory:
        """Role directory, extended once with the editors recorded in the database."""
        if self._roles_loaded:
            return self._roles
        with self._roles_lock:
            if not self._roles_loaded:
                try:
                    self._roles = self._roles.with_editors(self.store.list_editors())
                    self._roles_loaded = True
                    logger.info("LifecycleService: role directory has %d editors", len(self._roles.editors))
                except UpstreamUnavailableError as e:
                    # Retried on the next call; configured editors still apply
                    logger.warning("LifecycleService: could not load editors: %s", e.message)
        return self._roles

    def _annotated(self, pr: PullRequestRecord) -> List[ProposalEvent]:
        return self.roles.annotate(pr.events, pr.author)

    def _assess(self, pr: PullRequestRecord, as_of: datetime) -> GovernanceAssessment:
        return assess(
            self._annotated(pr),
            as_of,
            self.settings.stall_threshold_days,
            pr_number=pr.pr_number,
            repo=pr.repo,
        )

    def _with_events(self, prs: Sequence[PullRequestRecord]) -> List[PullRequestRecord]:
        """Load events for many PRs; PRs whose read failed are skipped."""
        prs = list(prs)
        if not prs:
            return []
        outcome = run_batch(
            lambda i: self.store.load_events(prs[i]),
            range(len(prs)),
            max_workers=self.settings.effective_workers(),
        )
        if outcome.failures:
            logger.warning(
                "LifecycleService: skipped %d of %d pull requests whose events could not be read",
                len(outcome.failures), len(prs),
            )
        return outcome.ordered(range(len(prs)))

    def _with_events_where(self, prs: Sequence[PullRequestRecord], needs_events) -> List[PullRequestRecord]:
        """Load events only for the PRs that need them, keeping the others as they are."""
        prs = list(prs)
        wanted = [pr for pr in prs if needs_events(pr)]
        loaded = {(pr.repo, pr.pr_number): pr for pr in self._with_events(wanted)}
        skipped = {(pr.repo, pr.pr_number) for pr in wanted} - set(loaded)
        return [
            loaded.get((pr.repo, pr.pr_number), pr)
            for pr in prs
            if (pr.repo, pr.pr_number) not in skipped
        ]

    def _cached(self, key: Tuple, as_of: Optional[datetime], compute: Callable):
        # Explicit as_of queries are historical views and are not cached
        if as_of is not None:
            return compute()
        return self.cache.get_or_compute(key, compute)

    @staticmethod
    def _repo(repo) -> Optional[Repo]:
        if repo is None:
            return None
        try:
            return Repo.parse(repo)
        except ValueError as e:
            raise ValidationError(str(e))

    # ------------------------------------------------------------------
    # Timeline
    # ------------------------------------------------------------------

    def get_proposal_timeline(self, proposal_number: int, repo) -> ProposalTimeline:
        repo = self._repo(repo) or Repo.EIP
        bundle = self.store.get_proposal_bundle(proposal_number, repo)
        proposal = bundle["proposal"]
        linked_prs = self._with_events(bundle["linked_prs"])

        creation = None
        if proposal.created_at is not None:
            creation = ProposalEvent(
                proposal_number=proposal_number,
                repo=repo,
                kind=EventKind.CREATED,
                occurred_at=proposal.created_at,
                actor=proposal.author,
            )

        pr_events = [e for pr in linked_prs for e in pr.events]
        entries = merge(
            creation=creation,
            status_events=bundle["status_events"],
            category_events=bundle["category_events"],
            deadline_events=bundle["deadline_events"],
            pr_events=pr_events,
        )
        logger.info(
            "LifecycleService: timeline for %s-%d has %d entries from %d linked PRs",
            repo.prefix, proposal_number, len(entries), len(linked_prs),
        )
        return ProposalTimeline(
            proposal_number=proposal_number,
            repo=repo,
            title=proposal.title,
            author=proposal.author,
            current_status=proposal.status,
            type=proposal.type,
            category=proposal.category,
            deadline=proposal.deadline,
            created_at=proposal.created_at,
            last_updated=proposal.last_updated,
            status_events=bundle["status_events"],
            category_events=bundle["category_events"],
            deadline_events=bundle["deadline_events"],
            linked_prs=linked_prs,
            entries=entries,
        )

    # ------------------------------------------------------------------
    # Governance
    # ------------------------------------------------------------------

    def get_governance_state(self, pr_number: int, repo, as_of: Optional[datetime] = None) -> GovernanceAssessment:
        repo = self._repo(repo) or Repo.EIP
        pr = self.store.get_pull_request(pr_number, repo)
        return self._assess(pr, self._now(as_of))

    def _open_assessments(self, repo: Optional[Repo], as_of: datetime) -> List[GovernanceAssessment]:
        open_prs = self._with_events(self.store.list_pull_requests(repo, open_only=True))
        return [self._assess(pr, as_of) for pr in open_prs]

    def get_governance_waiting_buckets(self, repo=None, as_of: Optional[datetime] = None) -> List[WaitingBucket]:
        repo = self._repo(repo)
        now = self._now(as_of)
        return self._cached(
            ("waiting-buckets", repo),
            as_of,
            lambda: aggregation.waiting_buckets(self._open_assessments(repo, now)),
        )

    def get_waiting_timeline(self, repo=None, as_of: Optional[datetime] = None) -> List[WaitingTimelineBucket]:
        repo = self._repo(repo)
        now = self._now(as_of)
        return self._cached(
            ("waiting-timeline", repo),
            as_of,
            lambda: aggregation.waiting_timeline(self._open_assessments(repo, now)),
        )

    @staticmethod
    def _state(state, allowed: Sequence[GovernanceState]) -> Optional[GovernanceState]:
        if state is None:
            return None
        try:
            state = GovernanceState(state)
        except ValueError:
            raise ValidationError(f"Unknown governance state {state!r}")
        if state not in allowed:
            raise ValidationError(
                f"state must be one of {', '.join(s.value for s in allowed)}; got {state.value}"
            )
        return state

    def _attention_items(self, repo: Optional[Repo], as_of: Optional[datetime]) -> List[AttentionItem]:
        """Open PRs, longest wait first."""
        now = self._now(as_of)

        def compute() -> List[AttentionItem]:
            items = [
                AttentionItem(
                    **assessment.model_dump(exclude={"responsible_party"}),
                    url=assessment.repo.pull_request_url(assessment.pr_number),
                )
                for assessment in self._open_assessments(repo, now)
            ]
            items.sort(key=lambda i: (-i.days_waiting, i.repo.value, i.pr_number))
            return items

        return self._cached(("attention", repo), as_of, compute)

    def get_needs_attention(
        self,
        state=None,
        min_days: Optional[int] = None,
        repo=None,
        as_of: Optional[datetime] = None,
        limit: int = MAX_ATTENTION_ITEMS,
    ) -> List[AttentionItem]:
        """Open PRs filtered by state and minimum wait, longest wait first."""
        state = self._state(state, OPEN_GOVERNANCE_STATES)
        if min_days is not None and min_days < 0:
            raise ValidationError("min_days must not be negative")
        if not 1 <= limit <= MAX_ATTENTION_ITEMS:
            raise ValidationError(f"limit must be within 1..{MAX_ATTENTION_ITEMS}")

        items = [
            item for item in self._attention_items(self._repo(repo), as_of)
            if (state is None or item.state == state)
            and (min_days is None or item.days_waiting >= min_days)
        ]
        return items[:limit]

    def get_longest_waiting_pr(self, state=None, repo=None, as_of: Optional[datetime] = None) -> Optional[AttentionItem]:
        """The PR waiting longest on its author or on an editor, or None."""
        state = self._state(state, TURN_STATES)
        wanted = (state,) if state is not None else TURN_STATES
        candidates = [item for item in self._attention_items(self._repo(repo), as_of) if item.state in wanted]
        if not candidates:
            return None
        return min(candidates, key=lambda i: (i.waiting_since or i.as_of, i.repo.value, i.pr_number))

    # ------------------------------------------------------------------
    # Trending
    # ------------------------------------------------------------------

    def get_trending_proposals(
        self,
        limit: Optional[int] = None,
        window_days: Optional[int] = None,
        as_of: Optional[datetime] = None,
    ) -> List[TrendingScore]:
        """Rank proposals by recent activity. Always recomputed."""
        limit = self.settings.trending_default_limit if limit is None else limit
        window_days = self.settings.trending_window_days if window_days is None else window_days
        if not 1 <= limit <= MAX_TRENDING_LIMIT:
            raise ValidationError(f"limit must be within 1..{MAX_TRENDING_LIMIT}")
        if not 1 <= window_days <= MAX_TRENDING_WINDOW_DAYS:
            raise ValidationError(f"window_days must be within 1..{MAX_TRENDING_WINDOW_DAYS}")

        now = self._now(as_of)
        activity = self.store.get_recent_activity(now - timedelta(days=window_days), now)

        grouped: Dict[Tuple[Repo, int], List[ProposalEvent]] = defaultdict(list)
        for event in window_events(activity, now, window_days):
            if event.proposal_number is not None:
                grouped[(event.repo, event.proposal_number)].append(event)

        headers = self.store.get_proposals(number for _, number in grouped) if grouped else {}
        scores = []
        for key, events in grouped.items():
            header = headers.get(key)
            scores.append(score(
                key[1],
                events,
                repo=key[0],
                title=header.title if header else None,
                status=header.status if header else None,
                window_days=window_days,
            ))
        ranked = rank(scores, limit)
        logger.info(
            "LifecycleService: %d trending proposals out of %d active in the last %d days",
            len(ranked), len(scores), window_days,
        )
        return ranked

    def get_trending_heatmap(self, top_n: int = 10, repo=None, as_of: Optional[datetime] = None) -> List[HeatmapRow]:
        repo = self._repo(repo)
        now = self._now(as_of)

        def compute() -> List[HeatmapRow]:
            activity = self.store.get_recent_activity(now - timedelta(days=HEATMAP_DAYS), now)
            by_proposal: Dict[Tuple[Repo, int], List[ProposalEvent]] = defaultdict(list)
            for event in activity:
                if event.proposal_number is None or (repo is not None and event.repo != repo):
                    continue
                by_proposal[(event.repo, event.proposal_number)].append(event)
            numbers = sorted({number for _, number in by_proposal})
            headers = self.store.get_proposals(numbers) if numbers else {}
            titles = {key: p.display_title for key, p in headers.items()}
            return activity_heatmap(by_proposal, now, titles=titles, days=HEATMAP_DAYS, top_n=top_n)

        return self._cached(("heatmap", top_n, repo), as_of, compute)

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def get_month_snapshot(self, year: int, month: int, repo=None) -> MonthSnapshot:
        repo = self._repo(repo)
        try:
            _, end = month_bounds(year, month)
        except ValueError as e:
            raise ValidationError(str(e))

        def compute() -> MonthSnapshot:
            prs = self._with_events_where(
                self.store.list_pull_requests(repo, created_before=end),
                lambda pr: pr.open_at(end),
            )
            return aggregation.month_snapshot(prs, year, month, self.settings.stall_threshold_days)

        return self.cache.get_or_compute(("month", year, month, repo), compute)

    def get_year_snapshot(self, year: int, repo=None) -> YearSnapshot:
        repo = self._repo(repo)
        now = self._clock()
        if year > now.year:
            raise ValidationError(f"year {year} is in the future")
        through_month = now.month if year == now.year else 12
        month_ends = [month_bounds(year, m)[1] for m in range(1, through_month + 1)]

        def compute() -> YearSnapshot:
            prs = self._with_events_where(
                self.store.list_pull_requests(repo, created_before=month_ends[-1]),
                lambda pr: any(pr.open_at(end) for end in month_ends),
            )
            return aggregation.year_snapshot(
                prs, year, self.settings.stall_threshold_days, through_month=through_month,
            )

        return self.cache.get_or_compute(("year", year, through_month, repo), compute)

    def get_lifecycle_funnel(self, repo=None) -> List[FunnelStage]:
        repo = self._repo(repo)

        def compute() -> List[FunnelStage]:
            # Only still-open PRs need their events to tell reviewed from created
            prs = self._with_events_where(
                self.store.list_pull_requests(repo),
                lambda pr: pr.merged_at is None and pr.closed_at is None,
            )
            return aggregation.lifecycle_funnel(prs)

        return self.cache.get_or_compute(("funnel", repo), compute)
