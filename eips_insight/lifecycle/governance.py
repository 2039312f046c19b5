"""
Governance state classifier.

Derives the single current waiting state of a pull request from its ordered
event list. The function is total: malformed-but-typed input saturates to
``NO_STATE`` rather than raising.

Rules, applied to events at or before ``as_of``:
    1. a merge event makes the PR ``MERGED`` and a close event ``CLOSED``;
    2. an active draft flag makes it ``DRAFT``;
    3. otherwise the last qualifying action decides whose turn it is:
       editor review/comment -> ``WAITING_ON_AUTHOR``,
       author open/commit/comment -> ``WAITING_ON_EDITOR``;
    4. a last action at least ``stall_threshold_days`` old becomes ``STALLED``.
"""
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from eips_insight.config.common_settings import STALL_THRESHOLD_DAYS
from eips_insight.data_models.events import ActorRole, EventKind, ProposalEvent, Repo
from eips_insight.data_models.schemas import GovernanceAssessment, GovernanceState
from eips_insight.utils.dates import elapsed_days, ensure_utc
from eips_insight.utils.logger import logger

CANDIDATE_KINDS = frozenset({
    EventKind.PR_OPENED,
    EventKind.PR_REVIEW,
    EventKind.PR_COMMENT,
    EventKind.COMMIT,
})

EDITOR_ACTIONS = frozenset({EventKind.PR_REVIEW, EventKind.PR_COMMENT})
AUTHOR_ACTIONS = frozenset({EventKind.PR_OPENED, EventKind.COMMIT, EventKind.PR_COMMENT})


def _ordered_until(events: Iterable[ProposalEvent], as_of: datetime) -> List[ProposalEvent]:
    return sorted((e for e in events if e.occurred_at <= as_of), key=lambda e: e.sort_key)


def _last_of(events: List[ProposalEvent], kinds) -> Optional[ProposalEvent]:
    for event in reversed(events):
        if event.kind in kinds:
            return event
    return None


def _draft_since(events: List[ProposalEvent]) -> Optional[ProposalEvent]:
    """The event that put the PR in draft, if the PR is a draft right now."""
    toggle = _last_of(events, {EventKind.DRAFT_TOGGLED})
    if toggle is not None:
        return toggle if toggle.draft else None
    opened = _last_of(events, {EventKind.PR_OPENED})
    if opened is not None and opened.draft:
        return opened
    return None


def is_qualifying(event: ProposalEvent) -> bool:
    if event.actor_role == ActorRole.EDITOR:
        return event.kind in EDITOR_ACTIONS
    if event.actor_role == ActorRole.AUTHOR:
        return event.kind in AUTHOR_ACTIONS
    return False


def _turn_state(action: ProposalEvent) -> GovernanceState:
    if action.actor_role == ActorRole.EDITOR:
        return GovernanceState.WAITING_ON_AUTHOR
    return GovernanceState.WAITING_ON_EDITOR


def _decide(
    events: List[ProposalEvent],
    as_of: datetime,
    stall_threshold: timedelta,
) -> Tuple[GovernanceState, Optional[ProposalEvent]]:
    """Return the state and the event it is anchored on."""
    if not events:
        return GovernanceState.NO_STATE, None

    merged = _last_of(events, {EventKind.PR_MERGED})
    if merged is not None:
        return GovernanceState.MERGED, merged
    closed = _last_of(events, {EventKind.PR_CLOSED})
    if closed is not None:
        return GovernanceState.CLOSED, closed

    draft = _draft_since(events)
    if draft is not None:
        return GovernanceState.DRAFT, draft

    candidates = [e for e in events if e.kind in CANDIDATE_KINDS]
    if not candidates:
        return GovernanceState.NO_STATE, None

    qualifying = [e for e in candidates if is_qualifying(e)]
    if not qualifying:
        if any(e.actor_role is None for e in candidates):
            logger.warning(
                "GovernanceClassifier: PR #%s has actions without role metadata; degrading to NO_STATE",
                candidates[-1].pr_number,
            )
            return GovernanceState.NO_STATE, None
        # Only bots or bystanders have acted; nobody holds the turn
        return GovernanceState.STALLED, candidates[-1]

    last_action = qualifying[-1]
    if as_of - last_action.occurred_at >= stall_threshold:
        return GovernanceState.STALLED, last_action
    return _turn_state(last_action), last_action


def classify(
    pr_events: Iterable[ProposalEvent],
    as_of: datetime,
    stall_threshold_days: int = STALL_THRESHOLD_DAYS,
) -> GovernanceState:
    """Classify a pull request from its PR-scoped events as of ``as_of``."""
    as_of = ensure_utc(as_of)
    events = _ordered_until(pr_events, as_of)
    state, _ = _decide(events, as_of, timedelta(days=stall_threshold_days))
    return state


def assess(
    pr_events: Iterable[ProposalEvent],
    as_of: datetime,
    stall_threshold_days: int = STALL_THRESHOLD_DAYS,
    pr_number: Optional[int] = None,
    repo: Optional[Repo] = None,
) -> GovernanceAssessment:
    """Classify a pull request and report how long it has been waiting."""
    as_of = ensure_utc(as_of)
    events = _ordered_until(pr_events, as_of)
    state, anchor = _decide(events, as_of, timedelta(days=stall_threshold_days))

    if pr_number is None and events:
        pr_number = events[0].pr_number
    if repo is None and events:
        repo = events[0].repo

    waiting_since = anchor.occurred_at if anchor is not None else None
    if waiting_since is None and state == GovernanceState.NO_STATE:
        opened = _last_of(events, {EventKind.PR_OPENED})
        waiting_since = opened.occurred_at if opened is not None else None

    return GovernanceAssessment(
        pr_number=pr_number,
        repo=repo,
        state=state,
        as_of=as_of,
        waiting_since=waiting_since,
        days_waiting=elapsed_days(waiting_since, as_of) if waiting_since else 0,
        last_actor=anchor.actor if anchor is not None else None,
        last_event_type=anchor.kind.value if anchor is not None else None,
    )
