"""Builders for events, pull requests and role directories used across tests."""
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Optional

from eips_insight.data_models.events import (
    ActorRole,
    EventKind,
    ProposalEvent,
    PullRequestRecord,
    Repo,
    ReviewState,
)
from eips_insight.lifecycle.roles import RoleDirectory

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
AUTHOR = "alice"
EDITOR = "bob"

_ids = count(1)


def day(n: float) -> datetime:
    return T0 + timedelta(days=n)


def event(
    kind: EventKind,
    at: datetime,
    actor: Optional[str] = None,
    role: Optional[ActorRole] = None,
    pr_number: Optional[int] = 1,
    event_id: Optional[int] = None,
    **fields,
) -> ProposalEvent:
    return ProposalEvent(
        event_id=next(_ids) if event_id is None else event_id,
        kind=kind,
        occurred_at=at,
        actor=actor,
        actor_role=role,
        pr_number=pr_number,
        **fields,
    )


def opened(at: datetime, actor: str = AUTHOR, draft: bool = False, **fields) -> ProposalEvent:
    return event(EventKind.PR_OPENED, at, actor, ActorRole.AUTHOR, draft=draft, **fields)


def review(at: datetime, actor: str = EDITOR, role: ActorRole = ActorRole.EDITOR, state=ReviewState.CHANGES_REQUESTED, **fields) -> ProposalEvent:
    return event(EventKind.PR_REVIEW, at, actor, role, review_state=state, **fields)


def comment(at: datetime, actor: str = EDITOR, role: Optional[ActorRole] = ActorRole.EDITOR, **fields) -> ProposalEvent:
    return event(EventKind.PR_COMMENT, at, actor, role, **fields)


def commit(at: datetime, actor: str = AUTHOR, role: Optional[ActorRole] = ActorRole.AUTHOR, **fields) -> ProposalEvent:
    return event(EventKind.COMMIT, at, actor, role, **fields)


def merged(at: datetime, **fields) -> ProposalEvent:
    return event(EventKind.PR_MERGED, at, "merge-bot", ActorRole.BOT, **fields)


def closed(at: datetime, **fields) -> ProposalEvent:
    return event(EventKind.PR_CLOSED, at, AUTHOR, ActorRole.AUTHOR, **fields)


def status_change(at: datetime, from_status: Optional[str], to_status: str, proposal_number: int = 1, **fields) -> ProposalEvent:
    return event(
        EventKind.STATUS_CHANGE, at,
        proposal_number=proposal_number, from_value=from_status, to_value=to_status,
        **fields,
    )


def pull_request(
    pr_number: int = 1,
    created_at: datetime = T0,
    author: str = AUTHOR,
    merged_at: Optional[datetime] = None,
    closed_at: Optional[datetime] = None,
    events=None,
    repo: Repo = Repo.EIP,
    **fields,
) -> PullRequestRecord:
    state = "merged" if merged_at else ("closed" if closed_at else "open")
    return PullRequestRecord(
        pr_number=pr_number,
        repo=repo,
        author=author,
        state=state,
        created_at=created_at,
        merged_at=merged_at,
        closed_at=closed_at,
        events=list(events or []),
        **fields,
    )


def directory(*editors: str) -> RoleDirectory:
    return RoleDirectory(editors or (EDITOR,))
