"""
Timeline merger.

Combines creation, status, category, deadline and pull-request events for one
proposal into a single chronologically ordered list of display entries.

Entry dates are fixed-width UTC ISO strings, so sorting on the string is the
same as sorting on the timestamp. Ties are broken on event id, kind and PR
number, which makes the output independent of the input order.
"""
from typing import Dict, Iterable, List, Optional, Set

from eips_insight.data_models.events import EventKind, ProposalEvent
from eips_insight.data_models.schemas import UnifiedTimelineEntry
from eips_insight.lifecycle.palette import DEFAULT_PALETTE, TimelinePalette
from eips_insight.utils.dates import to_iso

DISPLAY_TYPES: Dict[EventKind, str] = {
    EventKind.CREATED: "created",
    EventKind.STATUS_CHANGE: "status",
    EventKind.CATEGORY_CHANGE: "category",
    EventKind.DEADLINE_CHANGE: "deadline",
    EventKind.PR_OPENED: "pr",
    EventKind.PR_REVIEW: "pr-review",
    EventKind.PR_COMMENT: "pr-comment",
    EventKind.PR_MERGED: "pr-merged",
    EventKind.PR_CLOSED: "pr-closed",
    EventKind.COMMIT: "commit",
    EventKind.DRAFT_TOGGLED: "draft",
}

# Tie order for entries sharing a timestamp and id
_KIND_RANK = {kind: rank for rank, kind in enumerate(DISPLAY_TYPES)}


def transition_text(from_value: Optional[str], to_value: Optional[str], missing: str = "") -> str:
    target = to_value if to_value else missing
    if from_value:
        return f"{from_value} → {target}"
    return f"Set to {target}"


def _pr_label(event: ProposalEvent) -> str:
    return event.title or "Untitled PR"


def _entry(event: ProposalEvent, palette: TimelinePalette, merged_prs: Set[int], open_prs: Set[int]) -> UnifiedTimelineEntry:
    kind = event.kind
    pr = event.pr_number
    meta = None

    if kind == EventKind.CREATED:
        number = event.proposal_number if event.proposal_number is not None else "?"
        title = f"{event.repo.prefix} Created"
        description = f"{event.repo.prefix}-{number} authored by {event.actor or 'unknown'}"
        color = palette.created
    elif kind == EventKind.STATUS_CHANGE:
        title = "Status change"
        description = transition_text(event.from_value, event.to_value)
        color = palette.status(event.to_value)
        meta = f"via PR #{pr}" if pr else "via commit"
        if event.commit_sha:
            meta = f"{meta} ({event.commit_sha[:8]})"
    elif kind == EventKind.CATEGORY_CHANGE:
        title = "Category change"
        description = transition_text(event.from_value, event.to_value)
        color = palette.category
    elif kind == EventKind.DEADLINE_CHANGE:
        title = "Deadline update"
        description = transition_text(event.from_value, event.to_value, missing="removed")
        color = palette.deadline
    elif kind == EventKind.PR_OPENED:
        title = f"PR #{pr} opened"
        description = _pr_label(event)
        color = palette.pr_opened(pr in merged_prs, pr in open_prs)
    elif kind == EventKind.PR_MERGED:
        title = f"PR #{pr} merged"
        description = _pr_label(event)
        color = palette.pr_merged
    elif kind == EventKind.PR_CLOSED:
        title = f"PR #{pr} closed"
        description = _pr_label(event)
        color = palette.pr_closed
    elif kind == EventKind.PR_REVIEW:
        state = event.review_state.value.replace("_", " ") if event.review_state else "reviewed"
        title = f"PR #{pr} review ({state})"
        description = f"by {event.actor or 'unknown'}"
        color = palette.review
    elif kind == EventKind.PR_COMMENT:
        title = f"PR #{pr} comment"
        description = f"by {event.actor or 'unknown'}"
        color = palette.comment
    elif kind == EventKind.COMMIT:
        title = f"Commit on PR #{pr}" if pr else "Commit"
        description = f"by {event.actor or 'unknown'}"
        color = palette.commit
        meta = event.commit_sha[:8] if event.commit_sha else None
    else:
        title = f"PR #{pr} {'marked as draft' if event.draft else 'ready for review'}"
        description = _pr_label(event)
        color = palette.draft

    return UnifiedTimelineEntry(
        date=to_iso(event.occurred_at),
        type=DISPLAY_TYPES[kind],
        title=title,
        description=description,
        color=color,
        pr_number=pr,
        meta=meta,
    )


def merge(
    creation: Optional[ProposalEvent] = None,
    status_events: Iterable[ProposalEvent] = (),
    category_events: Iterable[ProposalEvent] = (),
    deadline_events: Iterable[ProposalEvent] = (),
    pr_events: Iterable[ProposalEvent] = (),
    palette: TimelinePalette = DEFAULT_PALETTE,
) -> List[UnifiedTimelineEntry]:
    """Merge all event streams of one proposal into one ordered timeline."""
    events: List[ProposalEvent] = []
    if creation is not None:
        events.append(creation)
    events.extend(status_events)
    events.extend(category_events)
    events.extend(deadline_events)
    pr_list = list(pr_events)
    events.extend(pr_list)

    merged_prs = {e.pr_number for e in pr_list if e.kind == EventKind.PR_MERGED}
    finished = merged_prs | {e.pr_number for e in pr_list if e.kind == EventKind.PR_CLOSED}
    open_prs = {e.pr_number for e in pr_list if e.kind == EventKind.PR_OPENED} - finished

    keyed = [
        (to_iso(e.occurred_at), e.occurred_at, e.event_id, _KIND_RANK[e.kind], e.pr_number or 0, e)
        for e in events
    ]
    keyed.sort(key=lambda item: item[:5])
    return [_entry(item[5], palette, merged_prs, open_prs) for item in keyed]
