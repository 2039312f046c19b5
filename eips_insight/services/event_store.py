"""
Event Store Reader.

Reads proposal and pull-request facts from the EIPs Insight PostgreSQL
database and turns rows into immutable ``ProposalEvent`` objects:

┌──────────────────────────┬──────────────────────────────────────────────┐
│ Table                    │ Events                                       │
├──────────────────────────┼──────────────────────────────────────────────┤
│ eips / eip_snapshots     │ created (+ proposal header)                  │
│ eip_status_events        │ status_change                                │
│ eip_category_events      │ category_change                              │
│ eip_deadline_events      │ deadline_change                              │
│ pull_requests            │ pr_opened, pr_merged, pr_closed              │
│ pr_events                │ pr_review, pr_comment, commit, draft_toggled │
│ contributor_activity     │ editor directory (role = 'EDITOR')           │
└──────────────────────────┴──────────────────────────────────────────────┘

Repositories are matched on the second segment of ``repositories.name``
(``ethereum/EIPs`` -> ``eips``). Every call borrows one pooled connection and
runs its queries sequentially on it.
"""
import time
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import psycopg2

from eips_insight.data_models.events import (
    EventKind,
    ProposalEvent,
    ProposalRecord,
    PullRequestRecord,
    Repo,
    ReviewState,
)
from eips_insight.exceptions import (
    IncompleteDataError,
    InternalError,
    ProposalNotFoundError,
    PullRequestNotFoundError,
    UpstreamUnavailableError,
)
from eips_insight.services.connection_pool import get_connection_pool
from eips_insight.utils.logger import logger

REPO_FILTER = "LOWER(SPLIT_PART(r.name, '/', 2)) = %s"
OPTIONAL_REPO_FILTER = "(%s::text IS NULL OR LOWER(SPLIT_PART(r.name, '/', 2)) = %s)"

# pr_events.event_type -> engine event kind
PR_EVENT_TYPES: Dict[str, EventKind] = {
    "reviewed": EventKind.PR_REVIEW,
    "commented": EventKind.PR_COMMENT,
    "issue_comment": EventKind.PR_COMMENT,
    "committed": EventKind.COMMIT,
    "ready_for_review": EventKind.DRAFT_TOGGLED,
    "convert_to_draft": EventKind.DRAFT_TOGGLED,
}

REVIEW_STATES = {state.value: state for state in ReviewState}

DRAFT_TITLE_MARKERS = ("wip", "draft")

_PROPOSAL_SQL = f"""
    SELECT ei.eip_number, ei.title, ei.author, s.status, s.type, s.category,
           TO_CHAR(s.deadline, 'YYYY-MM-DD') AS deadline,
           ei.created_at, s.updated_at,
           LOWER(SPLIT_PART(r.name, '/', 2)) AS repo_key
    FROM eip_snapshots s
    JOIN eips ei ON s.eip_id = ei.id
    JOIN repositories r ON s.repository_id = r.id
    WHERE ei.eip_number = %s AND {REPO_FILTER}
"""

_STATUS_EVENTS_SQL = f"""
    SELECT e.id, e.from_status, e.to_status, e.changed_at, e.pr_number, e.commit_sha
    FROM eip_status_events e
    JOIN eips ei ON e.eip_id = ei.id
    JOIN eip_snapshots s ON s.eip_id = ei.id
    JOIN repositories r ON s.repository_id = r.id
    WHERE ei.eip_number = %s AND {REPO_FILTER}
    ORDER BY e.changed_at ASC, e.id ASC
"""

_CATEGORY_EVENTS_SQL = f"""
    SELECT e.id, e.from_category, e.to_category, e.changed_at
    FROM eip_category_events e
    JOIN eips ei ON e.eip_id = ei.id
    JOIN eip_snapshots s ON s.eip_id = ei.id
    JOIN repositories r ON s.repository_id = r.id
    WHERE ei.eip_number = %s AND {REPO_FILTER}
    ORDER BY e.changed_at ASC, e.id ASC
"""

_DEADLINE_EVENTS_SQL = f"""
    SELECT d.id,
           TO_CHAR(d.previous_deadline, 'YYYY-MM-DD') AS previous_deadline,
           TO_CHAR(d.new_deadline, 'YYYY-MM-DD') AS new_deadline,
           d.changed_at
    FROM eip_deadline_events d
    JOIN eips ei ON d.eip_id = ei.id
    JOIN eip_snapshots s ON s.eip_id = ei.id
    JOIN repositories r ON s.repository_id = r.id
    WHERE ei.eip_number = %s AND {REPO_FILTER}
    ORDER BY d.changed_at ASC, d.id ASC
"""

_PR_COLUMNS = """
    p.pr_number, p.title, p.author, p.state, p.created_at, p.merged_at, p.closed_at,
    COALESCE(p.num_commits, 0) AS num_commits, COALESCE(p.num_files, 0) AS num_files,
    COALESCE(p.num_comments, 0) AS num_comments,
    LOWER(SPLIT_PART(r.name, '/', 2)) AS repo_key,
    (SELECT ARRAY_AGG(pre.eip_number ORDER BY pre.eip_number) FROM pull_request_eips pre
      WHERE pre.pr_number = p.pr_number AND pre.repository_id = p.repository_id) AS linked_proposals
"""

_LINKED_PRS_SQL = f"""
    SELECT {_PR_COLUMNS}
    FROM pull_requests p
    JOIN pull_request_eips link ON link.pr_number = p.pr_number AND link.repository_id = p.repository_id
    JOIN repositories r ON p.repository_id = r.id
    WHERE link.eip_number = %s AND {REPO_FILTER}
    ORDER BY p.created_at ASC, p.pr_number ASC
"""

_PULL_REQUEST_SQL = f"""
    SELECT {_PR_COLUMNS}
    FROM pull_requests p
    JOIN repositories r ON p.repository_id = r.id
    WHERE p.pr_number = %s AND {REPO_FILTER}
"""

_LIST_PRS_SQL = f"""
    SELECT {_PR_COLUMNS}
    FROM pull_requests p
    JOIN repositories r ON p.repository_id = r.id
    WHERE {OPTIONAL_REPO_FILTER}
      AND (%s = FALSE OR p.state = 'open')
      AND (%s::timestamptz IS NULL OR p.created_at <= %s::timestamptz)
    ORDER BY p.created_at ASC, p.pr_number ASC
"""

_PR_EVENTS_SQL = f"""
    SELECT pe.id, pe.event_type, pe.actor, pe.created_at, pe.metadata
    FROM pr_events pe
    JOIN repositories r ON pe.repository_id = r.id
    WHERE pe.pr_number = %s AND {REPO_FILTER}
      AND pe.event_type = ANY(%s)
    ORDER BY pe.created_at ASC, pe.id ASC
"""

_RECENT_STATUS_SQL = """
    SELECT e.id, ei.eip_number, LOWER(SPLIT_PART(r.name, '/', 2)) AS repo_key,
           e.from_status, e.to_status, e.changed_at, e.pr_number, e.commit_sha
    FROM eip_status_events e
    JOIN eips ei ON e.eip_id = ei.id
    JOIN eip_snapshots s ON s.eip_id = ei.id
    JOIN repositories r ON s.repository_id = r.id
    WHERE e.changed_at >= %s AND e.changed_at <= %s
    ORDER BY e.changed_at ASC, e.id ASC
"""

_RECENT_PR_ACTIVITY_SQL = """
    SELECT pe.id, pre.eip_number, LOWER(SPLIT_PART(r.name, '/', 2)) AS repo_key,
           pe.pr_number, pe.event_type, pe.actor, pe.created_at, pe.metadata
    FROM pr_events pe
    JOIN pull_request_eips pre ON pre.pr_number = pe.pr_number AND pre.repository_id = pe.repository_id
    JOIN repositories r ON pe.repository_id = r.id
    WHERE pe.created_at >= %s AND pe.created_at <= %s
      AND pe.event_type = ANY(%s)
    ORDER BY pe.created_at ASC, pe.id ASC
"""

_PROPOSALS_BY_NUMBER_SQL = """
    SELECT ei.eip_number, ei.title, ei.author, s.status, s.type, s.category,
           TO_CHAR(s.deadline, 'YYYY-MM-DD') AS deadline,
           ei.created_at, s.updated_at,
           LOWER(SPLIT_PART(r.name, '/', 2)) AS repo_key
    FROM eip_snapshots s
    JOIN eips ei ON s.eip_id = ei.id
    JOIN repositories r ON s.repository_id = r.id
    WHERE ei.eip_number = ANY(%s)
"""

_EDITORS_SQL = """
    SELECT DISTINCT LOWER(ca.actor) AS actor
    FROM contributor_activity ca
    WHERE UPPER(ca.role) = 'EDITOR' AND ca.actor IS NOT NULL
"""


def _repo_from_key(key: Optional[str], default: Repo = Repo.EIP) -> Repo:
    if not key:
        return default
    try:
        return Repo.parse(key)
    except ValueError:
        return default


def looks_like_draft(title: Optional[str]) -> bool:
    lowered = (title or "").lower()
    return any(marker in lowered for marker in DRAFT_TITLE_MARKERS)


class EventStore:
    """Read-only access to the proposal event log."""

    def __init__(self, pool=None):
        self._pool = pool

    def _get_pool(self):
        """Get or create connection pool."""
        if self._pool is None:
            self._pool = get_connection_pool()
        return self._pool

    def _query(self, cur, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        start_time = time.perf_counter()
        cur.execute(sql, tuple(params))
        rows = cur.fetchall()
        column_names = [desc[0] for desc in cur.description]
        logger.debug("EventStore: query returned %d rows in %.3fs", len(rows), time.perf_counter() - start_time)
        return [dict(zip(column_names, row)) for row in rows]

    def _run(self, *statements) -> List[List[Dict[str, Any]]]:
        """Run ``(sql, params)`` pairs in order on one pooled connection."""
        try:
            with self._get_pool().connection() as conn:
                with conn.cursor() as cur:
                    return [self._query(cur, sql, params) for sql, params in statements]
        except psycopg2.OperationalError as e:
            logger.error("EventStore: database operational error: %s", e, exc_info=True)
            raise UpstreamUnavailableError(f"Event store unavailable: {e}") from e
        except psycopg2.Error as e:
            logger.error("EventStore: SQL error: %s", e, exc_info=True)
            raise InternalError(f"Event store query failed: {e}") from e

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _proposal_from_row(row: Dict[str, Any], repo: Optional[Repo] = None) -> ProposalRecord:
        return ProposalRecord(
            proposal_number=row["eip_number"],
            repo=repo or _repo_from_key(row.get("repo_key")),
            title=row.get("title"),
            author=row.get("author"),
            status=row.get("status"),
            type=row.get("type"),
            category=row.get("category"),
            deadline=row.get("deadline"),
            created_at=row.get("created_at"),
            last_updated=row.get("updated_at"),
        )

    @staticmethod
    def _status_event(row: Dict[str, Any], number: int, repo: Repo) -> ProposalEvent:
        return ProposalEvent(
            event_id=row["id"],
            proposal_number=number,
            repo=repo,
            kind=EventKind.STATUS_CHANGE,
            occurred_at=row["changed_at"],
            from_value=row.get("from_status"),
            to_value=row["to_status"],
            pr_number=row.get("pr_number"),
            commit_sha=row.get("commit_sha"),
        )

    @staticmethod
    def _activity_event(row: Dict[str, Any], pr_number: int, repo: Repo, proposal_number: Optional[int] = None) -> Optional[ProposalEvent]:
        event_type = row["event_type"]
        kind = PR_EVENT_TYPES.get(event_type)
        if kind is None:
            return None
        if row.get("created_at") is None:
            raise IncompleteDataError(f"pr_events row {row.get('id')} ({event_type}) has no timestamp")
        metadata = row.get("metadata") or {}
        review_state = None
        if kind == EventKind.PR_REVIEW:
            review_state = REVIEW_STATES.get(str(metadata.get("state") or "").lower())
        draft = None
        if kind == EventKind.DRAFT_TOGGLED:
            draft = event_type == "convert_to_draft"
        return ProposalEvent(
            event_id=row["id"],
            proposal_number=proposal_number,
            repo=repo,
            kind=kind,
            occurred_at=row["created_at"],
            actor=row.get("actor"),
            pr_number=pr_number,
            review_state=review_state,
            draft=draft,
            commit_sha=metadata.get("sha"),
        )

    @staticmethod
    def _pull_request_from_row(row: Dict[str, Any]) -> PullRequestRecord:
        return PullRequestRecord(
            pr_number=row["pr_number"],
            repo=_repo_from_key(row.get("repo_key")),
            title=row.get("title"),
            author=row.get("author"),
            state="merged" if row.get("merged_at") else (row.get("state") or "open"),
            created_at=row.get("created_at"),
            merged_at=row.get("merged_at"),
            closed_at=row.get("closed_at"),
            draft=looks_like_draft(row.get("title")),
            num_commits=row.get("num_commits") or 0,
            num_files=row.get("num_files") or 0,
            num_comments=row.get("num_comments") or 0,
            linked_proposals=list(row.get("linked_proposals") or []),
        )

    @staticmethod
    def lifecycle_events(pr: PullRequestRecord, activity: Iterable[ProposalEvent] = ()) -> List[ProposalEvent]:
        """Opened/merged/closed events for a PR, merged with its activity.

        The opened event sorts before any activity at the same instant and
        the terminal events after it.
        """
        activity = list(activity)
        last_id = max((e.event_id for e in activity), default=0)
        events: List[ProposalEvent] = []
        common = dict(repo=pr.repo, pr_number=pr.pr_number, title=pr.title)
        if pr.created_at is not None:
            events.append(ProposalEvent(
                event_id=0, kind=EventKind.PR_OPENED, occurred_at=pr.created_at,
                actor=pr.author, draft=pr.draft, **common,
            ))
        events.extend(activity)
        if pr.merged_at is not None:
            events.append(ProposalEvent(
                event_id=last_id + 1, kind=EventKind.PR_MERGED, occurred_at=pr.merged_at, **common,
            ))
        elif pr.closed_at is not None:
            events.append(ProposalEvent(
                event_id=last_id + 2, kind=EventKind.PR_CLOSED, occurred_at=pr.closed_at, **common,
            ))
        return sorted(events, key=lambda e: e.sort_key)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_proposal_bundle(self, proposal_number: int, repo: Repo) -> Dict[str, Any]:
        """Header, event streams and linked PRs (without PR events) of one proposal."""
        key = repo.plural
        header, status_rows, category_rows, deadline_rows, pr_rows = self._run(
            (_PROPOSAL_SQL, (proposal_number, key)),
            (_STATUS_EVENTS_SQL, (proposal_number, key)),
            (_CATEGORY_EVENTS_SQL, (proposal_number, key)),
            (_DEADLINE_EVENTS_SQL, (proposal_number, key)),
            (_LINKED_PRS_SQL, (proposal_number, key)),
        )
        if not header and not status_rows:
            raise ProposalNotFoundError(proposal_number, repo.value)

        proposal = (
            self._proposal_from_row(header[0], repo)
            if header else ProposalRecord(proposal_number=proposal_number, repo=repo)
        )
        return {
            "proposal": proposal,
            "status_events": [self._status_event(r, proposal_number, repo) for r in status_rows],
            "category_events": [
                ProposalEvent(
                    event_id=r["id"], proposal_number=proposal_number, repo=repo,
                    kind=EventKind.CATEGORY_CHANGE, occurred_at=r["changed_at"],
                    from_value=r.get("from_category"), to_value=r["to_category"],
                )
                for r in category_rows
            ],
            "deadline_events": [
                ProposalEvent(
                    event_id=r["id"], proposal_number=proposal_number, repo=repo,
                    kind=EventKind.DEADLINE_CHANGE, occurred_at=r["changed_at"],
                    from_value=r.get("previous_deadline"), to_value=r.get("new_deadline"),
                )
                for r in deadline_rows
            ],
            "linked_prs": [self._pull_request_from_row(r) for r in pr_rows],
        }

    def get_pull_request(self, pr_number: int, repo: Repo) -> PullRequestRecord:
        """One PR with its full PR-scoped event list."""
        pr_rows, event_rows = self._run(
            (_PULL_REQUEST_SQL, (pr_number, repo.plural)),
            (_PR_EVENTS_SQL, (pr_number, repo.plural, list(PR_EVENT_TYPES))),
        )
        if not pr_rows:
            raise PullRequestNotFoundError(pr_number, repo.value)
        pr = self._pull_request_from_row(pr_rows[0])
        return self._with_events(pr, event_rows)

    def load_events(self, pr: PullRequestRecord) -> PullRequestRecord:
        """Attach the PR-scoped event list to a PR listed without events."""
        (event_rows,) = self._run(
            (_PR_EVENTS_SQL, (pr.pr_number, pr.repo.plural, list(PR_EVENT_TYPES))),
        )
        return self._with_events(pr, event_rows)

    def _activity_events(self, rows: List[Dict[str, Any]], pr_number=None, repo: Optional[Repo] = None) -> List[ProposalEvent]:
        """Map activity rows, dropping unsupported types and rows too incomplete to place."""
        events = []
        for r in rows:
            try:
                event = self._activity_event(
                    r,
                    pr_number if pr_number is not None else r["pr_number"],
                    repo or _repo_from_key(r.get("repo_key")),
                    proposal_number=r.get("eip_number"),
                )
            except IncompleteDataError as e:
                logger.warning("EventStore: skipping activity row: %s", e.message)
                continue
            if event is not None:
                events.append(event)
        return events

    def _with_events(self, pr: PullRequestRecord, event_rows: List[Dict[str, Any]]) -> PullRequestRecord:
        activity = self._activity_events(event_rows, pr.pr_number, pr.repo)
        return pr.model_copy(update={"events": self.lifecycle_events(pr, activity)})

    def list_pull_requests(
        self,
        repo: Optional[Repo] = None,
        open_only: bool = False,
        created_before: Optional[datetime] = None,
    ) -> List[PullRequestRecord]:
        """PR headers, without events, optionally scoped to a repo."""
        key = repo.plural if repo else None
        (rows,) = self._run(
            (_LIST_PRS_SQL, (key, key, open_only, created_before, created_before)),
        )
        return [self._pull_request_from_row(r) for r in rows]

    def get_recent_activity(self, since: datetime, until: datetime) -> List[ProposalEvent]:
        """Status changes and PR activity attributed to proposals within a time range."""
        status_rows, pr_rows = self._run(
            (_RECENT_STATUS_SQL, (since, until)),
            (_RECENT_PR_ACTIVITY_SQL, (since, until, list(PR_EVENT_TYPES))),
        )
        events: List[ProposalEvent] = []
        for r in status_rows:
            events.append(self._status_event(r, r["eip_number"], _repo_from_key(r.get("repo_key"))))
        events.extend(self._activity_events(pr_rows))
        return events

    def get_proposals(self, numbers: Iterable[int]) -> Dict[Tuple[Repo, int], ProposalRecord]:
        """Proposal headers keyed by (repo, number) across all repositories."""
        numbers = sorted(set(numbers))
        if not numbers:
            return {}
        (rows,) = self._run((_PROPOSALS_BY_NUMBER_SQL, (numbers,)))
        proposals = [self._proposal_from_row(r) for r in rows]
        return {(p.repo, p.proposal_number): p for p in proposals}

    def list_editors(self) -> Set[str]:
        (rows,) = self._run((_EDITORS_SQL, ()))
        return {r["actor"] for r in rows if r.get("actor")}
