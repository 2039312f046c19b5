"""Unit tests for the lifecycle service facade.

The event store is replaced by a ``MagicMock`` spec'd on ``EventStore`` so the
service's orchestration can be tested without a database.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from eips_insight.config.common_settings import LifecycleSettings
from eips_insight.data_models.events import EventKind, ProposalEvent, ProposalRecord, PullRequestRecord, Repo
from eips_insight.data_models.schemas import GovernanceState
from eips_insight.exceptions import PullRequestNotFoundError, UpstreamUnavailableError, ValidationError
from eips_insight.lifecycle.roles import RoleDirectory
from eips_insight.services.event_store import EventStore
from eips_insight.services.lifecycle_service import LifecycleService

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def _raw(kind, at, actor=None, pr_number=100, event_id=1, **fields):
    """Store-shaped event: no role yet."""
    return ProposalEvent(event_id=event_id, kind=kind, occurred_at=at, actor=actor, pr_number=pr_number, **fields)


def _pr(pr_number=100, author="alice", created_at=_utc(2024, 6, 1), activity=(), **fields):
    pr = PullRequestRecord(pr_number=pr_number, author=author, created_at=created_at, **fields)
    return pr.model_copy(update={"events": EventStore.lifecycle_events(pr, activity)})


def _service(store, **settings):
    settings.setdefault("editors", frozenset({"bob"}))
    config = LifecycleSettings(**settings)
    return LifecycleService(
        store,
        role_directory=RoleDirectory(config.editors),
        settings=config,
        clock=lambda: NOW,
    )


def _store():
    store = MagicMock(spec=EventStore)
    store.list_editors.return_value = set()
    store.load_events.side_effect = lambda pr: pr
    return store


class TestGovernanceState:
    """Single-PR classification with roles resolved from the directory."""

    def test_editor_review_waits_on_author(self):
        store = _store()
        store.get_pull_request.return_value = _pr(activity=[
            _raw(EventKind.PR_REVIEW, _utc(2024, 6, 10), "bob", event_id=5),
        ])
        result = _service(store).get_governance_state(100, "eips")

        assert result.state == GovernanceState.WAITING_ON_AUTHOR
        assert result.days_waiting == 5
        store.get_pull_request.assert_called_once_with(100, Repo.EIP)

    def test_editors_from_database_are_used(self):
        store = _store()
        store.list_editors.return_value = {"dave"}
        store.get_pull_request.return_value = _pr(activity=[
            _raw(EventKind.PR_COMMENT, _utc(2024, 6, 10), "dave", event_id=5),
        ])
        result = _service(store, editors=frozenset()).get_governance_state(100, Repo.EIP)
        assert result.state == GovernanceState.WAITING_ON_AUTHOR

    def test_editor_lookup_failure_falls_back_to_configured_editors(self):
        store = _store()
        store.list_editors.side_effect = UpstreamUnavailableError("down")
        store.get_pull_request.return_value = _pr(activity=[
            _raw(EventKind.PR_REVIEW, _utc(2024, 6, 10), "bob", event_id=5),
        ])
        service = _service(store)
        assert service.get_governance_state(100, Repo.EIP).state == GovernanceState.WAITING_ON_AUTHOR

        # Retried on the next call
        store.list_editors.side_effect = None
        store.list_editors.return_value = {"dave"}
        service.get_governance_state(100, Repo.EIP)
        assert service.roles.is_editor("dave")

    def test_explicit_as_of(self):
        store = _store()
        store.get_pull_request.return_value = _pr()
        result = _service(store).get_governance_state(100, Repo.EIP, as_of=_utc(2024, 9, 1))
        assert result.state == GovernanceState.STALLED

    def test_not_found_propagates(self):
        store = _store()
        store.get_pull_request.side_effect = PullRequestNotFoundError(1, "eip")
        with pytest.raises(PullRequestNotFoundError):
            _service(store).get_governance_state(1, Repo.EIP)

    def test_unknown_repo_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            _service(_store()).get_governance_state(1, "bips")


class TestTimeline:
    """Proposal timeline assembly."""

    def test_timeline_entries(self):
        store = _store()
        store.get_proposal_bundle.return_value = {
            "proposal": ProposalRecord(proposal_number=7702, title="Set EOA code", author="vitalik",
                                       status="Review", created_at=_utc(2024, 5, 1)),
            "status_events": [_raw(EventKind.STATUS_CHANGE, _utc(2024, 5, 2), pr_number=100,
                                   proposal_number=7702, to_value="Draft")],
            "category_events": [],
            "deadline_events": [],
            "linked_prs": [_pr(title="Add EIP-7702", created_at=_utc(2024, 5, 1, 12))],
        }
        timeline = _service(store).get_proposal_timeline(7702, "eip")

        assert timeline.current_status == "Review"
        assert [e.type for e in timeline.entries] == ["created", "pr", "status"]
        assert timeline.entries[0].description == "EIP-7702 authored by vitalik"
        assert len(timeline.linked_prs) == 1

    def test_linked_pr_failure_is_skipped(self):
        store = _store()
        store.get_proposal_bundle.return_value = {
            "proposal": ProposalRecord(proposal_number=1, created_at=None),
            "status_events": [],
            "category_events": [],
            "deadline_events": [],
            "linked_prs": [_pr(pr_number=1), _pr(pr_number=2)],
        }

        def load(pr):
            if pr.pr_number == 2:
                raise UpstreamUnavailableError("timeout")
            return pr

        store.load_events.side_effect = load
        timeline = _service(store).get_proposal_timeline(1, Repo.EIP)
        assert [pr.pr_number for pr in timeline.linked_prs] == [1]


class TestTrending:
    """Trending is recomputed per query over the window."""

    def _activity(self):
        return [
            _raw(EventKind.PR_REVIEW, NOW - timedelta(days=1), "bob", proposal_number=1559, event_id=1),
            _raw(EventKind.PR_COMMENT, NOW - timedelta(days=2), "carol", proposal_number=1559, event_id=2),
            _raw(EventKind.STATUS_CHANGE, NOW - timedelta(days=3), proposal_number=4844, event_id=3,
                 from_value="Review", to_value="Final"),
            _raw(EventKind.PR_COMMENT, NOW - timedelta(days=2), "carol", proposal_number=20, event_id=4, repo=Repo.ERC),
        ]

    def test_ranked_scores(self):
        store = _store()
        store.get_recent_activity.return_value = self._activity()
        store.get_proposals.return_value = {
            (Repo.EIP, 4844): ProposalRecord(proposal_number=4844, title="Blobs", status="Final"),
        }
        ranked = _service(store).get_trending_proposals()

        assert [(s.repo, s.proposal_number, s.score) for s in ranked] == [
            (Repo.EIP, 4844, 10),
            (Repo.EIP, 1559, 3),
            (Repo.ERC, 20, 1),
        ]
        assert ranked[0].title == "Blobs"
        store.get_recent_activity.assert_called_once_with(NOW - timedelta(days=7), NOW)

    def test_limit_and_window_validated(self):
        service = _service(_store())
        with pytest.raises(ValidationError):
            service.get_trending_proposals(limit=0)
        with pytest.raises(ValidationError):
            service.get_trending_proposals(window_days=91)

    def test_not_cached(self):
        store = _store()
        store.get_recent_activity.return_value = []
        service = _service(store)
        service.get_trending_proposals()
        service.get_trending_proposals()
        assert store.get_recent_activity.call_count == 2


class TestRollups:
    """Bucket and analytics views over many PRs."""

    def _open_prs(self):
        return [
            _pr(1, activity=[_raw(EventKind.PR_REVIEW, _utc(2024, 6, 10), "bob", pr_number=1, event_id=5)]),
            _pr(2),
            _pr(3, created_at=_utc(2024, 1, 1)),
        ]

    def test_waiting_buckets(self):
        store = _store()
        store.list_pull_requests.return_value = self._open_prs()
        buckets = {b.state: b for b in _service(store).get_governance_waiting_buckets("eip")}

        assert buckets[GovernanceState.WAITING_ON_AUTHOR].count == 1
        assert buckets[GovernanceState.WAITING_ON_EDITOR].count == 1
        assert buckets[GovernanceState.STALLED].count == 1
        assert buckets[GovernanceState.STALLED].oldest_pr_number == 3
        store.list_pull_requests.assert_called_once_with(Repo.EIP, open_only=True)

    def test_rollups_cached(self):
        store = _store()
        store.list_pull_requests.return_value = self._open_prs()
        service = _service(store)
        first = service.get_governance_waiting_buckets()
        second = service.get_governance_waiting_buckets()
        assert first == second
        assert store.list_pull_requests.call_count == 1

    def test_historical_rollups_not_cached(self):
        store = _store()
        store.list_pull_requests.return_value = self._open_prs()
        service = _service(store)
        service.get_waiting_timeline(as_of=NOW)
        service.get_waiting_timeline(as_of=NOW)
        assert store.list_pull_requests.call_count == 2

    def test_cache_disabled(self):
        store = _store()
        store.list_pull_requests.return_value = []
        service = _service(store, rollup_cache_ttl_seconds=0)
        service.get_lifecycle_funnel()
        service.get_lifecycle_funnel()
        assert store.list_pull_requests.call_count == 2

    def test_funnel_loads_events_only_for_open_prs(self):
        store = _store()
        store.list_pull_requests.return_value = [_pr(1), _pr(2, merged_at=_utc(2024, 6, 5))]
        stages = {s.stage: s.count for s in _service(store).get_lifecycle_funnel()}
        assert stages == {"created": 1, "reviewed": 0, "merged": 1, "closed": 0}
        assert store.load_events.call_count == 1

    def test_month_snapshot(self):
        store = _store()
        store.list_pull_requests.return_value = self._open_prs()
        snap = _service(store).get_month_snapshot(2024, 6)
        assert snap.month == "2024-06"
        assert snap.new_prs == 2
        assert snap.open_prs == 3

    def test_invalid_month(self):
        with pytest.raises(ValidationError):
            _service(_store()).get_month_snapshot(2024, 13)

    def test_year_snapshot_stops_at_current_month(self):
        store = _store()
        store.list_pull_requests.return_value = []
        snap = _service(store).get_year_snapshot(2024)
        assert len(snap.months) == 6

    def test_future_year_rejected(self):
        with pytest.raises(ValidationError):
            _service(_store()).get_year_snapshot(2030)

    def test_heatmap(self):
        store = _store()
        store.get_recent_activity.return_value = [
            _raw(EventKind.STATUS_CHANGE, NOW - timedelta(days=1), proposal_number=1559, event_id=1, to_value="Final"),
        ]
        store.get_proposals.return_value = {
            (Repo.EIP, 1559): ProposalRecord(proposal_number=1559, title="Fee market"),
        }
        rows = _service(store).get_trending_heatmap(top_n=5)
        assert [(r.proposal_number, r.title, r.total_activity) for r in rows] == [(1559, "Fee market", 1)]

    def test_heatmap_keeps_repos_apart(self):
        store = _store()
        store.get_recent_activity.return_value = [
            _raw(EventKind.STATUS_CHANGE, NOW - timedelta(days=1), proposal_number=20, event_id=1, to_value="Final"),
            _raw(EventKind.STATUS_CHANGE, NOW - timedelta(days=2), proposal_number=20, event_id=2,
                 to_value="Review", repo=Repo.ERC),
        ]
        store.get_proposals.return_value = {
            (Repo.EIP, 20): ProposalRecord(proposal_number=20, title="Early token draft"),
            (Repo.ERC, 20): ProposalRecord(proposal_number=20, title="Token Standard", repo=Repo.ERC),
        }
        rows = _service(store).get_trending_heatmap(top_n=5)
        assert [(r.repo, r.proposal_number, r.title) for r in rows] == [
            (Repo.EIP, 20, "Early token draft"),
            (Repo.ERC, 20, "Token Standard"),
        ]
        store.get_proposals.assert_called_once_with([20])

        erc_only = _service(store).get_trending_heatmap(top_n=5, repo="erc")
        assert [(r.repo, r.title) for r in erc_only] == [(Repo.ERC, "Token Standard")]


class TestAttentionListings:
    """Needs-attention and longest-waiting listings over open PRs."""

    def _populated_store(self):
        prs = [
            _pr(1, activity=[_raw(EventKind.PR_REVIEW, _utc(2024, 6, 10), "bob", pr_number=1, event_id=5)]),
            _pr(2),
            _pr(3, created_at=_utc(2024, 1, 1)),
            _pr(2, repo=Repo.ERC, created_at=_utc(2024, 6, 12)),
        ]
        store = _store()
        store.list_pull_requests.side_effect = lambda repo=None, **kwargs: [pr for pr in prs if repo in (None, pr.repo)]
        return store

    def test_longest_wait_first(self):
        items = _service(self._populated_store()).get_needs_attention()

        assert [(i.repo, i.pr_number, i.state) for i in items] == [
            (Repo.EIP, 3, GovernanceState.STALLED),
            (Repo.EIP, 2, GovernanceState.WAITING_ON_EDITOR),
            (Repo.EIP, 1, GovernanceState.WAITING_ON_AUTHOR),
            (Repo.ERC, 2, GovernanceState.WAITING_ON_EDITOR),
        ]
        assert items[1].days_waiting == 14
        assert items[1].responsible_party == "Editor"
        assert items[1].url == "https://github.com/ethereum/EIPs/pull/2"
        assert items[3].url == "https://github.com/ethereum/ERCs/pull/2"
        assert items[2].last_event == "pr_review"

    def test_filters(self):
        service = _service(self._populated_store())

        editor = service.get_needs_attention(state="WAITING_ON_EDITOR")
        assert [(i.repo, i.pr_number) for i in editor] == [(Repo.EIP, 2), (Repo.ERC, 2)]
        assert [i.pr_number for i in service.get_needs_attention(min_days=10)] == [3, 2]
        assert [i.pr_number for i in service.get_needs_attention(min_days=10, limit=1)] == [3]

    def test_assessments_cached_across_filters(self):
        store = self._populated_store()
        service = _service(store)
        service.get_needs_attention(state=GovernanceState.STALLED)
        service.get_longest_waiting_pr()
        assert store.list_pull_requests.call_count == 1

    @pytest.mark.parametrize("kwargs", [
        {"state": "MERGED"},
        {"state": "WAITING_AUTHOR"},
        {"min_days": -1},
        {"limit": 51},
    ])
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ValidationError):
            _service(_store()).get_needs_attention(**kwargs)

    def test_longest_waiting_pr(self):
        service = _service(self._populated_store())

        longest = service.get_longest_waiting_pr()
        assert (longest.repo, longest.pr_number) == (Repo.EIP, 2)
        assert service.get_longest_waiting_pr(state="WAITING_ON_AUTHOR").pr_number == 1
        erc = service.get_longest_waiting_pr(repo="ercs")
        assert (erc.repo, erc.pr_number) == (Repo.ERC, 2)

    def test_longest_waiting_pr_only_for_turn_states(self):
        with pytest.raises(ValidationError):
            _service(_store()).get_longest_waiting_pr(state=GovernanceState.STALLED)

    def test_longest_waiting_pr_none(self):
        store = _store()
        store.list_pull_requests.return_value = [_pr(3, created_at=_utc(2024, 1, 1))]
        assert _service(store).get_longest_waiting_pr() is None
