"""Tests for change detection between refreshes."""

import pytest

from prdashboard.services.changes import ChangeDetector, CIStatusChanged, UnresolvedCommentsIncreased
from prdashboard.services.github.models import CIStatus


def test_unresolved_increase_scenario(make_pr):
    """PR #42 goes 0 -> 2 -> 2 unresolved comments: exactly one notification with delta 2."""
    detector = ChangeDetector()

    assert detector.process([make_pr(42, unresolved=0)]) == []
    second = detector.process([make_pr(42, unresolved=2)])
    third = detector.process([make_pr(42, unresolved=2)])

    assert len(second) == 1
    assert isinstance(second[0], UnresolvedCommentsIncreased)
    assert second[0].delta == 2
    assert second[0].pull_request.id == 42
    assert third == []


def test_first_seen_prs_never_notify(make_pr):
    detector = ChangeDetector()
    detector.commit([make_pr(1)])
    assert detector.detect([make_pr(2, unresolved=5, ci_status=CIStatus.FAILURE)]) == []


def test_decrease_does_not_notify(make_pr):
    detector = ChangeDetector()
    detector.commit([make_pr(1, unresolved=3)])
    assert detector.detect([make_pr(1, unresolved=1)]) == []


@pytest.mark.parametrize(
    "before,after,notifies",
    [
        (CIStatus.PENDING, CIStatus.SUCCESS, True),
        (CIStatus.PENDING, CIStatus.FAILURE, True),
        (None, CIStatus.SUCCESS, True),
        (CIStatus.SUCCESS, CIStatus.SUCCESS, False),
        (CIStatus.SUCCESS, CIStatus.PENDING, False),
        (CIStatus.FAILURE, CIStatus.UNKNOWN, False),
        (CIStatus.PENDING, CIStatus.EXPECTED, False),
        (CIStatus.SUCCESS, None, False),
    ],
)
def test_ci_transitions(make_pr, before, after, notifies):
    detector = ChangeDetector()
    detector.commit([make_pr(1, ci_status=before)])
    intents = detector.detect([make_pr(1, ci_status=after)])
    if notifies:
        assert len(intents) == 1
        assert intents[0].status == after
    else:
        assert intents == []


def test_both_kinds_in_one_cycle(make_pr):
    detector = ChangeDetector()
    detector.commit([make_pr(1, unresolved=0, ci_status=CIStatus.PENDING)])
    intents = detector.detect([make_pr(1, unresolved=1, ci_status=CIStatus.FAILURE)])
    assert [type(i) for i in intents] == [UnresolvedCommentsIncreased, CIStatusChanged]


def test_commit_replaces_map_wholesale(make_pr):
    detector = ChangeDetector()
    detector.commit([make_pr(1), make_pr(2)])
    detector.process([make_pr(2), make_pr(3)])
    assert set(detector.previous) == {2, 3}


def test_process_without_notify_still_commits(make_pr):
    detector = ChangeDetector()
    detector.commit([make_pr(1, unresolved=0)])
    assert detector.process([make_pr(1, unresolved=4)], notify=False) == []
    assert detector.previous[1].unresolved_count == 4
    assert detector.detect([make_pr(1, unresolved=4)]) == []


def test_seed_and_reset(make_pr):
    detector = ChangeDetector()
    detector.seed([make_pr(7, unresolved=1)])
    assert len(detector.detect([make_pr(7, unresolved=2)])) == 1
    detector.reset()
    assert detector.previous == {}
