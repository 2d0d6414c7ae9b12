"""Tests for migration progress tracking."""

import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from nsmigrate_analyzer.core.tracking.tracker import ProgressTracker
from nsmigrate_analyzer.errors import InvalidTransitionError
from nsmigrate_analyzer.models.schema import MigrationPhase, MigrationPlan, PlanUnit, ProgressState

S = ProgressState
T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _plan(*subjects):
    units = tuple(PlanUnit(subject=s, kind="dependency", action="replace-dependency") for s in subjects)
    return MigrationPlan(phases=(MigrationPhase(ordinal=1, units=units),))


def _at(minutes):
    return T0 + timedelta(minutes=minutes)


@pytest.fixture
def tracker():
    t = ProgressTracker()
    t.adopt_plan(_plan("g:a:1", "g:b:1", "g:c:1", "g:d:1"), timestamp=T0)
    return t


class TestTransitions:
    """Allowed and rejected state changes."""

    def test_adopt_seeds_planned(self, tracker):
        assert tracker.subjects_in_state(S.PLANNED) == ["g:a:1", "g:b:1", "g:c:1", "g:d:1"]
        assert tracker.current_progress() == 0.0

    def test_happy_path(self, tracker):
        tracker.record_transition("g:a:1", S.IN_PROGRESS, _at(1))
        rec = tracker.record_transition("g:a:1", S.DONE, _at(2))
        assert rec.state == S.DONE
        assert [r.state for r in tracker.history("g:a:1")] == [S.PLANNED, S.IN_PROGRESS, S.DONE]
        assert tracker.current_progress() == 0.25

    @pytest.mark.parametrize("steps, bad", [
        ([], S.DONE),
        ([S.IN_PROGRESS], S.PLANNED),
        ([S.IN_PROGRESS, S.DONE], S.IN_PROGRESS),
        ([S.FAILED], S.IN_PROGRESS),
    ])
    def test_rejected_transitions(self, tracker, steps, bad):
        for i, st in enumerate(steps, start=1):
            tracker.record_transition("g:b:1", st, _at(i))
        with pytest.raises(InvalidTransitionError):
            tracker.record_transition("g:b:1", bad, _at(10))
        assert len(tracker.history("g:b:1")) == len(steps) + 1

    def test_older_timestamp_is_rejected(self, tracker):
        tracker.record_transition("g:c:1", S.IN_PROGRESS, _at(5))
        with pytest.raises(InvalidTransitionError):
            tracker.record_transition("g:c:1", S.DONE, _at(4))
        assert tracker.current_state("g:c:1") == S.IN_PROGRESS

    def test_equal_timestamp_is_accepted(self, tracker):
        tracker.record_transition("g:c:1", S.IN_PROGRESS, _at(5))
        tracker.record_transition("g:c:1", S.DONE, _at(5))
        assert tracker.current_state("g:c:1") == S.DONE

    def test_naive_timestamps_are_utc(self):
        t = ProgressTracker()
        t.adopt_plan(_plan("g:a:1", "g:b:1"), datetime(2026, 1, 1))
        assert t.history("g:a:1")[0].timestamp == T0
        rec = t.record_transition("g:a:1", S.IN_PROGRESS, datetime(2099, 1, 1))
        assert rec.timestamp == datetime(2099, 1, 1, tzinfo=timezone.utc)

        t.record_transition("g:b:1", S.IN_PROGRESS, _at(60))
        with pytest.raises(InvalidTransitionError):
            t.record_transition("g:b:1", S.DONE, datetime(2026, 1, 1, 0, 30))
        t.record_transition("g:b:1", S.DONE, datetime(2026, 1, 1, 1, 0))
        assert t.current_state("g:b:1") == S.DONE

    def test_unknown_subject(self, tracker):
        with pytest.raises(InvalidTransitionError):
            tracker.record_transition("g:zzz:1", S.IN_PROGRESS, _at(1))

    def test_accepts_state_strings(self, tracker):
        tracker.record_transition("g:d:1", "IN_PROGRESS", _at(1))
        assert tracker.current_state("g:d:1") == S.IN_PROGRESS


class TestAdoption:
    """Re-adopting a plan keeps history."""

    def test_readopt_keeps_done_and_reseeds_failed(self, tracker):
        tracker.record_transition("g:a:1", S.IN_PROGRESS, _at(1))
        tracker.record_transition("g:a:1", S.DONE, _at(2))
        tracker.record_transition("g:b:1", S.FAILED, _at(3))

        seeded = tracker.adopt_plan(_plan("g:a:1", "g:b:1", "g:e:1"), timestamp=_at(4))

        assert seeded == ["g:b:1", "g:e:1"]
        assert tracker.current_state("g:a:1") == S.DONE
        assert [r.state for r in tracker.history("g:b:1")] == [S.PLANNED, S.FAILED, S.PLANNED]
        assert tracker.current_progress() == pytest.approx(1 / 3)
        # dropped from the plan, history stays
        assert tracker.history("g:c:1")

    def test_snapshot_counts(self, tracker):
        tracker.record_transition("g:a:1", S.IN_PROGRESS, _at(1))
        snap = tracker.snapshot()
        assert snap["counts"] == {"PLANNED": 3, "IN_PROGRESS": 1, "DONE": 0, "FAILED": 0}
        assert snap["current"]["g:a:1"] == "IN_PROGRESS"


class TestPersistence:
    """Save and load through JSON."""

    def test_save_and_load(self, tracker, temp_dir: Path):
        tracker.record_transition("g:a:1", S.IN_PROGRESS, _at(1))
        tracker.record_transition("g:a:1", S.DONE, _at(2))
        path = temp_dir / "progress.json"
        tracker.save(path)

        loaded = ProgressTracker.load(path)
        assert loaded.snapshot() == tracker.snapshot()
        assert loaded.history("g:a:1")[-1].timestamp == _at(2)
        with pytest.raises(InvalidTransitionError):
            loaded.record_transition("g:a:1", S.IN_PROGRESS, _at(3))


class TestConcurrency:
    """Concurrent writers never leave a half-applied history."""

    def test_parallel_transitions(self):
        subjects = [f"g:s{i}:1" for i in range(50)]
        t = ProgressTracker()
        t.adopt_plan(_plan(*subjects), timestamp=T0)
        errors = []

        def work(subject):
            try:
                t.record_transition(subject, S.IN_PROGRESS, _at(1))
                t.record_transition(subject, S.DONE, _at(2))
            except InvalidTransitionError as e:
                errors.append(e)

        threads = [threading.Thread(target=work, args=(s,)) for s in subjects]
        for th in threads:
            th.start()
        for th in threads:
            th.join()

        assert errors == []
        assert t.current_progress() == 1.0
        assert all(len(t.history(s)) == 3 for s in subjects)
