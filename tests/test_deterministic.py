"""Tests for the deterministic scoring rubric."""

import itertools
from datetime import datetime, timedelta, timezone

from focus_engine.models.task import Effort, StakeholderClass, Task
from focus_engine.scoring.deterministic import (
    compute_raw_score,
    compute_score,
    refresh_urgency,
    round_half_up,
    score_task,
    urgency_from_due,
)


def _make_task(**overrides) -> Task:
    fields = {"id": "task_1", "title": "Review quarterly plan"}
    fields.update(overrides)
    return Task(**fields)


class TestComputeScore:
    def test_known_input(self):
        # raw = 0.25*3 + 0.2*3 - 0.1*1 = 1.25 -> 31.25%
        assert compute_score(3, 3, Effort.MEDIUM, StakeholderClass.NONE, 0) == 31

    def test_unset_impact_and_urgency_default_to_three(self):
        assert compute_score(0, 0, Effort.MEDIUM, StakeholderClass.NONE, 0) == 31

    def test_maximum_is_100(self):
        assert compute_score(5, 5, Effort.SMALL, StakeholderClass.EXECUTIVE, 5) == 100

    def test_alignment_weight(self):
        # 0.3*2 + 1.25 - 0.1 = 1.75 -> 43.75%
        assert compute_score(3, 3, Effort.MEDIUM, StakeholderClass.NONE, 2) == 44

    def test_rounds_half_up_despite_float_noise(self):
        # 0.25 + 0.2 - 0.15 = 0.3 -> exactly 7.5%
        assert compute_score(1, 1, Effort.LARGE, StakeholderClass.NONE, 0) == 8

    def test_stakeholder_weights_are_ordered(self):
        scores = [
            compute_score(3, 3, Effort.MEDIUM, s, 0)
            for s in (
                StakeholderClass.NONE,
                StakeholderClass.INTERNAL,
                StakeholderClass.EXTERNAL,
                StakeholderClass.EXECUTIVE,
            )
        ]
        assert scores == sorted(scores)
        assert scores[0] < scores[-1]

    def test_larger_effort_scores_lower(self):
        small = compute_score(3, 3, Effort.SMALL, StakeholderClass.NONE, 0)
        large = compute_score(3, 3, Effort.LARGE, StakeholderClass.NONE, 0)
        assert small > large

    def test_alignment_out_of_range_is_clamped(self):
        assert compute_raw_score(3, 3, Effort.MEDIUM, StakeholderClass.NONE, 9) == compute_raw_score(
            3, 3, Effort.MEDIUM, StakeholderClass.NONE, 5
        )

    def test_always_integer_in_range(self):
        for impact, urgency, effort, stakeholder, alignment in itertools.product(
            range(0, 6),
            range(0, 6),
            list(Effort),
            list(StakeholderClass),
            (0, 0.5, 2.5, 5),
        ):
            score = compute_score(impact, urgency, effort, stakeholder, alignment)
            assert isinstance(score, int)
            assert 0 <= score <= 100

    def test_score_task_uses_task_fields(self):
        task = _make_task(impact=5, urgency=5, effort=Effort.SMALL, stakeholder=StakeholderClass.EXECUTIVE)
        assert score_task(task, 5) == 100


class TestRoundHalfUp:
    def test_halves_go_up(self):
        assert round_half_up(0.5) == 1
        assert round_half_up(2.5) == 3
        assert round_half_up(31.25) == 31

    def test_noise_below_half(self):
        assert round_half_up(7.499999999999998) == 8
        assert round_half_up(7.49) == 7


class TestUrgency:
    def setup_method(self):
        self.now = datetime(2025, 3, 10, 12, 0, 0)

    def test_buckets(self):
        assert urgency_from_due(self.now + timedelta(hours=10), self.now) == 5
        assert urgency_from_due(self.now + timedelta(hours=24), self.now) == 5
        assert urgency_from_due(self.now + timedelta(hours=48), self.now) == 4
        assert urgency_from_due(self.now + timedelta(hours=100), self.now) == 3
        assert urgency_from_due(self.now + timedelta(hours=500), self.now) == 2
        assert urgency_from_due(self.now + timedelta(hours=1000), self.now) == 1

    def test_overdue_is_most_urgent(self):
        assert urgency_from_due(self.now - timedelta(days=3), self.now) == 5

    def test_aware_due_date(self):
        due = (self.now + timedelta(hours=48)).replace(tzinfo=timezone.utc)
        assert urgency_from_due(due, self.now) == 4

    def test_due_date_overrides_stored_urgency(self):
        task = _make_task(urgency=1, due_ts=self.now + timedelta(hours=2))
        assert refresh_urgency(task, self.now) == 5
        assert task.urgency == 5

    def test_without_due_date_urgency_is_kept(self):
        task = _make_task(urgency=2)
        assert refresh_urgency(task, self.now) == 2
