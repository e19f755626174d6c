"""Tests for delivery slot scoring and recommendation."""

import json
from datetime import date

import pytest
from pydantic import ValidationError

from cartmerge.models.slots import (
    DeliverySlot,
    ScoringWeights,
    SlotPreferences,
    Weekday,
)
from cartmerge.slots.scoring import (
    adjacent_days,
    day_score,
    fee_score,
    recommend_slots,
    score_slot,
    score_slots,
    time_score,
)
from tests.conftest import HOUSEHOLD_DIR


def _slot(day: str, start: str, end: str, fee: float = 2.0, **kw) -> DeliverySlot:
    return DeliverySlot(date=date.fromisoformat(day), time_start=start, time_end=end, fee=fee, **kw)


def _household_slots() -> list[DeliverySlot]:
    with open(HOUSEHOLD_DIR / "slots.json") as f:
        return [DeliverySlot.model_validate(s) for s in json.load(f)["slots"]]


class TestSubScores:
    def test_adjacent_days_wrap(self):
        assert adjacent_days(Weekday.monday) == (Weekday.sunday, Weekday.tuesday)
        assert adjacent_days(Weekday.sunday) == (Weekday.saturday, Weekday.monday)

    def test_day_score(self):
        weekend = [Weekday.saturday, Weekday.sunday]
        assert day_score(Weekday.saturday, weekend) == 100
        assert day_score(Weekday.friday, weekend) == 50
        assert day_score(Weekday.monday, weekend) == 50
        assert day_score(Weekday.wednesday, weekend) == 20
        assert day_score(Weekday.wednesday, []) == 50

    def test_time_score(self):
        assert time_score("10:00", "12:00", "10:00", "14:00") == 100
        assert time_score("13:00", "15:00", "10:00", "14:00") == 50
        assert time_score("08:00", "10:00", "10:00", "14:00") == 80
        assert time_score("07:00", "09:00", "10:00", "14:00") == 60
        assert time_score("18:00", "20:00", "10:00", "14:00") == 0

    @pytest.mark.parametrize("start,end,expected", [
        ("12:00", "12:00", 100),
        ("13:00", "11:00", 100),
        ("10:00", "10:00", 80),
        ("14:00", "12:00", 80),
        ("09:00", "09:00", 60),
        ("16:00", "16:00", 40),
    ])
    def test_time_score_zero_length_and_inverted(self, start, end, expected):
        assert time_score(start, end, "10:00", "14:00") == expected

    def test_sub_scores_stay_in_range(self):
        times = ["00:00", "06:30", "10:00", "12:00", "14:00", "18:45", "24:00"]
        for start in times:
            for end in times:
                for p_start, p_end in [("10:00", "14:00"), ("14:00", "10:00"), ("12:00", "12:00")]:
                    assert 0 <= time_score(start, end, p_start, p_end) <= 100, (start, end, p_start, p_end)
        for fee in [-1.0, 0.0, 0.01, 5.99, 1e9]:
            for max_fee in [-1.0, 0.0, 5.99]:
                assert 0 <= fee_score(fee, max_fee) <= 100

    def test_fee_score(self):
        assert fee_score(0.0, 5.99) == 100
        assert fee_score(3.0, 5.99, is_free=True) == 100
        assert fee_score(5.99, 5.99) == 50
        assert fee_score(11.98, 5.99) == 0
        assert fee_score(20.0, 5.99) == 0
        assert fee_score(1.0, 0.0) == 0


class TestScoreSlot:
    def test_unavailable_scores_zero(self):
        scored = score_slot(_slot("2026-01-24", "10:00", "12:00", fee=0.0, available=False))
        assert scored.score == 0
        assert scored.score_breakdown.availability == 0
        assert scored.score_breakdown.day == 100

    def test_score_in_range(self):
        for slot in _household_slots():
            assert 0 <= score_slot(slot).score <= 100

    def test_zero_length_slot_capped(self):
        scored = score_slot(_slot("2026-01-24", "12:00", "12:00", fee=0.0))
        assert scored.score_breakdown.time == 100
        assert scored.score == 100

    def test_non_finite_fee_rejected(self):
        with pytest.raises(ValidationError):
            _slot("2026-01-24", "10:00", "12:00", fee=float("inf"))
        with pytest.raises(ValidationError):
            SlotPreferences(max_fee=float("nan"))

    def test_breakdown_serialized_as_score_breakdown(self):
        data = score_slot(_slot("2026-01-24", "10:00", "12:00")).to_json_dict()
        assert data["scoreBreakdown"] == {"day": 100, "time": 100, "fee": 83, "availability": 100}
        assert "breakdown" not in data

    def test_keeps_slot_fields(self):
        slot = _slot("2026-01-24", "10:00", "12:00", id="s1", remaining_capacity=4)
        scored = score_slot(slot)
        assert scored.id == "s1"
        assert scored.remaining_capacity == 4
        assert scored.date == date(2026, 1, 24)

    def test_custom_weights(self):
        prefs = SlotPreferences(weights=ScoringWeights(day=1.0, time=0.0, fee=0.0))
        assert score_slot(_slot("2026-01-21", "10:00", "12:00"), prefs).score == 20

    def test_household_scores(self):
        scored = {s.id: s for s in score_slots(_household_slots())}
        assert scored["s-sat-12"].score == 100
        assert scored["s-sat-12"].reason == "Free delivery slot"
        assert scored["s-sat-10"].score == 87
        assert scored["s-sat-10"].reason == "Best match for Saturday morning"
        assert scored["s-thu-08"].score == 57
        assert scored["s-thu-08"].reason == "Best match for morning"
        assert scored["s-fri-18"].score == 40
        assert scored["s-fri-18"].reason == "Available slot"
        assert scored["s-sun-09"].score == 0


class TestOrdering:
    def test_best_first(self):
        ids = [s.id for s in score_slots(_household_slots())]
        assert ids == ["s-sat-12", "s-sat-10", "s-thu-08", "s-fri-18", "s-sun-09"]

    def test_ties_broken_by_date_then_time(self):
        slots = [
            _slot("2026-01-31", "10:00", "12:00", id="b"),
            _slot("2026-02-07", "10:00", "12:00", id="c"),
            _slot("2026-01-24", "10:00", "12:00", id="a"),
        ]
        scored = score_slots(slots)
        assert len({s.score for s in scored}) == 1
        assert [s.id for s in scored] == ["a", "b", "c"]

    def test_input_order_does_not_matter(self):
        slots = _household_slots()
        assert score_slots(slots) == score_slots(list(reversed(slots)))


class TestRecommend:
    def test_household(self):
        rec = recommend_slots(score_slots(_household_slots()))
        assert [s.id for s in rec.recommended] == ["s-sat-12", "s-sat-10", "s-thu-08"]
        assert rec.best_free_slot.id == "s-sat-12"
        assert rec.cheapest_slot.id == "s-sat-12"
        assert rec.cheapest_slot.reason == "Free delivery"
        assert rec.soonest_slot.id == "s-thu-08"
        assert rec.soonest_slot.reason == "Soonest delivery"
        assert len(rec.all_slots) == 5

    def test_unavailable_never_recommended(self):
        rec = recommend_slots(score_slots(_household_slots()))
        picks = [*rec.recommended, rec.best_free_slot, rec.cheapest_slot, rec.soonest_slot]
        assert all(s.available for s in picks)

    def test_no_free_slot(self):
        rec = recommend_slots(score_slots([_slot("2026-01-24", "10:00", "12:00", fee=3.0)]))
        assert rec.best_free_slot is None
        assert rec.cheapest_slot.reason == "Cheapest available option"

    @pytest.mark.parametrize("slots", [[], [_slot("2026-01-24", "10:00", "12:00", available=False)]])
    def test_nothing_available(self, slots):
        rec = recommend_slots(score_slots(slots))
        assert rec.recommended == []
        assert rec.best_free_slot is None
        assert rec.cheapest_slot is None
        assert rec.soonest_slot is None
        assert len(rec.all_slots) == len(slots)
