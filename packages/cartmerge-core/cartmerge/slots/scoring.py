"""Delivery slot scoring and recommendation.

Every function here is pure. Sub-scores are integers in 0..100; the final
score is the weighted sum, forced to 0 for unavailable slots.
"""

from __future__ import annotations

import math

from cartmerge.models.slots import (
    WEEK,
    DeliverySlot,
    ScoreBreakdown,
    ScoredSlot,
    SlotPreferences,
    SlotRecommendation,
    Weekday,
)

RECOMMENDED_COUNT = 3


def _round(value: float) -> int:
    return int(math.floor(value + 0.5))


def _minutes(hhmm: str) -> int:
    hours, _, minutes = hhmm.partition(":")
    return int(hours or 0) * 60 + int(minutes or 0)


def adjacent_days(day: Weekday) -> tuple[Weekday, Weekday]:
    i = WEEK.index(day)
    return WEEK[i - 1], WEEK[(i + 1) % len(WEEK)]


def day_score(day: Weekday, preferred: list[Weekday]) -> int:
    if not preferred:
        return 50
    if day in preferred:
        return 100
    if any(d in preferred for d in adjacent_days(day)):
        return 50
    return 20


def time_score(slot_start: str, slot_end: str, pref_start: str, pref_end: str) -> int:
    """Overlap ratio with the preferred window, else decay by 20 points per hour of gap."""
    start, end = _minutes(slot_start), _minutes(slot_end)
    p_start, p_end = _minutes(pref_start), _minutes(pref_end)

    overlap = max(0, min(end, p_end) - max(start, p_start))
    if overlap > 0:
        return min(100, _round(100 * overlap / (end - start)))

    if end <= p_start:
        gap = p_start - end
    elif start >= p_end:
        gap = start - p_end
    else:
        # Zero-length or inverted slot lying inside the window.
        return 100
    return _round(max(0.0, 80 - 20 * gap / 60))


def fee_score(fee: float, max_fee: float, is_free: bool = False) -> int:
    if is_free or fee <= 0:
        return 100
    if max_fee <= 0:
        return 0
    return _round(max(0.0, 100 * (1 - fee / (2 * max_fee))))


def availability_score(available: bool) -> int:
    return 100 if available else 0


def _part_of_day(time_start: str) -> str:
    hour = _minutes(time_start) // 60
    if hour < 12:
        return "morning"
    if hour < 17:
        return "afternoon"
    return "evening"


def _reason(slot: DeliverySlot, breakdown: ScoreBreakdown, preferences: SlotPreferences) -> str:
    if slot.is_free or slot.fee <= 0:
        return "Free delivery slot"
    matched = []
    if breakdown.day == 100 and preferences.preferred_days:
        matched.append(slot.weekday().value.capitalize())
    if breakdown.time >= 80:
        matched.append(_part_of_day(slot.time_start))
    if matched:
        return "Best match for " + " ".join(matched)
    if not slot.available:
        return "Unavailable"
    return "Available slot"


def score_slot(slot: DeliverySlot, preferences: SlotPreferences | None = None) -> ScoredSlot:
    prefs = preferences or SlotPreferences()
    breakdown = ScoreBreakdown(
        day=day_score(slot.weekday(), prefs.preferred_days),
        time=time_score(slot.time_start, slot.time_end,
                        prefs.preferred_time_start, prefs.preferred_time_end),
        fee=fee_score(slot.fee, prefs.max_fee, slot.is_free),
        availability=availability_score(slot.available),
    )
    w = prefs.weights
    weighted = breakdown.day * w.day + breakdown.time * w.time + breakdown.fee * w.fee
    score = _round(weighted) if slot.available else 0
    return ScoredSlot(
        **slot.model_dump(include=set(DeliverySlot.model_fields)),
        score=score,
        score_breakdown=breakdown,
        reason=_reason(slot, breakdown, prefs),
    )


def _slot_order(slot: ScoredSlot) -> tuple:
    return (-slot.score, slot.date, _minutes(slot.time_start))


def score_slots(slots: list[DeliverySlot], preferences: SlotPreferences | None = None) -> list[ScoredSlot]:
    """Score every slot; best first, ties broken by earliest date then start time."""
    return sorted((score_slot(s, preferences) for s in slots), key=_slot_order)


def recommend_slots(scored: list[ScoredSlot]) -> SlotRecommendation:
    """Pick the top, free, cheapest and soonest slots among the available ones."""
    available = sorted((s for s in scored if s.available), key=_slot_order)
    free = [s for s in available if s.is_free or s.fee <= 0]

    cheapest = None
    soonest = None
    if available:
        first = min(available, key=lambda s: (s.fee, -s.score))
        reason = "Free delivery" if first.fee <= 0 else "Cheapest available option"
        cheapest = first.model_copy(update={"reason": reason})

        first = min(available, key=lambda s: (s.date, _minutes(s.time_start), -s.score))
        soonest = first.model_copy(update={"reason": "Soonest delivery"})

    return SlotRecommendation(
        recommended=[
            s if s.reason else s.model_copy(update={"reason": "Top recommendation"})
            for s in available[:RECOMMENDED_COUNT]
        ],
        best_free_slot=free[0].model_copy(update={"reason": "Free delivery slot"}) if free else None,
        cheapest_slot=cheapest,
        soonest_slot=soonest,
        all_slots=list(scored),
    )
