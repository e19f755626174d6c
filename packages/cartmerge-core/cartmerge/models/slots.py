"""Delivery slot models: raw slots, scored slots, preferences, recommendation."""

from __future__ import annotations

from datetime import date as Date
from enum import Enum

from pydantic import Field, field_validator

from cartmerge.models.base import CamelModel


class Weekday(str, Enum):
    monday = "monday"
    tuesday = "tuesday"
    wednesday = "wednesday"
    thursday = "thursday"
    friday = "friday"
    saturday = "saturday"
    sunday = "sunday"


WEEK: tuple[Weekday, ...] = tuple(Weekday)


def _check_hhmm(value: str) -> str:
    hours, sep, minutes = value.partition(":")
    if not sep or not hours.isdigit() or not minutes.isdigit():
        raise ValueError(f"expected HH:MM, got {value!r}")
    if not (0 <= int(hours) <= 24 and 0 <= int(minutes) < 60):
        raise ValueError(f"time out of range: {value!r}")
    return value


class DeliverySlot(CamelModel):
    id: str | None = None
    date: Date
    day_of_week: Weekday | None = None
    time_start: str
    time_end: str
    fee: float = Field(0.0, allow_inf_nan=False)
    is_free: bool = False
    available: bool = True
    remaining_capacity: int | None = None

    @field_validator("time_start", "time_end")
    @classmethod
    def check_times(cls, value: str) -> str:
        return _check_hhmm(value)

    @field_validator("day_of_week", mode="before")
    @classmethod
    def lower_day(cls, value):
        return value.lower() if isinstance(value, str) else value

    def weekday(self) -> Weekday:
        """The slot's weekday, derived from its date when not given."""
        if self.day_of_week is not None:
            return self.day_of_week
        return WEEK[self.date.weekday()]


class ScoreBreakdown(CamelModel):
    day: int = 0
    time: int = 0
    fee: int = 0
    availability: int = 0


class ScoredSlot(DeliverySlot):
    score: int = 0
    score_breakdown: ScoreBreakdown = Field(default_factory=ScoreBreakdown)
    reason: str = ""


class ScoringWeights(CamelModel):
    day: float = 0.4
    time: float = 0.3
    fee: float = 0.3


class SlotPreferences(CamelModel):
    preferred_days: list[Weekday] = Field(
        default_factory=lambda: [Weekday.saturday, Weekday.sunday]
    )
    preferred_time_start: str = "10:00"
    preferred_time_end: str = "14:00"
    max_fee: float = Field(5.99, allow_inf_nan=False)
    weights: ScoringWeights = Field(default_factory=ScoringWeights)

    @field_validator("preferred_time_start", "preferred_time_end")
    @classmethod
    def check_times(cls, value: str) -> str:
        return _check_hhmm(value)


class SlotRecommendation(CamelModel):
    recommended: list[ScoredSlot] = Field(default_factory=list)
    best_free_slot: ScoredSlot | None = None
    cheapest_slot: ScoredSlot | None = None
    soonest_slot: ScoredSlot | None = None
    all_slots: list[ScoredSlot] = Field(default_factory=list)
