# Overview: Pure cost math for timed device sessions; no database access.

"""
Session Cost Calculator

A session's history is a list of segments with a constant controller count.
Cost is integrated segment by segment:

    cost = sum(round_unit(minutes(seg) * hourly_rate(seg) / 60))

- Minute rate is hourly / 60 applied to exact elapsed minutes
- Each segment is rounded to the nearest whole currency unit (half up)
- A session that ran for any time at all costs at least the minimum charge

All amounts are integer cents.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Mapping

from ..config import (
    DEFAULT_COMPUTER_HOURLY_RATE_CENTS,
    DEFAULT_PLAYSTATION_HOURLY_RATES_CENTS,
)
from ..models.devices import DEVICE_TYPE_COMPUTER, DEVICE_TYPE_PLAYSTATION
from cafe_billing.time_utils import to_utc_z


SECONDS_PER_HOUR = Decimal(3600)


@dataclass(frozen=True)
class Segment:
    """A constant-rate interval; ended_at is None while still open."""
    controller_count: int
    started_at: datetime
    ended_at: datetime | None = None


@dataclass(frozen=True)
class SegmentCost:
    controller_count: int
    started_at: datetime
    ended_at: datetime
    seconds: float
    hourly_rate_cents: int
    cost_cents: int

    @property
    def minutes(self) -> float:
        return self.seconds / 60

    def to_dict(self) -> dict:
        return {
            "controller_count": self.controller_count,
            "started_at": to_utc_z(self.started_at),
            "ended_at": to_utc_z(self.ended_at),
            "minutes": round(self.minutes, 2),
            "hourly_rate_cents": self.hourly_rate_cents,
            "cost_cents": self.cost_cents,
        }


@dataclass(frozen=True)
class RateTable:
    """
    Tariff used by the calculator.

    playstation maps controller count to cents/hour. A count above the
    highest key uses the highest key's rate ("4 or more").
    """
    playstation: Mapping[int, int] = field(default_factory=lambda: dict(DEFAULT_PLAYSTATION_HOURLY_RATES_CENTS))
    computer_cents: int = DEFAULT_COMPUTER_HOURLY_RATE_CENTS
    rounding_unit_cents: int = 100
    min_charge_cents: int = 100

    def hourly_rate(self, device_type: str, controller_count: int) -> int:
        if device_type == DEVICE_TYPE_COMPUTER:
            return self.computer_cents

        if device_type != DEVICE_TYPE_PLAYSTATION:
            raise ValueError(f"Unknown device type: {device_type}")

        if controller_count < 1:
            raise ValueError("controller_count must be at least 1")

        eligible = [count for count in self.playstation if count <= controller_count]
        if not eligible:
            raise ValueError(f"No PlayStation rate defined for {controller_count} controller(s)")
        return self.playstation[max(eligible)]

    def with_overrides(
        self,
        *,
        computer_cents: int | None = None,
        playstation: Mapping[int, int] | None = None,
    ) -> "RateTable":
        """Per-device overrides layered over the configured tariff."""
        merged = dict(self.playstation)
        if playstation:
            merged.update(playstation)
        return replace(
            self,
            playstation=merged,
            computer_cents=computer_cents if computer_cents is not None else self.computer_cents,
        )


def rates_from_config(config: Mapping) -> RateTable:
    return RateTable(
        playstation=dict(config.get("PLAYSTATION_HOURLY_RATES_CENTS") or DEFAULT_PLAYSTATION_HOURLY_RATES_CENTS),
        computer_cents=int(config.get("COMPUTER_HOURLY_RATE_CENTS", DEFAULT_COMPUTER_HOURLY_RATE_CENTS)),
        rounding_unit_cents=int(config.get("COST_ROUNDING_UNIT_CENTS", 100)),
        min_charge_cents=int(config.get("MIN_SESSION_CHARGE_CENTS", 100)),
    )


def round_to_unit(amount_cents: Decimal, unit_cents: int) -> int:
    """Round a cent amount to the nearest multiple of unit_cents, halves up."""
    if unit_cents <= 1:
        return int(amount_cents.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    units = (amount_cents / Decimal(unit_cents)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(units) * unit_cents


def _segment_seconds(segment: Segment, now: datetime | None) -> tuple[datetime, float]:
    end = segment.ended_at or now
    if end is None:
        raise ValueError("Open segment needs a 'now' to be priced")
    if end < segment.started_at:
        raise ValueError("Segment ends before it starts")
    return end, (end - segment.started_at).total_seconds()


def segment_cost(segment: Segment, device_type: str, rates: RateTable, now: datetime | None = None) -> SegmentCost:
    """Price a single segment (open segments are priced up to now)."""
    end, seconds = _segment_seconds(segment, now)
    hourly = rates.hourly_rate(device_type, segment.controller_count)
    raw = Decimal(str(seconds)) * Decimal(hourly) / SECONDS_PER_HOUR
    return SegmentCost(
        controller_count=segment.controller_count,
        started_at=segment.started_at,
        ended_at=end,
        seconds=seconds,
        hourly_rate_cents=hourly,
        cost_cents=round_to_unit(raw, rates.rounding_unit_cents),
    )


def cost_breakdown(
    segments: Iterable[Segment],
    device_type: str,
    rates: RateTable,
    now: datetime | None = None,
) -> list[SegmentCost]:
    return [segment_cost(segment, device_type, rates, now) for segment in segments]


def total_from_breakdown(breakdown: list[SegmentCost], rates: RateTable) -> int:
    total = sum(item.cost_cents for item in breakdown)
    ran = any(item.seconds > 0 for item in breakdown)
    if ran and total < rates.min_charge_cents:
        return rates.min_charge_cents
    return total


def cost(
    segments: Iterable[Segment],
    device_type: str,
    rates: RateTable | None = None,
    now: datetime | None = None,
) -> int:
    """Session cost in cents for the given segment history."""
    rates = rates or RateTable()
    return total_from_breakdown(cost_breakdown(segments, device_type, rates, now), rates)
