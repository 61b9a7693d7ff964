"""Timeline geometry: time <-> pixel mapping, drag snapping and drop validation.

Everything here is pure. The engine binds the injected business hours, rack
topology and coordinate system, and turns a drag gesture into a move command
or ``None`` when the drop must be cancelled.

Batches on the same rack always share one vertical position. Two batches that
overlap in time on a rack are drawn on top of each other so the conflict stays
visible; there is no automatic stacking.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Iterable

from bakehouse.config import BusinessHoursConfig, OvenConfig, Settings, TimelineConfig
from bakehouse.services.simulation.models import Batch
from bakehouse.timeutils import format_minutes, parse_time_to_minutes

logger = logging.getLogger(__name__)

_RACK_TARGET = re.compile(r"^(?:rack[-_: ]?)?(\d+)$", re.IGNORECASE)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def time_to_pixel(minutes: float, origin_minutes: float, minutes_per_pixel: float) -> float:
    """Horizontal offset of a time-of-day relative to the timeline origin."""
    return (minutes - origin_minutes) / minutes_per_pixel


def pixel_to_time(pixel: float, origin_minutes: float, minutes_per_pixel: float) -> int:
    """Inverse of :func:`time_to_pixel`, rounded to the nearest minute."""
    return _round_half_up(origin_minutes + pixel * minutes_per_pixel)


def snap_to_increment(minutes: float, step: int = 20) -> int:
    """Round to the nearest multiple of ``step``; ties round up."""
    if step <= 0:
        raise ValueError(f"Snap step must be positive, got {step}")
    return _round_half_up(minutes / step) * step


def validate_drop(
    candidate_start_minutes: int,
    duration_minutes: int,
    business_start_minutes: int,
    business_end_minutes: int,
) -> bool:
    """Accept a drop only if the whole bake fits inside business hours."""
    if candidate_start_minutes < business_start_minutes:
        return False
    if candidate_start_minutes + duration_minutes > business_end_minutes:
        return False
    return True


def resolve_rack(target: int | str | None, total_racks: int) -> int | None:
    """Map a drop-target identifier ("rack-3", "3", 3) to a rack number."""
    if target is None or isinstance(target, bool):
        return None
    if isinstance(target, int):
        rack = target
    else:
        match = _RACK_TARGET.match(str(target).strip())
        if not match:
            return None
        rack = int(match.group(1))
    if 1 <= rack <= total_racks:
        return rack
    return None


@dataclass(frozen=True)
class MoveCommand:
    batch_id: str
    new_start_time: str
    new_rack: int


@dataclass(frozen=True)
class PositionedBatch:
    batch: Batch
    rack: int
    left: float
    width: float
    top: float

    @property
    def right(self) -> float:
        return self.left + self.width


@dataclass(frozen=True)
class RackGroup:
    oven: int
    racks: tuple[int, ...]


class TimelineEngine:
    """Timeline bound to one configuration."""

    def __init__(
        self,
        timeline: TimelineConfig | None = None,
        business: BusinessHoursConfig | None = None,
        ovens: OvenConfig | None = None,
    ):
        self.timeline = timeline or TimelineConfig()
        self.business = business or BusinessHoursConfig()
        self.ovens = ovens or OvenConfig()

    @classmethod
    def from_settings(cls, settings: Settings) -> TimelineEngine:
        return cls(settings.timeline, settings.business, settings.ovens)

    @property
    def origin_minutes(self) -> int:
        return self.business.start_minutes

    def to_pixel(self, minutes: float) -> float:
        return time_to_pixel(minutes, self.origin_minutes, self.timeline.minutes_per_pixel)

    def to_minutes(self, pixel: float) -> int:
        return pixel_to_time(pixel, self.origin_minutes, self.timeline.minutes_per_pixel)

    def oven_for_rack(self, rack: int) -> int:
        return (rack - 1) // self.ovens.racks_per_oven + 1

    def plan_move(
        self,
        batch: Batch,
        pointer_x: float,
        drop_target: int | str | None,
    ) -> MoveCommand | None:
        """Turn a drag gesture into a move, or None to cancel it silently."""
        return self.plan_move_at(batch, self.to_minutes(pointer_x), drop_target)

    def plan_move_at(
        self,
        batch: Batch,
        minutes: float,
        drop_target: int | str | None,
    ) -> MoveCommand | None:
        """Same checks as :meth:`plan_move` for a requested minute of day."""
        rack = resolve_rack(drop_target, self.ovens.total_racks)
        if rack is None:
            logger.debug(f"Drop of {batch.batch_id} cancelled: unknown target {drop_target!r}")
            return None

        duration = batch.bake_minutes
        if duration is None:
            logger.debug(f"Drop of {batch.batch_id} cancelled: no bake duration")
            return None

        start = snap_to_increment(minutes, self.timeline.snap_minutes)
        if not validate_drop(
            start, duration, self.business.start_minutes, self.business.end_minutes
        ):
            logger.debug(
                f"Drop of {batch.batch_id} at minute {start} rejected: "
                f"outside {self.business.start}-{self.business.end}"
            )
            return None

        return MoveCommand(
            batch_id=batch.batch_id,
            new_start_time=format_minutes(start),
            new_rack=rack,
        )

    def layout(self, batches: Iterable[Batch]) -> list[PositionedBatch]:
        """Position scheduled batches, ordered by rack then start."""
        positioned = []
        for batch in batches:
            if batch.rack_position is None:
                continue
            start = parse_time_to_minutes(batch.start_time)
            end = parse_time_to_minutes(batch.end_time)
            if start is None or end is None:
                continue

            width = (end - start) / self.timeline.minutes_per_pixel
            positioned.append(
                PositionedBatch(
                    batch=batch,
                    rack=batch.rack_position,
                    left=self.to_pixel(start),
                    width=max(width, self.timeline.min_card_width),
                    top=self.timeline.card_top,
                )
            )

        positioned.sort(key=lambda p: (p.rack, p.left))
        return positioned

    def find_conflicts(self, batches: Iterable[Batch]) -> list[tuple[Batch, Batch]]:
        """Pairs of batches that overlap in time on the same rack."""
        by_rack: dict[int, list[tuple[int, int, Batch]]] = {}
        for batch in batches:
            start = parse_time_to_minutes(batch.start_time)
            end = parse_time_to_minutes(batch.end_time)
            if batch.rack_position is None or start is None or end is None:
                continue
            by_rack.setdefault(batch.rack_position, []).append((start, end, batch))

        conflicts = []
        for rack in sorted(by_rack):
            entries = sorted(by_rack[rack], key=lambda e: e[0])
            for i, (start_a, end_a, batch_a) in enumerate(entries):
                for start_b, end_b, batch_b in entries[i + 1:]:
                    if start_b >= end_a:
                        break
                    conflicts.append((batch_a, batch_b))
        return conflicts

    def timeline_width(self) -> float:
        total = self.business.end_minutes - self.business.start_minutes
        return max(total / self.timeline.minutes_per_pixel, self.timeline.min_timeline_width)

    def time_slots(self) -> list[tuple[float, str]]:
        """Grid lines as (pixel offset, "HH:MM") every ``hour_interval`` hours."""
        step = self.timeline.hour_interval * 60
        return [
            (self.to_pixel(minutes), format_minutes(minutes))
            for minutes in range(self.business.start_minutes, self.business.end_minutes + 1, step)
        ]

    def current_time_position(self, current_time: str | None) -> float | None:
        minutes = parse_time_to_minutes(current_time)
        if minutes is None or minutes < self.origin_minutes:
            return None
        return self.to_pixel(minutes)

    def rack_groups(self) -> list[RackGroup]:
        per_oven = self.ovens.racks_per_oven
        return [
            RackGroup(
                oven=oven,
                racks=tuple(range((oven - 1) * per_oven + 1, oven * per_oven + 1)),
            )
            for oven in range(1, self.ovens.oven_count + 1)
        ]
