"""Tests for timeline geometry, snapping and drop planning."""

from bakehouse.config import BusinessHoursConfig, TimelineConfig
from bakehouse.services.simulation.models import Batch
from bakehouse.timeline import (
    MoveCommand,
    TimelineEngine,
    pixel_to_time,
    resolve_rack,
    snap_to_increment,
    time_to_pixel,
    validate_drop,
)

from fakes import make_batch


def _batch(**kwargs) -> Batch:
    return Batch.model_validate(make_batch(**kwargs))


def test_pixel_round_trip_over_business_day() -> None:
    for minutes in range(360, 1021):
        pixel = time_to_pixel(minutes, 360, 0.3)
        assert pixel_to_time(pixel, 360, 0.3) == minutes


def test_round_trip_with_other_scales() -> None:
    for scale in (0.25, 0.5, 1.0, 1.7):
        for minutes in range(360, 1021, 7):
            assert pixel_to_time(time_to_pixel(minutes, 360, scale), 360, scale) == minutes


def test_snap_always_lands_on_increment() -> None:
    for minutes in range(-60, 1500):
        assert snap_to_increment(minutes, 20) % 20 == 0
    for minutes in (0.4, 9.99, 10.0, 545.5, 1019.9):
        assert snap_to_increment(minutes, 20) % 20 == 0


def test_snap_ties_round_up() -> None:
    assert snap_to_increment(9) == 0
    assert snap_to_increment(10) == 20
    assert snap_to_increment(30) == 40
    assert snap_to_increment(546) == 540
    assert snap_to_increment(550) == 560


def test_snap_rejects_non_positive_step() -> None:
    try:
        snap_to_increment(100, 0)
    except ValueError:
        pass
    else:
        raise AssertionError("expected ValueError")


def test_validate_drop_bounds() -> None:
    assert validate_drop(360, 45, 360, 1020)
    assert validate_drop(975, 45, 360, 1020)  # ends exactly at close
    assert not validate_drop(980, 45, 360, 1020)
    assert not validate_drop(340, 45, 360, 1020)


def test_resolve_rack_targets() -> None:
    assert resolve_rack("rack-3", 12) == 3
    assert resolve_rack("Rack 12", 12) == 12
    assert resolve_rack("7", 12) == 7
    assert resolve_rack(5, 12) == 5
    assert resolve_rack(13, 12) is None
    assert resolve_rack(0, 12) is None
    assert resolve_rack("oven-1", 12) is None
    assert resolve_rack("", 12) is None
    assert resolve_rack(None, 12) is None
    assert resolve_rack(True, 12) is None


def test_drag_to_nine_oclock_plans_move() -> None:
    engine = TimelineEngine()
    batch = _batch(batch_id="b1", start="07:00", bake=45, rack=2)

    pointer_x = engine.to_pixel(546)  # 09:06
    assert engine.to_minutes(pointer_x) == 546

    move = engine.plan_move(batch, pointer_x, "rack-5")
    assert move == MoveCommand(batch_id="b1", new_start_time="09:00", new_rack=5)


def test_drop_past_closing_is_cancelled() -> None:
    engine = TimelineEngine()
    batch = _batch(batch_id="b1", bake=45)

    assert engine.plan_move(batch, engine.to_pixel(1000), 1) is None


def test_drop_before_opening_is_cancelled() -> None:
    engine = TimelineEngine()
    batch = _batch(batch_id="b1", bake=45)

    assert engine.plan_move(batch, -200, 1) is None


def test_drop_on_unknown_target_is_cancelled() -> None:
    engine = TimelineEngine()
    batch = _batch(batch_id="b1")

    assert engine.plan_move(batch, engine.to_pixel(600), "trash") is None
    assert engine.plan_move(batch, engine.to_pixel(600), 99) is None


def test_move_at_minute_uses_drag_checks() -> None:
    engine = TimelineEngine()
    batch = _batch(batch_id="b1", bake=45)
    unknown = _batch(batch_id="b2", bake=45, bakeTime=None, endTime=None)

    assert engine.plan_move_at(batch, 546, "rack-5") == MoveCommand(
        batch_id="b1", new_start_time="09:00", new_rack=5
    )
    assert engine.plan_move_at(batch, 1000, 1) is None
    assert engine.plan_move_at(unknown, 546, 1) is None


def test_custom_business_hours_and_snap() -> None:
    engine = TimelineEngine(
        timeline=TimelineConfig(snap_minutes=15, minutes_per_pixel=1.0),
        business=BusinessHoursConfig(start="05:00", end="12:00"),
    )
    batch = _batch(batch_id="b1", bake=30)

    move = engine.plan_move(batch, engine.to_pixel(308), 1)
    assert move is not None
    assert move.new_start_time == "05:15"


def test_overlapping_batches_share_rack_row() -> None:
    engine = TimelineEngine()
    first = _batch(batch_id="b1", start="07:00", bake=45, rack=3)
    second = _batch(batch_id="b2", start="07:20", bake=45, rack=3)
    other = _batch(batch_id="b3", start="07:00", bake=45, rack=4)

    layout = engine.layout([second, other, first])

    assert [p.batch.batch_id for p in layout] == ["b1", "b2", "b3"]
    assert layout[0].top == layout[1].top
    assert layout[1].left < layout[0].right
    assert engine.find_conflicts([first, second, other]) == [(first, second)]


def test_back_to_back_batches_do_not_conflict() -> None:
    engine = TimelineEngine()
    first = _batch(batch_id="b1", start="07:00", bake=40, rack=3)
    second = _batch(batch_id="b2", start="07:40", bake=40, rack=3)

    assert engine.find_conflicts([first, second]) == []


def test_layout_skips_unscheduled_and_enforces_min_width() -> None:
    engine = TimelineEngine()
    short = _batch(batch_id="b1", start="07:00", bake=3, rack=1)
    unscheduled = _batch(batch_id="b2", rack=None)

    layout = engine.layout([short, unscheduled])

    assert len(layout) == 1
    assert layout[0].width == 20
    assert layout[0].left == engine.to_pixel(420)


def test_timeline_geometry_helpers() -> None:
    engine = TimelineEngine()

    assert engine.timeline_width() >= 2200
    slots = engine.time_slots()
    assert slots[0] == (0.0, "06:00")
    assert slots[-1][1] == "17:00"
    assert len(slots) == 12

    assert engine.current_time_position("05:30") is None
    assert engine.current_time_position("--:--") is None
    assert round(engine.current_time_position("07:00")) == 200

    groups = engine.rack_groups()
    assert [g.oven for g in groups] == [1, 2]
    assert groups[1].racks == (7, 8, 9, 10, 11, 12)
    assert engine.oven_for_rack(6) == 1
    assert engine.oven_for_rack(7) == 2
