from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from bakehouse.timeutils import parse_time_to_minutes

SimulationStatus = Literal["idle", "running", "paused", "stopped", "completed"]
BatchStatus = Literal["scheduled", "baking", "pulling", "cooling", "available", "completed"]

# (itemGuid, startTime) identifies a suggestion against the real schedule
BatchKey = tuple[str, str | None]


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python; unknown fields are kept."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Batch(WireModel):
    batch_id: str
    item_guid: str = ""
    display_name: str = ""
    quantity: int = Field(default=1, gt=0)
    rack_position: int | None = Field(default=None, ge=1)
    oven: int | None = None
    start_time: str | None = None
    end_time: str | None = None
    available_time: str | None = None
    status: BatchStatus = "scheduled"
    bake_time: int | None = None
    cool_time: int | None = None
    is_catering: bool = False
    catering_order_id: str | None = None

    @property
    def is_scheduled(self) -> bool:
        return self.rack_position is not None

    @property
    def key(self) -> BatchKey:
        return (self.item_guid, self.start_time)

    @property
    def bake_minutes(self) -> int | None:
        """Oven occupancy: bakeTime when known, else endTime - startTime."""
        if self.bake_time is not None:
            return self.bake_time
        start = parse_time_to_minutes(self.start_time)
        end = parse_time_to_minutes(self.end_time)
        if start is None or end is None:
            return None
        return end - start


class Event(WireModel):
    type: str = ""
    message: str = ""
    time: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class CateringOrderLine(WireModel):
    item_guid: str
    quantity: int = Field(gt=0)


class CateringOrder(WireModel):
    order_id: str = ""
    status: str = "pending"
    items: list[CateringOrderLine] = Field(default_factory=list)
    required_available_time: str | None = None


class CateringOrderRequest(WireModel):
    items: list[CateringOrderLine]
    required_available_time: str
    auto_approve: bool | None = None


class Simulation(WireModel):
    """Canonical per-session view of the remote simulation."""

    id: str
    status: SimulationStatus = "idle"
    mode: str | None = None
    schedule_date: str | None = None
    current_time: str = ""
    speed_multiplier: int = 60
    batches: list[Batch] = Field(default_factory=list)
    completed_batches: list[Batch] = Field(default_factory=list)
    inventory: dict[str, int] = Field(default_factory=dict)
    stats: dict[str, Any] = Field(default_factory=dict)
    recent_events: list[Event] = Field(default_factory=list)
    catering_orders: list[CateringOrder] = Field(default_factory=list)
    auto_approve_catering: bool = False

    def all_batches(self) -> list[Batch]:
        return [*self.batches, *self.completed_batches]

    def find_batch(self, batch_id: str) -> Batch | None:
        for batch in self.batches:
            if batch.batch_id == batch_id:
                return batch
        return None


class SimulationSnapshot(WireModel):
    """Partial or full simulation state as delivered by push or poll.

    Only the fields present in the payload end up in ``model_fields_set``;
    the reconciler merges exactly those.
    """

    id: str | None = None
    status: SimulationStatus | None = None
    mode: str | None = None
    schedule_date: str | None = None
    current_time: str | None = None
    speed_multiplier: int | None = None
    batches: list[Batch] | None = None
    completed_batches: list[Batch] | None = None
    inventory: dict[str, int] | None = None
    stats: dict[str, Any] | None = None
    recent_events: list[Event] | None = None
    catering_orders: list[CateringOrder] | None = None
    auto_approve_catering: bool | None = None


class InventoryUpdate(WireModel):
    inventory: dict[str, int] = Field(default_factory=dict)
    total_inventory: int | None = None


class MutationResult(WireModel):
    """Authoritative schedule returned by add/move/delete."""

    id: str | None = None
    status: SimulationStatus | None = None
    batches: list[Batch] | None = None
    completed_batches: list[Batch] | None = None
    recent_events: list[Event] | None = None


class Item(WireModel):
    item_guid: str
    display_name: str = ""
    quantity: int = 0


class PurchaseLine(WireModel):
    item_guid: str
    quantity: int = Field(default=1, gt=0)


class PurchaseResult(WireModel):
    success: bool = True
    purchases: list[dict[str, Any]] = Field(default_factory=list)
    errors: list[dict[str, Any]] = Field(default_factory=list)
    inventory: dict[str, int] | None = None
    total_inventory: int | None = None


class BatchSpec(WireModel):
    """Payload for adding a batch to the schedule."""

    item_guid: str
    start_time: str
    display_name: str = ""
    quantity: int = Field(default=1, gt=0)
    bake_time: int | None = None
    cool_time: int | None = None
    oven: int | None = None
    rack_position: int | None = None
    fresh_window_minutes: int | None = None
    restock_threshold: int | None = None

    @property
    def key(self) -> BatchKey:
        return (self.item_guid, self.start_time)


class SuggestedBatch(BatchSpec):
    """Remotely computed candidate batch; never persisted locally."""

    batch_id: str | None = None
    reason: str | None = None

    def to_spec(self) -> BatchSpec:
        return BatchSpec.model_validate(
            self.model_dump(include=set(BatchSpec.model_fields), exclude_none=True)
        )


class ForecastScales(WireModel):
    morning: float = 1.0  # 06:00-11:00
    afternoon: float = 1.0  # 11:00-14:00
    evening: float = 1.0  # 14:00-17:00


class StartParams(WireModel):
    schedule_date: str
    speed_multiplier: int = Field(default=60, gt=0)
    mode: Literal["manual", "preset"] = "manual"
    forecast_scales: ForecastScales = Field(default_factory=ForecastScales)
