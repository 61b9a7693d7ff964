"""In-process stand-ins for the scheduler, the Socket.IO client and the simulator."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import socketio

from bakehouse.config import Settings, SyncConfig
from bakehouse.services.simulation import SimulationAPIConfig, SimulationClient
from bakehouse.timeutils import format_minutes, parse_time_to_minutes

SIM_ID = "sim-1"


class FakeScheduler:
    """Same surface as SessionScheduler; jobs only run when fired."""

    def __init__(self):
        self.jobs: dict[str, tuple[Any, float]] = {}
        self.paused: set[str] = set()
        self.running = False

    def start(self) -> None:
        self.running = True

    def add_interval(self, job_id, func, seconds, name=None, paused=False) -> None:
        self.jobs[job_id] = (func, seconds)
        self.paused.discard(job_id)
        if paused:
            self.paused.add(job_id)

    def pause(self, job_id: str) -> None:
        if job_id in self.jobs:
            self.paused.add(job_id)

    def resume(self, job_id: str) -> None:
        self.paused.discard(job_id)

    def is_paused(self, job_id: str) -> bool:
        return job_id in self.paused

    def has_job(self, job_id: str) -> bool:
        return job_id in self.jobs

    def remove(self, job_id: str) -> None:
        self.jobs.pop(job_id, None)
        self.paused.discard(job_id)

    def shutdown(self) -> None:
        self.jobs.clear()
        self.paused.clear()
        self.running = False

    async def fire(self, job_id: str) -> None:
        func, _ = self.jobs[job_id]
        await func()


class FakeSocket:
    """Records handlers and emits; connects instantly unless told to fail."""

    def __init__(self, fail_connect: int = 0):
        self.fail_connect = fail_connect
        self.options: dict[str, Any] = {}
        self.handlers: dict[str, Any] = {}
        self.emitted: list[tuple[str, Any]] = []
        self.connect_calls = 0
        self.connected = False
        self.url: str | None = None

    def factory(self, **options: Any) -> FakeSocket:
        self.options = options
        return self

    def on(self, event: str, handler: Any) -> None:
        self.handlers[event] = handler

    async def connect(self, url: str, wait_timeout: float | None = None) -> None:
        self.connect_calls += 1
        self.url = url
        if self.connect_calls <= self.fail_connect:
            await self.handlers["connect_error"]("refused")
            raise socketio.exceptions.ConnectionError("Connection refused by the server")
        self.connected = True
        await self.handlers["connect"]()

    async def emit(self, event: str, data: Any = None) -> None:
        self.emitted.append((event, data))

    async def disconnect(self) -> None:
        if self.connected:
            self.connected = False
            await self.handlers["disconnect"]("client disconnect")

    async def trigger(self, event: str, *args: Any) -> None:
        await self.handlers[event](*args)


def make_batch(
    batch_id: str,
    item_guid: str = "croissant",
    start: str = "07:00",
    bake: int = 45,
    rack: int | None = 1,
    **extra: Any,
) -> dict[str, Any]:
    start_minutes = parse_time_to_minutes(start)
    batch = {
        "batchId": batch_id,
        "itemGuid": item_guid,
        "displayName": item_guid.title(),
        "quantity": 12,
        "rackPosition": rack,
        "oven": None if rack is None else (rack - 1) // 6 + 1,
        "startTime": start,
        "endTime": format_minutes(start_minutes + bake),
        "availableTime": format_minutes(start_minutes + bake + 15),
        "status": "scheduled",
        "bakeTime": bake,
        "coolTime": 15,
    }
    batch.update(extra)
    return batch


def make_simulation(**overrides: Any) -> dict[str, Any]:
    simulation = {
        "id": SIM_ID,
        "status": "running",
        "mode": "manual",
        "scheduleDate": "2025-03-14",
        "currentTime": "08:00",
        "speedMultiplier": 60,
        "batches": [
            make_batch("b1", start="07:00", rack=2),
            make_batch("b2", item_guid="baguette", start="08:00", rack=3),
            make_batch("b3", item_guid="muffin", start="09:00", rack=4),
        ],
        "completedBatches": [],
        "inventory": {"croissant": 4},
        "stats": {"totalInventory": 4},
        "recentEvents": [],
        "cateringOrders": [],
    }
    simulation.update(overrides)
    return simulation


class FakeSimulator:
    """Answers the REST routes from an in-memory simulation."""

    PREFIX = "/api/abs/simulation"

    def __init__(self, simulation: dict[str, Any] | None = None):
        self.simulation = simulation or make_simulation()
        self.calls: list[tuple[str, str, Any]] = []
        self.failures: dict[str, tuple[int, dict[str, Any]]] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.suggestions: list[dict[str, Any]] = []
        self.items: list[dict[str, Any]] = [{"itemGuid": "croissant", "displayName": "Croissant", "quantity": 4}]
        self._next_id = 100

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def client(self) -> SimulationClient:
        config = SimulationAPIConfig(base_url="http://sim.test", max_retries=1)
        return SimulationClient(config=config, transport=self.transport())

    def calls_to(self, method: str, suffix: str) -> list[Any]:
        return [body for m, path, body in self.calls if m == method and path.endswith(suffix)]

    async def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix(self.PREFIX)
        body = json.loads(request.content) if request.content else None
        self.calls.append((request.method, path, body))
        key = f"{request.method} {path}"

        gate = self.gates.get(key)
        if gate is not None:
            await gate.wait()
        if key in self.failures:
            status, payload = self.failures[key]
            return httpx.Response(status, json=payload)
        return httpx.Response(200, json={"success": True, "data": self.route(request, path, body)})

    def _schedule(self) -> dict[str, Any]:
        return {
            "batches": self.simulation["batches"],
            "completedBatches": self.simulation["completedBatches"],
            "recentEvents": self.simulation["recentEvents"],
        }

    def route(self, request: httpx.Request, path: str, body: Any) -> Any:
        sim_id = self.simulation["id"]
        method = request.method

        if path == "/start":
            return self.simulation
        if path == f"/{sim_id}/status":
            return self.simulation
        if path in (f"/{sim_id}/pause", f"/{sim_id}/resume", f"/{sim_id}/stop"):
            self.simulation["status"] = {"pause": "paused", "resume": "running", "stop": "stopped"}[
                path.rsplit("/", 1)[1]
            ]
            return {"status": self.simulation["status"]}
        if path == f"/{sim_id}/pos/items":
            return {"items": self.items}
        if path == f"/{sim_id}/pos/purchase":
            inventory = dict(self.simulation["inventory"])
            for line in body["items"]:
                inventory[line["itemGuid"]] = inventory.get(line["itemGuid"], 0) - line["quantity"]
            self.simulation["inventory"] = inventory
            return {"inventory": inventory, "totalInventory": sum(inventory.values())}
        if path == f"/{sim_id}/batch/move":
            for batch in self.simulation["batches"]:
                if batch["batchId"] == body["batchId"]:
                    start = parse_time_to_minutes(body["newStartTime"])
                    batch["startTime"] = body["newStartTime"]
                    batch["endTime"] = format_minutes(start + batch["bakeTime"])
                    batch["rackPosition"] = body["newRack"]
            return self._schedule()
        if path == f"/{sim_id}/batch/add":
            self._next_id += 1
            self.simulation["batches"].append(
                make_batch(
                    f"b{self._next_id}",
                    item_guid=body["itemGuid"],
                    start=body["startTime"],
                    bake=body.get("bakeTime") or 30,
                    rack=body.get("rackPosition") or 1,
                )
            )
            return self._schedule()
        if method == "DELETE" and path.startswith(f"/{sim_id}/batch/"):
            batch_id = path.rsplit("/", 1)[1]
            self.simulation["batches"] = [
                b for b in self.simulation["batches"] if b["batchId"] != batch_id
            ]
            return self._schedule()
        if path == f"/{sim_id}/suggested-batches":
            return {"suggestedBatches": self.suggestions}
        if path.startswith(f"/{sim_id}/catering-order"):
            return {"orderId": "order-1"}
        return {}


def make_settings(**sync_overrides: Any) -> Settings:
    sync = {
        "guard_timeout_seconds": 1.0,
        "reconnection_attempts": 3,
        "reconnection_delay_seconds": 0.01,
        "connect_timeout_seconds": 0.1,
    }
    sync.update(sync_overrides)
    return Settings(sync=SyncConfig(**sync))
