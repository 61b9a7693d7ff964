"""Tests for push channel lifecycle and polling fallback."""

import asyncio

from bakehouse.services.simulation import SimulationNetworkError, SimulationSnapshot
from bakehouse.sync.commands import ApplyInventory, ApplySnapshot
from bakehouse.sync.connection import ConnectionManager

from fakes import SIM_ID, FakeScheduler, FakeSocket, make_settings


class Harness:
    def __init__(self, socket: FakeSocket, fail_status: bool = False):
        self.socket = socket
        self.scheduler = FakeScheduler()
        self.commands: list = []
        self.status_calls = 0
        self.fail_status = fail_status
        self.manager = ConnectionManager(
            session_id=SIM_ID,
            url="http://sim.test",
            config=make_settings().sync,
            sink=self.sink,
            fetch_status=self.fetch_status,
            scheduler=self.scheduler,
            socket_factory=socket.factory,
        )

    async def sink(self, command) -> None:
        self.commands.append(command)

    async def fetch_status(self) -> SimulationSnapshot:
        self.status_calls += 1
        if self.fail_status:
            raise SimulationNetworkError("Cannot reach simulator")
        return SimulationSnapshot(id=SIM_ID, current_time="08:30")


def test_connect_joins_room_and_suppresses_polling() -> None:
    async def run() -> None:
        h = Harness(FakeSocket())
        await h.manager.open()
        await asyncio.sleep(0.01)

        assert h.manager.connected
        assert h.socket.emitted == [("joinSimulation", SIM_ID)]
        assert h.scheduler.is_paused(h.manager.poll_job_id)
        assert h.socket.options["reconnection"] is True
        assert h.socket.options["reconnection_attempts"] == 3

        await h.manager.close()

    asyncio.run(run())


def test_disconnect_resumes_polling() -> None:
    async def run() -> None:
        h = Harness(FakeSocket())
        transitions: list[bool] = []
        h.manager.add_listener(transitions.append)
        await h.manager.open()
        await asyncio.sleep(0.01)

        await h.socket.trigger("disconnect", "transport close")

        assert not h.manager.connected
        assert not h.scheduler.is_paused(h.manager.poll_job_id)
        assert transitions == [True, False]

        await h.scheduler.fire(h.manager.poll_job_id)
        assert h.status_calls == 1
        assert isinstance(h.commands[-1], ApplySnapshot)
        assert h.commands[-1].source == "poll"

        await h.manager.close()

    asyncio.run(run())


def test_failed_connection_falls_back_to_polling() -> None:
    async def run() -> None:
        h = Harness(FakeSocket(fail_connect=10))
        await h.manager.open()
        await asyncio.sleep(0.2)

        assert h.socket.connect_calls == 3
        assert not h.manager.connected
        assert h.scheduler.has_job(h.manager.poll_job_id)
        assert not h.scheduler.is_paused(h.manager.poll_job_id)

        await h.manager.close()

    asyncio.run(run())


def test_connection_succeeds_after_retry() -> None:
    async def run() -> None:
        h = Harness(FakeSocket(fail_connect=1))
        await h.manager.open()
        await asyncio.sleep(0.1)

        assert h.socket.connect_calls == 2
        assert h.manager.connected

        await h.manager.close()

    asyncio.run(run())


def test_poll_is_noop_while_connected() -> None:
    async def run() -> None:
        h = Harness(FakeSocket())
        await h.manager.open()
        await asyncio.sleep(0.01)

        await h.manager.poll_once()

        assert h.status_calls == 0
        await h.manager.close()

    asyncio.run(run())


def test_poll_failure_keeps_running() -> None:
    async def run() -> None:
        h = Harness(FakeSocket(fail_connect=10), fail_status=True)

        await h.manager.poll_once()
        await h.manager.poll_once()

        assert h.status_calls == 2
        assert h.commands == []

    asyncio.run(run())


def test_push_messages_become_commands() -> None:
    async def run() -> None:
        h = Harness(FakeSocket())
        await h.manager.open()
        await asyncio.sleep(0.01)

        await h.socket.trigger("simulation_update", {"id": SIM_ID, "currentTime": "09:10"})
        await h.socket.trigger("inventory_update", {"inventory": {"croissant": 3}, "totalInventory": 3})
        await h.socket.trigger("simulation_update", {"batches": "not-a-list"})

        assert len(h.commands) == 2
        snapshot, inventory = h.commands
        assert snapshot.source == "push"
        assert snapshot.snapshot.current_time == "09:10"
        assert isinstance(inventory, ApplyInventory)
        assert inventory.update.total_inventory == 3

        await h.manager.close()

    asyncio.run(run())


def test_close_leaves_room_and_drops_late_messages() -> None:
    async def run() -> None:
        h = Harness(FakeSocket())
        await h.manager.open()
        await asyncio.sleep(0.01)
        handler = h.socket.handlers["simulation_update"]

        await h.manager.close()

        assert ("leaveSimulation", SIM_ID) in h.socket.emitted
        assert not h.socket.connected
        assert not h.manager.connected
        assert not h.scheduler.has_job(h.manager.poll_job_id)

        await handler({"id": SIM_ID, "currentTime": "10:00"})
        await h.manager.poll_once()
        assert h.commands == []

    asyncio.run(run())


def test_asyncio_transport_is_installed() -> None:
    import engineio.async_client

    # Without aiohttp the real client can never connect and polling stays on.
    assert engineio.async_client.aiohttp is not None
