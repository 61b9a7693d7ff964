"""Push channel lifecycle with automatic fallback to status polling."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import socketio
from pydantic import ValidationError

from bakehouse.config import SyncConfig
from bakehouse.scheduler import SessionScheduler
from bakehouse.services.simulation.exceptions import SimulationAPIError
from bakehouse.services.simulation.models import InventoryUpdate, SimulationSnapshot

from .commands import ApplyInventory, ApplySnapshot, Command

logger = logging.getLogger(__name__)

CommandSink = Callable[[Command], Awaitable[Any]]
StatusFetcher = Callable[[], Awaitable[SimulationSnapshot]]
SocketFactory = Callable[..., Any]


class ConnectionManager:
    """Keeps one session fed with snapshots from push or, failing that, polling.

    The Socket.IO channel is opened on :meth:`open`. While it is connected the
    status poll job is paused; on disconnect or connect error the poll job
    resumes. Every message carries the session id and is dropped once the
    manager is closed.
    """

    def __init__(
        self,
        session_id: str,
        url: str,
        config: SyncConfig,
        sink: CommandSink,
        fetch_status: StatusFetcher,
        scheduler: SessionScheduler,
        socket_factory: SocketFactory | None = None,
    ):
        self.session_id = session_id
        self.url = url
        self.config = config
        self._sink = sink
        self._fetch_status = fetch_status
        self._scheduler = scheduler
        self._socket_factory = socket_factory or socketio.AsyncClient
        self._sio: Any = None
        self._connect_task: asyncio.Task | None = None
        self._listeners: list[Callable[[bool], None]] = []
        self.poll_job_id = f"status-poll-{session_id}"
        self.connected = False
        self.closed = False

    def add_listener(self, callback: Callable[[bool], None]) -> None:
        """Register a callback for connected/disconnected transitions."""
        self._listeners.append(callback)

    async def open(self) -> None:
        # Polling runs until the push channel proves itself
        self._scheduler.add_interval(
            self.poll_job_id,
            self.poll_once,
            self.config.poll_interval_seconds,
            name="Status poll fallback",
        )

        self._sio = self._socket_factory(
            reconnection=True,
            reconnection_attempts=self.config.reconnection_attempts,
            reconnection_delay=self.config.reconnection_delay_seconds,
            logger=False,
        )
        self._sio.on("connect", self._on_connect)
        self._sio.on("connect_error", self._on_connect_error)
        self._sio.on("disconnect", self._on_disconnect)
        self._sio.on("simulation_update", self._on_simulation_update)
        self._sio.on("inventory_update", self._on_inventory_update)

        self._connect_task = asyncio.create_task(self._connect_with_retry())

    async def _connect_with_retry(self) -> None:
        """Initial connection; later drops are retried by the Socket.IO client."""
        delay = self.config.reconnection_delay_seconds
        attempts = max(1, self.config.reconnection_attempts)

        for attempt in range(1, attempts + 1):
            if self.closed:
                return
            try:
                logger.info(f"Connecting push channel to {self.url} (attempt {attempt}/{attempts})")
                await self._sio.connect(
                    self.url, wait_timeout=self.config.connect_timeout_seconds
                )
                return
            except socketio.exceptions.ConnectionError as e:
                logger.warning(f"Push channel connection failed: {e}")
                if attempt < attempts:
                    await asyncio.sleep(delay)
                    delay *= 2

        logger.warning("Push channel unavailable, staying on polling fallback")

    def _set_connected(self, connected: bool) -> None:
        if connected == self.connected:
            return
        self.connected = connected
        if connected:
            self._scheduler.pause(self.poll_job_id)
        else:
            self._scheduler.resume(self.poll_job_id)
        for callback in self._listeners:
            callback(connected)

    async def _on_connect(self) -> None:
        if self.closed:
            return
        logger.info("Push channel connected")
        self._set_connected(True)
        await self._sio.emit("joinSimulation", self.session_id)

    async def _on_connect_error(self, data: Any = None) -> None:
        logger.warning(f"Push channel connection error: {data}")
        if not self.closed:
            self._set_connected(False)

    async def _on_disconnect(self, *args: Any) -> None:
        logger.info(f"Push channel disconnected {args[0] if args else ''}".rstrip())
        if not self.closed:
            self._set_connected(False)

    async def _on_simulation_update(self, data: dict[str, Any]) -> None:
        if self.closed:
            return
        try:
            snapshot = SimulationSnapshot.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed simulation_update: {e}")
            return
        await self._sink(ApplySnapshot(self.session_id, snapshot, "push"))

    async def _on_inventory_update(self, data: dict[str, Any]) -> None:
        if self.closed:
            return
        try:
            update = InventoryUpdate.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed inventory_update: {e}")
            return
        await self._sink(ApplyInventory(self.session_id, update))

    async def poll_once(self) -> None:
        """One status poll; a no-op while push is connected."""
        if self.closed or self.connected:
            return
        try:
            snapshot = await self._fetch_status()
        except SimulationAPIError as e:
            logger.error(f"Failed to fetch simulation status: {e}")
            return
        if self.closed:
            return
        await self._sink(ApplySnapshot(self.session_id, snapshot, "poll"))

    async def close(self) -> None:
        """Leave the session, close the channel and clear the poll timer."""
        if self.closed:
            return
        self.closed = True
        self._scheduler.remove(self.poll_job_id)

        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
            try:
                await self._connect_task
            except asyncio.CancelledError:
                pass
        self._connect_task = None

        if self._sio is not None:
            if self._sio.connected:
                try:
                    await self._sio.emit("leaveSimulation", self.session_id)
                except socketio.exceptions.SocketIOError as e:
                    logger.warning(f"Failed to leave simulation room: {e}")
            await self._sio.disconnect()
            self._sio = None

        was_connected = self.connected
        self.connected = False
        if was_connected:
            for callback in self._listeners:
                callback(False)
        logger.info(f"Connection manager closed for session {self.session_id}")
