"""Per-session owner of the live simulation view.

``LiveSession`` is the single entry point for everything that changes the
canonical state: push messages, poll results, user mutations and suggestion
auto-adds are all turned into commands and handed to :meth:`dispatch`, which
forwards them to the one :class:`StateReconciler`.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Awaitable, Callable

from bakehouse.config import Settings, get_settings
from bakehouse.scheduler import SessionScheduler
from bakehouse.services.simulation import SimulationClient
from bakehouse.services.simulation.exceptions import SimulationAPIError
from bakehouse.services.simulation.models import (
    Batch,
    BatchSpec,
    CateringOrderRequest,
    InventoryUpdate,
    Item,
    MutationResult,
    PurchaseLine,
    PurchaseResult,
    Simulation,
    StartParams,
    SuggestedBatch,
)
from bakehouse.timeline import PositionedBatch, TimelineEngine
from bakehouse.timeutils import format_minutes, parse_time_to_minutes

from .commands import (
    ApplyInventory,
    ApplyMutationResult,
    ApplySnapshot,
    Command,
    OptimisticAdd,
    OptimisticDelete,
    OptimisticMove,
    Rollback,
)
from .connection import ConnectionManager, SocketFactory
from .exceptions import MutationError
from .guard import GuardHold, MutationGuard
from .reconciler import StateReconciler
from .suggestions import SuggestionPoller

logger = logging.getLogger(__name__)

__all__ = ["LiveSession", "MutationError"]


class LiveSession:
    """One client-side view of a remote simulation.

    Usage:
        async with create_simulation_client() as client:
            async with LiveSession(client) as session:
                await session.attach("sim-123")
                await session.drop_batch("b1", pointer_x=600, drop_target="rack-3")
    """

    def __init__(
        self,
        client: SimulationClient,
        settings: Settings | None = None,
        scheduler: SessionScheduler | None = None,
        socket_factory: SocketFactory | None = None,
        on_change: Callable[[Simulation], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ):
        self.client = client
        self.settings = settings or get_settings()
        self.engine = TimelineEngine.from_settings(self.settings)
        self.guard = MutationGuard(self.settings.sync.guard_timeout_seconds)
        self.reconciler = StateReconciler(self.guard)
        self.scheduler = scheduler or SessionScheduler()
        self.on_change = on_change
        self.on_error = on_error

        self.connection: ConnectionManager | None = None
        self.suggestions: SuggestionPoller | None = None
        self.items: list[Item] = []
        self.last_error: Exception | None = None
        self.closed = False
        self._socket_factory = socket_factory
        self._purchase_in_flight = False

    async def __aenter__(self) -> LiveSession:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def session_id(self) -> str | None:
        return self.reconciler.session_id

    @property
    def state(self) -> Simulation | None:
        return self.reconciler.state

    @property
    def connected(self) -> bool:
        return self.connection is not None and self.connection.connected

    def _require_session(self) -> str:
        if self.session_id is None or self.closed:
            raise RuntimeError("No open simulation session")
        return self.session_id

    # Lifecycle

    async def start(self, params: StartParams) -> Simulation:
        simulation = await self.client.start(params)
        logger.info(
            f"Started simulation {simulation.id} for {params.schedule_date} "
            f"({params.mode}, {params.speed_multiplier}x)"
        )
        self.reconciler.bind(simulation.id, simulation)
        self._notify()
        await self.open()
        return simulation

    async def attach(self, simulation_id: str, live: bool = True) -> Simulation | None:
        """Join an already running simulation.

        With ``live=False`` only the current status is loaded; no push channel
        or timers are started.
        """
        self.reconciler.bind(simulation_id)
        await self.refresh_status()
        if live:
            await self.open()
        return self.state

    async def open(self) -> None:
        session_id = self._require_session()
        self.scheduler.start()

        self.connection = ConnectionManager(
            session_id=session_id,
            url=self.settings.api.push_url,
            config=self.settings.sync,
            sink=self.dispatch,
            fetch_status=lambda: self.client.get_status(session_id),
            scheduler=self.scheduler,
            socket_factory=self._socket_factory,
        )
        await self.connection.open()

        self.suggestions = SuggestionPoller(
            session_id=session_id,
            config=self.settings.suggestions,
            fetch=lambda mode: self.client.get_suggested_batches(session_id, mode),
            submit=self.add_batch,
            read_state=lambda: self.state,
            scheduler=self.scheduler,
        )

        self.scheduler.add_interval(
            f"items-refresh-{session_id}",
            self.refresh_items,
            self.settings.sync.items_refresh_seconds,
            name="POS items refresh",
        )

    async def close(self) -> None:
        """Leave the session; nothing in flight is applied afterwards."""
        if self.closed:
            return
        self.closed = True
        if self.suggestions is not None:
            self.suggestions.teardown()
        if self.connection is not None:
            await self.connection.close()
        self.scheduler.shutdown()
        self.reconciler.close()
        self.guard.reset()
        logger.info(f"Session {self.session_id} closed")

    # State owner

    async def dispatch(self, command: Command) -> Any:
        before = self.state
        result = self.reconciler.handle(command)
        if self.state is not before:
            self._notify()
        if isinstance(command, ApplyInventory) and result:
            await self.refresh_items()
        return result

    def _notify(self) -> None:
        if self.on_change is not None and self.state is not None:
            self.on_change(self.state)

    async def refresh_status(self) -> bool:
        session_id = self._require_session()
        snapshot = await self.client.get_status(session_id)
        return bool(await self.dispatch(ApplySnapshot(session_id, snapshot, "refresh")))

    async def refresh_items(self) -> list[Item]:
        """Reload sellable items; only manual-mode simulations have a POS."""
        if self.closed or self.state is None or self.state.mode != "manual":
            return self.items
        session_id = self.session_id
        try:
            items = await self.client.get_available_items(session_id)
        except SimulationAPIError as e:
            logger.warning(f"Failed to refresh available items: {e}")
            return self.items
        if not self.closed and session_id == self.session_id:
            self.items = items
        return self.items

    def layout(self) -> list[PositionedBatch]:
        return self.engine.layout(self.state.batches if self.state else [])

    # Simulation controls

    async def pause(self) -> None:
        await self.client.pause(self._require_session())
        await self.refresh_status()

    async def resume(self) -> None:
        await self.client.resume(self._require_session())
        await self.refresh_status()

    async def stop(self) -> None:
        await self.client.stop(self._require_session())
        await self.refresh_status()

    # Schedule mutations

    async def _mutate(
        self,
        action: str,
        batch_id: str,
        optimistic: Callable[[GuardHold], Command],
        remote: Callable[[], Awaitable[MutationResult]],
    ) -> MutationResult:
        """Optimistic edit, remote call, then confirm or roll back under one hold."""
        session_id = self._require_session()
        hold = self.guard.acquire(f"{action}:{batch_id}", key=batch_id)
        try:
            undo = await self.dispatch(optimistic(hold))
            try:
                result = await remote()
            except SimulationAPIError as e:
                if undo is not None:
                    await self.dispatch(Rollback(session_id, hold, undo))
                error = MutationError(action, batch_id, e)
                if not self.closed:
                    self.last_error = error
                    logger.error(str(error))
                    if self.on_error is not None:
                        self.on_error(error)
                raise error from e

            await self.dispatch(ApplyMutationResult(session_id, hold, result))
            self.last_error = None
            return result
        finally:
            self.guard.release(hold)

    async def move_batch(self, batch_id: str, new_start_time: str, new_rack: int) -> bool:
        """Move a batch; False if the server rejected it (state rolled back)."""
        session_id = self._require_session()
        try:
            await self._mutate(
                "move",
                batch_id,
                lambda hold: OptimisticMove(
                    session_id,
                    hold,
                    batch_id,
                    new_start_time,
                    new_rack,
                    new_oven=self.engine.oven_for_rack(new_rack),
                ),
                lambda: self.client.move_batch(session_id, batch_id, new_start_time, new_rack),
            )
        except MutationError:
            return False
        return True

    async def drop_batch(
        self, batch_id: str, pointer_x: float, drop_target: int | str | None
    ) -> bool:
        """Finish a drag gesture. Invalid drops change nothing and call nothing."""
        batch = self.state.find_batch(batch_id) if self.state else None
        if batch is None:
            logger.debug(f"Drop ignored: batch {batch_id} not in schedule")
            return False
        move = self.engine.plan_move(batch, pointer_x, drop_target)
        if move is None:
            return False
        return await self.move_batch(move.batch_id, move.new_start_time, move.new_rack)

    async def delete_batch(self, batch_id: str) -> MutationResult:
        session_id = self._require_session()
        return await self._mutate(
            "delete",
            batch_id,
            lambda hold: OptimisticDelete(session_id, hold, batch_id),
            lambda: self.client.delete_batch(session_id, batch_id),
        )

    def _placeholder(self, spec: BatchSpec) -> Batch:
        start = parse_time_to_minutes(spec.start_time)
        end_time = None
        if start is not None and spec.bake_time is not None:
            end_time = format_minutes(start + spec.bake_time)
        return Batch(
            batch_id=f"pending-{uuid.uuid4().hex[:8]}",
            item_guid=spec.item_guid,
            display_name=spec.display_name,
            quantity=spec.quantity,
            rack_position=spec.rack_position,
            oven=spec.oven,
            start_time=spec.start_time,
            end_time=end_time,
            bake_time=spec.bake_time,
            cool_time=spec.cool_time,
        )

    async def add_batch(self, spec: BatchSpec) -> MutationResult:
        session_id = self._require_session()
        placeholder = self._placeholder(spec)
        return await self._mutate(
            "add",
            placeholder.batch_id,
            lambda hold: OptimisticAdd(session_id, hold, placeholder),
            lambda: self.client.add_batch(session_id, spec),
        )

    # Point of sale

    async def purchase(self, lines: list[PurchaseLine]) -> PurchaseResult | None:
        """Sell items; returns None if a purchase is already in flight."""
        session_id = self._require_session()
        if self._purchase_in_flight:
            logger.debug("Purchase already in flight, ignoring")
            return None
        self._purchase_in_flight = True
        try:
            result = await self.client.purchase_items(session_id, lines)
        except SimulationAPIError as e:
            self.last_error = e
            logger.error(f"Purchase failed: {e}")
            raise
        finally:
            self._purchase_in_flight = False

        if result.inventory is not None:
            await self.dispatch(
                ApplyInventory(
                    session_id,
                    InventoryUpdate(
                        inventory=result.inventory,
                        total_inventory=result.total_inventory,
                    ),
                )
            )
        return result

    # Catering

    async def create_catering_order(self, order: CateringOrderRequest) -> Any:
        result = await self.client.create_catering_order(self._require_session(), order)
        await self.refresh_status()
        return result

    async def approve_catering_order(self, order_id: str) -> Any:
        result = await self.client.approve_catering_order(self._require_session(), order_id)
        await self.refresh_status()
        return result

    async def reject_catering_order(self, order_id: str) -> Any:
        result = await self.client.reject_catering_order(self._require_session(), order_id)
        await self.refresh_status()
        return result

    async def set_auto_approve_catering(self, enabled: bool) -> Any:
        result = await self.client.set_auto_approve_catering(self._require_session(), enabled)
        await self.refresh_status()
        return result

    # Suggestions

    async def enable_suggestions(self, auto_add: bool = False) -> list[SuggestedBatch]:
        if self.suggestions is None:
            raise RuntimeError("Session is not open")
        return await self.suggestions.enable(auto_add=auto_add)

    def disable_suggestions(self) -> None:
        if self.suggestions is not None:
            self.suggestions.disable()

    async def refresh_suggestions(self) -> list[SuggestedBatch]:
        if self.suggestions is None:
            return []
        return await self.suggestions.refresh(force=True)
