from __future__ import annotations

import asyncio
import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from bakehouse.config import get_settings

from .config import SimulationAPIConfig
from .exceptions import (
    SimulationAPIError,
    SimulationNetworkError,
    SimulationNotFoundError,
    SimulationRequestError,
    SimulationResponseError,
)
from .models import (
    BatchSpec,
    CateringOrder,
    CateringOrderRequest,
    Item,
    MutationResult,
    PurchaseLine,
    PurchaseResult,
    Simulation,
    SimulationSnapshot,
    StartParams,
    SuggestedBatch,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _extract_errors(body: Any) -> list[str]:
    """Collect error strings from either failure envelope shape."""
    if not isinstance(body, dict):
        return []

    errors: list[str] = []
    raw_errors = body.get("errors")
    data = body.get("data")
    if raw_errors is None and isinstance(data, dict):
        raw_errors = data.get("errors")
    for entry in raw_errors or []:
        if isinstance(entry, dict):
            errors.append(str(entry.get("error") or entry.get("message") or entry))
        else:
            errors.append(str(entry))

    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        errors.append(str(error["message"]))
    elif isinstance(error, str):
        errors.append(error)
    return errors


def _parse(model: type[ModelT], data: Any, endpoint: str) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.error(f"Unexpected {model.__name__} payload from {endpoint}: {e}")
        raise SimulationResponseError(
            f"Malformed {model.__name__} from {endpoint}",
            errors=[err["msg"] for err in e.errors()],
        ) from e


class SimulationClient:
    """Async REST client for the remote simulator.

    Every endpoint answers ``{success: true, data}`` or
    ``{success: false, errors: [{error}]}``; the envelope is unwrapped here and
    failures surface as :class:`SimulationAPIError` subclasses.
    """

    def __init__(
        self,
        config: SimulationAPIConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or SimulationAPIConfig()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        logger.info(f"Initialized SimulationClient (base_url={self.config.base_url})")

    async def __aenter__(self) -> SimulationClient:
        limits = httpx.Limits(
            max_connections=self.config.max_connections,
            max_keepalive_connections=self.config.max_keepalive_connections,
        )
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url.rstrip("/") + self.config.api_prefix,
            timeout=self.config.timeout_seconds,
            limits=limits,
            headers={"Content-Type": "application/json"},
            transport=self._transport,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: Any,
    ) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Closed SimulationClient")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(
                "SimulationClient must be used as async context manager"
            )
        return self._client

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> Any:
        # Only reads are retried; a mutation resent after a lost response
        # could be applied twice.
        max_attempts = max(1, self.config.max_retries) if method == "GET" else 1
        retry_count = 0
        last_error: Exception | None = None

        while retry_count < max_attempts:
            try:
                response = await self.client.request(
                    method=method,
                    url=endpoint,
                    params=params,
                    json=json_data,
                )
            except httpx.TimeoutException as e:
                last_error = e
                retry_count += 1
                if retry_count < max_attempts:
                    logger.warning(f"Timeout on {method} {endpoint}, retrying ({retry_count})...")
                    await asyncio.sleep(2 ** (retry_count - 1))
                continue
            except httpx.RequestError as e:
                logger.error(f"Network error on {method} {endpoint}: {e}")
                raise SimulationNetworkError(f"Cannot reach simulator: {e}") from e

            if response.status_code >= 500 and retry_count + 1 < max_attempts:
                wait_time = 2 ** retry_count
                logger.warning(
                    f"Server error {response.status_code}, "
                    f"retrying in {wait_time}s..."
                )
                await asyncio.sleep(wait_time)
                retry_count += 1
                continue

            return self._unwrap(response, endpoint)

        raise SimulationNetworkError(
            f"Request failed after {retry_count} attempts: {last_error}"
        )

    def _unwrap(self, response: httpx.Response, endpoint: str) -> Any:
        try:
            body = response.json()
        except ValueError:
            body = None

        errors = _extract_errors(body)
        message = "; ".join(errors) or f"HTTP {response.status_code} from {endpoint}"

        if response.status_code == 404:
            raise SimulationNotFoundError(message, status_code=404, errors=errors)
        if response.status_code >= 500:
            raise SimulationAPIError(message, status_code=response.status_code, errors=errors)
        if response.status_code >= 400:
            raise SimulationRequestError(message, status_code=response.status_code, errors=errors)
        if not isinstance(body, dict):
            raise SimulationResponseError(f"Malformed response from {endpoint}", status_code=response.status_code)
        if not body.get("success", False):
            raise SimulationRequestError(message, status_code=response.status_code, errors=errors)

        return body.get("data")

    # Lifecycle

    async def start(self, params: StartParams) -> Simulation:
        data = await self._request("POST", "/start", json_data=params.to_wire())
        return _parse(Simulation, data, "/start")

    async def pause(self, simulation_id: str) -> Any:
        return await self._request("POST", f"/{simulation_id}/pause")

    async def resume(self, simulation_id: str) -> Any:
        return await self._request("POST", f"/{simulation_id}/resume")

    async def stop(self, simulation_id: str) -> Any:
        return await self._request("POST", f"/{simulation_id}/stop")

    async def get_status(self, simulation_id: str) -> SimulationSnapshot:
        data = await self._request("GET", f"/{simulation_id}/status")
        return _parse(SimulationSnapshot, data or {}, "status")

    async def get_results(self, simulation_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/{simulation_id}/results") or {}

    async def get_available_dates(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/available-dates") or {}
        return data.get("dates", [])

    # Point of sale

    async def get_available_items(self, simulation_id: str) -> list[Item]:
        data = await self._request("GET", f"/{simulation_id}/pos/items") or {}
        return [_parse(Item, item, "pos/items") for item in data.get("items", [])]

    async def purchase_items(
        self, simulation_id: str, items: list[PurchaseLine]
    ) -> PurchaseResult:
        data = await self._request(
            "POST",
            f"/{simulation_id}/pos/purchase",
            json_data={"items": [line.to_wire() for line in items]},
        )
        return _parse(PurchaseResult, data or {}, "pos/purchase")

    # Schedule mutations

    async def add_batch(self, simulation_id: str, spec: BatchSpec) -> MutationResult:
        data = await self._request(
            "POST", f"/{simulation_id}/batch/add", json_data=spec.to_wire()
        )
        return _parse(MutationResult, data or {}, "batch/add")

    async def delete_batch(self, simulation_id: str, batch_id: str) -> MutationResult:
        data = await self._request("DELETE", f"/{simulation_id}/batch/{batch_id}")
        return _parse(MutationResult, data or {}, "batch/delete")

    async def move_batch(
        self,
        simulation_id: str,
        batch_id: str,
        new_start_time: str,
        new_rack: int,
    ) -> MutationResult:
        data = await self._request(
            "POST",
            f"/{simulation_id}/batch/move",
            json_data={
                "batchId": batch_id,
                "newStartTime": new_start_time,
                "newRack": new_rack,
            },
        )
        return _parse(MutationResult, data or {}, "batch/move")

    async def get_suggested_batches(
        self, simulation_id: str, mode: str | None = None
    ) -> list[SuggestedBatch]:
        params = {"mode": mode} if mode else None
        data = await self._request(
            "GET", f"/{simulation_id}/suggested-batches", params=params
        )
        if isinstance(data, dict):
            raw = data.get("suggestedBatches", [])
        else:
            raw = data or []
        return [_parse(SuggestedBatch, b, "suggested-batches") for b in raw]

    # Catering

    async def create_catering_order(
        self, simulation_id: str, order: CateringOrderRequest
    ) -> Any:
        return await self._request(
            "POST", f"/{simulation_id}/catering-order", json_data=order.to_wire()
        )

    async def approve_catering_order(self, simulation_id: str, order_id: str) -> Any:
        return await self._request(
            "POST", f"/{simulation_id}/catering-order/{order_id}/approve"
        )

    async def reject_catering_order(self, simulation_id: str, order_id: str) -> Any:
        return await self._request(
            "POST", f"/{simulation_id}/catering-order/{order_id}/reject"
        )

    async def get_catering_orders(self, simulation_id: str) -> list[CateringOrder]:
        data = await self._request("GET", f"/{simulation_id}/catering-orders") or []
        return [_parse(CateringOrder, o, "catering-orders") for o in data]

    async def set_auto_approve_catering(self, simulation_id: str, enabled: bool) -> Any:
        return await self._request(
            "POST",
            f"/{simulation_id}/catering-order/auto-approve",
            json_data={"enabled": enabled},
        )


def create_simulation_client(
    base_url: str | None = None,
    config: SimulationAPIConfig | None = None,
) -> SimulationClient:
    """Build a client from explicit values or application settings."""
    if config is None:
        settings = get_settings()
        config = SimulationAPIConfig(
            base_url=base_url or settings.api.base_url,
            timeout_seconds=settings.api.timeout_seconds,
            max_retries=settings.api.max_retries,
        )
    return SimulationClient(config=config)
