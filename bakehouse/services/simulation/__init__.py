from .client import SimulationClient, create_simulation_client
from .config import SimulationAPIConfig
from .exceptions import (
    SimulationAPIError,
    SimulationNetworkError,
    SimulationNotFoundError,
    SimulationRequestError,
    SimulationResponseError,
)
from .models import (
    Batch,
    BatchKey,
    BatchSpec,
    CateringOrder,
    CateringOrderLine,
    CateringOrderRequest,
    Event,
    ForecastScales,
    InventoryUpdate,
    Item,
    MutationResult,
    PurchaseLine,
    PurchaseResult,
    Simulation,
    SimulationSnapshot,
    StartParams,
    SuggestedBatch,
)

__all__ = [
    "SimulationClient",
    "create_simulation_client",
    "SimulationAPIConfig",
    "SimulationAPIError",
    "SimulationNetworkError",
    "SimulationNotFoundError",
    "SimulationRequestError",
    "SimulationResponseError",
    "Batch",
    "BatchKey",
    "BatchSpec",
    "CateringOrder",
    "CateringOrderLine",
    "CateringOrderRequest",
    "Event",
    "ForecastScales",
    "InventoryUpdate",
    "Item",
    "MutationResult",
    "PurchaseLine",
    "PurchaseResult",
    "Simulation",
    "SimulationSnapshot",
    "StartParams",
    "SuggestedBatch",
]
