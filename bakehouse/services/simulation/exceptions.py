class SimulationAPIError(Exception):
    """Base exception for simulator API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        errors: list[str] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


class SimulationNotFoundError(SimulationAPIError):
    """Simulation or batch not found."""

    pass


class SimulationRequestError(SimulationAPIError):
    """Request rejected by the simulator."""

    pass


class SimulationNetworkError(SimulationAPIError):
    """Transport failure or retries exhausted."""

    pass


class SimulationResponseError(SimulationAPIError):
    """Reply body did not match the expected shape."""

    pass
