from pydantic import BaseModel


class SimulationAPIConfig(BaseModel):
    """Configuration for the simulator REST client."""

    base_url: str = "http://localhost:3001"
    api_prefix: str = "/api/abs/simulation"
    timeout_seconds: float = 30.0
    max_retries: int = 3
    max_connections: int = 20
    max_keepalive_connections: int = 10
