from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    uptime: float
    rooms: int
    timestamp: str


class StatsResponse(BaseModel):
    total_rooms: int
    active_connections: int
    rooms_with_two_peers: int
    uptime: float
