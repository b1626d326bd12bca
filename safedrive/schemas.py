from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class TripState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    ENDED = "ended"


class ViolationKind(str, Enum):
    SPEED_VIOLATION = "speed_violation"
    HARD_BRAKING = "hard_braking"
    RAPID_ACCELERATION = "rapid_acceleration"


class Sample(BaseModel):
    """One telemetry observation."""
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    speed: float
    speed_limit: float
    timestamp: Optional[datetime] = None


class TripAggregate(BaseModel):
    """Running summary statistics of a trip."""
    model_config = ConfigDict(frozen=True)

    distance: float = 0.0
    duration: int = 0
    average_speed: float = 0.0
    max_speed: float = 0.0
    speed_violations: int = 0
    hard_braking: int = 0
    rapid_acceleration: int = 0
    safety_score: int = 100


class Violation(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ViolationKind
    trip_id: str
    sample: Sample
    alertable: bool = False
    speed_delta: Optional[float] = None


class Alert(BaseModel):
    model_config = ConfigDict(frozen=True)

    alert_id: str
    kind: str = "speed"
    message: str
    trip_id: str
    user_id: str
    created_at: datetime
    is_read: bool = False
    # duration of the trip when the alert fired
    sequence: Optional[int] = None


class TripHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    trip_id: str
    user_id: str
    vehicle_id: Optional[str] = None
    nav_provider: Optional[str] = None
    start_time: datetime
    state: TripState
    already_active: bool = False


class TripSnapshot(BaseModel):
    """Point-in-time copy of a trip and its aggregate."""
    model_config = ConfigDict(frozen=True)

    trip_id: str
    user_id: str
    vehicle_id: Optional[str] = None
    nav_provider: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    state: TripState
    aggregate: TripAggregate


class IngestResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    trip_id: str
    aggregate: TripAggregate
    violations: List[Violation] = Field(default_factory=list)
    alert: Optional[Alert] = None


class ExportRecord(BaseModel):
    """Immutable export snapshot handed to an insurance provider."""
    model_config = ConfigDict(frozen=True)

    export_id: Optional[int] = None
    trip_id: str
    user_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    state: TripState
    nav_provider: Optional[str] = None
    insurance_provider: str
    aggregate: TripAggregate
    alerts: List[Alert] = Field(default_factory=list)
    samples: List[Sample] = Field(default_factory=list)
    profile: Optional[Dict[str, Any]] = None
    vehicle: Optional[Dict[str, Any]] = None
    insurance: Optional[Dict[str, Any]] = None
    exported_at: datetime
    status: str = "sent"


# Request bodies for the HTTP layer

class StartTripRequest(BaseModel):
    user_id: str
    vehicle_id: Optional[str] = None
    nav_provider: Optional[str] = None
    start_time: Optional[datetime] = None


class ExportRequest(BaseModel):
    insurance_provider: Optional[str] = None


class ReplayRequest(BaseModel):
    user_id: str = "replay_user"
    csv_path: Optional[str] = None
    interval: Optional[float] = None
