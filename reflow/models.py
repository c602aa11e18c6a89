import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

MATERIAL_TYPES = ("Plástico", "Metal", "Vidro", "Papel", "Eletrônico")

SIMULATED_SOURCE_ID = "SIMULATED_USER"

Position = Tuple[float, float]


def _now():
    return datetime.now(timezone.utc)


class MaterialStatus(str, Enum):
    """Lifecycle of a reported material. Only moves forward."""

    AVAILABLE = "AVAILABLE"
    IN_TRANSIT = "IN_TRANSIT"  # claimed by a collector
    COLLECTED = "COLLECTED"  # terminal


class TruckStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    EN_ROUTE = "EN_ROUTE"


class Severity(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"
    WARNING = "warning"


class Role(str, Enum):
    USER = "user"
    COLLECTOR = "collector"
    ADMIN = "admin"


class Material(BaseModel):
    """A reported unit of disposable waste.

    Instances are frozen: the registry replaces a material with an updated
    copy instead of mutating it, so `position` and `created_at` survive every
    transition untouched.

    Serialized with the camelCase aliases (`generatorId`, `collectorId`,
    `createdAt`) that make up the durable storage record.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    type: str
    weight: str
    position: Position
    status: MaterialStatus = MaterialStatus.AVAILABLE
    generator_id: Optional[str] = Field(default=None, alias="generatorId")
    collector_id: Optional[str] = Field(default=None, alias="collectorId")
    created_at: datetime = Field(default_factory=_now, alias="createdAt")

    def to_record(self):
        # absent generator/collector are left out of the record, not nulled
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Truck(BaseModel):
    """A simulated collector. Only `position` changes after roster creation."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    vehicle: str
    position: Position
    status: TruckStatus = TruckStatus.AVAILABLE


class Notification(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:10])
    message: str
    severity: Severity = Severity.INFO
    created_at: datetime = Field(default_factory=_now, alias="createdAt")


class Identity(BaseModel):
    """Acting user as supplied by the (mocked) session collaborator."""

    id: str
    name: str
    role: Optional[Role] = None
    details: Dict[str, Any] = Field(default_factory=dict)


# --- request bodies ---


class MaterialCreate(BaseModel):
    """Disposal report. `position` is absent when the device had no fix."""

    model_config = ConfigDict(populate_by_name=True)

    type: str
    weight: str = "A definir"
    position: Optional[Position] = None
    generator_id: Optional[str] = Field(default=None, alias="generatorId")


class ClaimRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    collector_id: Optional[str] = Field(default=None, alias="collectorId")


class NotificationCreate(BaseModel):
    message: str
    severity: Severity = Severity.INFO


class LoginRequest(BaseModel):
    name: str = "João Silva"


class ProfileRequest(BaseModel):
    role: Role
    details: Dict[str, Any] = Field(default_factory=dict)
