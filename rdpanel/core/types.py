"""Shared types for the hosting panel.

Wire payloads of the hosting API are pydantic models so that responses can be
validated at the client boundary. Local records (accounts, groups, audit
entries) use the same models for persistence.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Annotated

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    field_validator,
)

from rdpanel.config.settings import mask_secret

if TYPE_CHECKING:
    from .errors import ApiError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Hosting API payloads
# =============================================================================


class PowerAction(str, Enum):
    """Power actions accepted by the provider."""

    RESET = "reset"
    START = "start"
    STOP = "stop"


class Server(BaseModel):
    """A server as returned by the provider.

    Only ``id`` is required; the provider occasionally omits the rest.
    Unknown fields are kept as-is.
    """

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    id: str
    node: str = ""
    rdns: str = ""
    distro: str = ""
    status: str = ""  # running, stopped, suspended, ...
    plan_id: int | None = None
    created_at: str | None = None
    ip_address: str = ""
    expiry_date: str | None = None

    @field_validator("node", "rdns", "distro", "status", "ip_address", mode="before")
    @classmethod
    def _null_as_empty(cls, value: object) -> object:
        return "" if value is None else value

    @property
    def display_name(self) -> str:
        return self.rdns or self.id

    @property
    def is_running(self) -> bool:
        return self.status == "running"


class PowerResponse(BaseModel):
    """Result of a power action."""

    model_config = ConfigDict(extra="allow")

    status: StrictBool


class BalanceResponse(BaseModel):
    """Account balance. The provider sends the amount as a string."""

    balance: StrictStr


class Plan(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    title: str = ""
    cores: int | None = None
    memory: float | None = None
    storage: float | None = None
    price: float | None = None


class Region(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    region: str = ""
    location: str = ""


class StockLevel(BaseModel):
    model_config = ConfigDict(extra="allow")

    available: bool = False
    stock: int = 0
    plan: Plan | None = None


class StockInfo(BaseModel):
    """Stock availability of a plan in a region."""

    model_config = ConfigDict(extra="allow")

    region: Region
    stock: StockLevel


class Distribution(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    description: str = ""


PositiveId = Annotated[StrictInt, Field(gt=0)]


class PurchaseRequest(BaseModel):
    """Order request. All identifiers must be positive integers."""

    model_config = ConfigDict(extra="forbid")

    distro_id: PositiveId
    region_id: PositiveId
    plan_id: PositiveId


class PurchaseResponse(BaseModel):
    success: StrictBool
    server_id: StrictInt


# =============================================================================
# Local records
# =============================================================================


class AccountStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    ERROR = "error"


class Account(BaseModel):
    """A provider account identified by its API key."""

    id: str = Field(default_factory=new_id)
    name: str
    api_key: str
    status: AccountStatus = AccountStatus.PENDING
    last_checked: datetime | None = None
    error: str | None = None

    def public_dict(self) -> dict:
        """Serialize without exposing the API key."""
        data = self.model_dump(mode="json")
        data["api_key"] = mask_secret(self.api_key)
        return data


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class AuditEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utcnow)
    action: str
    details: str
    account_name: str
    status: AuditStatus
    affected_servers: list[str] | None = None


class ServerGroup(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    color: str = "#3B82F6"
    server_ids: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Results
# =============================================================================


@dataclass
class BatchResult:
    """Per-server outcome of a batch power action."""

    action: PowerAction
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, ApiError] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        return (
            f"{self.action.value} command executed. "
            f"Success: {len(self.succeeded)}, Failed: {len(self.failed)}"
        )

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "succeeded": list(self.succeeded),
            "failed": {sid: err.to_dict() for sid, err in self.failed.items()},
        }
