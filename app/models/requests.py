"""Request bodies of the dashboard API."""

from pydantic import BaseModel, Field

from rdpanel.storage.groups import DEFAULT_COLOR

# "#RRGGBB"
COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


class AccountCreate(BaseModel):
    """Register a provider account."""

    name: str = Field(min_length=1, max_length=100)
    api_key: str


class GroupCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    color: str = Field(default=DEFAULT_COLOR, pattern=COLOR_PATTERN)


class GroupUpdate(BaseModel):
    """Partial group update. Omitted fields are left unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    color: str | None = Field(default=None, pattern=COLOR_PATTERN)


class GroupServers(BaseModel):
    server_ids: list[str] = Field(min_length=1)


class OrderCreate(BaseModel):
    """Server order. Identifiers are validated by the client."""

    distro_id: int
    region_id: int
    plan_id: int
