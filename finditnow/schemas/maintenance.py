"""Site-wide maintenance switch."""

from pydantic import BaseModel, Field


DEFAULT_MAINTENANCE_MESSAGE = (
    "We are currently performing scheduled maintenance. Please check back soon."
)


class MaintenanceConfig(BaseModel):
    is_enabled: bool = False
    message: str = Field(default=DEFAULT_MAINTENANCE_MESSAGE, max_length=500)
    version: int = Field(default=0)


class MaintenanceUpdate(BaseModel):
    is_enabled: bool
    message: str = Field(default=DEFAULT_MAINTENANCE_MESSAGE, min_length=1, max_length=500)
