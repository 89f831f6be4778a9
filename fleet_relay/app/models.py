"""
Data Models Module

Pydantic models shared by the relay engine and the host adapter.

Models are organized by functional area:
- Instance configuration (settings handed over by the host, parsed JSON data)
- Resource calls (inbound request, produced response)
- Echo payload
- Health check result
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field, StrictStr


# ============================================================================
# Instance Configuration Models
# ============================================================================

class ProxyTarget(str, Enum):
    """Endpoint profile used by the generic proxy route."""
    CONFIGURED = "configured"
    DEFAULT = "default"


class InstanceConfig(BaseModel):
    """Non-secret instance configuration parsed from the host's JSON data."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    fleet_base_url: StrictStr = Field(
        default="",
        alias="fleetBaseURL",
        description="Fleet Management API base URL (service path included)",
    )
    datasource_uid: StrictStr = Field(
        default="",
        alias="datasourceUid",
        description="Opaque reference to the data source this instance serves",
    )
    proxy_target: ProxyTarget = Field(
        default=ProxyTarget.CONFIGURED,
        alias="proxyTarget",
        description="Endpoint profile for /proxy-fleet/ calls",
    )
    default_fleet_base_url: StrictStr = Field(
        default="",
        alias="defaultFleetBaseURL",
        description="Base URL of the 'default' endpoint profile",
    )


class InstanceSettings(BaseModel):
    """Raw settings the host supplies when it asks for an instance."""

    model_config = ConfigDict(frozen=True)

    json_data: bytes = Field(default=b"", description="Raw instance JSON")
    decrypted_secure_json_data: Dict[str, str] = Field(
        default_factory=dict,
        description="Decrypted secrets keyed by credential name",
        repr=False,
    )
    updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Last modification time of the settings",
    )


# ============================================================================
# Resource Call Models
# ============================================================================

class ResourceRequest(BaseModel):
    """Inbound resource call dispatched by the host."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="Resource path relative to the resource root")
    method: str = Field(default="GET", description="HTTP method")
    body: bytes = Field(default=b"", description="Raw request body")


class ProxiedResponse(BaseModel):
    """Status/headers/body triple returned to the host."""

    model_config = ConfigDict(frozen=True)

    status_code: int = Field(..., description="HTTP status code")
    headers: Dict[str, str] = Field(
        default_factory=lambda: {"Content-Type": "application/json"},
        description="Response headers",
    )
    body: bytes = Field(default=b"", description="Raw response body")


# ============================================================================
# Echo Models
# ============================================================================

class EchoMessage(BaseModel):
    """Body accepted and returned by /echo."""
    message: StrictStr = Field(default="", description="Message to echo back")


# ============================================================================
# Health Models
# ============================================================================

class HealthStatus(str, Enum):
    OK = "ok"
    ERROR = "error"


class HealthResult(BaseModel):
    """Result of a health check."""
    status: HealthStatus = Field(..., description="Health status")
    message: str = Field(default="", description="Human readable detail")
