"""
Fleet Relay Application
=======================

Resource routing and credential-injecting proxy engine for the Fleet
Management API, plus the FastAPI host adapter that runs it.

Modules:
    - plugin.py     : FleetRelayApp, the host-facing instance contract
    - instances.py  : InstanceManager caching instances per key
    - resolver.py   : ConfigResolver and SecretStore
    - proxy/        : ActionRouter and ProxyForwarder
    - config.py     : Host adapter settings (pydantic-settings)
    - main.py       : FastAPI app factory
"""

from .errors import ConfigParseError, RelayError
from .instances import InstanceManager
from .models import InstanceConfig, InstanceSettings, ProxiedResponse, ResourceRequest
from .plugin import FleetRelayApp

__all__ = [
    "ConfigParseError",
    "FleetRelayApp",
    "InstanceConfig",
    "InstanceManager",
    "InstanceSettings",
    "ProxiedResponse",
    "RelayError",
    "ResourceRequest",
]
