"""
Credential resolution for proxied calls.

The base URL comes from the instance's parsed JSON data, the token from the
host's decrypted secrets. Both are looked up just-in-time for every proxied
call and neither is ever logged.
"""

import logging
from types import MappingProxyType
from typing import Mapping, Tuple

from .errors import MissingCredentials
from .models import InstanceConfig, ProxyTarget

logger = logging.getLogger(__name__)

# Secret names in the host's decrypted secure JSON data
FLEET_TOKEN_KEY = "fleetAuthToken"
DEFAULT_TOKEN_KEY = "defaultFleetAuthToken"


class SecretStore:
    """Read-only view over the host's decrypted secrets."""

    def __init__(self, secrets: Mapping[str, str] = None):
        self._secrets = MappingProxyType(dict(secrets or {}))

    def get(self, name: str) -> str:
        return self._secrets.get(name) or ""

    def __contains__(self, name: str) -> bool:
        return bool(self._secrets.get(name))

    def __repr__(self) -> str:
        return f"SecretStore(keys={sorted(self._secrets)})"


class ConfigResolver:
    """Pairs a base URL with its credential for one endpoint profile."""

    def __init__(self, config: InstanceConfig, secrets: SecretStore):
        self.config = config
        self.secrets = secrets

    def resolve(self, target: ProxyTarget = ProxyTarget.CONFIGURED) -> Tuple[str, str]:
        """
        Resolve the base URL and auth token for an endpoint profile.

        Args:
            target: Endpoint profile to resolve

        Returns:
            (base_url, auth_token), both non-empty

        Raises:
            MissingCredentials: If either value is absent or empty
        """
        if target is ProxyTarget.DEFAULT:
            base_url = self.config.default_fleet_base_url
            auth_token = self.secrets.get(DEFAULT_TOKEN_KEY)
        else:
            base_url = self.config.fleet_base_url
            auth_token = self.secrets.get(FLEET_TOKEN_KEY)

        if not base_url or not auth_token:
            logger.warning(
                "Fleet credentials not configured",
                extra={
                    "proxy_target": target.value,
                    "has_base_url": bool(base_url),
                    "has_token": bool(auth_token),
                },
            )
            raise MissingCredentials()

        return base_url, auth_token
