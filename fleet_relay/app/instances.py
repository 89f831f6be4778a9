"""
Instance Manager
================

Host-side cache of relay instances.

An instance is keyed by the host (one per app/data source) and lives until
its settings change. When the ``updated`` stamp of the supplied settings
differs from the cached one, a new instance is created and the old one is
disposed. A failed creation keeps the previous instance in place.
"""

import logging
import threading
from datetime import datetime
from typing import Dict, Tuple

import httpx

from .models import InstanceSettings
from .plugin import FleetRelayApp

logger = logging.getLogger(__name__)


class InstanceManager:
    """
    Caches FleetRelayApp instances per key.

    Attributes:
        client: Shared HTTP client handed to every instance
        instances: key -> (settings stamp, instance)
        lock: Guards the cache
    """

    def __init__(self, client: httpx.AsyncClient):
        self.client = client
        self.instances: Dict[str, Tuple[datetime, FleetRelayApp]] = {}
        self.lock = threading.Lock()

    def get(self, key: str, settings: InstanceSettings) -> FleetRelayApp:
        """
        Return the instance for ``key``, creating or replacing it as needed.

        Raises:
            ConfigParseError: If a new instance had to be created and its
                settings could not be parsed
        """
        with self.lock:
            cached = self.instances.get(key)
            if cached is not None and cached[0] == settings.updated:
                return cached[1]

            instance = FleetRelayApp.create(settings, self.client)
            self.instances[key] = (settings.updated, instance)

        if cached is not None:
            logger.info("Replacing relay instance after settings update", extra={"instance_key": key})
            cached[1].dispose()

        return instance

    def dispose_all(self) -> None:
        with self.lock:
            instances = list(self.instances.values())
            self.instances.clear()

        for _, instance in instances:
            instance.dispose()
        logger.info("Disposed relay instances", extra={"count": len(instances)})
