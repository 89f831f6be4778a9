"""
Fleet Relay Instance
====================

The object the host creates per configured app instance. It exposes exactly
the host contract:

    create(settings, client)  -> FleetRelayApp | ConfigParseError
    dispose()                 -> None
    check_health()            -> HealthResult
    call_resource(request)    -> ProxiedResponse

Everything behind ``call_resource`` is host-agnostic: routing, credential
resolution and forwarding never touch FastAPI request objects.

Configuration and secrets are scoped to the instance. Several instances (one
per data source) can share a process without sharing credentials.
"""

import json
import logging
from typing import Awaitable, Callable, Dict

import httpx
from fastapi import status
from pydantic import ValidationError

from .errors import (
    RELAY_ERROR_HEADER,
    ConfigParseError,
    InvalidBody,
    MethodNotAllowed,
    RelayError,
)
from .models import (
    EchoMessage,
    HealthResult,
    HealthStatus,
    InstanceConfig,
    InstanceSettings,
    ProxiedResponse,
    ProxyTarget,
    ResourceRequest,
)
from .proxy.forwarder import JSON_CONTENT_TYPE, ProxyForwarder
from .proxy.router import ECHO, PING, Action, ActionKind, ActionRouter, build_default_router
from .resolver import ConfigResolver, SecretStore

logger = logging.getLogger(__name__)

LocalHandler = Callable[[ResourceRequest], Awaitable[ProxiedResponse]]


def json_response(status_code: int, payload: Dict, headers: Dict[str, str] = None) -> ProxiedResponse:
    response_headers = {"Content-Type": JSON_CONTENT_TYPE}
    response_headers.update(headers or {})
    return ProxiedResponse(
        status_code=status_code,
        headers=response_headers,
        body=json.dumps(payload).encode("utf-8"),
    )


def error_response(error: RelayError) -> ProxiedResponse:
    """Convert a relay error into the response handed back to the host."""
    return json_response(
        error.status_code,
        error.to_body(),
        headers={RELAY_ERROR_HEADER: error.code},
    )


def parse_instance_config(json_data: bytes) -> InstanceConfig:
    """
    Parse the host's instance JSON.

    Raises:
        ConfigParseError: If the payload is empty, not JSON, not an object,
            or carries fields of the wrong type
    """
    try:
        return InstanceConfig.model_validate_json(json_data)
    except ValidationError as e:
        raise ConfigParseError(f"failed to parse plugin config: {e}") from e


class FleetRelayApp:
    """Relay instance bound to one configuration and one secret store."""

    def __init__(
        self,
        config: InstanceConfig,
        secrets: SecretStore,
        forwarder: ProxyForwarder,
        router: ActionRouter = None,
    ):
        self.config = config
        self.resolver = ConfigResolver(config, secrets)
        self.forwarder = forwarder
        self.router = router or build_default_router()
        self._local_handlers: Dict[str, LocalHandler] = {
            PING: self.handle_ping,
            ECHO: self.handle_echo,
        }

    @classmethod
    def create(cls, settings: InstanceSettings, client: httpx.AsyncClient) -> "FleetRelayApp":
        """
        Build an instance from host settings, failing fast on bad JSON data.

        Args:
            settings: Raw instance settings from the host
            client: Shared HTTP client owned by the host

        Raises:
            ConfigParseError: If the JSON data does not match InstanceConfig
        """
        config = parse_instance_config(settings.json_data)
        instance = cls(
            config=config,
            secrets=SecretStore(settings.decrypted_secure_json_data),
            forwarder=ProxyForwarder(client),
        )
        logger.info(
            "Created relay instance",
            extra={
                "datasource_uid": config.datasource_uid,
                "proxy_target": config.proxy_target.value,
                "has_base_url": bool(config.fleet_base_url),
            },
        )
        return instance

    def dispose(self) -> None:
        # The HTTP client belongs to the host; nothing else is held.
        logger.debug("Disposed relay instance", extra={"datasource_uid": self.config.datasource_uid})

    async def check_health(self) -> HealthResult:
        """Static liveness; the Fleet API is deliberately not contacted."""
        return HealthResult(status=HealthStatus.OK, message="ok")

    async def call_resource(self, request: ResourceRequest) -> ProxiedResponse:
        """
        Dispatch one resource call.

        Every failure is converted here into a status/body pair; nothing
        escapes to the host except cancellation.
        """
        try:
            action = self.router.resolve(request.path)
            if action.kind is ActionKind.FIXED:
                return await self._local_handlers[action.name](request)
            return await self.proxy(action, request)

        except RelayError as e:
            logger.info(
                f"Resource call failed: {e.code}",
                extra={"path": request.path, "method": request.method, "status_code": e.status_code},
            )
            return error_response(e)

        except Exception as e:
            logger.error(
                f"Unexpected error in call_resource: {e}",
                exc_info=True,
                extra={"path": request.path, "method": request.method},
            )
            return error_response(RelayError("Internal server error"))

    # ========================================================================
    # Handlers
    # ========================================================================

    async def handle_ping(self, request: ResourceRequest) -> ProxiedResponse:
        return json_response(status.HTTP_200_OK, {"message": "ok"})

    async def handle_echo(self, request: ResourceRequest) -> ProxiedResponse:
        if request.method.upper() != "POST":
            raise MethodNotAllowed()

        # Only the first JSON value is decoded; null reads as an empty message
        try:
            document, _ = json.JSONDecoder().raw_decode(request.body.decode("utf-8").lstrip())
            payload = EchoMessage.model_validate({} if document is None else document)
        except (ValueError, ValidationError):
            raise InvalidBody()

        return json_response(status.HTTP_200_OK, payload.model_dump())

    async def proxy(self, action: Action, request: ResourceRequest) -> ProxiedResponse:
        """Resolve credentials just-in-time and forward to the Fleet API."""
        if action.kind is ActionKind.GENERIC:
            target = self.config.proxy_target
        else:
            target = ProxyTarget.CONFIGURED

        base_url, auth_token = self.resolver.resolve(target)

        logger.info(
            "Proxying resource call to Fleet API",
            extra={
                "action": action.name,
                "upstream_action": action.upstream_action,
                "proxy_target": target.value,
                "body_bytes": len(request.body),
            },
        )
        return await self.forwarder.forward(base_url, auth_token, action.upstream_action, request.body)
