"""
Proxy Forwarder - Fleet API Request Forwarding
==============================================

Builds and issues the authenticated outbound call for a proxied action and
relays the upstream answer back unchanged.

Outbound request:
-----------------
    POST {base_url}/{upstream_action}
    Authorization: Basic <token>        (token used as-is)
    Content-Type: application/json
    <inbound body, verbatim>

Response handling:
------------------
- Upstream status is relayed as-is, including 4xx/5xx
- Content-Type is always application/json
- Body is read fully and relayed unmodified
- A single attempt is made; nothing is retried

The coroutine runs inside the caller's dispatch task, so cancelling that task
(caller disconnect) cancels the in-flight httpx call.
"""

import logging
import time

import httpx

from ..errors import (
    OutboundRequestBuildError,
    UpstreamBodyReadError,
    UpstreamTimeout,
    UpstreamUnreachable,
)
from ..models import ProxiedResponse
from .router import validate_upstream_action

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


def build_target_url(base_url: str, upstream_action: str) -> str:
    """
    Join base URL and action with exactly one slash at the seam.

    Trailing slashes of the base are collapsed; the action is never rewritten.

    Raises:
        MissingAction: If the action is empty or has an empty, "." or ".." segment
    """
    return f"{base_url.rstrip('/')}/{validate_upstream_action(upstream_action)}"


def build_upstream_headers(auth_token: str) -> dict:
    """The only two headers sent upstream."""
    return {
        "Authorization": f"Basic {auth_token}",
        "Content-Type": JSON_CONTENT_TYPE,
    }


class ProxyForwarder:
    """
    Issues Fleet API calls through a shared httpx client.

    The client is owned by the host; the forwarder never closes it.
    """

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def forward(
        self,
        base_url: str,
        auth_token: str,
        upstream_action: str,
        body: bytes,
    ) -> ProxiedResponse:
        """
        Forward one call to the Fleet API.

        Args:
            base_url: Resolved Fleet base URL
            auth_token: Resolved Basic credential, already in wire form
            upstream_action: Upstream action name, e.g. "ListCollectors"
            body: Inbound request body

        Returns:
            ProxiedResponse with the upstream status and body

        Raises:
            MissingAction: If the action would not name an upstream path segment
            OutboundRequestBuildError: If the request cannot be constructed
            UpstreamTimeout: If the upstream did not answer in time
            UpstreamUnreachable: If the upstream could not be reached
            UpstreamBodyReadError: If the upstream body could not be read
        """
        target_url = build_target_url(base_url, upstream_action)

        try:
            request = self.client.build_request(
                "POST",
                target_url,
                content=body,
                headers=build_upstream_headers(auth_token),
            )
        except (httpx.InvalidURL, ValueError) as e:
            logger.error(
                f"Failed to create outbound request: {type(e).__name__}",
                extra={"upstream_action": upstream_action},
            )
            raise OutboundRequestBuildError()

        started = time.monotonic()
        try:
            response = await self.client.send(request, stream=True)
        except httpx.TimeoutException:
            logger.error(
                "Fleet API request timeout",
                extra={"upstream_action": upstream_action, "target_url": target_url},
            )
            raise UpstreamTimeout()
        except httpx.TransportError as e:
            logger.error(
                f"Fleet API network error: {e}",
                extra={"upstream_action": upstream_action, "target_url": target_url},
            )
            raise UpstreamUnreachable()

        try:
            response_body = await response.aread()
        except (httpx.TransportError, httpx.StreamError) as e:
            logger.error(
                f"Failed to read Fleet API response: {e}",
                extra={"upstream_action": upstream_action, "status_code": response.status_code},
            )
            raise UpstreamBodyReadError()
        finally:
            await response.aclose()

        logger.info(
            "Fleet API call completed",
            extra={
                "upstream_action": upstream_action,
                "status_code": response.status_code,
                "elapsed_ms": round((time.monotonic() - started) * 1000, 1),
                "response_bytes": len(response_body),
            },
        )

        return ProxiedResponse(
            status_code=response.status_code,
            headers={"Content-Type": JSON_CONTENT_TYPE},
            body=response_body,
        )
