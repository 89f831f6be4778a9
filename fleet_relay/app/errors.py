"""
Relay Error Taxonomy
====================

Every failure the relay can produce on its own is a ``RelayError`` subclass
carrying the HTTP status it maps to and a short machine-readable code.

Errors are raised where they happen and converted into a response exactly once,
at the instance boundary (see ``plugin.FleetRelayApp.call_resource``).

Statuses:
    - 400: MissingCredentials, MissingAction, InvalidBody
    - 404: ActionNotFound
    - 405: MethodNotAllowed
    - 500: InboundBodyReadError, OutboundRequestBuildError, UpstreamBodyReadError
    - 502: UpstreamUnreachable
    - 504: UpstreamTimeout

Upstream 4xx/5xx responses are not errors and never pass through here.
"""

from typing import Dict

from fastapi import status

# Header stamped on every locally generated error response
RELAY_ERROR_HEADER = "X-Fleet-Relay-Error"


class ConfigParseError(Exception):
    """Instance settings could not be parsed; the instance is not created."""
    pass


class RelayError(Exception):
    """Base class for failures converted into an HTTP-style response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "relay_error"
    default_message: str = "Relay error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_body(self) -> Dict[str, str]:
        return {"error": self.code, "message": self.message}


class ActionNotFound(RelayError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "Resource not found"


class MethodNotAllowed(RelayError):
    status_code = status.HTTP_405_METHOD_NOT_ALLOWED
    code = "method_not_allowed"
    default_message = "method not allowed"


class InvalidBody(RelayError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_body"
    default_message = "invalid JSON body"


class MissingCredentials(RelayError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "missing_credentials"
    default_message = "Fleet credentials not configured"


class MissingAction(RelayError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "missing_action"
    default_message = "Missing action"


class InboundBodyReadError(RelayError):
    code = "inbound_body_read_error"
    default_message = "Failed to read request body"


class OutboundRequestBuildError(RelayError):
    code = "outbound_request_build_error"
    default_message = "Failed to create outbound request"


class UpstreamUnreachable(RelayError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "upstream_unreachable"
    default_message = "Fleet API request failed"


class UpstreamTimeout(UpstreamUnreachable):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    code = "upstream_timeout"
    default_message = "Fleet API request timed out"


class UpstreamBodyReadError(RelayError):
    code = "upstream_body_read_error"
    default_message = "Failed to read Fleet API response"
