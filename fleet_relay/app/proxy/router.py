"""
Action Router
=============

Maps an inbound resource path to one action from a closed, explicitly
registered set.

Route kinds:
------------
- FIXED: handled locally by the instance (ping, echo), never proxied
- NAMED: proxied to an upstream action name fixed at registration time
- GENERIC: proxied to the upstream action named by the path remainder after
  the registered prefix

Precedence:
-----------
1. Exact path table
2. The single prefix entry
3. ActionNotFound

A generic call whose remainder is empty, or has an empty, "." or ".." segment,
raises MissingAction, so an upstream URL without a usable action segment (or
one climbing above the base URL) is never built.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional
from urllib.parse import unquote

from ..errors import ActionNotFound, MissingAction


def validate_upstream_action(upstream_action: str) -> str:
    """
    Check that an upstream action has only non-empty, non-dot segments.

    The action is checked percent-decoded, so "%2e%2e" counts as ".." and
    "%2f" as a separator.

    Raises:
        MissingAction: If the action is empty or has an empty, "." or ".." segment
    """
    if not upstream_action:
        raise MissingAction()

    for segment in unquote(upstream_action).split("/"):
        if segment in ("", ".", ".."):
            raise MissingAction(f"Invalid action: {upstream_action!r}")

    return upstream_action


class ActionKind(str, Enum):
    FIXED = "fixed"
    NAMED = "named"
    GENERIC = "generic"


@dataclass(frozen=True)
class Action:
    """
    A resolved route.

    Attributes:
        name: Registered action name (ping, echo, listCollectors, ...)
        kind: How the instance handles it
        upstream_action: Upstream action name for proxied kinds, else None
    """
    name: str
    kind: ActionKind
    upstream_action: Optional[str] = None


class ActionRouter:
    """Exact-path table plus one prefix-matched generic proxy entry."""

    def __init__(self):
        self._exact: Dict[str, Action] = {}
        self._prefix: Optional[str] = None
        self._prefix_name: Optional[str] = None

    def add_fixed(self, path: str, name: str) -> None:
        self._register(path, Action(name=name, kind=ActionKind.FIXED))

    def add_named(self, path: str, name: str, upstream_action: str) -> None:
        try:
            validate_upstream_action(upstream_action)
        except MissingAction:
            raise ValueError(f"Named route {path!r} needs a valid upstream action: {upstream_action!r}")
        self._register(
            path,
            Action(name=name, kind=ActionKind.NAMED, upstream_action=upstream_action),
        )

    def set_generic(self, prefix: str, name: str) -> None:
        if self._prefix is not None:
            raise ValueError(f"Generic prefix already registered: {self._prefix!r}")
        if not prefix.startswith("/") or not prefix.endswith("/"):
            raise ValueError(f"Generic prefix must start and end with '/': {prefix!r}")
        self._prefix = prefix
        self._prefix_name = name

    def _register(self, path: str, action: Action) -> None:
        if not path.startswith("/"):
            raise ValueError(f"Route path must start with '/': {path!r}")
        if path in self._exact:
            raise ValueError(f"Route already registered: {path!r}")
        self._exact[path] = action

    def resolve(self, path: str) -> Action:
        """
        Resolve a path to its action.

        Args:
            path: Inbound resource path, e.g. "/proxy-fleet/ListCollectors"

        Returns:
            The matching Action

        Raises:
            ActionNotFound: If nothing is registered for the path
            MissingAction: If the generic prefix matched with an unusable remainder
        """
        action = self._exact.get(path)
        if action is not None:
            return action

        if self._prefix is not None and path.startswith(self._prefix):
            upstream_action = validate_upstream_action(path[len(self._prefix):])
            return Action(
                name=self._prefix_name,
                kind=ActionKind.GENERIC,
                upstream_action=upstream_action,
            )

        raise ActionNotFound(f"No resource registered for {path}")


# ============================================================================
# Default Route Table
# ============================================================================

PING = "ping"
ECHO = "echo"
LIST_COLLECTORS = "listCollectors"
GET_CONFIG = "getConfig"
PROXY_FLEET = "proxyFleet"

GENERIC_PROXY_PREFIX = "/proxy-fleet/"


def build_default_router() -> ActionRouter:
    """Register every resource the relay exposes."""
    router = ActionRouter()
    router.add_fixed("/ping", PING)
    router.add_fixed("/echo", ECHO)
    router.add_named("/fleet-management-api/ListCollectors", LIST_COLLECTORS, "ListCollectors")
    router.add_named("/fleet-management-api/GetConfig", GET_CONFIG, "GetConfig")
    router.set_generic(GENERIC_PROXY_PREFIX, PROXY_FLEET)
    return router
