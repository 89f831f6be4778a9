"""
Proxy Package
=============

Routing and forwarding for Fleet Management API calls.

Main Components:
----------------
- router.py: ActionRouter with the registered resource table
- forwarder.py: ProxyForwarder issuing authenticated upstream calls

Usage:
------
    from fleet_relay.app.proxy import ProxyForwarder, build_default_router
    action = build_default_router().resolve("/proxy-fleet/ListCollectors")
    response = await ProxyForwarder(client).forward(base_url, token, action.upstream_action, body)
"""

from .forwarder import ProxyForwarder, build_target_url
from .router import Action, ActionKind, ActionRouter, build_default_router

__all__ = [
    "Action",
    "ActionKind",
    "ActionRouter",
    "ProxyForwarder",
    "build_default_router",
    "build_target_url",
]
