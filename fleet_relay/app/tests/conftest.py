"""Shared fixtures for relay tests."""

import httpx
import pytest

from fleet_relay.app.plugin import FleetRelayApp

from .upstream import RecordingUpstream, make_settings


@pytest.fixture
def upstream():
    return RecordingUpstream()


@pytest.fixture
def http_client(upstream):
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream))


@pytest.fixture
def relay(http_client):
    """Relay instance configured with BASE_URL and TOKEN"""
    return FleetRelayApp.create(make_settings(), http_client)
