"""
Unit Tests for the Relay Instance
=================================

Tests for fleet_relay/app/plugin.py, exercised through call_resource the
way the host calls it.

Test Coverage:
--------------
1. Lifecycle (create, fail-fast parsing, dispose)
2. Ping and echo behaviour
3. Credential short-circuit (no outbound call)
4. Named and generic proxy routes
5. Error conversion and the relay error header
6. Health check independent of the upstream
"""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from fleet_relay.app.errors import RELAY_ERROR_HEADER, ConfigParseError
from fleet_relay.app.models import HealthStatus, InstanceSettings, ResourceRequest
from fleet_relay.app.plugin import FleetRelayApp

from .upstream import (
    BASE_URL,
    DEFAULT_BASE_URL,
    DEFAULT_TOKEN,
    TOKEN,
    make_settings,
)


def post(path: str, body: bytes = b"{}") -> ResourceRequest:
    return ResourceRequest(path=path, method="POST", body=body)


# ============================================================================
# Lifecycle Tests
# ============================================================================

def test_create_parses_config(http_client):
    relay = FleetRelayApp.create(make_settings(), http_client)

    assert relay.config.fleet_base_url == BASE_URL
    assert relay.config.datasource_uid == "fleet-ds"


@pytest.mark.parametrize("raw", [b"", b"{broken", b"[1, 2]", b'{"datasourceUid": ["x"]}'])
def test_create_fails_fast_on_malformed_settings(http_client, raw):
    with pytest.raises(ConfigParseError):
        FleetRelayApp.create(InstanceSettings(json_data=raw), http_client)


def test_dispose_is_a_noop(relay, http_client):
    relay.dispose()

    assert not http_client.is_closed


def test_instances_do_not_share_credentials(http_client):
    first = FleetRelayApp.create(make_settings(secrets={"fleetAuthToken": "first"}), http_client)
    second = FleetRelayApp.create(make_settings(secrets={"fleetAuthToken": "second"}), http_client)

    assert first.resolver.resolve()[1] == "first"
    assert second.resolver.resolve()[1] == "second"


# ============================================================================
# Ping / Echo Tests
# ============================================================================

@pytest.mark.asyncio
async def test_ping(relay, upstream):
    response = await relay.call_resource(ResourceRequest(path="/ping", method="GET"))

    assert response.status_code == 200
    assert json.loads(response.body) == {"message": "ok"}
    assert response.headers["Content-Type"] == "application/json"
    assert upstream.requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize("message", ["hello", "", "ünïcödé ✓", 'quotes " and \\ slashes'])
async def test_echo_round_trip(relay, message):
    body = json.dumps({"message": message}).encode("utf-8")

    response = await relay.call_resource(post("/echo", body))

    assert response.status_code == 200
    assert json.loads(response.body) == {"message": message}


@pytest.mark.asyncio
async def test_echo_ignores_unknown_fields(relay):
    response = await relay.call_resource(post("/echo", b'{"message": "hi", "extra": true}'))

    assert response.status_code == 200
    assert json.loads(response.body) == {"message": "hi"}


@pytest.mark.asyncio
async def test_echo_null_body_echoes_empty_message(relay):
    response = await relay.call_resource(post("/echo", b"null"))

    assert response.status_code == 200
    assert json.loads(response.body) == {"message": ""}


@pytest.mark.asyncio
async def test_echo_decodes_first_json_value_only(relay):
    response = await relay.call_resource(post("/echo", b'  {"message": "a"} trailing'))

    assert response.status_code == 200
    assert json.loads(response.body) == {"message": "a"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [b"", b"   ", b"not json", b"{", b'{"message": 5}', b"[]", b"false", b"\xff\xfe"],
)
async def test_echo_rejects_invalid_json(relay, upstream, body):
    with patch.object(relay, "proxy", new=AsyncMock()) as proxy:
        response = await relay.call_resource(post("/echo", body))

    assert response.status_code == 400
    assert response.headers[RELAY_ERROR_HEADER] == "invalid_body"
    proxy.assert_not_called()
    assert upstream.requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["GET", "PUT", "DELETE"])
@pytest.mark.parametrize("body", [b"", b'{"message": "hi"}', b"garbage"])
async def test_echo_rejects_non_post(relay, method, body):
    response = await relay.call_resource(ResourceRequest(path="/echo", method=method, body=body))

    assert response.status_code == 405


# ============================================================================
# Credential Short-Circuit Tests
# ============================================================================

PROXIED_PATHS = [
    "/fleet-management-api/ListCollectors",
    "/fleet-management-api/GetConfig",
    "/proxy-fleet/ListCollectors",
]


@pytest.mark.asyncio
@pytest.mark.parametrize("path", PROXIED_PATHS)
@pytest.mark.parametrize(
    "json_data,secrets",
    [
        ({"fleetBaseURL": ""}, {"fleetAuthToken": TOKEN}),
        ({"fleetBaseURL": BASE_URL}, {"fleetAuthToken": ""}),
        ({"fleetBaseURL": BASE_URL}, {}),
    ],
)
async def test_missing_credentials_make_no_outbound_call(http_client, upstream, path, json_data, secrets):
    relay = FleetRelayApp.create(make_settings(json_data, secrets), http_client)

    response = await relay.call_resource(post(path))

    assert response.status_code == 400
    assert response.headers[RELAY_ERROR_HEADER] == "missing_credentials"
    assert upstream.requests == []


# ============================================================================
# Proxy Route Tests
# ============================================================================

@pytest.mark.asyncio
async def test_get_config_forwards_exactly_once(relay, upstream):
    body = b'{"id": "collector-1"}'

    await relay.call_resource(post("/fleet-management-api/GetConfig", body))

    assert len(upstream.requests) == 1
    sent = upstream.requests[0]
    assert sent.method == "POST"
    assert str(sent.url) == f"{BASE_URL}/GetConfig"
    assert sent.headers["Authorization"] == f"Basic {TOKEN}"
    assert sent.content == body


@pytest.mark.asyncio
async def test_list_collectors_forwards(relay, upstream):
    upstream.body = b'{"collectors": [{"id": "a"}]}'

    response = await relay.call_resource(post("/fleet-management-api/ListCollectors"))

    assert str(upstream.requests[0].url) == f"{BASE_URL}/ListCollectors"
    assert response.status_code == 200
    assert response.body == b'{"collectors": [{"id": "a"}]}'


@pytest.mark.asyncio
async def test_named_route_ignores_caller_method(relay, upstream):
    await relay.call_resource(ResourceRequest(path="/fleet-management-api/GetConfig", method="GET"))

    assert upstream.requests[0].method == "POST"


@pytest.mark.asyncio
async def test_generic_route_uses_path_suffix(relay, upstream):
    await relay.call_resource(post("/proxy-fleet/Foo"))

    assert str(upstream.requests[0].url) == f"{BASE_URL}/Foo"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "path",
    [
        "/proxy-fleet/",
        "/proxy-fleet//",
        "/proxy-fleet/.",
        "/proxy-fleet/..",
        "/proxy-fleet/../../x",
        "/proxy-fleet/%2e%2e/x",
    ],
)
async def test_generic_route_without_usable_action(relay, upstream, path):
    response = await relay.call_resource(post(path))

    assert response.status_code == 400
    assert response.headers[RELAY_ERROR_HEADER] == "missing_action"
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_generic_route_default_profile(http_client, upstream):
    settings = make_settings(
        {
            "fleetBaseURL": BASE_URL,
            "proxyTarget": "default",
            "defaultFleetBaseURL": DEFAULT_BASE_URL,
        },
        {"fleetAuthToken": TOKEN, "defaultFleetAuthToken": DEFAULT_TOKEN},
    )
    relay = FleetRelayApp.create(settings, http_client)

    await relay.call_resource(post("/proxy-fleet/ListCollectors"))
    await relay.call_resource(post("/fleet-management-api/ListCollectors"))

    generic, named = upstream.requests
    assert str(generic.url) == f"{DEFAULT_BASE_URL}/ListCollectors"
    assert generic.headers["Authorization"] == f"Basic {DEFAULT_TOKEN}"
    # Named routes always use the configured profile
    assert str(named.url) == f"{BASE_URL}/ListCollectors"
    assert named.headers["Authorization"] == f"Basic {TOKEN}"


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [201, 404, 503])
async def test_upstream_status_passthrough(relay, upstream, status_code):
    upstream.status_code = status_code

    response = await relay.call_resource(post("/proxy-fleet/GetConfig"))

    assert response.status_code == status_code
    assert response.headers == {"Content-Type": "application/json"}


@pytest.mark.asyncio
async def test_unreachable_upstream_is_distinguishable(relay, upstream):
    upstream.error = httpx.ConnectError("Connection refused")

    response = await relay.call_resource(post("/fleet-management-api/GetConfig"))

    assert response.status_code == 502
    assert response.headers[RELAY_ERROR_HEADER] == "upstream_unreachable"
    assert json.loads(response.body)["error"] == "upstream_unreachable"


@pytest.mark.asyncio
async def test_upstream_502_passthrough_has_no_error_header(relay, upstream):
    upstream.status_code = 502

    response = await relay.call_resource(post("/fleet-management-api/GetConfig"))

    assert response.status_code == 502
    assert RELAY_ERROR_HEADER not in response.headers


@pytest.mark.asyncio
async def test_unknown_path_is_not_found(relay, upstream):
    response = await relay.call_resource(post("/fleet-management-api/DeleteEverything"))

    assert response.status_code == 404
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_unexpected_error_becomes_500(relay):
    with patch.object(relay.forwarder, "forward", new=AsyncMock(side_effect=RuntimeError("boom"))):
        response = await relay.call_resource(post("/fleet-management-api/GetConfig"))

    assert response.status_code == 500
    assert response.headers[RELAY_ERROR_HEADER] == "relay_error"


# ============================================================================
# Health Tests
# ============================================================================

@pytest.mark.asyncio
async def test_health_is_static_even_when_upstream_is_down(relay, upstream):
    upstream.error = httpx.ConnectError("Connection refused")

    result = await relay.check_health()

    assert result.status is HealthStatus.OK
    assert result.message == "ok"
    assert upstream.requests == []
