"""Unit tests for BackendProvisioner.

Tests the backend HTTP client with a mocked httpx client.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest

from bonfire_provisioning.backend.provisioner import BackendProvisioner, IdentityRef
from bonfire_provisioning.provisioning.errors import (
    BackendRejected,
    BackendUnavailable,
    ProvisioningTimedOut,
)
from bonfire_provisioning.testing import InMemorySigningSession

IDENTITY = IdentityRef(
    identity_id="7",
    wallet_address="0x00000000000000000000000000000000000000aa",
    registration_tx_hash="0xreg",
    burn_tx_hash="0xburn",
    ipfs_uri="ipfs://bafyexample",
    agent_name="Research Scout",
    description="Finds papers.",
    capabilities=("search", "summarize"),
)


def _make_client(responses=None, *, side_effect=None, clock=None, **kwargs):
    mock_http = AsyncMock()
    if responses is not None and side_effect is None:
        side_effect = list(responses)
    mock_http.request = AsyncMock(side_effect=side_effect)
    if clock is not None:
        kwargs.setdefault("sleep", clock.sleep)
        kwargs.setdefault("clock", clock)
    client = BackendProvisioner(
        base_url="https://backend.example/",
        api_key="test-api-key",
        http_client=mock_http,
        **kwargs,
    )
    return client, mock_http


# ── provision ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_provision_sends_identity_and_returns_job_id():
    client, mock_http = _make_client([httpx.Response(202, json={"jobId": "job_42"})])

    job_id = await client.provision(IDENTITY)

    assert job_id == "job_42"
    call = mock_http.request.call_args
    assert call.args[0] == "POST"
    assert call.args[1] == "https://backend.example/identities/7/provision"
    assert call.kwargs["headers"]["Authorization"] == "Bearer test-api-key"
    body = call.kwargs["json"]
    assert body == {
        "tx_hash": "0xburn",
        "registration_tx_hash": "0xreg",
        "wallet_address": IDENTITY.wallet_address,
        "agent_name": "Research Scout",
        "description": "Finds papers.",
        "capabilities": ["search", "summarize"],
        "ipfs_uri": "ipfs://bafyexample",
    }


@pytest.mark.asyncio
async def test_provision_4xx_is_rejected():
    client, _ = _make_client(
        [httpx.Response(400, json={"error": "tx_hash already provisioned"})]
    )
    with pytest.raises(BackendRejected, match="already provisioned") as exc_info:
        await client.provision(IDENTITY)
    assert exc_info.value.status_code == 400
    assert exc_info.value.retryable is False


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
async def test_provision_retryable_statuses(status):
    client, _ = _make_client([httpx.Response(status, text="busy")])
    with pytest.raises(BackendUnavailable) as exc_info:
        await client.provision(IDENTITY)
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_timeout_is_unavailable():
    client, _ = _make_client(side_effect=httpx.ReadTimeout("slow"))
    with pytest.raises(BackendUnavailable, match="timed out"):
        await client.provision(IDENTITY)


@pytest.mark.asyncio
async def test_connection_error_is_unavailable():
    client, _ = _make_client(side_effect=httpx.ConnectError("refused"))
    with pytest.raises(BackendUnavailable):
        await client.provision(IDENTITY)


@pytest.mark.asyncio
async def test_malformed_response_is_rejected():
    client, _ = _make_client([httpx.Response(200, json={"id": "job_1"})])
    with pytest.raises(BackendRejected, match="malformed"):
        await client.provision(IDENTITY)


def test_requires_api_key():
    with pytest.raises(ValueError, match="api_key"):
        BackendProvisioner(base_url="https://backend.example", api_key="")


# ── poll_status ──────────────────────────────────────────────────


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, expected",
    [
        ("pending", "pending"),
        ("ready", "ready"),
        ("complete", "ready"),
        ("FAILED", "failed"),
        ("queued", "pending"),
    ],
)
async def test_poll_status_maps_states(status, expected):
    client, mock_http = _make_client(
        [httpx.Response(200, json={"status": status, "detail": {"step": "x"}})]
    )

    result = await client.poll_status("job_1")

    assert result.state == expected
    assert result.detail == {"step": "x"}
    call = mock_http.request.call_args
    assert call.args[0] == "GET"
    assert call.args[1] == "https://backend.example/provision-jobs/job_1"


@pytest.mark.asyncio
async def test_poll_status_string_detail():
    client, _ = _make_client(
        [httpx.Response(200, json={"status": "failed", "detail": "out of capacity"})]
    )
    result = await client.poll_status("job_1")
    assert result.detail == {"message": "out of capacity"}


# ── wait_until_ready ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_wait_until_ready_polls_at_fixed_interval(clock):
    client, mock_http = _make_client(
        [
            httpx.Response(200, json={"status": "pending"}),
            httpx.Response(200, json={"status": "pending"}),
            httpx.Response(200, json={"status": "ready", "detail": {"bonfire_id": "bf1"}}),
        ],
        clock=clock,
        poll_interval=5.0,
    )

    status = await client.wait_until_ready("job_1")

    assert status.state == "ready"
    assert status.detail == {"bonfire_id": "bf1"}
    assert clock.sleeps == [5.0, 5.0]
    assert mock_http.request.await_count == 3


@pytest.mark.asyncio
async def test_wait_until_ready_failed_job_is_rejected(clock):
    client, _ = _make_client(
        [httpx.Response(200, json={"status": "failed", "detail": {"error": "no capacity"}})],
        clock=clock,
    )
    with pytest.raises(BackendRejected, match="no capacity"):
        await client.wait_until_ready("job_1")


@pytest.mark.asyncio
async def test_wait_until_ready_budget_exceeded(clock):
    client, mock_http = _make_client(
        side_effect=lambda *a, **kw: httpx.Response(200, json={"status": "pending"}),
        clock=clock,
        poll_interval=5.0,
        wait_budget=12.0,
    )

    with pytest.raises(ProvisioningTimedOut) as exc_info:
        await client.wait_until_ready("job_9")

    assert exc_info.value.job_id == "job_9"
    assert mock_http.request.await_count == 3
    assert sum(clock.sleeps) <= 12.0


# ── list_provisioned / reveal_api_key ────────────────────────────


@pytest.mark.asyncio
async def test_list_provisioned():
    client, mock_http = _make_client(
        [
            httpx.Response(
                200,
                json=[
                    {
                        "wallet_address": IDENTITY.wallet_address,
                        "tx_hash": "0xburn",
                        "status": "complete",
                        "erc8004_bonfire_id": 7,
                        "api_key_last4": "abcd",
                        "unexpected": True,
                    }
                ],
            )
        ]
    )

    records = await client.list_provisioned(f"  {IDENTITY.wallet_address} ")

    assert len(records) == 1
    assert records[0].erc8004_bonfire_id == 7
    assert records[0].api_key_last4 == "abcd"
    call = mock_http.request.call_args
    assert call.args[1] == "https://backend.example/provision"
    assert call.kwargs["params"] == {"wallet_address": IDENTITY.wallet_address}


@pytest.mark.asyncio
async def test_list_provisioned_requires_wallet():
    client, _ = _make_client([])
    with pytest.raises(ValueError):
        await client.list_provisioned(" ")


@pytest.mark.asyncio
async def test_reveal_api_key_signs_nonce_message():
    session = InMemorySigningSession()
    client, mock_http = _make_client(
        [
            httpx.Response(200, json={"nonce": "n-1", "message": "Reveal key for 0xburn: n-1"}),
            httpx.Response(200, json={"api_key": "sk-secret"}),
        ]
    )

    key = await client.reveal_api_key("0xburn", session)

    assert key == "sk-secret"
    assert session.messages == ["Reveal key for 0xburn: n-1"]
    nonce_call, reveal_call = mock_http.request.call_args_list
    assert nonce_call.args[1] == "https://backend.example/provision/reveal_nonce"
    assert nonce_call.kwargs["params"] == {"tx_hash": "0xburn"}
    assert reveal_call.args[0] == "POST"
    assert reveal_call.kwargs["json"]["nonce"] == "n-1"
    assert reveal_call.kwargs["json"]["signature"].startswith("0x")


@pytest.mark.asyncio
async def test_reveal_api_key_forbidden():
    client, _ = _make_client(
        [
            httpx.Response(200, json={"nonce": "n-1", "message": "m"}),
            httpx.Response(403, json={"error": "signature does not match owner"}),
        ]
    )
    with pytest.raises(BackendRejected) as exc_info:
        await client.reveal_api_key("0xburn", InMemorySigningSession())
    assert exc_info.value.status_code == 403
