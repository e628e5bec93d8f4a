"""Async HTTP client for the backend provisioning API.

Creates the knowledge stack ("bonfire") for a registered identity and polls
the resulting job. Auth uses a static API key injected server-side; it
never leaves this process.

One request per call: retries with backoff are the orchestrator's job.
``wait_until_ready`` is the only loop here, and it is bounded by the wait
budget.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaError

from ..chain.protocols import SigningSession
from ..models import ProvisionStatus
from ..provisioning.errors import (
    BackendRejected,
    BackendUnavailable,
    ProvisioningTimedOut,
)

logger = logging.getLogger(__name__)

# Status codes that mean "try again later".
_RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

_READY_STATES = frozenset({"ready", "complete"})


# ── Wire schemas ─────────────────────────────────────────────────


class _ProvisionAccepted(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")


class _JobStatus(BaseModel):
    status: str
    detail: dict[str, Any] | str | None = None


class _RevealNonce(BaseModel):
    nonce: str
    message: str


class _RevealedKey(BaseModel):
    api_key: str


class ProvisionedRecord(BaseModel):
    """Non-sensitive record listed for a wallet ("My Bonfires")."""

    model_config = ConfigDict(extra="ignore")

    wallet_address: str
    tx_hash: str
    status: str
    erc8004_bonfire_id: int | None = None
    bonfire_id: str | None = None
    agent_id: str | None = None
    api_key_last4: str | None = None
    ipfs_uri: str | None = None
    agent_name: str | None = None
    error_message: str | None = None


@dataclass(frozen=True, slots=True)
class IdentityRef:
    """Everything the backend needs to materialize a bonfire."""

    identity_id: str
    wallet_address: str
    registration_tx_hash: str
    burn_tx_hash: str
    ipfs_uri: str
    agent_name: str
    description: str
    capabilities: tuple[str, ...]


# ── Client ───────────────────────────────────────────────────────


class BackendProvisioner:
    """Async client for the provisioning backend."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
        poll_interval: float = 5.0,
        wait_budget: float = 300.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        if poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")

        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._client = http_client or httpx.AsyncClient()
        self._timeout = float(timeout_seconds)
        self._poll_interval = poll_interval
        self._wait_budget = wait_budget
        self._sleep = sleep
        self._clock = clock

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    async def provision(self, identity: IdentityRef) -> str:
        """Trigger stack creation; return the backend job id."""
        resp = await self._request(
            "POST",
            f"/identities/{identity.identity_id}/provision",
            json={
                "tx_hash": identity.burn_tx_hash,
                "registration_tx_hash": identity.registration_tx_hash,
                "wallet_address": identity.wallet_address,
                "agent_name": identity.agent_name,
                "description": identity.description,
                "capabilities": list(identity.capabilities),
                "ipfs_uri": identity.ipfs_uri,
            },
        )
        job_id = _parse(_ProvisionAccepted, resp).job_id
        logger.info("Provisioning job %s created for identity %s", job_id, identity.identity_id)
        return job_id

    async def poll_status(self, job_id: str) -> ProvisionStatus:
        resp = await self._request("GET", f"/provision-jobs/{job_id}")
        body = _parse(_JobStatus, resp)
        detail = body.detail if isinstance(body.detail, dict) else (
            {"message": body.detail} if body.detail else {}
        )
        status = body.status.lower()
        if status in _READY_STATES:
            return ProvisionStatus(state="ready", detail=detail)
        if status == "failed":
            return ProvisionStatus(state="failed", detail=detail)
        if status != "pending":
            logger.warning("Unknown status %r for job %s, treating as pending", status, job_id)
        return ProvisionStatus(state="pending", detail=detail)

    async def wait_until_ready(self, job_id: str) -> ProvisionStatus:
        """Poll ``job_id`` at a fixed interval until ready or failed.

        Raises:
            BackendRejected: the job reported ``failed``.
            ProvisioningTimedOut: still pending after the wait budget. The
                backend job is not cancelled.
            BackendUnavailable: a poll could not reach the backend.
        """
        deadline = self._clock() + self._wait_budget
        while True:
            status = await self.poll_status(job_id)
            if status.state == "ready":
                return status
            if status.state == "failed":
                reason = status.detail.get("error") or status.detail.get("message") or "job failed"
                raise BackendRejected(f"provisioning job {job_id} failed: {reason}")
            if self._clock() + self._poll_interval > deadline:
                raise ProvisioningTimedOut(
                    f"provisioning job {job_id} still pending after {self._wait_budget:.0f}s",
                    job_id=job_id,
                )
            await self._sleep(self._poll_interval)

    async def list_provisioned(self, wallet_address: str) -> list[ProvisionedRecord]:
        if not wallet_address or not wallet_address.strip():
            raise ValueError("wallet_address is required")
        resp = await self._request(
            "GET", "/provision", params={"wallet_address": wallet_address.strip()},
        )
        try:
            return [ProvisionedRecord.model_validate(item) for item in resp.json() or []]
        except (SchemaError, ValueError, TypeError) as e:
            raise BackendRejected(f"malformed provision list: {e}") from e

    async def reveal_api_key(self, tx_hash: str, signing_session: SigningSession) -> str:
        """Reveal the raw API key after proving wallet ownership.

        The backend issues a short-lived nonce and an EIP-191 message; the
        wallet signs it and the backend verifies the signer.
        """
        nonce_resp = await self._request(
            "GET", "/provision/reveal_nonce", params={"tx_hash": tx_hash},
        )
        challenge = _parse(_RevealNonce, nonce_resp)
        signature = await signing_session.sign_message(challenge.message)
        key_resp = await self._request(
            "POST",
            "/provision/reveal_api_key",
            json={"tx_hash": tx_hash, "nonce": challenge.nonce, "signature": signature},
        )
        return _parse(_RevealedKey, key_resp).api_key

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            resp = await self._client.request(
                method,
                f"{self._base_url}{path}",
                headers=self._auth_headers(),
                json=json,
                params=params,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise BackendUnavailable(f"{method} {path} timed out after {self._timeout}s") from e
        except httpx.TransportError as e:
            raise BackendUnavailable(f"{method} {path} failed: {e}") from e

        if resp.status_code < 400:
            return resp

        message = _error_message(resp)
        logger.warning("Backend %s %s returned %d: %s", method, path, resp.status_code, message)
        if resp.status_code in _RETRYABLE_STATUS_CODES:
            raise BackendUnavailable(f"backend returned {resp.status_code}: {message}")
        raise BackendRejected(
            f"backend returned {resp.status_code}: {message}",
            status_code=resp.status_code,
        )


def _error_message(resp: httpx.Response) -> str:
    body = resp.text
    message = body[:200] if body else f"HTTP {resp.status_code}"
    try:
        payload = resp.json()
        if isinstance(payload, dict):
            message = payload.get("error", payload.get("detail", message))
    except ValueError:
        pass
    return str(message)


def _parse(model: type[BaseModel], resp: httpx.Response):
    try:
        return model.model_validate(resp.json())
    except (SchemaError, ValueError) as e:
        raise BackendRejected(f"malformed backend response: {e}") from e
