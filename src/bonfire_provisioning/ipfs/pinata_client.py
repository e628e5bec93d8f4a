"""Async HTTP client for Pinata's JSON pinning API.

Pins a JSON document and returns its CID. Auth uses a server-side JWT
that never leaves this process. The client makes exactly one request per
call; retry with backoff is the orchestrator's job so that attempts are
counted in one place.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from ..provisioning.errors import ContentRejected, NetworkError, QuotaExceeded

logger = logging.getLogger(__name__)

_PIN_JSON_PATH = "/pinning/pinJSONToIPFS"
_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
_QUOTA_HINT = re.compile(r"quota|limit|plan|exceed", re.IGNORECASE)


class PinataClient:
    """Async HTTP client for pinata.cloud.

    Implements ``ContentStoreClient``.
    """

    def __init__(
        self,
        *,
        jwt: str,
        base_url: str = "https://api.pinata.cloud",
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not jwt:
            raise ValueError("jwt is required")

        self._jwt = jwt
        self._base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient()
        self._timeout = float(timeout_seconds)

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._jwt}"}

    async def put(self, document: dict[str, Any], *, name: str) -> str:
        """Pin ``document`` and return its CID.

        Raises:
            NetworkError: timeout, connection failure, 429 or 5xx.
            QuotaExceeded: 402, or 403 mentioning a quota/plan limit.
            ContentRejected: any other 4xx, or a response without a CID.
        """
        body = {
            "pinataContent": document,
            "pinataMetadata": {"name": pin_name(name)},
        }
        try:
            resp = await self._client.request(
                "POST",
                f"{self._base_url}{_PIN_JSON_PATH}",
                headers=self._auth_headers(),
                json=body,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"IPFS upload timed out after {self._timeout}s") from e
        except httpx.TransportError as e:
            raise NetworkError(f"IPFS upload failed: {e}") from e

        self._raise_for_status(resp)

        try:
            payload = resp.json()
        except ValueError as e:
            raise ContentRejected("Pinata returned a non-JSON response") from e
        cid = payload.get("IpfsHash") if isinstance(payload, dict) else None
        if not cid:
            raise ContentRejected("Pinata response did not include IpfsHash")

        logger.info("Pinned metadata %s as %s", pin_name(name), cid)
        return cid

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return

        body = resp.text
        message = body[:200] if body else f"HTTP {resp.status_code}"
        logger.error("Pinata returned %d: %s", resp.status_code, message)

        if resp.status_code in _RETRYABLE_STATUS_CODES:
            raise NetworkError(f"Pinata returned {resp.status_code}: {message}")
        if resp.status_code == 402 or (
            resp.status_code == 403 and _QUOTA_HINT.search(body or "")
        ):
            raise QuotaExceeded(f"Pinata quota exceeded: {message}")
        raise ContentRejected(f"Pinata returned {resp.status_code}: {message}")


def pin_name(agent_name: str) -> str:
    """``bonfire-<slug>`` label shown in the Pinata dashboard."""
    slug = re.sub(r"\s+", "-", agent_name.strip().lower())
    return f"bonfire-{slug}"
