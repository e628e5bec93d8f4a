"""Provisioning configuration settings.

ProvisioningSettings is the single configuration object the wiring code
hands to the workers. It is intentionally a plain dataclass (not
env-coupled) so tests can inject config without touching os.environ; the
metadata endpoint in particular is read once here and passed down.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .provisioning.retry import RetryPolicy

_ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True, slots=True)
class ProvisioningSettings:
    """Configuration for the provisioning workflow.

    All fields have sensible defaults for local development.
    Non-local environments must supply real values for pinata_jwt,
    backend_api_key, chain_rpc_url and the contract addresses.
    """

    # ── Environment ────────────────────────────────────────────────
    environment: str = "local"
    """One of: local, dev, staging, production."""

    # ── Identity metadata ──────────────────────────────────────────
    service_endpoint: str = "http://localhost:8000"
    """Public Delve API URL advertised in the ERC-8004 services entry."""

    x402_support: bool = True

    # ── IPFS (Pinata) ──────────────────────────────────────────────
    pinata_jwt: str = ""
    """Server-side Pinata JWT. Never log this."""

    pinata_api_url: str = "https://api.pinata.cloud"
    ipfs_timeout_seconds: float = 30.0

    # ── Backend ────────────────────────────────────────────────────
    backend_api_url: str = "http://localhost:8000"
    backend_api_key: str = ""
    """Server-side API key for the provisioning backend. Never log this."""

    backend_timeout_seconds: float = 30.0
    backend_poll_interval_seconds: float = 5.0
    backend_wait_budget_seconds: float = 300.0

    # ── Chain ──────────────────────────────────────────────────────
    chain_rpc_url: str = ""
    chain_id: int = 1
    erc1155_contract_address: str = _ZERO_ADDRESS
    identity_registry_address: str = _ZERO_ADDRESS
    identity_registry_from_block: int = 0
    """First block scanned when looking for an earlier registration."""

    chain_poll_interval_seconds: float = 4.0
    chain_confirm_timeout_seconds: float = 300.0

    # ── Logging ────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"
    """JSON lines when set to json, else the console renderer."""

    # ── Persistence ────────────────────────────────────────────────
    workflow_store_dir: str = ""
    """Directory for JSON workflow snapshots. Empty keeps them in memory."""

    # ── Retry ──────────────────────────────────────────────────────
    retry_max_attempts: int = 4
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 8.0

    @property
    def is_local(self) -> bool:
        return self.environment == "local"

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay_seconds,
            max_delay=self.retry_max_delay_seconds,
        )

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if self.retry_max_attempts < 1:
            errors.append("retry_max_attempts must be >= 1")
        if self.backend_poll_interval_seconds <= 0:
            errors.append("backend_poll_interval_seconds must be > 0")
        if self.chain_poll_interval_seconds <= 0:
            errors.append("chain_poll_interval_seconds must be > 0")
        if not self.is_local:
            if not self.pinata_jwt:
                errors.append(f"{self.environment}: pinata_jwt is required")
            if not self.backend_api_key:
                errors.append(f"{self.environment}: backend_api_key is required")
            if not self.chain_rpc_url:
                errors.append(f"{self.environment}: chain_rpc_url is required")
            if not self.workflow_store_dir:
                errors.append(f"{self.environment}: workflow_store_dir is required")
            for name in (
                "erc1155_contract_address",
                "identity_registry_address",
            ):
                if getattr(self, name) == _ZERO_ADDRESS:
                    errors.append(f"{self.environment}: {name} is required")
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> ProvisioningSettings:
        """Build settings from environment variables.

        This is a convenience factory for production use. Tests should
        construct ProvisioningSettings directly.
        """
        if env is None:
            env = dict(os.environ)
        defaults = cls()

        def _float(key: str, default: float) -> float:
            raw = env.get(key, "")
            return float(raw) if raw.strip() else default

        def _int(key: str, default: int) -> int:
            raw = env.get(key, "")
            return int(raw) if raw.strip() else default

        return cls(
            environment=env.get("ENVIRONMENT", "local"),
            service_endpoint=env.get("DELVE_API_URL", defaults.service_endpoint),
            pinata_jwt=env.get("PINATA_JWT", ""),
            pinata_api_url=env.get("PINATA_API_URL", defaults.pinata_api_url),
            ipfs_timeout_seconds=_float("IPFS_TIMEOUT_SECONDS", defaults.ipfs_timeout_seconds),
            backend_api_url=env.get("BACKEND_API_URL", defaults.backend_api_url),
            backend_api_key=env.get("API_KEY", ""),
            backend_timeout_seconds=_float(
                "BACKEND_TIMEOUT_SECONDS", defaults.backend_timeout_seconds
            ),
            backend_poll_interval_seconds=_float(
                "BACKEND_POLL_INTERVAL_SECONDS", defaults.backend_poll_interval_seconds
            ),
            backend_wait_budget_seconds=_float(
                "BACKEND_WAIT_BUDGET_SECONDS", defaults.backend_wait_budget_seconds
            ),
            chain_rpc_url=env.get("CHAIN_RPC_URL", ""),
            chain_id=_int("CHAIN_ID", defaults.chain_id),
            erc1155_contract_address=env.get(
                "ERC1155_CONTRACT_ADDRESS", _ZERO_ADDRESS
            ),
            identity_registry_address=env.get(
                "IDENTITY_REGISTRY_ADDRESS", _ZERO_ADDRESS
            ),
            identity_registry_from_block=_int(
                "IDENTITY_REGISTRY_FROM_BLOCK", defaults.identity_registry_from_block
            ),
            chain_poll_interval_seconds=_float(
                "CHAIN_POLL_INTERVAL_SECONDS", defaults.chain_poll_interval_seconds
            ),
            chain_confirm_timeout_seconds=_float(
                "CHAIN_CONFIRM_TIMEOUT_SECONDS", defaults.chain_confirm_timeout_seconds
            ),
            log_level=env.get("LOG_LEVEL", defaults.log_level),
            log_format=env.get("LOG_FORMAT", defaults.log_format),
            workflow_store_dir=env.get("WORKFLOW_STORE_DIR", ""),
            retry_max_attempts=_int("RETRY_MAX_ATTEMPTS", defaults.retry_max_attempts),
            retry_base_delay_seconds=_float(
                "RETRY_BASE_DELAY_SECONDS", defaults.retry_base_delay_seconds
            ),
            retry_max_delay_seconds=_float(
                "RETRY_MAX_DELAY_SECONDS", defaults.retry_max_delay_seconds
            ),
        )
