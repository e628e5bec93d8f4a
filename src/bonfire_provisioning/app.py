"""Application factory and worker wiring.

``build_orchestrator`` turns ``ProvisioningSettings`` into a fully wired
``ProvisioningOrchestrator``; ``create_app`` mounts the status API on top
of it. Every collaborator can be overridden, which is how tests and local
development run without Pinata, a chain node or the backend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from fastapi import FastAPI

from .backend.provisioner import BackendProvisioner
from .chain.burn import TokenBurnExecutor
from .chain.polling import ReceiptPoller
from .chain.protocols import ChainClient
from .chain.registrar import IdentityRegistrar
from .chain.web3_client import Web3ChainClient
from .erc8004.metadata import EndpointConfig, MetadataBuilder
from .ipfs.pinata_client import PinataClient
from .ipfs.publisher import ContentPublisher, ContentStoreClient
from .observability.logging import configure_logging
from .provisioning.orchestrator import ProvisioningOrchestrator
from .provisioning.store import (
    InMemoryWorkflowStore,
    JsonFileWorkflowStore,
    WorkflowStore,
)
from .routes.workflows import create_workflow_router
from .settings import ProvisioningSettings

logger = logging.getLogger(__name__)


def build_orchestrator(
    settings: ProvisioningSettings,
    *,
    http_client: httpx.AsyncClient | None = None,
    store: WorkflowStore | None = None,
    content_store: ContentStoreClient | None = None,
    chain_client: ChainClient | None = None,
    provisioner: BackendProvisioner | None = None,
) -> ProvisioningOrchestrator:
    """Wire the workers from settings, honoring any overrides.

    Raises:
        ValueError: a required credential or URL is missing for a
            collaborator that was not overridden.
    """
    if store is None:
        if settings.workflow_store_dir:
            store = JsonFileWorkflowStore(Path(settings.workflow_store_dir))
        else:
            store = InMemoryWorkflowStore()

    if content_store is None:
        content_store = PinataClient(
            jwt=settings.pinata_jwt,
            base_url=settings.pinata_api_url,
            http_client=http_client,
            timeout_seconds=settings.ipfs_timeout_seconds,
        )

    if chain_client is None:
        chain_client = Web3ChainClient(
            rpc_url=settings.chain_rpc_url,
            chain_id=settings.chain_id,
            token_address=settings.erc1155_contract_address,
            registry_address=settings.identity_registry_address,
            registry_from_block=settings.identity_registry_from_block,
        )

    if provisioner is None:
        provisioner = BackendProvisioner(
            base_url=settings.backend_api_url,
            api_key=settings.backend_api_key,
            http_client=http_client,
            timeout_seconds=settings.backend_timeout_seconds,
            poll_interval=settings.backend_poll_interval_seconds,
            wait_budget=settings.backend_wait_budget_seconds,
        )

    poller = ReceiptPoller(
        chain_client,
        poll_interval=settings.chain_poll_interval_seconds,
        timeout=settings.chain_confirm_timeout_seconds,
    )
    return ProvisioningOrchestrator(
        store=store,
        metadata_builder=MetadataBuilder(EndpointConfig.from_settings(settings)),
        publisher=ContentPublisher(content_store),
        burn_executor=TokenBurnExecutor(chain_client, poller),
        registrar=IdentityRegistrar(chain_client, poller),
        provisioner=provisioner,
        retry_policy=settings.retry_policy,
    )


def create_app(
    settings: ProvisioningSettings | None = None,
    *,
    orchestrator: ProvisioningOrchestrator | None = None,
) -> FastAPI:
    """Create the provisioning status FastAPI application.

    Raises:
        ValueError: If settings validation fails.
    """
    if settings is None:
        settings = ProvisioningSettings()

    errors = settings.validate()
    if errors:
        raise ValueError(
            "Provisioning settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    configure_logging(
        level=settings.log_level, json_output=settings.log_format == "json",
    )

    http_client: httpx.AsyncClient | None = None
    if orchestrator is None:
        http_client = httpx.AsyncClient()
        orchestrator = build_orchestrator(settings, http_client=http_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Provisioning service startup (environment=%s)", settings.environment)
        yield
        if http_client is not None:
            await http_client.aclose()
        logger.info("Provisioning service shutdown")

    app = FastAPI(
        title="Bonfire Provisioning",
        description="Status API for ERC-8004 Bonfire provisioning workflows",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.include_router(create_workflow_router(orchestrator))
    return app
