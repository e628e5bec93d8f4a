"""Unit tests for worker wiring and the application factory."""
import httpx
import pytest
from fastapi import FastAPI

from bonfire_provisioning.app import build_orchestrator, create_app
from bonfire_provisioning.provisioning.orchestrator import ProvisioningOrchestrator
from bonfire_provisioning.settings import ProvisioningSettings
from bonfire_provisioning.testing import (
    DEFAULT_WALLET,
    InMemoryBackend,
    InMemoryChainClient,
    InMemoryContentStore,
    InMemorySigningSession,
)


def _fakes():
    return dict(
        content_store=InMemoryContentStore(),
        chain_client=InMemoryChainClient(),
        provisioner=InMemoryBackend(),
    )


def _production(tmp_path):
    return ProvisioningSettings(
        environment='production',
        pinata_jwt='jwt',
        backend_api_key='key',
        backend_api_url='https://api.example',
        chain_rpc_url='https://rpc.example',
        chain_id=8453,
        workflow_store_dir=str(tmp_path / 'workflows'),
        erc1155_contract_address='0x1155000000000000000000000000000000000001',
        identity_registry_address='0x8004000000000000000000000000000000000001',
    )


class TestBuildOrchestrator:

    @pytest.mark.asyncio
    async def test_wires_real_clients(self, tmp_path):
        async with httpx.AsyncClient() as http:
            orchestrator = build_orchestrator(_production(tmp_path), http_client=http)
        assert isinstance(orchestrator, ProvisioningOrchestrator)

    def test_missing_pinata_jwt(self):
        with pytest.raises(ValueError, match='jwt is required'):
            build_orchestrator(ProvisioningSettings())

    @pytest.mark.asyncio
    async def test_file_store_when_directory_configured(self, tmp_path, form):
        settings = ProvisioningSettings(workflow_store_dir=str(tmp_path))
        orchestrator = build_orchestrator(settings, **_fakes())

        state = await orchestrator.start(
            form, DEFAULT_WALLET, InMemorySigningSession(), workflow_id='wf_1',
        )

        assert state.step.value == 'Succeeded'
        assert (tmp_path / 'wf_1.json').exists()

    @pytest.mark.asyncio
    async def test_metadata_uses_configured_endpoint(self, form):
        settings = ProvisioningSettings(service_endpoint='https://delve.example')
        orchestrator = build_orchestrator(settings, **_fakes())

        state = await orchestrator.start(form, DEFAULT_WALLET, InMemorySigningSession())

        assert state.metadata.services[0].endpoint == 'https://delve.example'


class TestCreateApp:

    def test_invalid_settings_rejected(self):
        with pytest.raises(ValueError, match='validation failed') as exc_info:
            create_app(ProvisioningSettings(environment='production'))
        assert 'production: pinata_jwt is required' in str(exc_info.value)

    def test_uses_given_orchestrator(self):
        settings = ProvisioningSettings()
        orchestrator = build_orchestrator(settings, **_fakes())

        app = create_app(settings, orchestrator=orchestrator)

        assert isinstance(app, FastAPI)
        assert app.state.orchestrator is orchestrator
        assert app.state.settings is settings
        paths = {route.path for route in app.routes}
        assert '/api/v1/provision/workflows/{workflow_id}' in paths
        assert '/metrics' in paths
