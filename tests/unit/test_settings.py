"""Unit tests for ProvisioningSettings."""
import pytest

from bonfire_provisioning.settings import ProvisioningSettings

REGISTRY = '0x8004000000000000000000000000000000000001'
TOKEN = '0x1155000000000000000000000000000000000001'


def _production(**overrides):
    values = dict(
        environment='production',
        pinata_jwt='jwt',
        backend_api_key='key',
        chain_rpc_url='https://rpc.example',
        workflow_store_dir='/var/lib/bonfire',
        erc1155_contract_address=TOKEN,
        identity_registry_address=REGISTRY,
    )
    values.update(overrides)
    return ProvisioningSettings(**values)


class TestDefaults:

    def test_local_defaults_are_valid(self):
        settings = ProvisioningSettings()
        assert settings.is_local
        assert settings.validate() == []

    def test_retry_policy_from_settings(self):
        policy = ProvisioningSettings(
            retry_max_attempts=6, retry_base_delay_seconds=0.5, retry_max_delay_seconds=4.0,
        ).retry_policy
        assert policy.max_attempts == 6
        assert policy.base_delay == 0.5
        assert policy.max_delay == 4.0


class TestValidate:

    def test_complete_production_is_valid(self):
        assert _production().validate() == []

    @pytest.mark.parametrize('field', [
        'pinata_jwt',
        'backend_api_key',
        'chain_rpc_url',
        'workflow_store_dir',
    ])
    def test_production_requires_credentials(self, field):
        errors = _production(**{field: ''}).validate()
        assert errors == [f'production: {field} is required']

    def test_production_requires_contract_addresses(self):
        settings = _production(
            erc1155_contract_address=ProvisioningSettings().erc1155_contract_address,
        )
        assert settings.validate() == ['production: erc1155_contract_address is required']

    def test_bounds_checked_everywhere(self):
        errors = ProvisioningSettings(
            retry_max_attempts=0, backend_poll_interval_seconds=0,
        ).validate()
        assert 'retry_max_attempts must be >= 1' in errors
        assert 'backend_poll_interval_seconds must be > 0' in errors


class TestFromEnv:

    def test_empty_env_gives_defaults(self):
        assert ProvisioningSettings.from_env({}) == ProvisioningSettings()

    def test_reads_variables(self):
        settings = ProvisioningSettings.from_env({
            'ENVIRONMENT': 'staging',
            'DELVE_API_URL': 'https://delve.example',
            'PINATA_JWT': 'jwt',
            'API_KEY': 'key',
            'BACKEND_API_URL': 'https://api.example',
            'CHAIN_RPC_URL': 'https://rpc.example',
            'CHAIN_ID': '8453',
            'ERC1155_CONTRACT_ADDRESS': TOKEN,
            'IDENTITY_REGISTRY_ADDRESS': REGISTRY,
            'IDENTITY_REGISTRY_FROM_BLOCK': '123',
            'WORKFLOW_STORE_DIR': '/data',
            'RETRY_MAX_ATTEMPTS': '5',
            'BACKEND_WAIT_BUDGET_SECONDS': '60',
            'LOG_LEVEL': 'DEBUG',
        })
        assert settings.environment == 'staging'
        assert settings.service_endpoint == 'https://delve.example'
        assert settings.backend_api_key == 'key'
        assert settings.chain_id == 8453
        assert settings.log_level == 'DEBUG'
        assert settings.identity_registry_from_block == 123
        assert settings.workflow_store_dir == '/data'
        assert settings.retry_max_attempts == 5
        assert settings.backend_wait_budget_seconds == 60.0
        assert settings.validate() == []

    def test_blank_numbers_use_defaults(self):
        settings = ProvisioningSettings.from_env({'CHAIN_ID': '  ', 'IPFS_TIMEOUT_SECONDS': ''})
        assert settings.chain_id == 1
        assert settings.ipfs_timeout_seconds == 30.0
