"""Unit tests for the workflow logging processors."""
import pytest

from bonfire_provisioning.observability.logging import (
    REDACTED,
    add_workflow_context,
    bind_step,
    redact_secrets,
    workflow_id_ctx,
    workflow_processors,
)


class TestWorkflowContext:

    def test_outside_a_workflow_adds_nothing(self):
        assert add_workflow_context(None, 'info', {'event': 'x'}) == {'event': 'x'}

    def test_workflow_step_and_attempt(self):
        token = workflow_id_ctx.set('wf_1')
        try:
            with bind_step('BurningToken', 2):
                event = add_workflow_context(None, 'info', {'event': 'burn_submitted'})
        finally:
            workflow_id_ctx.reset(token)

        assert event == {
            'event': 'burn_submitted',
            'workflow_id': 'wf_1',
            'step': 'BurningToken',
            'workflow_attempt': 2,
        }

    def test_explicit_values_win(self):
        with bind_step('Provisioning', 1):
            event = add_workflow_context(None, 'info', {'event': 'x', 'step': 'Other'})
        assert event['step'] == 'Other'

    def test_step_unbound_after_block(self):
        with bind_step('Provisioning', 1):
            pass
        assert 'step' not in add_workflow_context(None, 'info', {'event': 'x'})

    def test_nested_steps_restore_outer(self):
        with bind_step('RegisteringIdentity', 1):
            with bind_step('Provisioning', 1):
                pass
            event = add_workflow_context(None, 'info', {'event': 'x'})
        assert event['step'] == 'RegisteringIdentity'


class TestRedaction:

    @pytest.mark.parametrize('key', ['pinata_jwt', 'api_key', 'Authorization', 'signed_tx'])
    def test_secret_keys_masked(self, key):
        event = redact_secrets(None, 'info', {'event': 'x', key: 'secret-value'})
        assert event[key] == REDACTED

    def test_other_keys_untouched(self):
        event = redact_secrets(None, 'info', {'event': 'x', 'tx_hash': '0xabc'})
        assert event == {'event': 'x', 'tx_hash': '0xabc'}

    def test_empty_secret_left_as_is(self):
        event = redact_secrets(None, 'info', {'event': 'x', 'api_key': ''})
        assert event['api_key'] == ''


def test_redaction_runs_after_context_injection():
    processors = workflow_processors()
    assert processors.index(add_workflow_context) < processors.index(redact_secrets)
