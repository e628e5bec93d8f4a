"""User-facing copy for failed workflows.

Each failure kind maps to one actionable message. ``can_resume`` drives
the retry affordance; resuming continues from the last completed step.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType

from .errors import RETRYABLE_KINDS
from .state_machine import FailureRecord, WorkflowState, WorkflowStep

_MESSAGES = MappingProxyType(
    {
        'ValidationError': 'Check the highlighted fields and submit again.',
        'NetworkError': (
            'We could not reach the IPFS pinning service. Retry in a moment.'
        ),
        'QuotaExceeded': (
            'The IPFS pinning quota is exhausted. Please contact support.'
        ),
        'ContentRejected': (
            'The metadata upload was refused. Please contact support.'
        ),
        'UserRejected': (
            'You declined the signature request in your wallet. Retry when ready.'
        ),
        'InsufficientFunds': (
            'Your wallet does not have enough ETH for gas. Top up and retry.'
        ),
        'TransactionReverted': (
            'The transaction was reverted on-chain. The token may already be '
            'used or not held by this wallet.'
        ),
        'TokenNotHeld': 'No access token detected in the connected wallet.',
        'ChainTimeout': (
            'Your transaction is still pending. Retry to keep waiting; it will '
            'not be sent again.'
        ),
        'BackendRejected': (
            'The Bonfire service refused the request. Please contact support.'
        ),
        'BackendUnavailable': (
            'The Bonfire service is temporarily unavailable. Retry in a moment.'
        ),
        'ProvisioningTimedOut': (
            'Your Bonfire is still being set up. Your token and identity are '
            'registered; check back later.'
        ),
        'Cancelled': 'Provisioning was cancelled before anything was submitted.',
    }
)
_FALLBACK = 'Something went wrong. Retry, or contact support if it persists.'

# Beyond the retryable kinds, these make sense to resume after the user acts.
_RESUMABLE_KINDS = RETRYABLE_KINDS | frozenset(
    {
        'UserRejected',
        'InsufficientFunds',
        'ProvisioningTimedOut',
        'Cancelled',
        'Unexpected',
    }
)


@dataclass(frozen=True, slots=True)
class FailureView:
    kind: str
    message: str
    can_resume: bool
    irreversible_notice: str | None


def message_for(kind: str) -> str:
    return _MESSAGES.get(kind, _FALLBACK)


def describe_failure(failure: FailureRecord) -> FailureView:
    return FailureView(
        kind=failure.kind,
        message=message_for(failure.kind),
        can_resume=failure.kind in _RESUMABLE_KINDS,
        irreversible_notice=_irreversible_notice(failure),
    )


def _irreversible_notice(failure: FailureRecord) -> str | None:
    if not failure.irreversible_done:
        return None
    if failure.failed_step is WorkflowStep.BURNING_TOKEN:
        return 'Your burn transaction was sent; resuming will not burn again.'
    return (
        f'Your token was burned; {_step_label(failure.failed_step)} failed. '
        'Resuming will not burn again.'
    )


def _step_label(step: WorkflowStep) -> str:
    return {
        WorkflowStep.REGISTERING_IDENTITY: 'registration',
        WorkflowStep.PROVISIONING: 'Bonfire setup',
    }.get(step, step.value)


def status_payload(state: WorkflowState) -> dict:
    """Render a workflow for the UI layer."""
    payload = {
        'workflow_id': state.workflow_id,
        'step': state.step.value,
        'attempt': state.attempt,
        'last_completed_step': (
            state.last_completed_step.value if state.last_completed_step else None
        ),
        'ipfs_uri': state.content_ref.uri if state.content_ref else None,
        'burn_tx_hash': (
            state.burn_receipt.tx_hash if state.burn_receipt else state.burn_tx_hash
        ),
        'registration_tx_hash': (
            state.registration_receipt.tx_hash
            if state.registration_receipt
            else state.registration_tx_hash
        ),
        'identity_id': state.identity_id,
        'provision_job_id': state.provision_job_id,
        'failure': None,
    }
    if state.failure is not None:
        view = describe_failure(state.failure)
        payload['failure'] = {
            'kind': view.kind,
            'message': view.message,
            'detail': state.failure.detail,
            'can_resume': view.can_resume,
            'irreversible_notice': view.irreversible_notice,
        }
    return payload
