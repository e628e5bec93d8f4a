"""Provisioning workflow state machine.

Implements the canonical provisioning flow:
  Idle -> BuildingMetadata -> PublishingContent -> BurningToken
  -> RegisteringIdentity -> Provisioning -> Succeeded

And deterministic failure transitions:
  any active step -> Failed
  Failed --(explicit resume)--> first step without recorded evidence

There is no rollback transition. Once a burn or registration has been
submitted its effect is permanent; resume re-polls or skips it instead.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any

from ..models import ChainReceipt, ContentReference, IdentityMetadata, ProvisionFormData


class WorkflowStep(str, Enum):
    IDLE = 'Idle'
    BUILDING_METADATA = 'BuildingMetadata'
    PUBLISHING_CONTENT = 'PublishingContent'
    BURNING_TOKEN = 'BurningToken'
    REGISTERING_IDENTITY = 'RegisteringIdentity'
    PROVISIONING = 'Provisioning'
    SUCCEEDED = 'Succeeded'
    FAILED = 'Failed'


WORKFLOW_SEQUENCE = (
    WorkflowStep.IDLE,
    WorkflowStep.BUILDING_METADATA,
    WorkflowStep.PUBLISHING_CONTENT,
    WorkflowStep.BURNING_TOKEN,
    WorkflowStep.REGISTERING_IDENTITY,
    WorkflowStep.PROVISIONING,
    WorkflowStep.SUCCEEDED,
)

TERMINAL_STEPS = frozenset({WorkflowStep.SUCCEEDED, WorkflowStep.FAILED})
ACTIVE_STEPS = frozenset(
    {
        WorkflowStep.BUILDING_METADATA,
        WorkflowStep.PUBLISHING_CONTENT,
        WorkflowStep.BURNING_TOKEN,
        WorkflowStep.REGISTERING_IDENTITY,
        WorkflowStep.PROVISIONING,
    }
)
# Steps in which nothing irreversible has been submitted yet.
CANCELLABLE_STEPS = frozenset(
    {
        WorkflowStep.IDLE,
        WorkflowStep.BUILDING_METADATA,
        WorkflowStep.PUBLISHING_CONTENT,
    }
)

ALLOWED_TRANSITIONS = MappingProxyType(
    {
        WorkflowStep.IDLE: frozenset(
            {WorkflowStep.BUILDING_METADATA, WorkflowStep.FAILED}
        ),
        WorkflowStep.BUILDING_METADATA: frozenset(
            {WorkflowStep.PUBLISHING_CONTENT, WorkflowStep.FAILED}
        ),
        WorkflowStep.PUBLISHING_CONTENT: frozenset(
            {WorkflowStep.BURNING_TOKEN, WorkflowStep.FAILED}
        ),
        WorkflowStep.BURNING_TOKEN: frozenset(
            {WorkflowStep.REGISTERING_IDENTITY, WorkflowStep.FAILED}
        ),
        WorkflowStep.REGISTERING_IDENTITY: frozenset(
            {WorkflowStep.PROVISIONING, WorkflowStep.FAILED}
        ),
        WorkflowStep.PROVISIONING: frozenset(
            {WorkflowStep.SUCCEEDED, WorkflowStep.FAILED}
        ),
        WorkflowStep.SUCCEEDED: frozenset(),
        WorkflowStep.FAILED: ACTIVE_STEPS,
    }
)


@dataclass(frozen=True, slots=True)
class FailureRecord:
    """Why and where a workflow halted.

    ``irreversible_done`` is True once the burn transaction has been
    submitted, so a resume UI can promise the token will not burn twice.
    """

    kind: str
    detail: str
    failed_step: WorkflowStep
    last_completed_step: WorkflowStep | None
    irreversible_done: bool
    retryable: bool = False
    tx_hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            'kind': self.kind,
            'detail': self.detail,
            'failed_step': self.failed_step.value,
            'last_completed_step': _step_value(self.last_completed_step),
            'irreversible_done': self.irreversible_done,
            'retryable': self.retryable,
            'tx_hash': self.tx_hash,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FailureRecord:
        return cls(
            kind=data['kind'],
            detail=data.get('detail', ''),
            failed_step=WorkflowStep(data['failed_step']),
            last_completed_step=_step_or_none(data.get('last_completed_step')),
            irreversible_done=bool(data.get('irreversible_done', False)),
            retryable=bool(data.get('retryable', False)),
            tx_hash=data.get('tx_hash'),
        )


@dataclass(frozen=True, slots=True)
class WorkflowState:
    """Persisted record for one provisioning attempt.

    Single source of truth for resumability. Stored after every completed
    step and right after every transaction submission.
    """

    workflow_id: str
    wallet_address: str
    form: ProvisionFormData
    step: WorkflowStep = WorkflowStep.IDLE
    attempt: int = 1
    last_completed_step: WorkflowStep | None = None
    metadata: IdentityMetadata | None = None
    content_ref: ContentReference | None = None
    burn_tx_hash: str | None = None
    burn_receipt: ChainReceipt | None = None
    registration_tx_hash: str | None = None
    registration_receipt: ChainReceipt | None = None
    identity_id: str | None = None
    provision_job_id: str | None = None
    provision_detail: dict[str, Any] = field(default_factory=dict)
    failure: FailureRecord | None = None
    cancel_requested: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.step in TERMINAL_STEPS

    @property
    def burn_submitted(self) -> bool:
        return self.burn_tx_hash is not None or self.burn_receipt is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            'workflow_id': self.workflow_id,
            'wallet_address': self.wallet_address,
            'form': self.form.to_dict(),
            'step': self.step.value,
            'attempt': self.attempt,
            'last_completed_step': _step_value(self.last_completed_step),
            'metadata': self.metadata.to_json_dict() if self.metadata else None,
            'content_ref': self.content_ref.to_dict() if self.content_ref else None,
            'burn_tx_hash': self.burn_tx_hash,
            'burn_receipt': self.burn_receipt.to_dict() if self.burn_receipt else None,
            'registration_tx_hash': self.registration_tx_hash,
            'registration_receipt': (
                self.registration_receipt.to_dict()
                if self.registration_receipt
                else None
            ),
            'identity_id': self.identity_id,
            'provision_job_id': self.provision_job_id,
            'provision_detail': dict(self.provision_detail),
            'failure': self.failure.to_dict() if self.failure else None,
            'cancel_requested': self.cancel_requested,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowState:
        return cls(
            workflow_id=data['workflow_id'],
            wallet_address=data['wallet_address'],
            form=ProvisionFormData.from_dict(data['form']),
            step=WorkflowStep(data.get('step', WorkflowStep.IDLE.value)),
            attempt=int(data.get('attempt', 1)),
            last_completed_step=_step_or_none(data.get('last_completed_step')),
            metadata=(
                IdentityMetadata.from_json_dict(data['metadata'])
                if data.get('metadata')
                else None
            ),
            content_ref=(
                ContentReference.from_dict(data['content_ref'])
                if data.get('content_ref')
                else None
            ),
            burn_tx_hash=data.get('burn_tx_hash'),
            burn_receipt=(
                ChainReceipt.from_dict(data['burn_receipt'])
                if data.get('burn_receipt')
                else None
            ),
            registration_tx_hash=data.get('registration_tx_hash'),
            registration_receipt=(
                ChainReceipt.from_dict(data['registration_receipt'])
                if data.get('registration_receipt')
                else None
            ),
            identity_id=data.get('identity_id'),
            provision_job_id=data.get('provision_job_id'),
            provision_detail=dict(data.get('provision_detail') or {}),
            failure=(
                FailureRecord.from_dict(data['failure'])
                if data.get('failure')
                else None
            ),
            cancel_requested=bool(data.get('cancel_requested', False)),
            created_at=_parse_iso(data.get('created_at')),
            updated_at=_parse_iso(data.get('updated_at')),
        )


class InvalidStateTransition(ValueError):
    """Raised for invalid workflow state transitions."""

    def __init__(self, from_step: WorkflowStep | str, to_step: WorkflowStep | str) -> None:
        self.from_step = from_step
        self.to_step = to_step
        super().__init__(
            f'invalid state transition: {_label(from_step)!r} -> {_label(to_step)!r}'
        )


def create_workflow(
    *,
    form: ProvisionFormData,
    wallet_address: str,
    workflow_id: str | None = None,
    now: datetime | None = None,
) -> WorkflowState:
    """Create a new Idle workflow snapshot."""
    if not wallet_address or not wallet_address.strip():
        raise ValueError('wallet_address is required')
    now = now or _now()
    _require_aware_datetime(now)
    return WorkflowState(
        workflow_id=workflow_id or f'wf_{uuid.uuid4().hex[:16]}',
        wallet_address=wallet_address.strip(),
        form=form,
        created_at=now,
        updated_at=now,
    )


def advance_step(
    state: WorkflowState,
    *,
    now: datetime,
    **updates: Any,
) -> WorkflowState:
    """Advance by exactly one step, recording the step just completed.

    ``updates`` carries the evidence produced by the completed step
    (receipt, content reference, ...).
    """
    if state.step in TERMINAL_STEPS:
        raise InvalidStateTransition(state.step, 'next')

    index = WORKFLOW_SEQUENCE.index(state.step)
    next_step = WORKFLOW_SEQUENCE[index + 1]
    completed = state.step if state.step is not WorkflowStep.IDLE else None
    return _transition(
        state,
        to_step=next_step,
        now=now,
        last_completed_step=completed or state.last_completed_step,
        **updates,
    )


def record_progress(
    state: WorkflowState,
    *,
    now: datetime,
    **updates: Any,
) -> WorkflowState:
    """Persistable update inside the current step (e.g. a submitted tx hash)."""
    _require_aware_datetime(now)
    if state.step in TERMINAL_STEPS:
        raise InvalidStateTransition(state.step, state.step)
    return replace(state, updated_at=now, **updates)


def transition_to_failed(
    state: WorkflowState,
    *,
    now: datetime,
    kind: str,
    detail: str,
    retryable: bool = False,
    tx_hash: str | None = None,
    completed_step: WorkflowStep | None = None,
) -> WorkflowState:
    """Move a non-terminal workflow to ``Failed``.

    ``completed_step`` overrides the recorded last completed step when the
    failing step's own side effect was confirmed (a provisioning job that
    was accepted but did not finish within the wait budget).
    """
    if state.step in TERMINAL_STEPS:
        raise InvalidStateTransition(state.step, WorkflowStep.FAILED)

    last_completed = completed_step or state.last_completed_step
    failure = FailureRecord(
        kind=kind,
        detail=detail,
        failed_step=state.step,
        last_completed_step=last_completed,
        irreversible_done=state.burn_submitted,
        retryable=retryable,
        tx_hash=tx_hash,
    )
    return _transition(
        state,
        to_step=WorkflowStep.FAILED,
        now=now,
        last_completed_step=last_completed,
        failure=failure,
    )


def resume_entry_step(state: WorkflowState) -> WorkflowStep:
    """First step whose completion evidence is missing."""
    if state.metadata is None:
        return WorkflowStep.BUILDING_METADATA
    if state.content_ref is None:
        return WorkflowStep.PUBLISHING_CONTENT
    if state.burn_receipt is None:
        return WorkflowStep.BURNING_TOKEN
    if state.registration_receipt is None:
        return WorkflowStep.REGISTERING_IDENTITY
    return WorkflowStep.PROVISIONING


def resume_from_failure(
    state: WorkflowState,
    *,
    now: datetime,
) -> WorkflowState:
    """Explicit resume transition from ``Failed`` back into the flow."""
    if state.step is not WorkflowStep.FAILED:
        raise InvalidStateTransition(state.step, 'resume')

    return _transition(
        state,
        to_step=resume_entry_step(state),
        now=now,
        attempt=state.attempt + 1,
        failure=None,
        cancel_requested=False,
    )


def is_cancellable(state: WorkflowState) -> bool:
    return state.step in CANCELLABLE_STEPS and not state.burn_submitted


def _transition(
    state: WorkflowState,
    *,
    to_step: WorkflowStep,
    now: datetime,
    **updates: Any,
) -> WorkflowState:
    _require_aware_datetime(now)
    allowed = ALLOWED_TRANSITIONS.get(state.step, frozenset())
    if to_step not in allowed:
        raise InvalidStateTransition(state.step, to_step)
    if to_step is WorkflowStep.SUCCEEDED:
        updates['failure'] = None

    return replace(state, step=to_step, updated_at=now, **updates)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _require_aware_datetime(value: datetime) -> None:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValueError('now must be timezone-aware')


def _label(step: WorkflowStep | str) -> str:
    return step.value if isinstance(step, WorkflowStep) else step


def _step_value(step: WorkflowStep | None) -> str | None:
    return step.value if step is not None else None


def _step_or_none(value: str | None) -> WorkflowStep | None:
    return WorkflowStep(value) if value else None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
