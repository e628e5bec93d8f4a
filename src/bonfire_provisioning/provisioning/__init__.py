"""Provisioning saga: state machine, persistence and failure taxonomy.

The orchestrator lives in ``.orchestrator``; it depends on the workers,
which in turn depend on the taxonomy here.
"""

from .errors import (
    RETRYABLE_KINDS,
    ProvisioningError,
    WorkflowBusy,
    WorkflowNotFound,
)
from .messages import describe_failure, message_for, status_payload
from .retry import RetryPolicy
from .state_machine import (
    ALLOWED_TRANSITIONS,
    WORKFLOW_SEQUENCE,
    FailureRecord,
    InvalidStateTransition,
    WorkflowState,
    WorkflowStep,
    advance_step,
    create_workflow,
    resume_entry_step,
    resume_from_failure,
    transition_to_failed,
)
from .store import InMemoryWorkflowStore, JsonFileWorkflowStore, WorkflowStore

__all__ = [
    'ALLOWED_TRANSITIONS',
    'RETRYABLE_KINDS',
    'WORKFLOW_SEQUENCE',
    'FailureRecord',
    'InMemoryWorkflowStore',
    'InvalidStateTransition',
    'JsonFileWorkflowStore',
    'ProvisioningError',
    'RetryPolicy',
    'WorkflowBusy',
    'WorkflowNotFound',
    'WorkflowState',
    'WorkflowStep',
    'WorkflowStore',
    'advance_step',
    'create_workflow',
    'describe_failure',
    'message_for',
    'resume_entry_step',
    'resume_from_failure',
    'status_payload',
    'transition_to_failed',
]
