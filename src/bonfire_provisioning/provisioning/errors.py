"""Failure taxonomy for the provisioning saga.

Every worker raises a subclass of ``ProvisioningError``. The orchestrator
catches them at its boundary and records ``kind``/``retryable`` in the
persisted workflow state; raw exceptions never reach the UI layer.

We keep these errors small and dependency-free so they can cross module
boundaries without leaking ``httpx.Response`` objects (or secrets).
"""

from __future__ import annotations


class ProvisioningError(Exception):
    """Base error for a failed provisioning step."""

    kind: str = 'Unexpected'
    retryable: bool = False

    def __init__(self, detail: str = '') -> None:
        self.detail = detail or self.kind
        super().__init__(self.detail)


# ── MetadataBuilder ──────────────────────────────────────────────────


class ValidationError(ProvisioningError, ValueError):
    """Form data is incomplete or out of bounds."""

    kind = 'ValidationError'


# ── ContentPublisher ─────────────────────────────────────────────────


class NetworkError(ProvisioningError):
    """Content store unreachable, timed out, or answered 429/5xx."""

    kind = 'NetworkError'
    retryable = True


class QuotaExceeded(ProvisioningError):
    """Pinning quota exhausted for the configured account."""

    kind = 'QuotaExceeded'


class ContentRejected(ProvisioningError):
    """Content store refused the upload (bad credentials, malformed body)."""

    kind = 'ContentRejected'


# ── Chain steps (burn + registration) ────────────────────────────────


class UserRejected(ProvisioningError):
    """The wallet owner declined the signature request."""

    kind = 'UserRejected'


class InsufficientFunds(ProvisioningError):
    """The wallet cannot pay for gas."""

    kind = 'InsufficientFunds'


class TransactionReverted(ProvisioningError):
    """Transaction was included but reverted by the contract."""

    kind = 'TransactionReverted'

    def __init__(self, detail: str = '', *, tx_hash: str | None = None) -> None:
        self.tx_hash = tx_hash
        super().__init__(detail)


class TokenNotHeld(ProvisioningError):
    """Wallet holds no access token; nothing was submitted."""

    kind = 'TokenNotHeld'


class ChainTimeout(ProvisioningError):
    """Submitted transaction not included within the confirmation budget.

    Retrying means re-polling ``tx_hash``; the transaction is never
    resubmitted.
    """

    kind = 'ChainTimeout'
    retryable = True

    def __init__(self, detail: str = '', *, tx_hash: str | None = None) -> None:
        self.tx_hash = tx_hash
        super().__init__(detail)


# ── BackendProvisioner ───────────────────────────────────────────────


class BackendRejected(ProvisioningError):
    """Backend refused the request or reported the job as failed."""

    kind = 'BackendRejected'

    def __init__(self, detail: str = '', *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(detail)


class BackendUnavailable(ProvisioningError):
    """Backend unreachable, timed out, or answered 429/5xx."""

    kind = 'BackendUnavailable'
    retryable = True


class ProvisioningTimedOut(ProvisioningError):
    """Job still pending after the wait budget. The job keeps running."""

    kind = 'ProvisioningTimedOut'

    def __init__(self, detail: str = '', *, job_id: str | None = None) -> None:
        self.job_id = job_id
        super().__init__(detail)


# ── Orchestrator ─────────────────────────────────────────────────────


class Cancelled(ProvisioningError):
    """User cancelled before any irreversible submission."""

    kind = 'Cancelled'


class WorkflowNotFound(KeyError):
    """No persisted workflow state for the given id."""

    def __init__(self, workflow_id: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(f'workflow {workflow_id!r} not found')


class WorkflowBusy(Exception):
    """A workflow instance is already being driven by another caller."""

    def __init__(self, workflow_id: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(f'workflow {workflow_id!r} is already running')


RETRYABLE_KINDS = frozenset(
    {NetworkError.kind, ChainTimeout.kind, BackendUnavailable.kind}
)
