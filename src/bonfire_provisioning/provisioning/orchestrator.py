"""Provisioning orchestrator: drives a workflow through the saga steps.

Orchestrates the provisioning flow for one wallet:
  Idle -> BuildingMetadata -> PublishingContent -> BurningToken
  -> RegisteringIdentity -> Provisioning -> Succeeded

At each step the orchestrator:
  1. Performs the step action via the injected workers.
  2. Retries retryable failures with bounded backoff.
  3. Persists the state after every completed step and after signing each
     transaction, before it is broadcast.
  4. Transitions to Failed with the failure kind on anything else.

Burn and registration are driven as sign/broadcast/confirm. Once a hash is
stored, recovery always re-polls it; nothing is signed twice.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable

from ..backend.provisioner import BackendProvisioner, IdentityRef
from ..chain.burn import TokenBurnExecutor
from ..chain.protocols import SigningSession
from ..chain.registrar import IdentityRegistrar, identity_id_from
from ..erc8004.metadata import MetadataBuilder
from ..ipfs.publisher import ContentPublisher
from ..models import ProvisionFormData
from ..observability.logging import bind_step, get_logger, workflow_id_ctx
from ..observability.metrics import (
    STEP_DURATION_SECONDS,
    STEP_RETRIES_TOTAL,
    STEP_TRANSITIONS_TOTAL,
    WORKFLOWS_TERMINAL_TOTAL,
)
from .errors import (
    Cancelled,
    ChainTimeout,
    InsufficientFunds,
    ProvisioningError,
    ProvisioningTimedOut,
    TransactionReverted,
    WorkflowBusy,
    WorkflowNotFound,
)
from .retry import RetryPolicy
from .state_machine import (
    WorkflowState,
    WorkflowStep,
    advance_step,
    create_workflow,
    is_cancellable,
    record_progress,
    resume_from_failure,
    transition_to_failed,
)
from .store import WorkflowStore

logger = get_logger(__name__)

# Steps at whose start a pending cancel request is honored.
_CANCEL_CHECKPOINTS = frozenset(
    {
        WorkflowStep.IDLE,
        WorkflowStep.BUILDING_METADATA,
        WorkflowStep.PUBLISHING_CONTENT,
    }
)


class ProvisioningOrchestrator:
    """Runs provisioning workflows to a terminal state.

    Step failures never escape ``start``/``resume``: they are recorded in
    the returned (and persisted) state. The caller errors are
    ``WorkflowBusy`` for a workflow that is already being driven and
    ``WorkflowNotFound`` for an unknown id.
    """

    def __init__(
        self,
        *,
        store: WorkflowStore,
        metadata_builder: MetadataBuilder,
        publisher: ContentPublisher,
        burn_executor: TokenBurnExecutor,
        registrar: IdentityRegistrar,
        provisioner: BackendProvisioner,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._metadata = metadata_builder
        self._publisher = publisher
        self._burn = burn_executor
        self._registrar = registrar
        self._provisioner = provisioner
        self._retry = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock
        self._now = now or _now

        self._locks: dict[str, asyncio.Lock] = {}
        # Latest snapshot of each workflow currently being driven.
        self._live: dict[str, WorkflowState] = {}
        self._cancel_requested: set[str] = set()

    # ── Public operations ──────────────────────────────────────────

    async def start(
        self,
        form: ProvisionFormData,
        wallet_address: str,
        signing_session: SigningSession,
        *,
        workflow_id: str | None = None,
    ) -> WorkflowState:
        """Create, persist and run a new workflow.

        Raises:
            ValueError: blank wallet, a signing session for another wallet,
                or a ``workflow_id`` that already exists.
        """
        _require_same_wallet(wallet_address, signing_session)
        state = create_workflow(
            form=form,
            wallet_address=wallet_address,
            workflow_id=workflow_id,
            now=self._now(),
        )
        async with self._exclusive(state.workflow_id):
            if await self._store.get(state.workflow_id) is not None:
                raise ValueError(f'workflow {state.workflow_id!r} already exists')
            await self._persist(state)
            logger.info(
                'workflow_started',
                wallet_address=state.wallet_address,
                token_id=form.token_id,
            )
            return await self._drive(state, signing_session)

    async def resume(
        self,
        workflow_id: str,
        signing_session: SigningSession,
    ) -> WorkflowState:
        """Continue a persisted workflow after its last completed step.

        ``Succeeded`` is returned unchanged. A non-terminal state left by a
        crashed process continues from its current step.
        """
        async with self._exclusive(workflow_id):
            state = await self._store.get(workflow_id)
            if state is None:
                raise WorkflowNotFound(workflow_id)
            _require_same_wallet(state.wallet_address, signing_session)
            if state.step is WorkflowStep.SUCCEEDED:
                return state

            if state.step is WorkflowStep.FAILED:
                failed_kind = state.failure.kind if state.failure else None
                state = resume_from_failure(state, now=self._now())
                STEP_TRANSITIONS_TOTAL.labels(step=state.step.value).inc()
                await self._persist(state)
                logger.info(
                    'workflow_resumed',
                    step=state.step.value,
                    attempt=state.attempt,
                    previous_failure=failed_kind,
                )
            return await self._drive(state, signing_session)

    async def cancel(self, workflow_id: str) -> bool:
        """Request cancellation; True when it will be (or was) honored.

        Only possible before the burn is submitted. A running workflow
        stops at its next checkpoint; an idle one fails immediately with
        kind ``Cancelled``.
        """
        if workflow_id in self._locks and self._locks[workflow_id].locked():
            return self._request_cancel(workflow_id)

        async with self._exclusive(workflow_id):
            state = await self._store.get(workflow_id)
            if state is None:
                raise WorkflowNotFound(workflow_id)
            if state.is_terminal or not is_cancellable(state):
                return False
            await self._fail(state, Cancelled('cancelled by user'))
            return True

    async def get(self, workflow_id: str) -> WorkflowState | None:
        live = self._live.get(workflow_id)
        if live is not None:
            return live
        return await self._store.get(workflow_id)

    async def list_for_wallet(self, wallet_address: str) -> list[WorkflowState]:
        return await self._store.list_for_wallet(wallet_address)

    # ── Driving ────────────────────────────────────────────────────

    @contextlib.asynccontextmanager
    async def _exclusive(self, workflow_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(workflow_id, asyncio.Lock())
        if lock.locked():
            raise WorkflowBusy(workflow_id)
        try:
            async with lock:
                token = workflow_id_ctx.set(workflow_id)
                try:
                    yield
                finally:
                    workflow_id_ctx.reset(token)
                    self._live.pop(workflow_id, None)
                    self._cancel_requested.discard(workflow_id)
        finally:
            if self._locks.get(workflow_id) is lock and not lock.locked():
                del self._locks[workflow_id]

    async def _drive(
        self,
        state: WorkflowState,
        session: SigningSession,
    ) -> WorkflowState:
        handlers = {
            WorkflowStep.IDLE: self._begin,
            WorkflowStep.BUILDING_METADATA: self._build_metadata,
            WorkflowStep.PUBLISHING_CONTENT: self._publish_content,
            WorkflowStep.BURNING_TOKEN: self._burn_token,
            WorkflowStep.REGISTERING_IDENTITY: self._register_identity,
            WorkflowStep.PROVISIONING: self._provision_backend,
        }
        while not state.is_terminal:
            step = state.step
            started = self._clock()
            with bind_step(step.value, state.attempt):
                logger.info('workflow_step_started')
                try:
                    if step in _CANCEL_CHECKPOINTS:
                        self._check_cancelled(state)
                    state = await handlers[step](state, session)
                except ProvisioningError as exc:
                    state = await self._fail(self._live.get(state.workflow_id, state), exc)
                except Exception as exc:
                    logger.exception('workflow_step_crashed')
                    state = await self._fail(
                        self._live.get(state.workflow_id, state),
                        ProvisioningError(f'{type(exc).__name__}: {exc}'),
                    )
                STEP_DURATION_SECONDS.labels(step=step.value).observe(
                    max(self._clock() - started, 0.0)
                )

        if state.step is WorkflowStep.SUCCEEDED:
            WORKFLOWS_TERMINAL_TOTAL.labels(outcome='succeeded', kind='').inc()
            logger.info(
                'workflow_succeeded',
                identity_id=state.identity_id,
                provision_job_id=state.provision_job_id,
            )
        return state

    async def _begin(self, state: WorkflowState, session: SigningSession) -> WorkflowState:
        return await self._advance(state)

    async def _build_metadata(
        self, state: WorkflowState, session: SigningSession,
    ) -> WorkflowState:
        metadata = self._metadata.build(state.form)
        return await self._advance(state, metadata=metadata)

    async def _publish_content(
        self, state: WorkflowState, session: SigningSession,
    ) -> WorkflowState:
        content_ref = await self._with_retry(
            state, lambda: self._publisher.publish(state.metadata),
        )
        logger.info('metadata_published', cid=content_ref.cid)
        return await self._advance(state, content_ref=content_ref)

    async def _burn_token(
        self, state: WorkflowState, session: SigningSession,
    ) -> WorkflowState:
        if state.burn_receipt is not None:
            return await self._advance(state)

        if state.burn_tx_hash is None:
            # Last point at which a cancel can still be honored.
            self._check_cancelled(state)
            signed = await self._burn.sign(state.form.token_id, session)
            state = await self._broadcast(state, self._burn, signed, 'burn_tx_hash')
            logger.info('burn_submitted', tx_hash=state.burn_tx_hash)
        else:
            logger.info('burn_repoll', tx_hash=state.burn_tx_hash)

        tx_hash = state.burn_tx_hash
        receipt = await self._with_retry(state, lambda: self._burn.confirm(tx_hash))
        return await self._advance(state, burn_receipt=receipt)

    async def _register_identity(
        self, state: WorkflowState, session: SigningSession,
    ) -> WorkflowState:
        receipt = state.registration_receipt
        if receipt is None and state.registration_tx_hash is None:
            receipt = await self._registrar.find_existing(
                state.content_ref,
                session.address,
                from_block=state.burn_receipt.block_number,
            )
            if receipt is not None:
                logger.info('registration_found', tx_hash=receipt.tx_hash)
                state = await self._progress(state, registration_tx_hash=receipt.tx_hash)
            else:
                signed = await self._registrar.sign(state.content_ref, session)
                state = await self._broadcast(
                    state, self._registrar, signed, 'registration_tx_hash',
                )
                logger.info('registration_submitted', tx_hash=state.registration_tx_hash)

        if receipt is None:
            tx_hash = state.registration_tx_hash
            receipt = await self._with_retry(
                state, lambda: self._registrar.confirm(tx_hash),
            )

        return await self._advance(
            state,
            registration_tx_hash=receipt.tx_hash,
            registration_receipt=receipt,
            identity_id=identity_id_from(receipt),
        )

    async def _provision_backend(
        self, state: WorkflowState, session: SigningSession,
    ) -> WorkflowState:
        if state.provision_job_id is None:
            identity = _identity_ref(state)
            job_id = await self._with_retry(
                state, lambda: self._provisioner.provision(identity),
            )
            state = await self._progress(state, provision_job_id=job_id)
        else:
            logger.info('provision_repoll', provision_job_id=state.provision_job_id)

        job_id = state.provision_job_id
        status = await self._with_retry(
            state, lambda: self._provisioner.wait_until_ready(job_id),
        )
        return await self._advance(state, provision_detail=dict(status.detail))

    # ── Helpers ────────────────────────────────────────────────────

    async def _with_retry(self, state: WorkflowState, operation: Callable[[], Awaitable[Any]]):
        """Run ``operation``; retry retryable failures within the policy."""
        attempts = 0
        while True:
            try:
                return await operation()
            except ProvisioningError as exc:
                attempts += 1
                if not exc.retryable or not self._retry.should_retry(attempts):
                    raise
                delay = self._retry.delay_for(attempts - 1)
                STEP_RETRIES_TOTAL.labels(step=state.step.value, kind=exc.kind).inc()
                logger.warning(
                    'workflow_step_retry',
                    step=state.step.value,
                    kind=exc.kind,
                    attempt=attempts,
                    max_attempts=self._retry.max_attempts,
                    delay_seconds=round(delay, 3),
                )
                await self._sleep(delay)

    async def _broadcast(
        self, state: WorkflowState, worker: Any, signed_tx: bytes, hash_field: str,
    ) -> WorkflowState:
        """Persist the hash of ``signed_tx``, then hand it to the node.

        Once signed, the hash is the only handle on a transaction the node
        may already hold, so a broadcast whose outcome is unknown is left to
        confirmation polling. Refusals (``InsufficientFunds``,
        ``TransactionReverted``) propagate and ``_fail`` clears the hash.
        """
        tx_hash = worker.tx_hash_of(signed_tx)
        state = await self._progress(state, **{hash_field: tx_hash})
        try:
            await worker.broadcast(signed_tx)
        except ChainTimeout as exc:
            logger.warning('broadcast_unconfirmed', tx_hash=tx_hash, detail=exc.detail)
        except ProvisioningError:
            raise
        except Exception:
            logger.exception('broadcast_outcome_unknown', tx_hash=tx_hash)
        return state

    def _request_cancel(self, workflow_id: str) -> bool:
        live = self._live.get(workflow_id)
        if live is None or not is_cancellable(live):
            return False
        self._cancel_requested.add(workflow_id)
        logger.info('workflow_cancel_requested', step=live.step.value)
        return True

    def _check_cancelled(self, state: WorkflowState) -> None:
        if state.workflow_id in self._cancel_requested:
            raise Cancelled('cancelled by user')

    async def _advance(self, state: WorkflowState, **updates: Any) -> WorkflowState:
        state = advance_step(state, now=self._now(), **updates)
        STEP_TRANSITIONS_TOTAL.labels(step=state.step.value).inc()
        return await self._persist(state)

    async def _progress(self, state: WorkflowState, **updates: Any) -> WorkflowState:
        state = record_progress(state, now=self._now(), **updates)
        return await self._persist(state)

    async def _fail(self, state: WorkflowState, exc: ProvisioningError) -> WorkflowState:
        now = self._now()
        updates: dict[str, Any] = {}
        completed_step = None
        if isinstance(exc, (TransactionReverted, InsufficientFunds)):
            # Refused or reverted: nothing changed on-chain; resume signs afresh.
            if state.step is WorkflowStep.BURNING_TOKEN:
                updates['burn_tx_hash'] = None
            elif state.step is WorkflowStep.REGISTERING_IDENTITY:
                updates['registration_tx_hash'] = None
        elif isinstance(exc, ProvisioningTimedOut):
            completed_step = WorkflowStep.PROVISIONING
        elif isinstance(exc, Cancelled):
            updates['cancel_requested'] = True
        if updates:
            state = record_progress(state, now=now, **updates)

        failed_step = state.step
        state = transition_to_failed(
            state,
            now=now,
            kind=exc.kind,
            detail=exc.detail,
            retryable=exc.retryable,
            tx_hash=getattr(exc, 'tx_hash', None),
            completed_step=completed_step,
        )
        STEP_TRANSITIONS_TOTAL.labels(step=state.step.value).inc()
        WORKFLOWS_TERMINAL_TOTAL.labels(outcome='failed', kind=exc.kind).inc()
        logger.warning(
            'workflow_failed',
            step=failed_step.value,
            kind=exc.kind,
            detail=exc.detail,
            irreversible_done=state.failure.irreversible_done,
        )
        return await self._persist(state)

    async def _persist(self, state: WorkflowState) -> WorkflowState:
        self._live[state.workflow_id] = state
        await self._store.save(state)
        return state


def _identity_ref(state: WorkflowState) -> IdentityRef:
    metadata = state.metadata
    return IdentityRef(
        identity_id=state.identity_id,
        wallet_address=state.wallet_address,
        registration_tx_hash=state.registration_receipt.tx_hash,
        burn_tx_hash=state.burn_receipt.tx_hash,
        ipfs_uri=state.content_ref.uri,
        agent_name=metadata.name,
        description=metadata.description,
        capabilities=metadata.capabilities,
    )


def _require_same_wallet(wallet_address: str, session: SigningSession) -> None:
    if (wallet_address or '').strip().lower() != session.address.lower():
        raise ValueError('signing session does not belong to the workflow wallet')


def _now() -> datetime:
    """UTC-aware now for state transitions."""
    return datetime.now(timezone.utc)
