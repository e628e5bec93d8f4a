"""Provisioning workflow status, cancel and metrics API.

Exposes workflow state to the wizard front end:
  GET  /api/v1/provision/workflows?wallet_address=...  -> workflows for a wallet
  GET  /api/v1/provision/workflows/{workflow_id}       -> current status
  POST /api/v1/provision/workflows/{workflow_id}/cancel -> request cancellation
  GET  /metrics                                        -> Prometheus exposition

Starting and resuming need the user's signing session, which lives in the
wallet layer; those run in-process through ``ProvisioningOrchestrator``.
"""

from __future__ import annotations

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from starlette.responses import Response

from ..observability.metrics import metrics_text
from ..provisioning.errors import WorkflowNotFound
from ..provisioning.messages import status_payload
from ..provisioning.orchestrator import ProvisioningOrchestrator


def _not_found(workflow_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={
            'error': 'workflow_not_found',
            'detail': f'No provisioning workflow {workflow_id!r}.',
        },
    )


def create_workflow_router(orchestrator: ProvisioningOrchestrator) -> APIRouter:
    """Create the workflow status router.

    Args:
        orchestrator: Orchestrator whose workflows are exposed.

    Returns:
        FastAPI router with workflow and metrics endpoints.
    """
    router = APIRouter(tags=['provisioning'])

    @router.get('/api/v1/provision/workflows')
    async def list_workflows(wallet_address: str = Query(..., min_length=1)):
        """List a wallet's workflows, oldest first."""
        states = await orchestrator.list_for_wallet(wallet_address)
        return {'workflows': [status_payload(s) for s in states]}

    @router.get('/api/v1/provision/workflows/{workflow_id}')
    async def get_workflow(workflow_id: str):
        """Current step, evidence and, when failed, the user-facing message."""
        state = await orchestrator.get(workflow_id)
        if state is None:
            return _not_found(workflow_id)
        return status_payload(state)

    @router.post('/api/v1/provision/workflows/{workflow_id}/cancel')
    async def cancel_workflow(workflow_id: str):
        """Cancel a workflow that has not submitted its burn yet."""
        try:
            cancelled = await orchestrator.cancel(workflow_id)
        except WorkflowNotFound:
            return _not_found(workflow_id)

        if not cancelled:
            return JSONResponse(
                status_code=409,
                content={
                    'error': 'not_cancellable',
                    'detail': (
                        'The workflow has finished or already submitted '
                        'an on-chain transaction.'
                    ),
                },
            )
        state = await orchestrator.get(workflow_id)
        return {'cancelled': True, 'workflow': status_payload(state)}

    @router.get('/metrics')
    async def prometheus_metrics():
        """Prometheus metrics exposition endpoint."""
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    return router
