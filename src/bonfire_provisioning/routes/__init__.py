"""HTTP routes for workflow status and cancellation."""

from .workflows import create_workflow_router

__all__ = ['create_workflow_router']
