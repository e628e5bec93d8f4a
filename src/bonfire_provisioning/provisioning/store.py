"""Workflow state persistence.

The orchestrator saves a ``WorkflowState`` after every completed step and
right after every transaction submission, so a reload or crash resumes
instead of restarting irreversible on-chain actions.

Implementations: InMemoryWorkflowStore (testing, single process),
JsonFileWorkflowStore (one JSON document per workflow on disk).
"""

from __future__ import annotations

import asyncio
import json
import os
import re
from pathlib import Path
from typing import Protocol

from .state_machine import WorkflowState

_SAFE_ID = re.compile(r'^[A-Za-z0-9_.-]{1,128}$')


class WorkflowStore(Protocol):
    """Abstract storage for workflow state snapshots."""

    async def get(self, workflow_id: str) -> WorkflowState | None:
        """Return the latest snapshot, or None."""
        ...

    async def save(self, state: WorkflowState) -> None:
        """Create or replace the snapshot for ``state.workflow_id``."""
        ...

    async def list_for_wallet(self, wallet_address: str) -> list[WorkflowState]:
        """Return all workflows started by a wallet, oldest first."""
        ...


class InMemoryWorkflowStore:
    """In-memory workflow store for testing.

    Round-trips through ``to_dict``/``from_dict`` so tests exercise the
    same serialization as the file store.
    """

    def __init__(self) -> None:
        self._states: dict[str, dict] = {}
        self.save_count = 0

    async def get(self, workflow_id: str) -> WorkflowState | None:
        data = self._states.get(workflow_id)
        return WorkflowState.from_dict(data) if data is not None else None

    async def save(self, state: WorkflowState) -> None:
        self._states[state.workflow_id] = state.to_dict()
        self.save_count += 1

    async def list_for_wallet(self, wallet_address: str) -> list[WorkflowState]:
        wallet = wallet_address.lower()
        states = [
            WorkflowState.from_dict(d)
            for d in self._states.values()
            if d['wallet_address'].lower() == wallet
        ]
        return sorted(states, key=lambda s: s.created_at or s.updated_at)


class JsonFileWorkflowStore:
    """Stores each workflow as ``<root>/<workflow_id>.json``.

    Writes go to a temporary file that is then renamed over the target,
    so a crash mid-write leaves the previous snapshot intact.
    """

    def __init__(self, root: Path) -> None:
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    async def get(self, workflow_id: str) -> WorkflowState | None:
        path = self._path_for(workflow_id)
        if not path.exists():
            return None
        raw = await asyncio.to_thread(path.read_text, encoding='utf-8')
        return WorkflowState.from_dict(json.loads(raw))

    async def save(self, state: WorkflowState) -> None:
        path = self._path_for(state.workflow_id)
        payload = json.dumps(state.to_dict(), indent=2, sort_keys=True)
        await asyncio.to_thread(_atomic_write, path, payload)

    async def list_for_wallet(self, wallet_address: str) -> list[WorkflowState]:
        states = await asyncio.to_thread(_read_wallet_states, self._root, wallet_address)
        return sorted(states, key=lambda s: s.created_at or s.updated_at)

    def _path_for(self, workflow_id: str) -> Path:
        if not _SAFE_ID.match(workflow_id):
            raise ValueError(f'invalid workflow id: {workflow_id!r}')
        return self._root / f'{workflow_id}.json'


def _read_wallet_states(root: Path, wallet_address: str) -> list[WorkflowState]:
    wallet = wallet_address.lower()
    states: list[WorkflowState] = []
    for path in sorted(root.glob('*.json')):
        data = json.loads(path.read_text(encoding='utf-8'))
        if data.get('wallet_address', '').lower() == wallet:
            states.append(WorkflowState.from_dict(data))
    return states


def _atomic_write(path: Path, payload: str) -> None:
    tmp = path.with_suffix('.json.tmp')
    tmp.write_text(payload, encoding='utf-8')
    os.replace(tmp, path)
