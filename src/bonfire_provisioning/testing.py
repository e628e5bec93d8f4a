"""In-memory collaborators for tests and local development.

Each fake records its calls and can be scripted to fail, so saga
behavior (retries, resume, no double submission) can be exercised without
a wallet, a chain node, Pinata or the backend.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from .backend.provisioner import IdentityRef, ProvisionedRecord
from .chain.protocols import ReceiptLookup
from .models import ChainReceipt, ProvisionStatus
from .provisioning.errors import UserRejected

DEFAULT_WALLET = '0x00000000000000000000000000000000000000aa'


def _pop(script: list[Exception]) -> None:
    if script:
        raise script.pop(0)


# ── Wallet ───────────────────────────────────────────────────────────


class InMemorySigningSession:
    """Test signing session.

    Signed transactions are the JSON payload itself, so the chain fake can
    tell a burn from a registration.
    """

    def __init__(
        self,
        *,
        address: str = DEFAULT_WALLET,
        reject_actions: set[str] | None = None,
    ) -> None:
        self._address = address
        self.reject_actions = set(reject_actions or ())
        self.requests: list[dict[str, Any]] = []
        self.messages: list[str] = []

    @property
    def address(self) -> str:
        return self._address

    async def request_signature(self, tx_payload: dict[str, Any]) -> bytes:
        self.requests.append(tx_payload)
        if tx_payload.get('action') in self.reject_actions:
            raise UserRejected(f'user rejected {tx_payload.get("action")} signature')
        return json.dumps(tx_payload, sort_keys=True).encode('utf-8')

    async def sign_message(self, message: str) -> str:
        self.messages.append(message)
        return '0x' + hashlib.sha256(message.encode('utf-8')).hexdigest()


# ── Chain ────────────────────────────────────────────────────────────


class InMemoryChainClient:
    """Test chain: balances, a transaction log and scripted receipts.

    ``pending_polls`` receipt lookups answer ``pending`` before a
    transaction is included. Actions in ``revert_actions`` are included
    with status ``reverted``. ``submit_errors`` fail a broadcast before the
    node sees it; ``post_submit_errors`` fail it after the transaction is
    accepted, like a connection dropped mid-response.
    """

    def __init__(
        self,
        *,
        balances: dict[tuple[str, int], int] | None = None,
        pending_polls: int = 0,
        revert_actions: set[str] | None = None,
    ) -> None:
        if balances is None:
            balances = {(DEFAULT_WALLET, 1): 1}
        self.balances = {
            (owner.lower(), token): amount for (owner, token), amount in balances.items()
        }
        self.pending_polls = pending_polls
        self.revert_actions = set(revert_actions or ())
        self.submit_errors: list[Exception] = []
        self.post_submit_errors: list[Exception] = []
        self.submitted: list[dict[str, Any]] = []
        self.receipt_calls: list[str] = []
        self._transactions: dict[str, dict[str, Any]] = {}
        self._polls: dict[str, int] = {}
        self._burned: set[str] = set()
        self._registrations: list[tuple[str, str, ChainReceipt]] = []
        self._next_identity = 1

    def submitted_actions(self) -> list[str]:
        return [tx['action'] for tx in self.submitted]

    def tx_hash_of(self, signed_tx: bytes) -> str:
        return '0x' + hashlib.sha256(signed_tx).hexdigest()

    async def submit(self, signed_tx: bytes) -> str:
        _pop(self.submit_errors)
        tx_hash = self.tx_hash_of(signed_tx)
        if tx_hash not in self._transactions:
            payload = json.loads(signed_tx.decode('utf-8'))
            self.submitted.append(payload)
            self._transactions[tx_hash] = payload
        _pop(self.post_submit_errors)
        return tx_hash

    async def get_receipt(self, tx_hash: str) -> ReceiptLookup:
        self.receipt_calls.append(tx_hash)
        payload = self._transactions.get(tx_hash)
        if payload is None:
            return ReceiptLookup.failed('unknown transaction')

        polls = self._polls.get(tx_hash, 0)
        self._polls[tx_hash] = polls + 1
        if polls < self.pending_polls:
            return ReceiptLookup.pending()
        return ReceiptLookup.included(self._include(tx_hash, payload))

    def _include(self, tx_hash: str, payload: dict[str, Any]) -> ChainReceipt:
        block = 100 + list(self._transactions).index(tx_hash)
        if payload['action'] in self.revert_actions:
            return ChainReceipt(tx_hash=tx_hash, block_number=block, status='reverted')

        if payload['action'] == 'burn':
            if tx_hash not in self._burned:
                self._burned.add(tx_hash)
                key = (payload['owner'].lower(), payload['token_id'])
                self.balances[key] = self.balances.get(key, 0) - 1
            return ChainReceipt(tx_hash=tx_hash, block_number=block, status='success')

        for owner, _, receipt in self._registrations:
            if receipt.tx_hash == tx_hash:
                return receipt
        receipt = ChainReceipt(
            tx_hash=tx_hash,
            block_number=block,
            status='success',
            identity_id=str(self._next_identity),
        )
        self._next_identity += 1
        self._registrations.append((payload['owner'].lower(), payload['token_uri'], receipt))
        return receipt

    async def balance_of(self, owner: str, token_id: int) -> int:
        return self.balances.get((owner.lower(), token_id), 0)

    async def build_burn_tx(self, owner: str, token_id: int) -> dict[str, Any]:
        return {'action': 'burn', 'owner': owner, 'token_id': token_id, 'nonce': self._nonce(owner)}

    async def build_register_tx(self, owner: str, token_uri: str) -> dict[str, Any]:
        return {
            'action': 'register', 'owner': owner, 'token_uri': token_uri,
            'nonce': self._nonce(owner),
        }

    async def find_registration(
        self, owner: str, token_uri: str, *, from_block: int | None = None,
    ) -> ChainReceipt | None:
        for reg_owner, uri, receipt in reversed(self._registrations):
            if from_block is not None and receipt.block_number < from_block:
                continue
            if reg_owner == owner.lower() and uri == token_uri:
                return receipt
        return None

    def _nonce(self, owner: str) -> int:
        return sum(1 for tx in self.submitted if tx['owner'].lower() == owner.lower())


# ── IPFS ─────────────────────────────────────────────────────────────


class InMemoryContentStore:
    """Test content store; CIDs are derived from the document bytes."""

    def __init__(self) -> None:
        self.put_errors: list[Exception] = []
        self.puts: list[tuple[dict[str, Any], str]] = []

    async def put(self, document: dict[str, Any], *, name: str) -> str:
        self.puts.append((document, name))
        _pop(self.put_errors)
        digest = hashlib.sha256(
            json.dumps(document, sort_keys=True, separators=(',', ':')).encode('utf-8')
        ).hexdigest()
        return f'bafy{digest[:40]}'


# ── Backend ──────────────────────────────────────────────────────────


class InMemoryBackend:
    """Test stand-in for ``BackendProvisioner``.

    ``wait_errors`` are raised by successive ``wait_until_ready`` calls
    before the job reports ready.
    """

    def __init__(self) -> None:
        self.provision_errors: list[Exception] = []
        self.wait_errors: list[Exception] = []
        self.provisioned: list[IdentityRef] = []
        self.waited: list[str] = []
        self.jobs: dict[str, IdentityRef] = {}

    async def provision(self, identity: IdentityRef) -> str:
        self.provisioned.append(identity)
        _pop(self.provision_errors)
        job_id = f'job_{len(self.jobs) + 1}'
        self.jobs[job_id] = identity
        return job_id

    async def poll_status(self, job_id: str) -> ProvisionStatus:
        if job_id not in self.jobs:
            return ProvisionStatus(state='failed', detail={'error': 'unknown job'})
        return ProvisionStatus(state='ready', detail=self._detail(job_id))

    async def wait_until_ready(self, job_id: str) -> ProvisionStatus:
        self.waited.append(job_id)
        _pop(self.wait_errors)
        return await self.poll_status(job_id)

    async def list_provisioned(self, wallet_address: str) -> list[ProvisionedRecord]:
        return [
            ProvisionedRecord(
                wallet_address=identity.wallet_address,
                tx_hash=identity.burn_tx_hash,
                status='complete',
                agent_name=identity.agent_name,
                ipfs_uri=identity.ipfs_uri,
            )
            for identity in self.jobs.values()
            if identity.wallet_address.lower() == wallet_address.lower()
        ]

    def _detail(self, job_id: str) -> dict[str, Any]:
        identity = self.jobs[job_id]
        return {
            'bonfire_id': f'bf_{job_id}',
            'erc8004_bonfire_id': identity.identity_id,
            'api_key_last4': 'abcd',
        }
