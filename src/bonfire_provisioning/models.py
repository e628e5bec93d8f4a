"""Value objects shared by the provisioning workers and the orchestrator.

All of these are immutable. ``to_dict``/``from_dict`` give the JSON form
used by the workflow store; ``IdentityMetadata.to_json_dict`` is the
ERC-8004 wire shape and must not change.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Literal

ReceiptStatus = Literal['success', 'reverted']


@dataclass(frozen=True, slots=True)
class ProvisionFormData:
    """User-submitted wizard input."""

    agent_name: str
    description: str
    capabilities: tuple[str, ...]
    token_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            'agent_name': self.agent_name,
            'description': self.description,
            'capabilities': list(self.capabilities),
            'token_id': self.token_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProvisionFormData:
        return cls(
            agent_name=data['agent_name'],
            description=data.get('description', ''),
            capabilities=tuple(data.get('capabilities') or ()),
            token_id=str(data['token_id']),
        )


@dataclass(frozen=True, slots=True)
class ServiceEndpoint:
    endpoint: str
    x402_support: bool = True


@dataclass(frozen=True, slots=True)
class IdentityMetadata:
    """ERC-8004 identity document for one provisioning attempt."""

    name: str
    description: str
    services: tuple[ServiceEndpoint, ...]
    capabilities: tuple[str, ...]

    def to_json_dict(self) -> dict[str, Any]:
        return {
            'name': self.name,
            'description': self.description,
            'services': [
                {'endpoint': s.endpoint, 'x402Support': s.x402_support}
                for s in self.services
            ],
            'capabilities': list(self.capabilities),
        }

    @classmethod
    def from_json_dict(cls, data: dict[str, Any]) -> IdentityMetadata:
        return cls(
            name=data['name'],
            description=data['description'],
            services=tuple(
                ServiceEndpoint(
                    endpoint=s['endpoint'],
                    x402_support=bool(s['x402Support']),
                )
                for s in data['services']
            ),
            capabilities=tuple(data['capabilities']),
        )

    def canonical_bytes(self) -> bytes:
        """Sorted-key compact JSON; identical documents give identical bytes."""
        return json.dumps(
            self.to_json_dict(),
            separators=(',', ':'),
            sort_keys=True,
            ensure_ascii=False,
        ).encode('utf-8')

    def content_digest(self) -> str:
        return hashlib.sha256(self.canonical_bytes()).hexdigest()


@dataclass(frozen=True, slots=True)
class ContentReference:
    cid: str
    uri: str

    @classmethod
    def for_cid(cls, cid: str) -> ContentReference:
        return cls(cid=cid, uri=f'ipfs://{cid}')

    def to_dict(self) -> dict[str, str]:
        return {'cid': self.cid, 'uri': self.uri}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContentReference:
        return cls(cid=data['cid'], uri=data['uri'])


@dataclass(frozen=True, slots=True)
class ChainReceipt:
    """Confirmed transaction outcome.

    ``identity_id`` is only set on registration receipts, decoded from the
    registry's event log when the chain client can do so.
    """

    tx_hash: str
    block_number: int
    status: ReceiptStatus
    identity_id: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == 'success'

    def to_dict(self) -> dict[str, Any]:
        return {
            'tx_hash': self.tx_hash,
            'block_number': self.block_number,
            'status': self.status,
            'identity_id': self.identity_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChainReceipt:
        return cls(
            tx_hash=data['tx_hash'],
            block_number=int(data['block_number']),
            status=data['status'],
            identity_id=data.get('identity_id'),
        )


@dataclass(frozen=True, slots=True)
class ProvisionStatus:
    """Backend job status as reported by ``GET /provision-jobs/{id}``."""

    state: Literal['pending', 'ready', 'failed']
    detail: dict[str, Any] = field(default_factory=dict)
