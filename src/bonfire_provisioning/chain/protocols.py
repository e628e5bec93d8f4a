"""Boundary interfaces for the wallet and the chain node.

The signing session is an explicit capability handed to the chain
executors for each call; it is never stored globally. Implementations live
outside this package (wallet layer) except ``Web3ChainClient``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Protocol, runtime_checkable

from ..models import ChainReceipt


@runtime_checkable
class SigningSession(Protocol):
    """User-mediated signing capability.

    ``request_signature`` raises ``UserRejected`` when the user declines.
    Requests are issued strictly one at a time.
    """

    @property
    def address(self) -> str: ...

    async def request_signature(self, tx_payload: dict[str, Any]) -> bytes: ...

    async def sign_message(self, message: str) -> str: ...


@dataclass(frozen=True, slots=True)
class ReceiptLookup:
    """Result of one receipt query."""

    state: Literal['pending', 'included', 'failed']
    receipt: ChainReceipt | None = None
    detail: str = ''

    @classmethod
    def pending(cls) -> ReceiptLookup:
        return cls(state='pending')

    @classmethod
    def included(cls, receipt: ChainReceipt) -> ReceiptLookup:
        return cls(state='included', receipt=receipt)

    @classmethod
    def failed(cls, detail: str) -> ReceiptLookup:
        return cls(state='failed', detail=detail)


@runtime_checkable
class ChainClient(Protocol):
    """Submit/poll access to the chain plus the contract reads we need."""

    def tx_hash_of(self, signed_tx: bytes) -> str: ...

    async def submit(self, signed_tx: bytes) -> str: ...

    async def get_receipt(self, tx_hash: str) -> ReceiptLookup: ...

    async def balance_of(self, owner: str, token_id: int) -> int: ...

    async def build_burn_tx(self, owner: str, token_id: int) -> dict[str, Any]: ...

    async def build_register_tx(self, owner: str, token_uri: str) -> dict[str, Any]: ...

    async def find_registration(
        self, owner: str, token_uri: str, *, from_block: int | None = None,
    ) -> ChainReceipt | None: ...
