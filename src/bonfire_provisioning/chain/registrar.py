"""IdentityRegistrar: registers the published metadata URI on-chain."""

from __future__ import annotations

import logging

from ..models import ChainReceipt, ContentReference
from .polling import ReceiptPoller
from .protocols import ChainClient, SigningSession

logger = logging.getLogger(__name__)


class IdentityRegistrar:
    """Stateless registration step.

    Before signing anything it asks the chain whether this wallet already
    registered the same token URI (a previous attempt that crashed after
    inclusion) and returns that receipt instead. Callers pass ``from_block``
    so only registrations made after their own burn count.
    """

    def __init__(self, chain: ChainClient, poller: ReceiptPoller) -> None:
        self._chain = chain
        self._poller = poller

    async def register(
        self,
        content_ref: ContentReference | None,
        signing_session: SigningSession,
        *,
        from_block: int | None = None,
    ) -> ChainReceipt:
        existing = await self.find_existing(
            content_ref, signing_session.address, from_block=from_block,
        )
        if existing is not None:
            return existing
        tx_hash = await self.submit(content_ref, signing_session)
        return await self.confirm(tx_hash)

    async def find_existing(
        self,
        content_ref: ContentReference | None,
        owner: str,
        *,
        from_block: int | None = None,
    ) -> ChainReceipt | None:
        _require_content_ref(content_ref)
        receipt = await self._chain.find_registration(
            owner, content_ref.uri, from_block=from_block,
        )
        if receipt is not None:
            logger.info(
                'Identity for %s already registered in %s', owner, receipt.tx_hash,
            )
        return receipt

    async def submit(
        self,
        content_ref: ContentReference | None,
        signing_session: SigningSession,
    ) -> str:
        signed = await self.sign(content_ref, signing_session)
        return await self.broadcast(signed)

    async def sign(
        self,
        content_ref: ContentReference | None,
        signing_session: SigningSession,
    ) -> bytes:
        _require_content_ref(content_ref)
        payload = await self._chain.build_register_tx(signing_session.address, content_ref.uri)
        return await signing_session.request_signature(payload)

    def tx_hash_of(self, signed_tx: bytes) -> str:
        return self._chain.tx_hash_of(signed_tx)

    async def broadcast(self, signed_tx: bytes) -> str:
        tx_hash = await self._chain.submit(signed_tx)
        logger.info('Registration submitted: %s', tx_hash)
        return tx_hash

    async def confirm(self, tx_hash: str) -> ChainReceipt:
        return await self._poller.wait(tx_hash)


def identity_id_from(receipt: ChainReceipt) -> str:
    """Identity id decoded from the registration event, else the tx hash."""
    return receipt.identity_id or receipt.tx_hash


def _require_content_ref(content_ref: ContentReference | None) -> None:
    if content_ref is None or not content_ref.cid:
        raise ValueError('registration requires a published ContentReference')
