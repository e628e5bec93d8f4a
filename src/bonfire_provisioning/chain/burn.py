"""TokenBurnExecutor: burns the ERC-1155 access token.

The burn is split into ``sign``, ``broadcast`` and ``confirm`` so the
orchestrator can persist the transaction hash (``tx_hash_of`` the signed
bytes) before the node ever sees it. A crash, ``ChainTimeout`` or dropped
connection after signing is recovered by confirming the same hash again,
never by signing a second burn.
"""

from __future__ import annotations

import logging

from ..models import ChainReceipt
from ..provisioning.errors import TokenNotHeld
from .polling import ReceiptPoller
from .protocols import ChainClient, SigningSession

logger = logging.getLogger(__name__)


class TokenBurnExecutor:
    """Stateless burn step."""

    def __init__(self, chain: ChainClient, poller: ReceiptPoller) -> None:
        self._chain = chain
        self._poller = poller

    async def burn(self, token_id: str, signing_session: SigningSession) -> ChainReceipt:
        """Submit and confirm in one call."""
        tx_hash = await self.submit(token_id, signing_session)
        return await self.confirm(tx_hash)

    async def submit(self, token_id: str, signing_session: SigningSession) -> str:
        """Sign and broadcast the burn; return its transaction hash."""
        signed = await self.sign(token_id, signing_session)
        return await self.broadcast(signed)

    async def sign(self, token_id: str, signing_session: SigningSession) -> bytes:
        """Build the burn and have the wallet sign it.

        Raises:
            TokenNotHeld: wallet balance for ``token_id`` is zero.
            UserRejected: raised by the signing session.
            InsufficientFunds / TransactionReverted: raised by the chain
                client while building.
        """
        owner = signing_session.address
        token = int(token_id)

        balance = await self._chain.balance_of(owner, token)
        if balance < 1:
            raise TokenNotHeld(f'wallet {owner} holds no token #{token}')

        payload = await self._chain.build_burn_tx(owner, token)
        return await signing_session.request_signature(payload)

    def tx_hash_of(self, signed_tx: bytes) -> str:
        return self._chain.tx_hash_of(signed_tx)

    async def broadcast(self, signed_tx: bytes) -> str:
        tx_hash = await self._chain.submit(signed_tx)
        logger.info('Burn submitted: %s', tx_hash)
        return tx_hash

    async def confirm(self, tx_hash: str) -> ChainReceipt:
        """Wait for inclusion of a submitted burn."""
        return await self._poller.wait(tx_hash)
