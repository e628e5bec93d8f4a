"""Receipt polling shared by the burn and registration executors."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from ..models import ChainReceipt
from ..provisioning.errors import ChainTimeout, TransactionReverted
from .protocols import ChainClient

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


class ReceiptPoller:
    """Polls ``get_receipt`` at a fixed interval within an elapsed budget.

    Never resubmits. A budget overrun raises ``ChainTimeout`` carrying the
    hash so the caller can poll the same transaction again later.
    """

    def __init__(
        self,
        chain: ChainClient,
        *,
        poll_interval: float = 4.0,
        timeout: float = 300.0,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError('poll_interval must be > 0')
        self._chain = chain
        self._interval = poll_interval
        self._timeout = timeout
        self._sleep = sleep
        self._clock = clock

    async def wait(self, tx_hash: str) -> ChainReceipt:
        """Block until ``tx_hash`` is included.

        Raises:
            TransactionReverted: included with status ``reverted``, or
                dropped by the node.
            ChainTimeout: still pending after the budget.
        """
        deadline = self._clock() + self._timeout
        polls = 0
        while True:
            lookup = await self._chain.get_receipt(tx_hash)
            polls += 1
            if lookup.state == 'included' and lookup.receipt is not None:
                receipt = lookup.receipt
                if not receipt.succeeded:
                    raise TransactionReverted(
                        f'transaction {tx_hash} reverted in block '
                        f'{receipt.block_number}',
                        tx_hash=tx_hash,
                    )
                return receipt
            if lookup.state == 'failed':
                raise TransactionReverted(
                    f'transaction {tx_hash} failed: {lookup.detail or "dropped"}',
                    tx_hash=tx_hash,
                )

            if self._clock() + self._interval > deadline:
                raise ChainTimeout(
                    f'transaction {tx_hash} still pending after '
                    f'{self._timeout:.0f}s ({polls} polls)',
                    tx_hash=tx_hash,
                )
            logger.debug('Receipt for %s pending, polling again in %.1fs', tx_hash, self._interval)
            await self._sleep(self._interval)
