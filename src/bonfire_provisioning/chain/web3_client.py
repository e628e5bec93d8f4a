"""ChainClient implementation over web3.py.

Talks JSON-RPC to an Ethereum node through ``AsyncWeb3``. Transactions are
built here and signed elsewhere (the user's wallet, through the signing
session); this module never holds a private key.
"""

from __future__ import annotations

import logging
from typing import Any

from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3RPCError
from web3.logs import DISCARD

from ..models import ChainReceipt
from ..provisioning.errors import (
    ChainTimeout,
    InsufficientFunds,
    TransactionReverted,
)
from .protocols import ReceiptLookup

logger = logging.getLogger(__name__)

ERC1155_ABI = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "account", "type": "address"},
            {"name": "id", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "burn",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "account", "type": "address"},
            {"name": "id", "type": "uint256"},
            {"name": "value", "type": "uint256"},
        ],
        "outputs": [],
    },
]

IDENTITY_REGISTRY_ABI = [
    {
        "name": "register",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "tokenURI", "type": "string"}],
        "outputs": [{"name": "agentId", "type": "uint256"}],
    },
    {
        "name": "Registered",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {"name": "agentId", "type": "uint256", "indexed": True},
            {"name": "tokenURI", "type": "string", "indexed": False},
            {"name": "owner", "type": "address", "indexed": True},
        ],
    },
]

_REGISTERED_SIGNATURE = "Registered(uint256,string,address)"


class Web3ChainClient:
    """Async chain client backed by a JSON-RPC node."""

    def __init__(
        self,
        *,
        rpc_url: str | None = None,
        chain_id: int,
        token_address: str,
        registry_address: str,
        registry_from_block: int = 0,
        w3: AsyncWeb3 | None = None,
        request_timeout: float = 30.0,
    ) -> None:
        if w3 is None:
            if not rpc_url:
                raise ValueError("rpc_url is required")
            w3 = AsyncWeb3(
                AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout})
            )
        self._w3 = w3
        self._chain_id = chain_id
        self._token = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(token_address), abi=ERC1155_ABI,
        )
        self._registry = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(registry_address),
            abi=IDENTITY_REGISTRY_ABI,
        )
        self._registry_from_block = registry_from_block

    # ── Submission and receipts ────────────────────────────────────

    def tx_hash_of(self, signed_tx: bytes) -> str:
        return AsyncWeb3.to_hex(AsyncWeb3.keccak(signed_tx))

    async def submit(self, signed_tx: bytes) -> str:
        """Broadcast a signed transaction.

        The hash is derived locally so a transport failure can be reported
        as ``ChainTimeout`` for that hash: the node may have accepted it, so
        the caller must poll rather than re-sign. Other transport errors
        propagate; callers persist ``tx_hash_of(signed_tx)`` beforehand.
        """
        tx_hash = self.tx_hash_of(signed_tx)
        try:
            await self._w3.eth.send_raw_transaction(signed_tx)
        except (ConnectionError, TimeoutError, OSError) as e:
            logger.warning("Broadcast of %s failed (%s); will poll for it", tx_hash, e)
            raise ChainTimeout(f"broadcast of {tx_hash} unconfirmed: {e}", tx_hash=tx_hash) from e
        except (ValueError, Web3RPCError) as e:
            translated = _translate_rpc_error(e)
            if translated is None:
                raise
            raise translated from e
        return tx_hash

    async def get_receipt(self, tx_hash: str) -> ReceiptLookup:
        try:
            raw = await self._w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return ReceiptLookup.pending()
        return ReceiptLookup.included(self._to_receipt(raw))

    # ── Contract reads ─────────────────────────────────────────────

    async def balance_of(self, owner: str, token_id: int) -> int:
        return int(
            await self._token.functions.balanceOf(
                AsyncWeb3.to_checksum_address(owner), token_id,
            ).call()
        )

    async def find_registration(
        self, owner: str, token_uri: str, *, from_block: int | None = None,
    ) -> ChainReceipt | None:
        """Most recent ``Registered`` event for ``owner`` with ``token_uri``.

        ``from_block`` narrows the scan to events at or after that block.
        """
        owner_topic = "0x" + owner.lower().removeprefix("0x").rjust(64, "0")
        logs = await self._w3.eth.get_logs(
            {
                "address": self._registry.address,
                "fromBlock": max(self._registry_from_block, from_block or 0),
                "toBlock": "latest",
                "topics": [
                    AsyncWeb3.to_hex(AsyncWeb3.keccak(text=_REGISTERED_SIGNATURE)),
                    None,
                    owner_topic,
                ],
            }
        )
        event = self._registry.events.Registered()
        for log in reversed(list(logs)):
            decoded = event.process_log(log)
            if decoded["args"]["tokenURI"] != token_uri:
                continue
            return ChainReceipt(
                tx_hash=AsyncWeb3.to_hex(decoded["transactionHash"]),
                block_number=int(decoded["blockNumber"]),
                status="success",
                identity_id=str(decoded["args"]["agentId"]),
            )
        return None

    # ── Transaction payloads ───────────────────────────────────────

    async def build_burn_tx(self, owner: str, token_id: int) -> dict[str, Any]:
        account = AsyncWeb3.to_checksum_address(owner)
        return await self._build(
            self._token.functions.burn(account, token_id, 1), account,
        )

    async def build_register_tx(self, owner: str, token_uri: str) -> dict[str, Any]:
        account = AsyncWeb3.to_checksum_address(owner)
        return await self._build(
            self._registry.functions.register(token_uri), account,
        )

    async def _build(self, fn, account: str) -> dict[str, Any]:
        nonce = await self._w3.eth.get_transaction_count(account, "pending")
        try:
            tx = await fn.build_transaction(
                {"from": account, "nonce": nonce, "chainId": self._chain_id}
            )
        except ContractLogicError as e:
            raise TransactionReverted(f"transaction would revert: {e}") from e
        except (ValueError, Web3RPCError) as e:
            translated = _translate_rpc_error(e)
            if translated is None:
                raise
            raise translated from e
        return dict(tx)

    def _to_receipt(self, raw) -> ChainReceipt:
        status = "success" if raw["status"] == 1 else "reverted"
        identity_id = None
        if status == "success" and raw.get("to") and (
            raw["to"].lower() == self._registry.address.lower()
        ):
            events = self._registry.events.Registered().process_receipt(raw, errors=DISCARD)
            if events:
                identity_id = str(events[0]["args"]["agentId"])
        return ChainReceipt(
            tx_hash=AsyncWeb3.to_hex(raw["transactionHash"]),
            block_number=int(raw["blockNumber"]),
            status=status,
            identity_id=identity_id,
        )


def _translate_rpc_error(exc: Exception) -> Exception | None:
    message = str(exc)
    lowered = message.lower()
    if "insufficient funds" in lowered:
        return InsufficientFunds(message)
    if "revert" in lowered:
        return TransactionReverted(message)
    return None
