"""Chain interaction: token burn and identity registration."""

from .burn import TokenBurnExecutor
from .polling import ReceiptPoller
from .protocols import ChainClient, ReceiptLookup, SigningSession
from .registrar import IdentityRegistrar, identity_id_from

__all__ = [
    'ChainClient',
    'IdentityRegistrar',
    'ReceiptLookup',
    'ReceiptPoller',
    'SigningSession',
    'TokenBurnExecutor',
    'identity_id_from',
]
