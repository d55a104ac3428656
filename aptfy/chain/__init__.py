"""
Chain access: the Aptos client facade and keyless account derivation.
"""
from .base import ChainClient, EscrowDetails, EscrowStats, EscrowV2Details, EscrowV2Stats
from .aptos_chain import AptosChainClient
from .errors import ChainError, ChainTransactionError
from .factory import ChainClientFactory, get_chain_client

__all__ = [
    'ChainClient',
    'EscrowDetails',
    'EscrowStats',
    'EscrowV2Details',
    'EscrowV2Stats',
    'AptosChainClient',
    'ChainError',
    'ChainTransactionError',
    'ChainClientFactory',
    'get_chain_client',
]
