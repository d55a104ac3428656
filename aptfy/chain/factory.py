"""
Factory for creating chain clients.
"""
from typing import Dict, Any, Optional, Type

from django.conf import settings

from .base import ChainClient
from .aptos_chain import AptosChainClient


class ChainClientFactory:
    """Factory to create chain clients based on network name."""

    _clients: Dict[str, Type[ChainClient]] = {
        'mainnet': AptosChainClient,
        'testnet': AptosChainClient,
        'devnet': AptosChainClient,
        'local': AptosChainClient,
    }

    @classmethod
    def create(cls, network: str, config: Dict[str, Any] = None) -> ChainClient:
        """
        Create a chain client for the specified network.

        Args:
            network: Network name ('testnet', 'mainnet', etc.)
            config: Optional configuration dict (node URL, module addresses)

        Returns:
            ChainClient instance

        Raises:
            ValueError: If network is not supported
        """
        network_lower = network.lower().strip()

        client_class = cls._clients.get(network_lower)
        if client_class is None:
            supported = ', '.join(cls._clients.keys())
            raise ValueError(
                f"Unsupported network: {network}. "
                f"Supported networks: {supported}"
            )

        config = dict(config or {})
        config['network'] = network_lower
        return client_class(config)

    @classmethod
    def register(cls, network: str, client_class: Type[ChainClient]) -> None:
        """
        Register a new chain client.

        Args:
            network: Network name
            client_class: ChainClient subclass
        """
        cls._clients[network.lower().strip()] = client_class

    @classmethod
    def get_supported_networks(cls) -> list[str]:
        """Get list of supported network names."""
        return list(cls._clients.keys())


def get_chain_config(network: Optional[str] = None) -> Dict[str, Any]:
    """Chain configuration from Django settings."""
    return {
        'network': network or settings.APTFY_APTOS_NETWORK,
        'node_url': getattr(settings, 'APTFY_APTOS_NODE_URL', ''),
        'escrow_module_address': getattr(settings, 'APTFY_ESCROW_MODULE_ADDRESS', ''),
    }


def get_chain_client(network: Optional[str] = None) -> ChainClient:
    config = get_chain_config(network)
    return ChainClientFactory.create(config['network'], config)
