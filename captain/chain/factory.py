"""Chain client factory"""

from typing import Dict, Any, Optional, Type
from urllib.parse import urlparse

from .base import ChainClient
from .memory import MemoryChainClient
from .rpc import RpcChainClient
from ..constants import MEMORY_URL_SCHEME
from ..models.config import NetworkConfig, DeploySettings


class ChainClientFactory:
    """Factory for creating chain client instances"""

    # Registry of clients by URL scheme
    _clients: Dict[str, Type[ChainClient]] = {
        "http": RpcChainClient,
        "https": RpcChainClient,
        MEMORY_URL_SCHEME: MemoryChainClient,
    }

    @classmethod
    def create_from_config(cls,
                           network: NetworkConfig,
                           settings: Optional[DeploySettings] = None) -> ChainClient:
        """Create chain client from network configuration

        Args:
            network: Network configuration
            settings: Deploy settings supplying commitment and timeouts

        Returns:
            Chain client instance

        Raises:
            ValueError: If the URL scheme is not supported
        """
        settings = settings or DeploySettings()
        config = {
            "name": network.name,
            "url": network.url,
            "ws_url": network.ws_url,
            "commitment": settings.commitment,
            "transaction_timeout": settings.transaction_timeout,
            "confirmation_timeout": settings.confirmation_timeout,
        }
        return cls.create_from_dict(network.url, config)

    @classmethod
    def create_from_dict(cls, url: str, config: Dict[str, Any]) -> ChainClient:
        """Create chain client from URL and configuration dict

        Args:
            url: Cluster URL
            config: Configuration dictionary

        Returns:
            Chain client instance

        Raises:
            ValueError: If the URL scheme is not supported
        """
        scheme = urlparse(url).scheme.lower()

        if scheme not in cls._clients:
            raise ValueError(f"Unsupported cluster URL: {url}")

        client_class = cls._clients[scheme]
        return client_class(dict(config, url=url))

    @classmethod
    def register_client(cls, scheme: str, client_class: Type[ChainClient]):
        """Register a client class for a URL scheme

        Args:
            scheme: URL scheme
            client_class: Client class
        """
        cls._clients[scheme.lower()] = client_class

    @classmethod
    def get_supported_schemes(cls) -> list[str]:
        """Get list of supported URL schemes"""
        return sorted(cls._clients.keys())

    @classmethod
    def is_supported(cls, url: str) -> bool:
        """Check if a cluster URL is supported"""
        return urlparse(url).scheme.lower() in cls._clients


def create_client(network: NetworkConfig,
                  settings: Optional[DeploySettings] = None) -> ChainClient:
    """Create a chain client for a network"""
    return ChainClientFactory.create_from_config(network, settings)
