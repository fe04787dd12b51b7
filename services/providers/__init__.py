"""Provider client registry."""

from shared.utils import setup_logging

from .base import ProviderClient
from .http import HttpProviderClient
from .stub import StubProviderClient

logger = setup_logging("provider-registry")

_clients: dict[str, ProviderClient] = {}


def register_provider(name: str, client: ProviderClient) -> None:
    _clients[name.lower()] = client


def get_provider_client(name: str) -> ProviderClient:
    """Return the shared client for ``name``, building it from configuration on first use."""
    key = name.lower()
    client = _clients.get(key)
    if client is not None:
        return client
    if key == "stub":
        client = StubProviderClient()
    else:
        try:
            client = HttpProviderClient.from_config(key)
        except ValueError:
            logger.warning(f"Unknown provider '{name}', falling back to stub")
            client = StubProviderClient()
    _clients[key] = client
    return client


def reset_providers() -> None:
    _clients.clear()


__all__ = [
    "HttpProviderClient",
    "ProviderClient",
    "StubProviderClient",
    "get_provider_client",
    "register_provider",
    "reset_providers",
]
