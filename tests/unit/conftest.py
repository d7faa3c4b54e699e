"""Pytest configuration and fixtures for unit tests."""

from collections.abc import AsyncIterator, Callable

import pytest

from src.core.config import Settings
from src.core.docustore_client import DocustoreClient
from src.core.garden_context import GardenContext, build_context
from src.core.local_cache import MEMORY_PATH, LocalCache
from src.interface.wallet import StaticWalletProvider
from src.services.local_store import LocalAggregateStore
from tests.unit.mocks import CONTRACT_ADDRESS, OWNER_KEY, FakeContractGateway


@pytest.fixture
async def cache() -> AsyncIterator[LocalCache]:
    """Provides a fresh in-memory SQLite cache for each test."""
    local_cache = LocalCache(MEMORY_PATH)
    await local_cache.open()
    yield local_cache
    await local_cache.close()


@pytest.fixture
def store(cache: LocalCache) -> LocalAggregateStore:
    return LocalAggregateStore(cache)


@pytest.fixture
def gateway() -> FakeContractGateway:
    return FakeContractGateway()


@pytest.fixture
def connected_wallet() -> StaticWalletProvider:
    return StaticWalletProvider(OWNER_KEY, connected=True)


@pytest.fixture
def disconnected_wallet() -> StaticWalletProvider:
    return StaticWalletProvider()


@pytest.fixture
def docustore(
    connected_wallet: StaticWalletProvider, gateway: FakeContractGateway, test_settings: Settings
) -> DocustoreClient:
    return DocustoreClient(
        wallet=connected_wallet,
        gateway=gateway,
        contract_address=CONTRACT_ADDRESS,
        config=test_settings,
    )


@pytest.fixture
def make_context(
    cache: LocalCache, gateway: FakeContractGateway, test_settings: Settings
) -> Callable[..., GardenContext]:
    """Build a garden context over the shared cache and fake contract."""

    def factory(*, connected: bool = True, wallet: StaticWalletProvider | None = None) -> GardenContext:
        if wallet is None:
            wallet = StaticWalletProvider(OWNER_KEY, connected=connected)
        return build_context(config=test_settings, wallet=wallet, gateway=gateway, cache=cache)

    return factory
