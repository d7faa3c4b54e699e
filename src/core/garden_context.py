"""Wiring of cache, remote client, wallet, engine and manager."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from src.core.config import Settings, settings
from src.core.docustore_client import ContractGateway, DocustoreClient, HttpContractGateway
from src.core.local_cache import LocalCache
from src.interface.wallet import StaticWalletProvider, WalletProvider
from src.services.garden_service import GardenStateManager
from src.services.local_store import LocalAggregateStore
from src.services.reconciliation_service import ReconciliationEngine


logger = logging.getLogger(__name__)


@dataclass
class GardenContext:
    """Collaborators behind one garden session."""

    cache: LocalCache
    wallet: WalletProvider
    client: DocustoreClient
    engine: ReconciliationEngine
    manager: GardenStateManager
    gateway: ContractGateway | None = None


def build_context(
    *,
    config: Settings | None = None,
    wallet: WalletProvider | None = None,
    gateway: ContractGateway | None = None,
    cache: LocalCache | None = None,
) -> GardenContext:
    """Assemble a context from settings, letting callers swap any collaborator."""
    config = config or settings
    if wallet is None:
        account = config.wallet_account_id
        wallet = StaticWalletProvider(account, connected=account is not None)
    if gateway is None and config.remote_configured:
        gateway = HttpContractGateway(lcd_url=config.docustore_lcd_url, signer_url=config.docustore_signer_url)

    cache = cache or LocalCache(config.sqlite_db_path)
    client = DocustoreClient(
        wallet=wallet,
        gateway=gateway,
        contract_address=config.docustore_contract_address,
        config=config,
    )
    engine = ReconciliationEngine(store=LocalAggregateStore(cache), client=client, wallet=wallet, config=config)
    return GardenContext(
        cache=cache,
        wallet=wallet,
        client=client,
        engine=engine,
        manager=GardenStateManager(engine),
        gateway=gateway,
    )


@asynccontextmanager
async def open_garden(context: GardenContext | None = None) -> AsyncIterator[GardenContext]:
    """Open the cache, hydrate the garden, and tear everything down on exit."""
    context = context or build_context()
    await context.cache.open()
    try:
        report = await context.manager.load()
        logger.info("Garden opened", extra={"connected": report.connected, "errors": report.errors})
        yield context
    finally:
        await context.manager.drain()
        await context.cache.close()
        if isinstance(context.gateway, HttpContractGateway):
            await context.gateway.aclose()
