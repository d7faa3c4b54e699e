"""Contracts for the wallet/account and score-verification collaborators."""

import logging
from typing import Protocol, runtime_checkable


logger = logging.getLogger(__name__)


@runtime_checkable
class WalletProvider(Protocol):
    """Account session supplied by the wallet SDK.

    ``account_id`` doubles as the remote owner key; every remote operation is
    gated on ``is_connected``.
    """

    @property
    def account_id(self) -> str | None: ...

    @property
    def is_connected(self) -> bool: ...

    @property
    def is_connecting(self) -> bool: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...


class ScoreProvider(Protocol):
    """Opaque external verification returning a non-negative score."""

    async def fetch_score(self) -> int: ...


class StaticWalletProvider:
    """Wallet with a fixed account, for local runs and tests."""

    def __init__(self, account_id: str | None = None, *, connected: bool = False) -> None:
        self._account_id = account_id
        self._connected = connected and account_id is not None
        self._connecting = False

    @property
    def account_id(self) -> str | None:
        return self._account_id if self._connected else None

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def is_connecting(self) -> bool:
        return self._connecting

    async def connect(self) -> None:
        if self._account_id is None:
            raise ValueError("Cannot connect: no account configured")
        self._connected = True
        logger.info("Wallet connected", extra={"account_id": self._account_id})

    async def disconnect(self) -> None:
        self._connected = False
        logger.info("Wallet disconnected")


class FixedScoreProvider:
    """Score provider returning a known value."""

    def __init__(self, score: int) -> None:
        self._score = score

    async def fetch_score(self) -> int:
        return self._score
