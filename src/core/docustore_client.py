"""Docustore client: typed access to the owner/collection document contract."""

import base64
import json
import logging
import secrets
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.core.config import Settings, constants, settings
from src.core.errors import DocumentIdMissingError, NotConnectedError, QueryUnavailableError, TransactionFailedError
from src.core.retry import with_retry
from src.domain.envelopes import RemoteDocument
from src.interface.wallet import WalletProvider


logger = logging.getLogger(__name__)


class EventAttribute(BaseModel):
    key: str
    value: str = ""


class TxEvent(BaseModel):
    type: str
    attributes: list[EventAttribute] = Field(default_factory=list)


class TxResult(BaseModel):
    """Broadcast result of a mutating transaction."""

    code: int = Field(default=0, description="Zero on success")
    raw_log: str = Field(default="", alias="rawLog")
    transaction_hash: str | None = Field(default=None, alias="transactionHash")
    events: list[TxEvent] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class ContractGateway(Protocol):
    """Generic query/execute transport to a smart contract."""

    async def query_smart(self, contract: str, msg: dict[str, Any]) -> dict[str, Any]: ...

    async def execute(
        self,
        sender: str,
        contract: str,
        msg: dict[str, Any],
        fee: dict[str, Any],
        memo: str = "",
    ) -> TxResult: ...


class HttpContractGateway:
    """Gateway over HTTP: LCD smart queries and a signing relay for executes."""

    def __init__(
        self,
        *,
        lcd_url: str | None,
        signer_url: str | None = None,
        timeout: float = constants.API_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._lcd_url = lcd_url.rstrip("/") if lcd_url else None
        self._signer_url = signer_url.rstrip("/") if signer_url else None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @with_retry(
        max_attempts=constants.QUERY_TRANSPORT_ATTEMPTS,
        base_delay=constants.QUERY_RETRY_BASE_DELAY,
        retry_on=(httpx.TransportError,),
    )
    async def query_smart(self, contract: str, msg: dict[str, Any]) -> dict[str, Any]:
        """Run a read-only smart query, retrying transport failures."""
        if not self._lcd_url:
            raise QueryUnavailableError()

        encoded = base64.b64encode(json.dumps(msg).encode()).decode()
        url = f"{self._lcd_url}/cosmwasm/wasm/v1/contract/{contract}/smart/{encoded}"
        response = await self._client.get(url)
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict):
            raise ValueError("smart query response is not a JSON object")
        return body.get("data") or {}

    async def execute(
        self,
        sender: str,
        contract: str,
        msg: dict[str, Any],
        fee: dict[str, Any],
        memo: str = "",
    ) -> TxResult:
        if not self._signer_url:
            raise NotConnectedError("No signing relay configured")

        response = await self._client.post(
            f"{self._signer_url}/execute",
            json={"sender": sender, "contract": contract, "msg": msg, "fee": fee, "memo": memo},
        )
        response.raise_for_status()
        return TxResult.model_validate(response.json())

    async def aclose(self) -> None:
        await self._client.aclose()


def _parse_timestamp(value: Any) -> datetime | None:  # noqa: ANN401
    """Contract timestamps arrive as ISO strings or epoch nanoseconds/milliseconds."""
    if value in (None, ""):
        return None
    if isinstance(value, int | float) or (isinstance(value, str) and value.isdigit()):
        number = int(value)
        # Nanoseconds from CosmWasm block time, milliseconds otherwise
        seconds = number / 1_000_000_000 if number > 10**14 else number / 1000
        return datetime.fromtimestamp(seconds, UTC)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _decode_document(raw_id: str | None, raw: Any, collection: str) -> RemoteDocument:  # noqa: ANN401
    if not isinstance(raw, dict):
        raise TypeError(f"document entry is {type(raw).__name__}, not an object")
    data = raw.get("data")
    if isinstance(data, str):
        data = json.loads(data)
    if not isinstance(data, dict):
        raise ValueError("document data is not a JSON object")
    return RemoteDocument(
        id=str(raw_id if raw_id is not None else raw["id"]),
        owner=raw.get("owner", ""),
        collection=raw.get("collection", collection),
        data=data,
        created_at=_parse_timestamp(raw.get("created_at")),
        updated_at=_parse_timestamp(raw.get("updated_at")),
    )


def extract_document_id(result: TxResult) -> str | None:
    """Find the stored document id among the transaction events."""
    for event in result.events:
        if event.type not in constants.STORED_EVENT_TYPES:
            continue
        for attribute in event.attributes:
            if attribute.key in constants.STORED_EVENT_ID_KEYS and attribute.value:
                return attribute.value
    return None


class DocustoreClient:
    """Typed request/response wrapper around the docustore contract.

    Mutations are metered transactions signed by the connected wallet;
    reads are smart queries. Callers must not assume read-after-write
    consistency.
    """

    def __init__(
        self,
        *,
        wallet: WalletProvider,
        gateway: ContractGateway | None,
        contract_address: str | None,
        config: Settings | None = None,
    ) -> None:
        self._wallet = wallet
        self._gateway = gateway
        self._contract = contract_address
        self._settings = config or settings

    @property
    def can_query(self) -> bool:
        return self._gateway is not None and bool(self._contract)

    def _fee(self) -> dict[str, Any]:
        return {
            "amount": [{"denom": self._settings.docustore_fee_denom, "amount": self._settings.docustore_fee_amount}],
            "gas": self._settings.docustore_gas,
        }

    def _require_signer(self) -> tuple[ContractGateway, str, str]:
        """Gateway, contract address and sender for a mutation."""
        if self._gateway is None or not self._contract or not self._wallet.is_connected or not self._wallet.account_id:
            raise NotConnectedError()
        return self._gateway, self._contract, self._wallet.account_id

    def _require_query(self) -> tuple[ContractGateway, str]:
        if self._gateway is None or not self._contract:
            raise QueryUnavailableError()
        return self._gateway, self._contract

    async def _execute(self, msg: dict[str, Any], memo: str) -> TxResult:
        gateway, contract, sender = self._require_signer()
        result = await gateway.execute(sender, contract, msg, self._fee(), memo)
        if result.code != 0:
            logger.error(
                "docustore_transaction_failed",
                extra={"code": result.code, "raw_log": result.raw_log, "tx_hash": result.transaction_hash},
            )
            raise TransactionFailedError(result.raw_log, code=result.code, tx_hash=result.transaction_hash)
        return result

    async def store(self, owner_key: str, collection: str, document: dict[str, Any]) -> str:
        """Store a new document and return the id the store assigned.

        Raises:
            NotConnectedError: If no wallet session is active
            TransactionFailedError: If the transaction reports a non-zero code
            DocumentIdMissingError: If the store emitted no document id
        """
        _, _, signer = self._require_signer()
        if owner_key != signer:
            logger.warning("Owner key differs from signer", extra={"owner_key": owner_key, "signer": signer})

        document_key = f"{collection}_{secrets.token_hex(8)}"
        result = await self._execute(
            {"Set": {"collection": collection, "document": document_key, "data": json.dumps(document)}},
            memo="Store document in Tendly",
        )

        document_id = extract_document_id(result)
        if document_id is None:
            logger.error(
                "docustore_document_id_missing",
                extra={"collection": collection, "tx_hash": result.transaction_hash},
            )
            raise DocumentIdMissingError(result.transaction_hash)

        logger.info("Stored document", extra={"collection": collection, "document_id": document_id})
        return document_id

    async def update(self, document_id: str, collection: str, document: dict[str, Any]) -> None:
        """Replace an existing document's payload (no upsert)."""
        await self._execute(
            {"Update": {"collection": collection, "document": document_id, "data": json.dumps(document)}},
            memo="Update document in Tendly",
        )
        logger.info("Updated document", extra={"collection": collection, "document_id": document_id})

    async def delete(self, document_id: str, collection: str) -> None:
        """Remove a document."""
        await self._execute(
            {"Delete": {"collection": collection, "document": document_id}},
            memo="Delete document from Tendly",
        )
        logger.info("Deleted document", extra={"collection": collection, "document_id": document_id})

    async def query(
        self,
        owner_key: str,
        collection: str,
        limit: int = constants.DEFAULT_QUERY_LIMIT,
        offset: int = 0,
    ) -> list[RemoteDocument]:
        """List an owner's documents in a collection; empty when none match.

        Raises:
            QueryUnavailableError: If no read gateway is configured
        """
        gateway, contract = self._require_query()
        response = await gateway.query_smart(
            contract,
            {"UserDocuments": {"owner": owner_key, "collection": collection, "limit": limit, "offset": offset}},
        )

        documents: list[RemoteDocument] = []
        entries = response.get("documents") if isinstance(response, dict) else None
        for entry in entries if isinstance(entries, list) else []:
            try:
                if isinstance(entry, list | tuple):
                    raw_id, raw = entry
                    documents.append(_decode_document(raw_id, raw, collection))
                else:
                    documents.append(_decode_document(None, entry, collection))
            except (AttributeError, KeyError, TypeError, ValueError, ValidationError) as e:
                logger.warning("Skipping malformed document", extra={"collection": collection, "error": str(e)})

        logger.debug("Queried documents", extra={"collection": collection, "count": len(documents)})
        return documents

    async def get(self, document_id: str) -> RemoteDocument | None:
        """Fetch one document; None when it does not exist.

        The contract reports an unknown id as a failed query, so an error
        status from the read endpoint also reads as absent.
        """
        gateway, contract = self._require_query()
        try:
            response = await gateway.query_smart(contract, {"Document": {"id": document_id}})
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Document query rejected",
                extra={"document_id": document_id, "status_code": e.response.status_code},
            )
            return None
        raw = response.get("document") if isinstance(response, dict) else None
        if not raw:
            return None
        try:
            return _decode_document(document_id, raw, "")
        except (AttributeError, KeyError, TypeError, ValueError, ValidationError) as e:
            logger.warning("Malformed document", extra={"document_id": document_id, "error": str(e)})
            return None
