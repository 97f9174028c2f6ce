"""Pydantic models for Aptos fullnode REST v1 responses."""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel

ENTRY_FUNCTION_PAYLOAD = "entry_function_payload"


class AptosEvent(BaseModel):
    """Event emitted by a transaction (module events and handle events alike)."""

    type: str = ""  # e.g. "0xabc::bonding_curve_pool::TokenPurchaseEvent"
    data: Any = None  # usually a dict of stringified Move values
    sequence_number: int = 0

    model_config = {"extra": "ignore"}


class AptosPayload(BaseModel):
    type: str = ""
    function: str | None = None  # "0xabc::module::function"
    type_arguments: list[str] = []
    arguments: list[Any] = []

    model_config = {"extra": "ignore"}


class AptosTransaction(BaseModel):
    """Committed transaction; non-user types have no sender or payload."""

    version: int
    hash: str = ""
    type: str = ""  # "user_transaction", "block_metadata_transaction", ...
    sender: str = ""
    timestamp: int = 0  # microseconds since epoch
    success: bool = True
    payload: AptosPayload | None = None
    events: list[AptosEvent] = []

    model_config = {"extra": "ignore"}

    @property
    def entry_function(self) -> str | None:
        if self.payload is None or self.payload.type != ENTRY_FUNCTION_PAYLOAD:
            return None
        return self.payload.function

    @property
    def committed_at(self) -> datetime:
        """Ledger timestamp as naive UTC."""
        return datetime.fromtimestamp(self.timestamp / 1_000_000, UTC).replace(tzinfo=None)


class AptosLedgerInfo(BaseModel):
    chain_id: int = 0
    ledger_version: int
    ledger_timestamp: int = 0
    block_height: int = 0

    model_config = {"extra": "ignore"}
