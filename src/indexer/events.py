"""Launchpad event decoding.

Raw ledger events are parsed once, at the boundary, into a closed set of
variants. Everything downstream works on typed payloads and never looks at
type-tag strings again.
"""

from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ValidationError, field_validator

from src.indexer.classifier import normalize_address
from src.parsers.aptos.models import AptosEvent


class EventDecodeError(Exception):
    """Event of a known kind whose payload cannot be parsed."""


class EventKind(Enum):
    ASSET_CREATED = "CreateFAEvent"
    MINTED = "MintFAEvent"
    BURNED = "BurnFAEvent"
    PURCHASED = "TokenPurchaseEvent"
    SOLD = "TokenSaleEvent"
    UNKNOWN = "unknown"


_KIND_BY_STRUCT = {k.value: k for k in EventKind if k is not EventKind.UNKNOWN}

# Creation first so same-transaction trades find their pool; curve trades
# before mint/burn so the pool-moving record claims the transaction hash.
PROCESSING_ORDER = {
    EventKind.ASSET_CREATED: 0,
    EventKind.PURCHASED: 1,
    EventKind.SOLD: 2,
    EventKind.MINTED: 3,
    EventKind.BURNED: 4,
    EventKind.UNKNOWN: 5,
}


def _object_address(value: Any) -> Any:
    """``Object<T>`` serializes either as a bare address or as ``{"inner": addr}``."""
    if isinstance(value, dict):
        return value.get("inner")
    return value


def _optional_u128(value: Any) -> Any:
    """``Option<u128>`` serializes as ``{"vec": []}`` / ``{"vec": ["n"]}``."""
    if isinstance(value, dict) and "vec" in value:
        vec = value["vec"]
        return vec[0] if vec else None
    if value == "":
        return None
    return value


class _EventPayload(BaseModel):
    kind: ClassVar[EventKind]

    model_config = {"extra": "ignore", "frozen": True}


class AssetCreated(_EventPayload):
    kind: ClassVar[EventKind] = EventKind.ASSET_CREATED

    creator_addr: str
    fa_obj: str
    max_supply: int | None = None
    name: str
    symbol: str
    decimals: int = 8
    icon_uri: str = ""
    project_uri: str = ""
    mint_fee_per_smallest_unit_of_fa: int = 0

    @field_validator("fa_obj", mode="before")
    @classmethod
    def _unwrap_object(cls, v: Any) -> Any:
        return _object_address(v)

    @field_validator("max_supply", mode="before")
    @classmethod
    def _unwrap_option(cls, v: Any) -> Any:
        return _optional_u128(v)


class Minted(_EventPayload):
    kind: ClassVar[EventKind] = EventKind.MINTED

    fa_obj: str
    amount: int
    recipient_addr: str
    total_mint_fee: int = 0

    @field_validator("fa_obj", mode="before")
    @classmethod
    def _unwrap_object(cls, v: Any) -> Any:
        return _object_address(v)


class Burned(_EventPayload):
    kind: ClassVar[EventKind] = EventKind.BURNED

    fa_obj: str
    amount: int
    burner_addr: str

    @field_validator("fa_obj", mode="before")
    @classmethod
    def _unwrap_object(cls, v: Any) -> Any:
        return _object_address(v)


class Purchased(_EventPayload):
    kind: ClassVar[EventKind] = EventKind.PURCHASED

    buyer: str
    fa_object: str
    apt_in: int
    tokens_out: int

    @field_validator("fa_object", mode="before")
    @classmethod
    def _unwrap_object(cls, v: Any) -> Any:
        return _object_address(v)


class Sold(_EventPayload):
    kind: ClassVar[EventKind] = EventKind.SOLD

    seller: str
    fa_object: str
    tokens_in: int
    apt_out: int

    @field_validator("fa_object", mode="before")
    @classmethod
    def _unwrap_object(cls, v: Any) -> Any:
        return _object_address(v)


class UnknownEvent(_EventPayload):
    kind: ClassVar[EventKind] = EventKind.UNKNOWN

    type_tag: str


LaunchpadEvent = AssetCreated | Minted | Burned | Purchased | Sold | UnknownEvent

_PAYLOAD_MODELS: dict[EventKind, type[_EventPayload]] = {
    EventKind.ASSET_CREATED: AssetCreated,
    EventKind.MINTED: Minted,
    EventKind.BURNED: Burned,
    EventKind.PURCHASED: Purchased,
    EventKind.SOLD: Sold,
}


def event_kind(type_tag: str, program_address: str) -> EventKind:
    """Classify ``<addr>::<module>::<Struct><generics>`` emitted by the program."""
    base = type_tag.split("<", 1)[0]
    parts = base.split("::")
    if len(parts) != 3:
        return EventKind.UNKNOWN
    address, _module, struct = parts
    if normalize_address(address) != normalize_address(program_address):
        return EventKind.UNKNOWN
    return _KIND_BY_STRUCT.get(struct, EventKind.UNKNOWN)


def decode_event(event: AptosEvent, program_address: str) -> LaunchpadEvent:
    """Parse a raw event into its variant.

    Raises EventDecodeError when a known kind carries a malformed payload.
    """
    kind = event_kind(event.type, program_address)
    if kind is EventKind.UNKNOWN:
        return UnknownEvent(type_tag=event.type)

    if not isinstance(event.data, dict):
        raise EventDecodeError(f"{kind.value}: payload is {type(event.data).__name__}, not an object")
    try:
        return _PAYLOAD_MODELS[kind].model_validate(event.data)
    except ValidationError as e:
        raise EventDecodeError(f"{kind.value}: {e.error_count()} invalid field(s): {e}") from e
