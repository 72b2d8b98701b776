"""Data records shared by the ingestion, retry and handler layers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Watermark(_CamelModel):
    """Position of the newest event whose fate is durably decided.

    ``last_processed_log_index`` is ``None`` when every event of
    ``last_processed_block`` is accounted for.
    """

    last_processed_block: int = Field(ge=0)
    last_processed_log_index: Optional[int] = Field(default=None, ge=0)

    @property
    def position(self) -> Tuple[int, int]:
        if self.last_processed_log_index is None:
            # A complete block sorts after any log index inside it.
            return (self.last_processed_block, 1 << 62)
        return (self.last_processed_block, self.last_processed_log_index)


class FailedJob(_CamelModel):
    """A queued event awaiting another handler attempt."""

    event_name: str
    event_args: Dict[str, Any] = Field(default_factory=dict)
    block_number: int
    transaction_hash: str
    transaction_index: Optional[int] = None
    log_index: Optional[int] = None
    retry_count: int = 0
    next_attempt_at: float
    last_error: Optional[str] = None


def _jsonable(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


@dataclass(slots=True)
class ChainEvent:
    """A decoded contract log normalised away from web3 attribute dicts."""

    name: str
    args: Dict[str, Any]
    block_number: int
    transaction_hash: str
    transaction_index: int = 0
    log_index: int = 0
    address: Optional[str] = None

    @property
    def sort_key(self) -> Tuple[int, int, int]:
        return (self.block_number, self.transaction_index, self.log_index)

    @property
    def position(self) -> Tuple[int, int]:
        return (self.block_number, self.log_index)

    def json_args(self) -> Dict[str, Any]:
        return _jsonable(self.args)

    @classmethod
    def from_log(cls, data: Mapping[str, Any]) -> "ChainEvent":
        tx_hash = data.get("transactionHash")
        if isinstance(tx_hash, (bytes, bytearray)):
            tx_hash = "0x" + bytes(tx_hash).hex()
        return cls(
            name=str(data["event"]),
            args=dict(data.get("args") or {}),
            block_number=int(data["blockNumber"]),
            transaction_hash=str(tx_hash),
            transaction_index=int(data.get("transactionIndex") or 0),
            log_index=int(data.get("logIndex") or 0),
            address=data.get("address"),
        )


@dataclass(slots=True)
class CIDBundle:
    """Storage addresses reported on-chain for one answer."""

    conversation_cid: str = ""
    metadata_cid: str = ""
    prompt_message_cid: str = ""
    answer_message_cid: str = ""
    search_delta_cid: str = ""

    def as_tuple(self) -> Tuple[str, str, str, str, str]:
        return (
            self.conversation_cid,
            self.metadata_cid,
            self.prompt_message_cid,
            self.answer_message_cid,
            self.search_delta_cid,
        )


@dataclass(slots=True)
class DrainReport:
    """Outcome counts of one retry-queue pass."""

    attempted: int = 0
    succeeded: int = 0
    rescheduled: int = 0
    dead_lettered: int = 0


__all__ = [
    "CIDBundle",
    "ChainEvent",
    "DrainReport",
    "FailedJob",
    "Watermark",
]
