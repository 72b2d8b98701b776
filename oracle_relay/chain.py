"""Async facade over the agent contract using web3."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import TransactionNotFound

from .abi import EVENT_NAMES, event_signature, load_abi
from .config import OracleConfig
from .errors import MalformedEventError, OracleError
from .models import ChainEvent, CIDBundle

LOGGER = logging.getLogger(__name__)

_RECEIPT_TIMEOUT = 180


class TransactionRevertedError(OracleError):
    """Raised when a mined transaction reports a failed status."""


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value)


class ChainClient:
    """Read events and submit transactions against the agent contract.

    Blocking web3 calls run in worker threads so the event loop stays free.
    """

    def __init__(self, config: OracleConfig, *, web3: Optional[Web3] = None) -> None:
        self._config = config
        self._w3 = web3 or Web3(Web3.HTTPProvider(config.rpc_url, request_kwargs={"timeout": 30}))
        self._account = Account.from_key(config.private_key)
        self._address = Web3.to_checksum_address(config.contract_address)
        abi = load_abi(confidential=config.is_confidential, artifact_path=config.contract_abi_path)
        self._contract = self._w3.eth.contract(address=self._address, abi=abi)
        self._topics: Dict[str, str] = {}
        for entry in abi:
            if entry.get("type") == "event" and entry.get("name") in EVENT_NAMES:
                self._topics[entry["name"]] = _hex(Web3.keccak(text=event_signature(entry)))
        missing = set(EVENT_NAMES) - set(self._topics)
        if missing:
            raise OracleError(f"Contract ABI is missing events: {sorted(missing)}")
        self._chain_id: Optional[int] = None

    @property
    def signer_address(self) -> str:
        return self._account.address

    @property
    def contract_address(self) -> str:
        return self._address

    @property
    def is_confidential(self) -> bool:
        return self._config.is_confidential

    @property
    def is_localnet(self) -> bool:
        return self._config.is_localnet

    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(await asyncio.to_thread(lambda: self._w3.eth.chain_id))
        return self._chain_id

    async def latest_block(self) -> int:
        return int(await asyncio.to_thread(lambda: self._w3.eth.block_number))

    async def block_timestamp(self, block_number: int) -> int:
        block = await asyncio.to_thread(self._w3.eth.get_block, block_number)
        return int(block["timestamp"])

    async def get_events(self, event_name: str, from_block: int, to_block: int) -> List[ChainEvent]:
        params = {
            "address": self._address,
            "fromBlock": from_block,
            "toBlock": to_block,
            "topics": [self._topics[event_name]],
        }
        logs = await asyncio.to_thread(self._w3.eth.get_logs, params)
        return [self._decode(event_name, log) for log in logs]

    async def reconstruct_event(self, event_name: str, transaction_hash: str) -> Optional[ChainEvent]:
        """Decode ``event_name`` from the receipt of ``transaction_hash``."""

        try:
            receipt = await asyncio.to_thread(self._w3.eth.get_transaction_receipt, transaction_hash)
        except TransactionNotFound:
            return None
        topic = self._topics[event_name]
        for log in receipt["logs"]:
            if str(log.get("address", "")).lower() != self._address.lower():
                continue
            topics = log.get("topics") or []
            if not topics or _hex(topics[0]).lower() != topic.lower():
                continue
            return self._decode(event_name, log)
        return None

    def _decode(self, event_name: str, log: Any) -> ChainEvent:
        try:
            data = getattr(self._contract.events, event_name)().process_log(log)
        except Exception as exc:
            raise MalformedEventError(f"Could not decode {event_name} log: {exc}") from exc
        return ChainEvent.from_log(data)

    async def oracle_address(self) -> str:
        return await asyncio.to_thread(self._contract.functions.oracle().call)

    async def is_job_finalized(self, answer_message_id: int) -> bool:
        return bool(await asyncio.to_thread(self._contract.functions.isJobFinalized(answer_message_id).call))

    async def set_oracle(self, address: str) -> str:
        return await self._transact("setOracle", Web3.to_checksum_address(address), gas=1_000_000)

    async def submit_answer(self, prompt_message_id: int, answer_message_id: int, bundle: CIDBundle) -> str:
        return await self._transact("submitAnswer", prompt_message_id, answer_message_id, bundle.as_tuple())

    async def submit_branch(
        self,
        user: str,
        original_conversation_id: int,
        branch_point_message_id: int,
        new_conversation_id: int,
        conversation_cid: str,
        metadata_cid: str,
    ) -> str:
        return await self._transact(
            "submitBranch",
            Web3.to_checksum_address(user),
            original_conversation_id,
            branch_point_message_id,
            new_conversation_id,
            conversation_cid,
            metadata_cid,
        )

    async def submit_metadata(self, conversation_id: int, metadata_cid: str) -> str:
        return await self._transact("submitConversationMetadata", conversation_id, metadata_cid)

    def encode_call(self, fn_name: str, *args: Any) -> str:
        return self._contract.encode_abi(fn_name, args=list(args))

    def is_contract_error(self, error: BaseException, error_name: str) -> bool:
        selector = _hex(Web3.keccak(text=f"{error_name}()")[:4]).lower()
        candidates = [getattr(error, "data", None), str(error)]
        candidates.extend(error.args)
        for candidate in candidates:
            if isinstance(candidate, (bytes, bytearray)):
                candidate = _hex(candidate)
            if isinstance(candidate, str) and (selector in candidate.lower() or error_name in candidate):
                return True
        return False

    async def _transact(self, fn_name: str, *args: Any, gas: Optional[int] = None) -> str:
        return await asyncio.to_thread(self._transact_sync, fn_name, args, gas)

    def _transact_sync(self, fn_name: str, args: tuple, gas: Optional[int]) -> str:
        sender = self._account.address
        params: Dict[str, Any] = {
            "from": sender,
            "nonce": self._w3.eth.get_transaction_count(sender, "pending"),
            "chainId": self._chain_id or self._w3.eth.chain_id,
        }
        if gas is not None:
            params["gas"] = gas
        tx = getattr(self._contract.functions, fn_name)(*args).build_transaction(params)
        signed = self._account.sign_transaction(tx)
        tx_hash = _hex(self._w3.eth.send_raw_transaction(signed.raw_transaction))
        LOGGER.info("Submitted %s transaction %s", fn_name, tx_hash)
        receipt = self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=_RECEIPT_TIMEOUT)
        if receipt.get("status") != 1:
            raise TransactionRevertedError(f"{fn_name} transaction {tx_hash} reverted")
        return tx_hash


__all__ = ["ChainClient", "TransactionRevertedError"]
