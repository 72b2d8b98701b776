"""Shared fakes and factories for the oracle relay test-suite."""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from eth_account import Account

from oracle_relay import cipher, keywrap
from oracle_relay.ai import AIDispatcher, AIProvider
from oracle_relay.config import AlertingConfig, OracleConfig
from oracle_relay.context import OracleContext
from oracle_relay.history import HistoryWalker
from oracle_relay.metrics import OracleMetrics
from oracle_relay.models import ChainEvent, CIDBundle
from oracle_relay.session_keys import SessionKeyResolver
from oracle_relay.storage import MemoryContentStore
from oracle_relay.stores import MemoryQueueStore, MemoryWatermarkStore

TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
TEST_ADDRESS = Account.from_key(TEST_PRIVATE_KEY).address
CONTRACT_ADDRESS = "0x" + "11" * 20
USER_ADDRESS = "0x" + "22" * 20
CHAIN_ID = 84532


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChain:
    """In-memory stand-in for :class:`oracle_relay.chain.ChainClient`."""

    def __init__(
        self,
        *,
        latest: int = 0,
        oracle: Optional[str] = None,
        confidential: bool = False,
        localnet: bool = False,
    ) -> None:
        self.latest = latest
        self.oracle = oracle or TEST_ADDRESS
        self.is_confidential = confidential
        self.is_localnet = localnet
        self.signer_address = TEST_ADDRESS
        self.contract_address = CONTRACT_ADDRESS
        self.events: Dict[str, List[ChainEvent]] = {}
        self.receipts: Dict[Tuple[str, str], ChainEvent] = {}
        self.timestamps: Dict[int, int] = {}
        self.default_timestamp: Optional[int] = None
        self.finalized: set[int] = set()
        self.answers: List[Tuple[int, int, CIDBundle]] = []
        self.branches: List[Tuple[Any, ...]] = []
        self.metadata_updates: List[Tuple[int, str]] = []
        self.oracle_updates: List[str] = []
        self.queries: List[Tuple[str, int, int]] = []
        self.submit_error: Optional[Exception] = None

    def add_event(self, event: ChainEvent) -> None:
        self.events.setdefault(event.name, []).append(event)
        self.receipts[(event.transaction_hash, event.name)] = event

    async def chain_id(self) -> int:
        return CHAIN_ID

    async def latest_block(self) -> int:
        return self.latest

    async def block_timestamp(self, block_number: int) -> int:
        if block_number in self.timestamps:
            return self.timestamps[block_number]
        if self.default_timestamp is None:
            raise ConnectionError("timestamp unavailable")
        return self.default_timestamp

    async def get_events(self, event_name: str, from_block: int, to_block: int) -> List[ChainEvent]:
        self.queries.append((event_name, from_block, to_block))
        return [e for e in self.events.get(event_name, []) if from_block <= e.block_number <= to_block]

    async def reconstruct_event(self, event_name: str, transaction_hash: str) -> Optional[ChainEvent]:
        return self.receipts.get((transaction_hash, event_name))

    async def oracle_address(self) -> str:
        return self.oracle

    async def set_oracle(self, address: str) -> str:
        self.oracle_updates.append(address)
        self.oracle = address
        return "0xset"

    async def is_job_finalized(self, answer_message_id: int) -> bool:
        return answer_message_id in self.finalized

    async def submit_answer(self, prompt_message_id: int, answer_message_id: int, bundle: CIDBundle) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self.answers.append((prompt_message_id, answer_message_id, bundle))
        self.finalized.add(answer_message_id)
        return "0xanswer"

    async def submit_branch(self, *args: Any) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self.branches.append(args)
        return "0xbranch"

    async def submit_metadata(self, conversation_id: int, metadata_cid: str) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self.metadata_updates.append((conversation_id, metadata_cid))
        return "0xmetadata"

    def encode_call(self, fn_name: str, *args: Any) -> str:
        return "0x" + fn_name.encode().hex()

    def is_contract_error(self, error: BaseException, error_name: str) -> bool:
        return error_name in str(error)


class RecordingNotifier:
    def __init__(self) -> None:
        self.alerts: List[Dict[str, Any]] = []

    async def notify(self, title: str, message: str, *, severity: str = "critical", metadata=None) -> None:
        self.alerts.append({"title": title, "message": message, "severity": severity, "metadata": metadata or {}})

    def notify_nowait(self, title: str, message: str, **kwargs: Any) -> None:
        self.alerts.append({"title": title, "message": message, **kwargs})

    async def flush(self) -> None:
        return None

    def titles(self) -> List[str]:
        return [alert["title"] for alert in self.alerts]


class StubProvider(AIProvider):
    label = "Stub"

    def __init__(self, answer: str = "Stub answer") -> None:
        self.answer = answer
        self.calls: List[List[Dict[str, str]]] = []

    async def infer(self, history, conversation_id) -> str:
        self.calls.append([dict(turn) for turn in history])
        return self.answer


def build_config(*, confidential: bool = False, **overrides: Any) -> OracleConfig:
    values: Dict[str, Any] = {
        "network": "sapphire-testnet" if confidential else "base-sepolia-testnet",
        "rpc_url": "http://localhost:8545",
        "private_key": TEST_PRIVATE_KEY,
        "contract_address": CONTRACT_ADDRESS,
        "storage_backend": "memory",
        "alerting": AlertingConfig(log_path=Path(os.devnull)),
    }
    values.update(overrides)
    return OracleConfig(**values)


@pytest.fixture
def make_context():
    def factory(
        *,
        confidential: bool = False,
        chain: Optional[FakeChain] = None,
        answer: str = "Stub answer",
        **overrides: Any,
    ) -> OracleContext:
        config = build_config(confidential=confidential, **overrides)
        chain = chain or FakeChain(confidential=confidential, localnet=config.is_localnet)
        storage = MemoryContentStore()
        return OracleContext(
            config=config,
            chain=chain,
            storage=storage,
            notifier=RecordingNotifier(),
            ai=AIDispatcher(StubProvider(answer)),
            session_keys=SessionKeyResolver(
                storage=storage,
                private_key=TEST_PRIVATE_KEY,
                is_confidential=confidential,
                chain_id=chain.chain_id,
            ),
            history=HistoryWalker(storage, limit=config.context_messages_limit),
            watermarks=MemoryWatermarkStore(),
            queue=MemoryQueueStore(),
            metrics=OracleMetrics(),
            clock=FakeClock(),
        )

    return factory


@pytest.fixture
def make_event():
    counter = {"value": 0}

    def factory(
        name: str,
        block: int,
        *,
        tx_index: int = 0,
        log_index: int = 0,
        args: Optional[Dict[str, Any]] = None,
        tx_hash: Optional[str] = None,
    ) -> ChainEvent:
        counter["value"] += 1
        return ChainEvent(
            name=name,
            args=dict(args or {}),
            block_number=block,
            transaction_hash=tx_hash or "0x" + f"{counter['value']:064x}",
            transaction_index=tx_index,
            log_index=log_index,
            address=CONTRACT_ADDRESS,
        )

    return factory


@pytest.fixture
def seal_request():
    """Encode a request payload the way a client would for the given mode."""

    def factory(ctx: OracleContext, payload: Dict[str, Any], session_key: bytes, *, wrap_key: bool = True):
        if ctx.config.is_confidential:
            return json.dumps({**payload, "sessionKey": session_key.hex()}), b""
        envelope = cipher.encrypt(payload, session_key).encode("utf-8")
        if not wrap_key:
            return envelope, b""
        public_key = keywrap.public_key_from_private(TEST_PRIVATE_KEY)
        wrapped = keywrap.encrypt_with_public_key(public_key, session_key.hex()).encode("utf-8")
        return envelope, wrapped

    return factory
