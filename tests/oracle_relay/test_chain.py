from __future__ import annotations

import json

import pytest
from eth_account import Account
from web3 import Web3

from oracle_relay.abi import EVENT_NAMES, EVM_AGENT_ABI, SAPPHIRE_AGENT_ABI, event_signature, load_abi
from oracle_relay.chain import ChainClient
from oracle_relay.config import OracleConfig
from oracle_relay.errors import OracleError

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


def _client(network: str = "base-sepolia-testnet", **overrides) -> ChainClient:
    config = OracleConfig(
        network=network,
        rpc_url="http://127.0.0.1:8545",
        private_key=PRIVATE_KEY,
        contract_address="0x" + "11" * 20,
        **overrides,
    )
    return ChainClient(config)


def _selector(signature: str) -> str:
    return bytes(Web3.keccak(text=signature)[:4]).hex()


def test_event_signatures_follow_payload_type() -> None:
    evm = {entry["name"]: event_signature(entry) for entry in EVM_AGENT_ABI if entry["type"] == "event"}
    sapphire = {entry["name"]: event_signature(entry) for entry in SAPPHIRE_AGENT_ABI if entry["type"] == "event"}

    assert set(evm) == set(EVENT_NAMES)
    assert evm["PromptSubmitted"] == "PromptSubmitted(address,uint256,uint256,uint256,bytes,bytes)"
    assert sapphire["PromptSubmitted"] == "PromptSubmitted(address,uint256,uint256,uint256,string,bytes)"


def test_client_exposes_signer_and_checksummed_contract() -> None:
    client = _client()
    assert client.signer_address == Account.from_key(PRIVATE_KEY).address
    assert client.contract_address == Web3.to_checksum_address("0x" + "11" * 20)
    assert not client.is_confidential


def test_encode_call_produces_set_oracle_calldata() -> None:
    client = _client()
    data = client.encode_call("setOracle", client.signer_address)
    assert data.startswith("0x" + _selector("setOracle(address)"))
    assert data.lower().endswith(client.signer_address[2:].lower())


def test_contract_error_detection_by_name_or_selector() -> None:
    client = _client()
    by_name = RuntimeError("execution reverted: JobAlreadyFinalized()")
    by_selector = RuntimeError("execution reverted")
    by_selector.data = "0x" + _selector("JobAlreadyFinalized()")

    assert client.is_contract_error(by_name, "JobAlreadyFinalized")
    assert client.is_contract_error(by_selector, "JobAlreadyFinalized")
    assert not client.is_contract_error(RuntimeError("nonce too low"), "JobAlreadyFinalized")


def test_artifact_abi_must_declare_all_events(tmp_path) -> None:
    artifact = tmp_path / "ChatBot.json"
    artifact.write_text(json.dumps({"abi": EVM_AGENT_ABI[1:]}), encoding="utf-8")

    assert len(load_abi(confidential=False, artifact_path=artifact)) == len(EVM_AGENT_ABI) - 1
    with pytest.raises(OracleError, match="PromptSubmitted"):
        _client(contract_abi_path=artifact)


def test_build_context_wires_attested_signer_only_off_localnet(tmp_path) -> None:
    from oracle_relay.context import build_context
    from oracle_relay.storage import MemoryContentStore

    def config(network: str) -> OracleConfig:
        return OracleConfig(
            network=network,
            rpc_url="http://127.0.0.1:8545",
            private_key=PRIVATE_KEY,
            contract_address="0x" + "11" * 20,
            storage_backend="memory",
            state_path=tmp_path / "state.json",
            failed_jobs_path=tmp_path / "failed.json",
        )

    assert build_context(config("sapphire-testnet")).rofl is not None
    assert build_context(config("sapphire-localnet")).rofl is None
    public = build_context(config("base-sepolia-testnet"))
    assert public.rofl is None
    assert isinstance(public.storage, MemoryContentStore)
