"""Minimal contract ABIs for the public-chain and confidential agent contracts."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

EVENT_NAMES = (
    "PromptSubmitted",
    "RegenerationRequested",
    "BranchRequested",
    "MetadataUpdateRequested",
)


def _arg(name: str, type_: str, *, indexed: Optional[bool] = None) -> Dict[str, Any]:
    entry: Dict[str, Any] = {"internalType": type_, "name": name, "type": type_}
    if indexed is not None:
        entry["indexed"] = indexed
    return entry


def _events(payload_type: str) -> List[Dict[str, Any]]:
    payload = _arg("payload", payload_type, indexed=False)
    wrapped_key = _arg("roflEncryptedKey", "bytes", indexed=False)
    user = _arg("user", "address", indexed=True)
    return [
        {
            "anonymous": False,
            "inputs": [
                user,
                _arg("conversationId", "uint256", indexed=True),
                _arg("promptMessageId", "uint256", indexed=False),
                _arg("answerMessageId", "uint256", indexed=False),
                payload,
                wrapped_key,
            ],
            "name": "PromptSubmitted",
            "type": "event",
        },
        {
            "anonymous": False,
            "inputs": [
                user,
                _arg("conversationId", "uint256", indexed=True),
                _arg("promptMessageId", "uint256", indexed=False),
                _arg("originalAnswerMessageId", "uint256", indexed=False),
                _arg("answerMessageId", "uint256", indexed=False),
                payload,
                wrapped_key,
            ],
            "name": "RegenerationRequested",
            "type": "event",
        },
        {
            "anonymous": False,
            "inputs": [
                user,
                _arg("originalConversationId", "uint256", indexed=True),
                _arg("branchPointMessageId", "uint256", indexed=False),
                _arg("newConversationId", "uint256", indexed=False),
                payload,
                wrapped_key,
            ],
            "name": "BranchRequested",
            "type": "event",
        },
        {
            "anonymous": False,
            "inputs": [
                user,
                _arg("conversationId", "uint256", indexed=True),
                payload,
                wrapped_key,
            ],
            "name": "MetadataUpdateRequested",
            "type": "event",
        },
    ]


_CID_BUNDLE = {
    "components": [
        _arg("conversationCID", "string"),
        _arg("metadataCID", "string"),
        _arg("promptMessageCID", "string"),
        _arg("answerMessageCID", "string"),
        _arg("searchDeltaCID", "string"),
    ],
    "internalType": "struct CidBundle",
    "name": "cids",
    "type": "tuple",
}

_FUNCTIONS: List[Dict[str, Any]] = [
    {
        "inputs": [],
        "name": "oracle",
        "outputs": [_arg("", "address")],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [_arg("_newOracle", "address")],
        "name": "setOracle",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [_arg("_answerMessageId", "uint256")],
        "name": "isJobFinalized",
        "outputs": [_arg("", "bool")],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            _arg("_promptMessageId", "uint256"),
            _arg("_answerMessageId", "uint256"),
            _CID_BUNDLE,
        ],
        "name": "submitAnswer",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            _arg("_user", "address"),
            _arg("_originalConversationId", "uint256"),
            _arg("_branchPointMessageId", "uint256"),
            _arg("_newConversationId", "uint256"),
            _arg("_conversationCID", "string"),
            _arg("_metadataCID", "string"),
        ],
        "name": "submitBranch",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [_arg("_conversationId", "uint256"), _arg("_newConversationMetadataCID", "string")],
        "name": "submitConversationMetadata",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {"inputs": [], "name": "JobAlreadyFinalized", "type": "error"},
]

EVM_AGENT_ABI: List[Dict[str, Any]] = _events("bytes") + _FUNCTIONS
SAPPHIRE_AGENT_ABI: List[Dict[str, Any]] = _events("string") + _FUNCTIONS


def load_abi(*, confidential: bool, artifact_path: Optional[Path] = None) -> List[Dict[str, Any]]:
    """Return the ABI from a compiled artifact or the built-in minimal ABI."""

    if artifact_path is not None:
        data = json.loads(Path(artifact_path).read_text(encoding="utf-8"))
        return list(data["abi"] if isinstance(data, dict) else data)
    return SAPPHIRE_AGENT_ABI if confidential else EVM_AGENT_ABI


def event_signature(entry: Dict[str, Any]) -> str:
    types = ",".join(item["type"] for item in entry["inputs"])
    return f"{entry['name']}({types})"


__all__ = [
    "EVENT_NAMES",
    "EVM_AGENT_ABI",
    "SAPPHIRE_AGENT_ABI",
    "event_signature",
    "load_abi",
]
