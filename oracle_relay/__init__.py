"""Off-chain relay between an AI agent contract, AI inference and storage."""

from __future__ import annotations

from importlib import import_module
from types import ModuleType
from typing import Dict

_MODULES = [
    "abi",
    "ai",
    "alerting",
    "chain",
    "cipher",
    "config",
    "context",
    "errors",
    "formatters",
    "handlers",
    "history",
    "identity",
    "ingestion",
    "keywrap",
    "metrics",
    "models",
    "payloads",
    "process",
    "reliability",
    "retry",
    "rofl",
    "service",
    "session_keys",
    "storage",
    "stores",
]
__all__ = list(_MODULES)

_CACHE: Dict[str, ModuleType] = {}


def __getattr__(name: str) -> ModuleType:
    if name not in _MODULES:
        raise AttributeError(name)
    if name not in _CACHE:
        _CACHE[name] = import_module(f".{name}", __name__)
    return _CACHE[name]


def __dir__() -> list[str]:
    return sorted(set(__all__ + list(globals().keys())))
